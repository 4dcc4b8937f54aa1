"""
Transactional email through the Resend HTTP API.

Every send is fire-and-forget: failures are logged and reported as False,
never raised, so a broken mailbox cannot undo a purchase or a download.
"""

import html
from decimal import Decimal
from typing import List, Union

import requests

from core.config import cfg
from core.events import log_event, E
from core.log import get_logger

logger = get_logger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class Mailer:
    def __init__(
        self,
        api_key: str = "",
        sender: str = "Pulse Architects <noreply@pulse-architects.com>",
        reply_to: str = "support@pulse-architects.com",
        site_url: str = "http://localhost:8000",
        enabled: bool = True,
        timeout_seconds: float = 10.0,
        session: requests.Session = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.reply_to = reply_to
        self.site_url = site_url.rstrip("/")
        self.enabled = bool(enabled)
        self.timeout_seconds = float(timeout_seconds)
        self.http = session or requests.Session()

    @classmethod
    def from_config(cls) -> "Mailer":
        return cls(
            api_key=str(cfg.get("email.api_key", "") or ""),
            sender=str(cfg.get("email.from", "Pulse Architects <noreply@pulse-architects.com>")),
            reply_to=str(cfg.get("email.reply_to", "support@pulse-architects.com")),
            site_url=str(cfg.get("site.url", "http://localhost:8000")),
            enabled=bool(cfg.get("email.enabled", False)),
            timeout_seconds=float(cfg.get("email.timeout_seconds", 10) or 10),
        )

    def send(self, to: Union[str, List[str]], subject: str, body_html: str) -> bool:
        recipients = to if isinstance(to, list) else [to]
        if not self.enabled or not self.api_key:
            log_event(logger, E.EMAIL_SKIP, to=",".join(recipients), subject=subject)
            return False
        try:
            resp = self.http.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "from": self.sender,
                    "to": recipients,
                    "subject": subject,
                    "html": body_html,
                    "reply_to": self.reply_to,
                },
                timeout=self.timeout_seconds,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            log_event(logger, E.EMAIL_FAIL, level="error", to=",".join(recipients), subject=subject, error=e)
            return False
        log_event(logger, E.EMAIL_SEND, to=",".join(recipients), subject=subject)
        return True

    def send_purchase_receipt(
        self,
        email: str,
        name: str,
        asset_title: str,
        license_tier: str,
        amount: Decimal,
        currency: str,
        order_number: str,
    ) -> bool:
        subject = f"Your receipt for {asset_title}"
        body = (
            f"<p>Hi {html.escape(name or 'Customer')},</p>"
            f"<p>Thank you for purchasing a {html.escape(license_tier)} license for "
            f"<strong>{html.escape(asset_title)}</strong>.</p>"
            f"<p>Order {html.escape(order_number)}: {Decimal(amount):.2f} {html.escape(currency)}</p>"
        )
        return self.send(email, subject, body)

    def send_download_confirmation(
        self,
        email: str,
        name: str,
        asset_title: str,
        license_tier: str,
        download_url: str,
    ) -> bool:
        subject = f"Your download is ready: {asset_title}"
        body = (
            f"<p>Hi {html.escape(name or 'Customer')},</p>"
            f"<p>Your {html.escape(license_tier)} download of <strong>{html.escape(asset_title)}</strong> "
            f"is available at <a href=\"{html.escape(download_url)}\">{html.escape(download_url)}</a>.</p>"
        )
        return self.send(email, subject, body)

    def download_url_for(self, asset_id: str, license_tier: str) -> str:
        return f"{self.site_url}/download/{asset_id}?license={license_tier}"
