"""Shared fixtures: in-memory database, fake collaborators and signed webhook payloads."""

import hashlib
import hmac
import json
import time
import uuid
from datetime import datetime
from typing import Dict, Optional

from core.auth import identity_from_user, pwd_context
from core.db import Database
from core.errors import UpstreamFailure
from core.models.asset import Asset, ASSET_STATUS_APPROVED
from core.models.order import Order
from core.models.user import User
from core.notify_service import Mailer
from core.payment_gateway import CheckoutSession, StripeGateway
from core.storage_service import FetchedBlob

WEBHOOK_SECRET = "whsec_test_secret"


def make_database() -> Database:
    db = Database("sqlite://")
    db.create_tables()
    return db


class FakeGateway(StripeGateway):
    """Real Stripe signature verification, recorded checkout sessions."""

    def __init__(self, fail: bool = False):
        super().__init__(secret_key="sk_test_fake", webhook_secret=WEBHOOK_SECRET)
        self.fail = fail
        self.sessions = []

    def create_checkout_session(self, **kwargs) -> CheckoutSession:
        if self.fail:
            raise UpstreamFailure("payment gateway rejected session: APIConnectionError")
        self.sessions.append(kwargs)
        sid = f"cs_test_{len(self.sessions)}_{uuid.uuid4().hex[:6]}"
        return CheckoutSession(id=sid, url=f"https://checkout.stripe.test/{sid}")


class FakeMailer(Mailer):
    def __init__(self, explode: bool = False):
        super().__init__(api_key="re_test", enabled=True, site_url="https://plans.test")
        self.explode = explode
        self.sent = []

    def send(self, to, subject, body_html) -> bool:
        if self.explode:
            raise RuntimeError("mailbox on fire")
        self.sent.append({"to": to, "subject": subject, "html": body_html})
        return True


class FakeStorage:
    def __init__(self, content: bytes = b"%PDF-plan-bytes", content_type: str = "application/pdf", fail: bool = False):
        self.content = content
        self.content_type = content_type
        self.fail = fail
        self.fetched = []

    def fetch(self, url: str, fallback_content_type: str = "application/octet-stream") -> FetchedBlob:
        if self.fail:
            raise UpstreamFailure("failed to fetch asset from storage")
        self.fetched.append(url)
        return FetchedBlob(content=self.content, content_type=self.content_type or fallback_content_type)


def seed_user(session, email: str = "", role: str = "CUSTOMER", password: str = "secret123") -> User:
    now = datetime.now()
    user = User(
        id=str(uuid.uuid4()),
        email=email or f"u_{uuid.uuid4().hex[:8]}@example.com",
        name="Test Customer",
        password_hash=pwd_context.hash(password),
        role=role,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    session.commit()
    return user


def seed_asset(session, title: str = "Modern Villa Plan", status: str = ASSET_STATUS_APPROVED, is_active: bool = True) -> Asset:
    now = datetime.now()
    asset = Asset(
        id=str(uuid.uuid4()),
        title=title,
        description="Two-storey villa, full drawing set",
        media_url="https://cdn.plans.test/villa.pdf",
        mime_type="application/pdf",
        status=status,
        is_active=is_active,
        uploaded_by="architect-1",
        created_at=now,
        updated_at=now,
    )
    session.add(asset)
    session.commit()
    return asset


def identity_of(user: User) -> Dict:
    return identity_from_user(user)


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def encode_event(event: Dict) -> bytes:
    return json.dumps(event).encode("utf-8")


def checkout_completed_event(
    order: Order,
    event_id: str = "",
    amount_total: Optional[int] = None,
    payment_intent: str = "",
    metadata: Optional[Dict] = None,
) -> Dict:
    item = order.items[0]
    meta = {
        "orderId": order.id,
        "assetId": item.asset_id,
        "licenseTier": item.license_tier,
        "userId": order.user_id,
    }
    if metadata is not None:
        meta = metadata
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": order.stripe_session_id or f"cs_{uuid.uuid4().hex[:8]}",
                "object": "checkout.session",
                "payment_intent": payment_intent or f"pi_{order.id[:8]}",
                "amount_total": amount_total if amount_total is not None else int(item.total_price * 100),
                "currency": "usd",
                "metadata": meta,
            }
        },
    }


def payment_intent_event(order_id: str, kind: str = "payment_intent.succeeded", intent_id: str = "", event_id: str = "") -> Dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "type": kind,
        "data": {
            "object": {
                "id": intent_id or f"pi_{order_id[:8]}",
                "object": "payment_intent",
                "metadata": {"orderId": order_id},
            }
        },
    }


def dispute_event(payment_intent: str, reason: str = "fraudulent", event_id: str = "") -> Dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "type": "charge.dispute.created",
        "data": {
            "object": {
                "id": f"dp_{uuid.uuid4().hex[:8]}",
                "object": "dispute",
                "payment_intent": payment_intent,
                "reason": reason,
            }
        },
    }
