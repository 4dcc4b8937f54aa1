"""
core/events.py: structured event logging

Event type constants (class E) and log_event(), so every key operation of the
storefront produces a grep-able line.

Format:  event=xxx | key=val | key=val
         ^ fixed prefix  ^ free-form fields

Usage:
    from core.log import get_logger
    from core.events import log_event, E

    logger = get_logger(__name__)
    log_event(logger, E.ORDER_CREATE, order_id="o1", tier="STANDARD")
    # -> event=order.create | order_id=o1 | tier=STANDARD
"""

import logging
from typing import Any


class E:
    """Event type constants, grouped by component."""

    # ── Auth ──────────────────────────────────────────────────────────────────
    AUTH_LOGIN_SUCCESS = "auth.login.success"
    AUTH_LOGIN_FAIL = "auth.login.fail"
    AUTH_TOKEN_INVALID = "auth.token.invalid"

    # ── Admission gates ───────────────────────────────────────────────────────
    GATE_CSRF_REJECT = "gate.csrf.reject"
    GATE_RATE_LIMIT = "gate.rate_limit"

    # ── Checkout ──────────────────────────────────────────────────────────────
    CHECKOUT_START = "checkout.start"
    CHECKOUT_FREE = "checkout.free"
    CHECKOUT_DUPLICATE = "checkout.duplicate"
    CHECKOUT_SESSION_OPEN = "checkout.session.open"
    CHECKOUT_SESSION_FAIL = "checkout.session.fail"

    # ── Order ─────────────────────────────────────────────────────────────────
    ORDER_CREATE = "order.create"
    ORDER_FULFILL = "order.fulfill"
    ORDER_PAYMENT_PAID = "order.payment.paid"
    ORDER_PAYMENT_FAIL = "order.payment.fail"
    ORDER_DISPUTE = "order.dispute"
    ORDER_SWEEP_START = "order.sweep.start"
    ORDER_SWEEP_COMPLETE = "order.sweep.complete"
    ORDER_EXPIRE = "order.expire"

    # ── Webhook ───────────────────────────────────────────────────────────────
    WEBHOOK_RECEIVE = "webhook.receive"
    WEBHOOK_SIGNATURE_FAIL = "webhook.signature.fail"
    WEBHOOK_DECODE_FAIL = "webhook.decode.fail"
    WEBHOOK_DUPLICATE = "webhook.duplicate"
    WEBHOOK_IGNORE = "webhook.ignore"
    WEBHOOK_SKIP = "webhook.skip"
    WEBHOOK_PROCESS_COMPLETE = "webhook.process.complete"
    WEBHOOK_PROCESS_FAIL = "webhook.process.fail"

    # ── License ───────────────────────────────────────────────────────────────
    LICENSE_ISSUE = "license.issue"
    LICENSE_EXISTS = "license.exists"
    LICENSE_DEACTIVATE = "license.deactivate"

    # ── Download ──────────────────────────────────────────────────────────────
    DOWNLOAD_ALLOW = "download.allow"
    DOWNLOAD_DENY = "download.deny"
    DOWNLOAD_FETCH_FAIL = "download.fetch.fail"

    # ── Email ─────────────────────────────────────────────────────────────────
    EMAIL_SEND = "email.send"
    EMAIL_SKIP = "email.skip"
    EMAIL_FAIL = "email.fail"

    # ── System ────────────────────────────────────────────────────────────────
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_DB_INIT = "system.db_init"
    SYSTEM_JOB_ADD = "system.job.add"


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "info",
    **fields: Any,
) -> None:
    """
    Write a structured event line: event=xxx | key=val | key=val

    Examples:
        log_event(logger, E.LICENSE_ISSUE, order_id="o1", tier="COMMERCIAL")
        # -> event=license.issue | order_id=o1 | tier=COMMERCIAL

        log_event(logger, E.WEBHOOK_PROCESS_FAIL, level="error",
                  event_id="evt_1", error="db locked")
        # -> event=webhook.process.fail | event_id=evt_1 | error=db locked
    """
    parts = [f"event={event}"]
    for k, v in fields.items():
        sv = str(v) if not isinstance(v, str) else v
        # long values are truncated to keep one line per event
        if len(sv) > 300:
            sv = sv[:297] + "..."
        parts.append(f"{k}={sv}")
    msg = " | ".join(parts)
    getattr(logger, level)(msg, stacklevel=2)
