"""
core/webhook_service.py: payment webhook reconciliation

The gateway delivers events at least once, in any order, with no user session;
the only proof of origin is the signature over the raw body. Processing rules:

• verify the signature before parsing anything, reject with zero writes
• record each delivery in the webhook_events ledger keyed by gateway event id,
  so a redelivered event that already completed is acknowledged untouched
• every handler is an idempotent upsert keyed by order id; the Order terminal
  update and its License insert share one commit, and the unique
  (order_id, asset_id) constraint stops a racing duplicate
• handler errors are logged and the ledger row marked failed, the caller
  still gets an acknowledgment
"""

import uuid
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError

from core.errors import EventDecodeError
from core.events import log_event, E
from core.license_service import deactivate_order_licenses, get_license_for_order, issue_license
from core.log import get_logger, trace_ctx
from core.models.asset import Asset
from core.models.order import (
    Order,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_CANCELLED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_REFUNDED,
    FULFILLMENT_STATUS_FULFILLED,
    FULFILLMENT_STATUS_CANCELLED,
)
from core.models.user import User
from core.models.webhook_event import (
    WebhookEvent,
    WEBHOOK_STATUS_FAILED,
    WEBHOOK_STATUS_IGNORED,
    WEBHOOK_STATUS_PROCESSED,
)
from core.notify_service import Mailer
from core.order_service import append_note, find_order_by_payment_intent
from core.payment_gateway import PaymentGateway
from core.pricing import from_minor_units
from core.webhook_events import (
    ChargeDisputeCreated,
    CheckoutCompleted,
    PaymentIntentFailed,
    PaymentIntentSucceeded,
    UnhandledEvent,
    decode_event,
    envelope_id_and_type,
)

logger = get_logger(__name__)

ACK = {"received": True}


class Outcome(NamedTuple):
    status: str
    order_id: Optional[str] = None
    reason: str = ""


def _ignored(reason: str, order_id: Optional[str] = None) -> Outcome:
    return Outcome(WEBHOOK_STATUS_IGNORED, order_id, reason)


class WebhookReconciler:
    def __init__(self, database, gateway: PaymentGateway, mailer: Optional[Mailer] = None):
        self.database = database
        self.gateway = gateway
        self.mailer = mailer

    # ── entry point ────────────────────────────────────────────────────────────
    def handle(self, payload: bytes, signature: str) -> Dict:
        """Verify, record and apply one delivery. Raises InvalidSignature only."""
        raw = self.gateway.verify_event(payload, signature)
        try:
            event_id, event_type = envelope_id_and_type(raw)
        except EventDecodeError as e:
            log_event(logger, E.WEBHOOK_DECODE_FAIL, level="error", error=e.message)
            return dict(ACK)

        with trace_ctx(event_id[-16:]):
            log_event(logger, E.WEBHOOK_RECEIVE, event_id=event_id, type=event_type)
            after_commit: List[Callable[[], None]] = []
            session = self.database.get_session()
            try:
                ledger = self._claim(session, event_id, event_type)
                if ledger is None:
                    log_event(logger, E.WEBHOOK_DUPLICATE, event_id=event_id, type=event_type)
                    return dict(ACK)
                self._apply(session, ledger, raw, after_commit)
            finally:
                session.close()
            self._run_after_commit(after_commit)
        return dict(ACK)

    def _claim(self, session, event_id: str, event_type: str) -> Optional[WebhookEvent]:
        now = datetime.now()
        ledger = session.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
        if ledger is not None:
            if ledger.status in (WEBHOOK_STATUS_PROCESSED, WEBHOOK_STATUS_IGNORED):
                return None
            ledger.attempts = int(ledger.attempts or 0) + 1
            session.commit()
            return ledger
        ledger = WebhookEvent(
            id=uuid.uuid4().hex,
            event_id=event_id,
            event_type=event_type,
            attempts=1,
            received_at=now,
        )
        session.add(ledger)
        try:
            session.commit()
        except IntegrityError:
            # a concurrent delivery of the same event claimed it first
            session.rollback()
            return None
        return ledger

    def _apply(self, session, ledger: WebhookEvent, raw: Dict, after_commit: List) -> None:
        ledger_id = ledger.id
        try:
            event = decode_event(raw)
            outcome = self.dispatch(session, event, after_commit)
        except EventDecodeError as e:
            session.rollback()
            log_event(logger, E.WEBHOOK_DECODE_FAIL, level="error", event_id=ledger.event_id, error=e.message, fields=e.detail.get("fields", []))
            self._finish(session, ledger_id, WEBHOOK_STATUS_IGNORED, error=e.message)
            return
        except Exception as e:
            session.rollback()
            after_commit.clear()
            logger.exception("webhook handler failed: event_id=%s type=%s", ledger.event_id, ledger.event_type)
            log_event(logger, E.WEBHOOK_PROCESS_FAIL, level="error", event_id=ledger.event_id, error=e)
            self._finish(session, ledger_id, WEBHOOK_STATUS_FAILED, error=f"{type(e).__name__}: {e}")
            return
        self._finish(session, ledger_id, outcome.status, order_id=outcome.order_id, error=outcome.reason or None)
        log_event(
            logger,
            E.WEBHOOK_PROCESS_COMPLETE,
            event_id=ledger.event_id,
            type=ledger.event_type,
            status=outcome.status,
            order_id=outcome.order_id or "-",
        )

    def _finish(self, session, ledger_id: str, status: str, order_id: Optional[str] = None, error: Optional[str] = None) -> None:
        ledger = session.query(WebhookEvent).filter(WebhookEvent.id == ledger_id).first()
        ledger.status = status
        if order_id:
            ledger.order_id = order_id
        ledger.last_error = (error or None) and str(error)[:2000]
        ledger.processed_at = datetime.now()
        session.commit()

    def _run_after_commit(self, callbacks: List[Callable[[], None]]) -> None:
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("post-commit notification failed")

    # ── dispatch ───────────────────────────────────────────────────────────────
    def dispatch(self, session, event, after_commit: Optional[List] = None) -> Outcome:
        after_commit = after_commit if after_commit is not None else []
        if isinstance(event, CheckoutCompleted):
            return self.on_checkout_completed(session, event, after_commit)
        if isinstance(event, PaymentIntentSucceeded):
            return self.on_payment_succeeded(session, event)
        if isinstance(event, PaymentIntentFailed):
            return self.on_payment_failed(session, event)
        if isinstance(event, ChargeDisputeCreated):
            return self.on_dispute_created(session, event)
        if isinstance(event, UnhandledEvent):
            log_event(logger, E.WEBHOOK_IGNORE, event_id=event.event_id, type=event.kind)
            return _ignored(f"unhandled event type {event.kind}")
        return _ignored("unknown event model")

    def _lock_order(self, session, order_id: str) -> Optional[Order]:
        return session.query(Order).filter(Order.id == order_id).with_for_update().first()

    def on_checkout_completed(self, session, event: CheckoutCompleted, after_commit: List) -> Outcome:
        checkout = event.object
        meta = checkout.metadata
        order = self._lock_order(session, meta.order_id)
        if not order:
            log_event(logger, E.WEBHOOK_SKIP, level="error", reason="order_missing", order_id=meta.order_id)
            return _ignored("order not found", meta.order_id)

        item = next(
            (x for x in order.items if x.asset_id == meta.asset_id and x.license_tier == meta.license_tier),
            None,
        )
        if order.user_id != meta.user_id or item is None:
            log_event(
                logger,
                E.WEBHOOK_SKIP,
                level="error",
                reason="metadata_mismatch",
                order_id=order.id,
                asset_id=meta.asset_id,
                tier=meta.license_tier,
            )
            return _ignored("metadata does not match order", order.id)

        if order.payment_status == PAYMENT_STATUS_REFUNDED:
            log_event(logger, E.WEBHOOK_SKIP, reason="order_refunded", order_id=order.id)
            return _ignored("order already refunded", order.id)

        now = datetime.now()
        order.status = ORDER_STATUS_CONFIRMED
        order.payment_status = PAYMENT_STATUS_PAID
        order.fulfillment_status = FULFILLMENT_STATUS_FULFILLED
        order.completed_at = order.completed_at or now
        order.updated_at = now
        if checkout.payment_intent:
            order.stripe_payment_intent_id = checkout.payment_intent
        if not order.stripe_session_id:
            order.stripe_session_id = checkout.id

        existing = get_license_for_order(session, order.id, item.asset_id)
        if existing is not None:
            session.commit()
            log_event(logger, E.LICENSE_EXISTS, order_id=order.id, license_key=existing.license_key)
            return Outcome(WEBHOOK_STATUS_PROCESSED, order.id, "license already issued")

        purchase_price = from_minor_units(checkout.amount_total) if checkout.amount_total is not None else None
        lic = issue_license(session, order, item, meta.user_id, amount=purchase_price, currency=checkout.currency or "")
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            log_event(logger, E.LICENSE_EXISTS, order_id=meta.order_id, reason="unique_constraint")
            return Outcome(WEBHOOK_STATUS_PROCESSED, meta.order_id, "license already issued")

        log_event(logger, E.ORDER_FULFILL, order_id=order.id, order_number=order.order_number)
        log_event(
            logger,
            E.LICENSE_ISSUE,
            order_id=order.id,
            license_key=lic.license_key,
            tier=lic.license_tier,
            commercial_use=lic.commercial_use,
        )
        if self.mailer is not None:
            order_id, license_key = order.id, lic.license_key
            after_commit.append(lambda: self._notify_purchase(order_id, license_key))
        return Outcome(WEBHOOK_STATUS_PROCESSED, order.id)

    def on_payment_succeeded(self, session, event: PaymentIntentSucceeded) -> Outcome:
        intent = event.object
        order = self._lock_order(session, intent.metadata.order_id)
        if not order:
            log_event(logger, E.WEBHOOK_SKIP, level="error", reason="order_missing", order_id=intent.metadata.order_id)
            return _ignored("order not found", intent.metadata.order_id)
        if order.payment_status == PAYMENT_STATUS_REFUNDED:
            log_event(logger, E.WEBHOOK_SKIP, reason="order_refunded", order_id=order.id)
            return _ignored("order already refunded", order.id)
        order.payment_status = PAYMENT_STATUS_PAID
        order.stripe_payment_intent_id = intent.id
        order.updated_at = datetime.now()
        session.commit()
        log_event(logger, E.ORDER_PAYMENT_PAID, order_id=order.id, payment_intent=intent.id)
        return Outcome(WEBHOOK_STATUS_PROCESSED, order.id)

    def on_payment_failed(self, session, event: PaymentIntentFailed) -> Outcome:
        intent = event.object
        order = self._lock_order(session, intent.metadata.order_id)
        if not order:
            log_event(logger, E.WEBHOOK_SKIP, level="error", reason="order_missing", order_id=intent.metadata.order_id)
            return _ignored("order not found", intent.metadata.order_id)
        if order.payment_status in (PAYMENT_STATUS_PAID, PAYMENT_STATUS_REFUNDED):
            # a late failure from an earlier attempt never undoes a completed payment
            log_event(logger, E.WEBHOOK_SKIP, reason="already_settled", order_id=order.id, payment_status=order.payment_status)
            return _ignored("payment already settled", order.id)
        order.status = ORDER_STATUS_CANCELLED
        order.payment_status = PAYMENT_STATUS_FAILED
        order.fulfillment_status = FULFILLMENT_STATUS_CANCELLED
        order.stripe_payment_intent_id = intent.id
        order.updated_at = datetime.now()
        session.commit()
        log_event(logger, E.ORDER_PAYMENT_FAIL, order_id=order.id, payment_intent=intent.id)
        return Outcome(WEBHOOK_STATUS_PROCESSED, order.id)

    def on_dispute_created(self, session, event: ChargeDisputeCreated) -> Outcome:
        dispute = event.object
        order = find_order_by_payment_intent(session, dispute.payment_intent)
        if not order:
            log_event(logger, E.WEBHOOK_SKIP, reason="order_missing", payment_intent=dispute.payment_intent)
            return _ignored("no order for payment intent")
        already_refunded = order.payment_status == PAYMENT_STATUS_REFUNDED
        order.status = ORDER_STATUS_CANCELLED
        order.payment_status = PAYMENT_STATUS_REFUNDED
        order.fulfillment_status = FULFILLMENT_STATUS_CANCELLED
        order.updated_at = datetime.now()
        if not already_refunded:
            append_note(order, f"Dispute created: {dispute.reason or 'unspecified'}")
        deactivated = deactivate_order_licenses(session, order.id)
        session.commit()
        log_event(logger, E.ORDER_DISPUTE, order_id=order.id, reason=dispute.reason, licenses=deactivated)
        return Outcome(WEBHOOK_STATUS_PROCESSED, order.id)

    # ── notifications ──────────────────────────────────────────────────────────
    def _notify_purchase(self, order_id: str, license_key: str) -> None:
        session = self.database.get_session()
        try:
            order = session.query(Order).filter(Order.id == order_id).first()
            if not order or not order.items:
                return
            item = order.items[0]
            user = session.query(User).filter(User.id == order.user_id).first()
            asset = session.query(Asset).filter(Asset.id == item.asset_id).first()
            if not user or not asset:
                return
            self.mailer.send_purchase_receipt(
                user.email,
                user.name,
                asset.title,
                item.license_tier,
                order.total_amount,
                order.currency,
                order.order_number,
            )
            self.mailer.send_download_confirmation(
                user.email,
                user.name,
                asset.title,
                item.license_tier,
                self.mailer.download_url_for(asset.id, item.license_tier),
            )
        finally:
            session.close()
