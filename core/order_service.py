import random
import string
import time
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from core.events import log_event, E
from core.log import get_logger
from core.models.asset import Asset
from core.models.license import License
from core.models.order import (
    Order,
    OrderItem,
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CANCELLED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PROCESSING,
    PAYMENT_STATUS_FAILED,
    FULFILLMENT_STATUS_PENDING,
    FULFILLMENT_STATUS_CANCELLED,
)
from core.pricing import DEFAULT_CURRENCY, get_license_pricing

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "PLS"
_BASE36 = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def random_base36(length: int) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def new_order_number(now_ms: Optional[int] = None) -> str:
    ms = int(now_ms if now_ms is not None else time.time() * 1000)
    return f"{ORDER_NUMBER_PREFIX}-{ms}-{random_base36(5)}".upper()


def _money(value) -> str:
    return f"{Decimal(value or 0):.2f}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def create_pending_order(session, identity: Dict, asset: Asset, license_tier: str, client_ip: str = "") -> Order:
    pricing = get_license_pricing(license_tier)
    price = pricing["price"]
    now = datetime.now()
    order = Order(
        id=str(uuid.uuid4()),
        order_number=new_order_number(),
        user_id=identity["id"],
        status=ORDER_STATUS_PENDING,
        payment_status=PAYMENT_STATUS_PENDING,
        fulfillment_status=FULFILLMENT_STATUS_PENDING,
        subtotal=price,
        tax_amount=Decimal("0.00"),
        total_amount=price,
        currency=DEFAULT_CURRENCY,
        billing_email=identity.get("email") or "",
        billing_name=identity.get("name") or identity.get("email") or "",
        customer_ip=(client_ip or "127.0.0.1")[:64],
        created_at=now,
        updated_at=now,
    )
    order.items.append(
        OrderItem(
            id=str(uuid.uuid4()),
            asset_id=asset.id,
            license_tier=pricing["tier"],
            quantity=1,
            unit_price=price,
            total_price=price,
            currency=DEFAULT_CURRENCY,
            item_title=asset.title,
            item_description=f"{pricing['name']} for {asset.title}",
            item_type="IMAGE",
            created_at=now,
        )
    )
    session.add(order)
    session.commit()
    session.refresh(order)
    log_event(
        logger,
        E.ORDER_CREATE,
        order_id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        asset_id=asset.id,
        tier=pricing["tier"],
        amount=_money(price),
    )
    return order


def attach_payment_session(session, order: Order, session_id: str) -> Order:
    order.stripe_session_id = session_id
    order.payment_status = PAYMENT_STATUS_PROCESSING
    order.updated_at = datetime.now()
    session.commit()
    session.refresh(order)
    return order


def append_note(order: Order, note: str) -> None:
    text = str(note or "").strip()
    if not text:
        return
    order.internal_notes = ((order.internal_notes or "") + "\n" + text).strip()[:2000]


def get_order(session, order_id: str) -> Optional[Order]:
    oid = str(order_id or "").strip()
    if not oid:
        return None
    return session.query(Order).filter(Order.id == oid).first()


def get_order_for_user(session, order_id: str, user_id: str) -> Optional[Order]:
    order = get_order(session, order_id)
    if not order or order.user_id != user_id:
        return None
    return order


def find_order_by_payment_intent(session, payment_intent_id: str) -> Optional[Order]:
    pid = str(payment_intent_id or "").strip()
    if not pid:
        return None
    return session.query(Order).filter(Order.stripe_payment_intent_id == pid).first()


def item_to_dict(item: OrderItem) -> Dict:
    return {
        "id": item.id,
        "asset_id": item.asset_id,
        "license_tier": item.license_tier,
        "quantity": int(item.quantity or 1),
        "unit_price": _money(item.unit_price),
        "total_price": _money(item.total_price),
        "currency": item.currency,
        "item_title": item.item_title,
        "item_description": item.item_description or "",
        "item_type": item.item_type,
    }


def order_to_dict(order: Order, include_licenses: bool = True) -> Dict:
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "fulfillment_status": order.fulfillment_status,
        "subtotal": _money(order.subtotal),
        "tax_amount": _money(order.tax_amount),
        "total_amount": _money(order.total_amount),
        "currency": order.currency,
        "created_at": _iso(order.created_at),
        "completed_at": _iso(order.completed_at),
        "items": [item_to_dict(x) for x in order.items],
        "billing_info": {
            "email": order.billing_email,
            "name": order.billing_name,
            "street": order.billing_street,
            "city": order.billing_city,
            "state": order.billing_state,
            "zip": order.billing_zip,
            "country": order.billing_country,
        },
    }
    if include_licenses:
        from core.license_service import license_to_dict

        data["licenses"] = [license_to_dict(x) for x in order.licenses if x.is_active]
    return data


def list_orders(session, user_id: str = "", status: str = "", limit: int = 50) -> List[Dict]:
    query = session.query(Order)
    if user_id:
        query = query.filter(Order.user_id == user_id)
    status_text = str(status or "").strip().upper()
    if status_text:
        query = query.filter(Order.status == status_text)
    rows = query.order_by(Order.created_at.desc()).limit(max(1, min(int(limit or 50), 200))).all()
    return [order_to_dict(x, include_licenses=False) for x in rows]


def sweep_stale_pending_orders(session, ttl_hours: int = 48, limit: int = 200, now: Optional[datetime] = None) -> Dict:
    """Cancel orders whose payment never completed within ``ttl_hours``."""
    now = now or datetime.now()
    cutoff = now - timedelta(hours=max(1, int(ttl_hours or 48)))
    rows = (
        session.query(Order)
        .filter(
            Order.status == ORDER_STATUS_PENDING,
            Order.payment_status.in_([PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PROCESSING]),
            Order.created_at < cutoff,
        )
        .order_by(Order.created_at.asc())
        .limit(max(1, min(int(limit or 200), 1000)))
        .all()
    )
    expired = []
    for order in rows:
        # a license means the fulfillment path already ran
        if session.query(License.id).filter(License.order_id == order.id).first():
            continue
        order.status = ORDER_STATUS_CANCELLED
        order.payment_status = PAYMENT_STATUS_FAILED
        order.fulfillment_status = FULFILLMENT_STATUS_CANCELLED
        order.updated_at = now
        append_note(order, f"Expired: no payment confirmation within {int(ttl_hours)}h")
        expired.append(order.id)
        log_event(logger, E.ORDER_EXPIRE, order_id=order.id, order_number=order.order_number)
    if expired:
        session.commit()
    return {"total": len(expired), "orders": expired}
