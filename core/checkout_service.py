"""
Checkout initiation: validate the purchase, persist a pending Order, open a
payment session and hand back the redirect handle.

The metadata placed on the session (orderId, assetId, licenseTier, userId) is
the join key the webhook reconciler reads back; it is passed through verbatim.
"""

from typing import Dict, Optional

from core.config import cfg
from core.errors import AssetUnavailable, DuplicateEntitlement, Unauthenticated, UpstreamFailure, Validation
from core.events import log_event, E
from core.license_service import has_active_license
from core.log import get_logger
from core.models.asset import Asset
from core.order_service import append_note, attach_payment_session, create_pending_order
from core.payment_gateway import PaymentGateway
from core.pricing import get_license_pricing, normalize_license_tier, to_minor_units

logger = get_logger(__name__)


def load_purchasable_asset(session, asset_id: str) -> Optional[Asset]:
    asset = session.query(Asset).filter(Asset.id == str(asset_id or "").strip()).first()
    if not asset or not asset.is_purchasable:
        return None
    return asset


def build_return_urls(return_url: str, order_id: str, asset_id: str):
    base = str(return_url or cfg.get("site.url", "http://localhost:8000")).rstrip("/")
    success_url = f"{base}/purchase/success?session_id={{CHECKOUT_SESSION_ID}}&order_id={order_id}"
    cancel_url = f"{base}/gallery/{asset_id}?checkout=cancelled"
    return success_url, cancel_url


def create_checkout(
    session,
    gateway: PaymentGateway,
    identity: Optional[Dict],
    asset_id: str,
    license_tier: str,
    return_url: str = "",
    client_ip: str = "",
) -> Dict:
    if not identity or not identity.get("id"):
        raise Unauthenticated("Authentication required for purchasing licenses")

    log_event(logger, E.CHECKOUT_START, user_id=identity["id"], asset_id=asset_id, tier=license_tier)

    asset = load_purchasable_asset(session, asset_id)
    if not asset:
        raise AssetUnavailable()

    tier = normalize_license_tier(license_tier)
    if tier is None:
        raise Validation("Unknown license tier", detail={"licenseTier": str(license_tier)})
    pricing = get_license_pricing(tier)

    if pricing["price"] == 0:
        log_event(logger, E.CHECKOUT_FREE, user_id=identity["id"], asset_id=asset.id, tier=tier)
        return {
            "success": True,
            "isFree": True,
            "message": f"{pricing['name']} is free - download directly",
        }

    if has_active_license(session, identity["id"], asset.id, tier):
        log_event(logger, E.CHECKOUT_DUPLICATE, user_id=identity["id"], asset_id=asset.id, tier=tier)
        raise DuplicateEntitlement()

    order = create_pending_order(session, identity, asset, tier, client_ip=client_ip)

    metadata = {
        "orderId": order.id,
        "assetId": asset.id,
        "licenseTier": tier,
        "userId": identity["id"],
    }
    success_url, cancel_url = build_return_urls(return_url, order.id, asset.id)
    try:
        checkout_session = gateway.create_checkout_session(
            order_id=order.id,
            line_name=f"{pricing['name']}: {asset.title}",
            line_description=pricing["description"],
            image_url=asset.media_url,
            amount_minor=to_minor_units(pricing["price"]),
            currency=order.currency,
            customer_email=order.billing_email,
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
        )
    except UpstreamFailure as e:
        append_note(order, f"Payment session failed: {e.message}")
        session.commit()
        log_event(logger, E.CHECKOUT_SESSION_FAIL, level="error", order_id=order.id, error=e.message)
        raise

    order = attach_payment_session(session, order, checkout_session.id)
    log_event(
        logger,
        E.CHECKOUT_SESSION_OPEN,
        order_id=order.id,
        session_id=checkout_session.id,
        amount=f"{pricing['price']:.2f}",
    )
    return {
        "success": True,
        "isFree": False,
        "sessionId": checkout_session.id,
        "sessionUrl": checkout_session.url,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "amount": float(pricing["price"]),
        "currency": order.currency,
        "licenseTier": tier,
        "licenseName": pricing["name"],
    }
