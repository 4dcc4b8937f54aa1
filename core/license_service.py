import time
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import or_

from core.config import cfg
from core.events import log_event, E
from core.log import get_logger
from core.models.license import License
from core.models.order import Order, OrderItem
from core.order_service import to_base36, random_base36
from core.pricing import is_free_tier, license_capabilities, normalize_license_tier, tiers_covering

logger = get_logger(__name__)

FREE_LICENSE_TTL = timedelta(days=7)


def max_downloads_default() -> Optional[int]:
    # 0 or unset: unlimited
    limit = int(cfg.get("license.max_downloads", 0) or 0)
    return limit if limit > 0 else None


def generate_license_key(order_id: str, asset_id: str, license_tier: str, now_ms: Optional[int] = None) -> str:
    ms = int(now_ms if now_ms is not None else time.time() * 1000)
    prefix = str(license_tier or "")[:2]
    return f"{prefix}-{str(order_id)[:4]}-{str(asset_id)[:4]}-{to_base36(ms)}-{random_base36(8)}".upper()


def get_license_for_order(session, order_id: str, asset_id: str = "") -> Optional[License]:
    query = session.query(License).filter(License.order_id == order_id)
    if asset_id:
        query = query.filter(License.asset_id == asset_id)
    return query.first()


def build_license(order: Order, item: OrderItem, user_id: str, purchase_price=None, currency: str = "") -> License:
    """New License row for one order item; caller adds and commits it with the order update."""
    now = datetime.now()
    tier = item.license_tier
    flags = license_capabilities(tier)
    price = Decimal(purchase_price) if purchase_price is not None else Decimal(item.total_price or 0)
    return License(
        id=str(uuid.uuid4()),
        license_key=generate_license_key(order.id, item.asset_id, tier),
        license_tier=tier,
        user_id=user_id,
        order_id=order.id,
        asset_id=item.asset_id,
        commercial_use=flags["commercial_use"],
        resale_allowed=flags["resale_allowed"],
        modification_allowed=flags["modification_allowed"],
        purchase_price=price.quantize(Decimal("0.01")),
        currency=(currency or item.currency or "USD").upper(),
        download_count=0,
        max_downloads=None if is_free_tier(tier) else max_downloads_default(),
        is_active=True,
        expires_at=now + FREE_LICENSE_TTL if is_free_tier(tier) else None,
        created_at=now,
        updated_at=now,
    )


def issue_license(session, order: Order, item: OrderItem, user_id: str, amount=None, currency: str = "") -> License:
    """Build and stage a License in the caller's transaction; no commit."""
    lic = build_license(order, item, user_id, purchase_price=amount, currency=currency)
    session.add(lic)
    return lic


def has_active_license(session, user_id: str, asset_id: str, license_tier: str) -> bool:
    tier = normalize_license_tier(license_tier)
    row = (
        session.query(License.id)
        .filter(
            License.user_id == user_id,
            License.asset_id == asset_id,
            License.license_tier == tier,
            License.is_active.is_(True),
        )
        .first()
    )
    return row is not None


def find_entitling_license(
    session,
    user_id: str,
    asset_id: str,
    license_tier: str,
    now: Optional[datetime] = None,
) -> Optional[License]:
    """Active, unexpired license of ``license_tier`` or higher with downloads left."""
    now = now or datetime.now()
    rows = (
        session.query(License)
        .filter(
            License.user_id == user_id,
            License.asset_id == asset_id,
            License.license_tier.in_(tiers_covering(license_tier)),
            License.is_active.is_(True),
            or_(License.expires_at.is_(None), License.expires_at > now),
        )
        .order_by(License.created_at.asc())
        .all()
    )
    for lic in rows:
        if lic.max_downloads is None or int(lic.download_count or 0) < int(lic.max_downloads):
            return lic
    return None


def deactivate_order_licenses(session, order_id: str) -> int:
    rows = session.query(License).filter(License.order_id == order_id, License.is_active.is_(True)).all()
    now = datetime.now()
    for lic in rows:
        lic.is_active = False
        lic.updated_at = now
        log_event(logger, E.LICENSE_DEACTIVATE, license_key=lic.license_key, order_id=order_id)
    return len(rows)


def record_license_download(lic: License, now: Optional[datetime] = None) -> None:
    now = now or datetime.now()
    lic.download_count = int(lic.download_count or 0) + 1
    lic.last_downloaded_at = now
    lic.updated_at = now


def license_to_dict(lic: License) -> Dict:
    return {
        "id": lic.id,
        "license_key": lic.license_key,
        "license_tier": lic.license_tier,
        "asset_id": lic.asset_id,
        "order_id": lic.order_id,
        "commercial_use": bool(lic.commercial_use),
        "resale_allowed": bool(lic.resale_allowed),
        "modification_allowed": bool(lic.modification_allowed),
        "purchase_price": f"{Decimal(lic.purchase_price or 0):.2f}",
        "currency": lic.currency,
        "download_count": int(lic.download_count or 0),
        "max_downloads": lic.max_downloads,
        "is_active": bool(lic.is_active),
        "expires_at": lic.expires_at.isoformat() if lic.expires_at else None,
        "created_at": lic.created_at.isoformat() if lic.created_at else None,
    }


def list_user_licenses(session, user_id: str, include_inactive: bool = False, limit: int = 100) -> List[Dict]:
    query = session.query(License).filter(License.user_id == user_id)
    if not include_inactive:
        query = query.filter(License.is_active.is_(True))
    rows = query.order_by(License.created_at.desc()).limit(max(1, min(int(limit or 100), 500))).all()
    return [license_to_dict(x) for x in rows]
