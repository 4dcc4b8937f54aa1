"""
Download gate: decide whether an identity may fetch an asset at a license
tier, audit every attempt, then stream the bytes from storage.
"""

import re
import uuid
from datetime import date, datetime
from typing import Dict, NamedTuple, Optional

from core.config import cfg
from core.errors import AssetUnavailable, AuthenticationRequired, NotEntitled, Validation
from core.events import log_event, E
from core.license_service import find_entitling_license, record_license_download
from core.log import get_logger
from core.models.asset import Asset
from core.models.download_log import DownloadLog
from core.models.license import License
from core.pricing import LICENSE_STANDARD, is_free_tier, normalize_license_tier
from core.storage_service import AssetStorage, FetchedBlob

logger = get_logger(__name__)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/svg+xml": "svg",
    "image/tiff": "tiff",
    "application/pdf": "pdf",
    "application/zip": "zip",
    "application/acad": "dwg",
    "image/vnd.dwg": "dwg",
}


class DownloadPermission(NamedTuple):
    allowed: bool
    tier: str
    reason: str
    license: Optional[License] = None


class PreparedDownload(NamedTuple):
    blob: FetchedBlob
    filename: str
    tier: str
    asset_title: str = ""
    license_key: str = ""


def require_license_default() -> bool:
    return bool(cfg.get("download.require_license", True))


def check_download_permission(
    session,
    identity: Optional[Dict],
    asset_id: str,
    license_tier: str,
    require_license: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> DownloadPermission:
    """Raises AuthenticationRequired or NotEntitled when the download is refused."""
    tier = normalize_license_tier(license_tier)
    if tier is None:
        raise Validation("Unknown license tier", detail={"license": str(license_tier)})
    if is_free_tier(tier):
        return DownloadPermission(True, tier, "preview")
    if not identity or not identity.get("id"):
        raise AuthenticationRequired()
    if require_license is None:
        require_license = require_license_default()
    if not require_license:
        return DownloadPermission(True, tier, "authenticated")
    lic = find_entitling_license(session, identity["id"], asset_id, tier, now=now)
    if lic is None:
        raise NotEntitled()
    return DownloadPermission(True, tier, "licensed", lic)


def log_download_attempt(
    session,
    asset_id: str,
    license_tier: str,
    identity: Optional[Dict] = None,
    license_id: Optional[str] = None,
    ip_address: str = "",
    user_agent: str = "",
    allowed: bool = False,
    reason: str = "",
) -> DownloadLog:
    row = DownloadLog(
        id=uuid.uuid4().hex,
        asset_id=str(asset_id or "")[:255],
        user_id=(identity or {}).get("id"),
        license_id=license_id,
        license_tier=str(license_tier or "")[:20],
        ip_address=(ip_address or "")[:64],
        user_agent=(user_agent or "")[:500],
        allowed=bool(allowed),
        reason=(reason or "")[:255],
        downloaded_at=datetime.now(),
    )
    session.add(row)
    return row


def _extension(asset: Asset, content_type: str) -> str:
    for candidate in (content_type, asset.mime_type):
        ext = _EXTENSIONS.get(str(candidate or "").split(";")[0].strip().lower())
        if ext:
            return ext
    tail = str(asset.media_url or "").split("?")[0].rsplit("/", 1)[-1]
    if "." in tail:
        return tail.rsplit(".", 1)[-1].lower()[:8]
    return "jpg"


def download_filename(asset: Asset, license_tier: str, content_type: str = "", today: Optional[date] = None) -> str:
    today = today or date.today()
    title = re.sub(r"[^A-Za-z0-9_-]+", "_", str(asset.title or "asset")).strip("_") or "asset"
    return f"{title}_{str(license_tier).lower()}_{today.isoformat()}.{_extension(asset, content_type)}"


def prepare_download(
    database,
    storage: AssetStorage,
    identity: Optional[Dict],
    asset_id: str,
    license_tier: str = LICENSE_STANDARD,
    ip_address: str = "",
    user_agent: str = "",
    require_license: Optional[bool] = None,
) -> PreparedDownload:
    """Gate, audit and fetch one download.

    The bytes are fetched before anything is recorded as allowed. The audit
    row is committed for every attempt, including a failed fetch; the license
    counter only moves once the blob is in hand.
    """
    session = database.get_session()
    try:
        asset = session.query(Asset).filter(Asset.id == str(asset_id or "").strip()).first()
        if not asset or not asset.is_purchasable:
            log_download_attempt(
                session, asset_id, license_tier, identity, ip_address=ip_address, user_agent=user_agent,
                allowed=False, reason="asset_unavailable",
            )
            session.commit()
            raise AssetUnavailable("Asset not found")

        try:
            permission = check_download_permission(session, identity, asset.id, license_tier, require_license)
        except (AuthenticationRequired, NotEntitled, Validation) as e:
            log_download_attempt(
                session, asset.id, license_tier, identity, ip_address=ip_address, user_agent=user_agent,
                allowed=False, reason=e.code,
            )
            session.commit()
            log_event(
                logger,
                E.DOWNLOAD_DENY,
                level="warning",
                asset_id=asset.id,
                tier=license_tier,
                user_id=(identity or {}).get("id", "-"),
                reason=e.code,
            )
            raise

        lic = permission.license
        try:
            blob = storage.fetch(asset.media_url, fallback_content_type=asset.mime_type or "application/octet-stream")
        except Exception as e:
            log_download_attempt(
                session, asset.id, permission.tier, identity,
                license_id=lic.id if lic else None,
                ip_address=ip_address, user_agent=user_agent,
                allowed=False, reason="fetch_failed",
            )
            session.commit()
            log_event(logger, E.DOWNLOAD_FETCH_FAIL, level="error", asset_id=asset.id, error=e)
            raise

        log_download_attempt(
            session, asset.id, permission.tier, identity,
            license_id=lic.id if lic else None,
            ip_address=ip_address, user_agent=user_agent,
            allowed=True, reason=permission.reason,
        )
        if lic is not None:
            record_license_download(lic)
        session.commit()
        log_event(
            logger,
            E.DOWNLOAD_ALLOW,
            asset_id=asset.id,
            tier=permission.tier,
            user_id=(identity or {}).get("id", "-"),
            license_key=lic.license_key if lic else "-",
        )
        return PreparedDownload(
            blob=blob,
            filename=download_filename(asset, permission.tier, blob.content_type),
            tier=permission.tier,
            asset_title=asset.title,
            license_key=lic.license_key if lic else "",
        )
    finally:
        session.close()
