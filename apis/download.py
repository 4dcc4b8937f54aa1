from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool

from core.auth import bearer_token, get_optional_user
from core.download_service import prepare_download
from core.pricing import LICENSE_STANDARD, is_free_tier
from core.security import client_ip, rate_limit_key

router = APIRouter(prefix="/download", tags=["Download"])


def _send_confirmation(request: Request, identity: dict, asset_id: str, asset_title: str, tier: str) -> None:
    mailer = request.app.state.mailer
    if mailer is None:
        return
    mailer.send_download_confirmation(
        identity.get("email", ""),
        identity.get("name", ""),
        asset_title,
        tier,
        mailer.download_url_for(asset_id, tier),
    )


@router.get("/{asset_id}", summary="Download an asset at a license tier")
async def download_asset(
    asset_id: str,
    request: Request,
    license: str = Query(LICENSE_STANDARD, max_length=20),
    identity: Optional[dict] = Depends(get_optional_user),
):
    request.app.state.rate_limiters["download"].check(rate_limit_key(request, bearer_token(request)))
    prepared = await run_in_threadpool(
        prepare_download,
        request.app.state.database,
        request.app.state.storage,
        identity,
        asset_id,
        license,
        client_ip(request),
        request.headers.get("user-agent", ""),
    )

    blob = prepared.blob
    headers = {
        "Content-Disposition": f'attachment; filename="{quote(prepared.filename)}"',
        "Content-Length": str(len(blob.content)),
        "Cache-Control": "private, no-cache",
    }
    if is_free_tier(prepared.tier):
        headers["X-License-Type"] = "preview"
    elif identity:
        # notification failures are logged by the mailer and never block the file
        await run_in_threadpool(_send_confirmation, request, identity, asset_id, prepared.asset_title, prepared.tier)
    return Response(content=blob.content, media_type=blob.content_type, headers=headers)
