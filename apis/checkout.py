from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from core.auth import bearer_token, get_optional_user
from core.checkout_service import create_checkout
from core.errors import Unauthenticated, Validation
from core.security import check_csrf, client_ip, rate_limit_key

router = APIRouter(prefix="/checkout", tags=["Checkout"])


class CheckoutRequest(BaseModel):
    asset_id: str = Field(alias="assetId", min_length=1, max_length=255)
    license_tier: str = Field(alias="licenseTier", min_length=1, max_length=20)
    return_url: Optional[str] = Field(default=None, alias="returnUrl", max_length=1000)


async def _read_checkout_body(request: Request) -> CheckoutRequest:
    try:
        raw = await request.json()
    except ValueError:
        raise Validation("Request body must be JSON")
    try:
        return CheckoutRequest.model_validate(raw)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise Validation("Invalid request data", detail={"fields": fields})


def _run_checkout(request: Request, identity: dict, payload: CheckoutRequest) -> dict:
    session = request.app.state.database.get_session()
    try:
        return create_checkout(
            session,
            request.app.state.gateway,
            identity,
            payload.asset_id,
            payload.license_tier,
            return_url=payload.return_url or "",
            client_ip=client_ip(request),
        )
    finally:
        session.close()


@router.post("", summary="Open a payment session for an asset license")
async def checkout(request: Request, identity: Optional[dict] = Depends(get_optional_user)):
    token = bearer_token(request)
    # admission gates run before identity and body checks
    request.app.state.rate_limiters["checkout"].check(rate_limit_key(request, token))
    check_csrf(request, token)
    if not identity:
        raise Unauthenticated("Authentication required for purchasing licenses")

    payload = await _read_checkout_body(request)
    return await run_in_threadpool(_run_checkout, request, identity, payload)
