from fastapi import APIRouter, Header, Request
from starlette.concurrency import run_in_threadpool

from core.errors import InvalidSignature
from core.events import log_event, E
from core.log import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe", summary="Payment gateway event delivery")
async def stripe_webhook(request: Request, stripe_signature: str = Header(default="", alias="stripe-signature")):
    # raw bytes: the signature covers the exact body the gateway sent
    payload = await request.body()
    if not stripe_signature:
        log_event(logger, E.WEBHOOK_SIGNATURE_FAIL, level="warning", reason="missing_header")
        raise InvalidSignature("Missing stripe-signature header")
    try:
        return await run_in_threadpool(request.app.state.reconciler.handle, payload, stripe_signature)
    except InvalidSignature as e:
        log_event(logger, E.WEBHOOK_SIGNATURE_FAIL, level="warning", reason=e.message)
        raise
