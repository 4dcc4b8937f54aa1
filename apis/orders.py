from fastapi import APIRouter, Depends, Query, Request

from core.auth import get_current_user
from core.config import cfg
from core.errors import Forbidden, NotFound
from core.events import log_event, E
from core.log import get_logger
from core.order_service import get_order_for_user, list_orders, order_to_dict, sweep_stale_pending_orders
from .base import success_response

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


def _require_admin(current_user: dict):
    if str(current_user.get("role") or "").upper() != "ADMIN":
        raise Forbidden("Admin role required")


@router.get("", summary="List the caller's orders")
def get_my_orders(
    request: Request,
    status: str = Query("", max_length=32),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
):
    session = request.app.state.database.get_session()
    try:
        return success_response(list_orders(session, user_id=current_user["id"], status=status, limit=limit))
    finally:
        session.close()


@router.post("/sweep", summary="Expire stale pending orders")
def sweep_orders(
    request: Request,
    ttl_hours: int = Query(0, ge=0, le=24 * 90),
    limit: int = Query(200, ge=1, le=1000),
    current_user: dict = Depends(get_current_user),
):
    _require_admin(current_user)
    ttl = ttl_hours or int(cfg.get("orders.pending_ttl_hours", 48) or 48)
    session = request.app.state.database.get_session()
    try:
        log_event(logger, E.ORDER_SWEEP_START, trigger="admin", user_id=current_user["id"], ttl_hours=ttl)
        result = sweep_stale_pending_orders(session, ttl_hours=ttl, limit=limit)
        log_event(logger, E.ORDER_SWEEP_COMPLETE, trigger="admin", total=result["total"])
        return success_response(result, message=f"Expired {result['total']} orders")
    finally:
        session.close()


@router.get("/{order_id}", summary="Order detail with active licenses")
def get_order_detail(order_id: str, request: Request, current_user: dict = Depends(get_current_user)):
    session = request.app.state.database.get_session()
    try:
        order = get_order_for_user(session, order_id, current_user["id"])
        if not order:
            raise NotFound("Order not found")
        return success_response(order_to_dict(order, include_licenses=True))
    finally:
        session.close()
