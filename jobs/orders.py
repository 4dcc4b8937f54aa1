from threading import Event, Thread
from typing import Optional

from core.config import cfg
from core.events import log_event, E
from core.log import get_logger, trace_ctx
from core.order_service import sweep_stale_pending_orders

logger = get_logger(__name__)


def run_pending_order_sweep(database, ttl_hours: Optional[int] = None, limit: int = 1000) -> dict:
    ttl = int(ttl_hours or cfg.get("orders.pending_ttl_hours", 48) or 48)
    session = database.get_session()
    try:
        log_event(logger, E.ORDER_SWEEP_START, trigger="worker", ttl_hours=ttl)
        result = sweep_stale_pending_orders(session=session, ttl_hours=ttl, limit=limit)
        log_event(logger, E.ORDER_SWEEP_COMPLETE, trigger="worker", total=result["total"])
        return result
    finally:
        session.close()


def _worker_loop(database, stop: Event):
    interval = max(60, int(cfg.get("orders.sweep_interval_seconds", 3600) or 3600))
    while not stop.is_set():
        with trace_ctx():
            try:
                run_pending_order_sweep(database)
            except Exception:
                logger.exception("pending order sweep failed")
        stop.wait(interval)


def start_pending_order_sweep_worker(database, stop: Optional[Event] = None) -> Thread:
    stop = stop or Event()
    t = Thread(target=_worker_loop, args=(database, stop), daemon=True, name="pending-order-sweep")
    t.start()
    log_event(logger, E.SYSTEM_JOB_ADD, job="pending-order-sweep")
    return t
