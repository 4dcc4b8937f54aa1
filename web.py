from typing import Dict, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apis.auth import csrf_router, router as auth_router
from apis.checkout import router as checkout_router
from apis.download import router as download_router
from apis.licenses import catalog_router, router as licenses_router
from apis.orders import router as orders_router
from apis.webhooks import router as webhooks_router
from core.config import API_BASE, VERSION, cfg
from core.db import Database
from core.errors import RateLimited, StoreError, UpstreamFailure
from core.events import log_event, E
from core.log import get_logger, set_trace_id
from core.notify_service import Mailer
from core.payment_gateway import PaymentGateway, StripeGateway
from core.security import RateLimiter, limiter_from_config
from core.storage_service import AssetStorage
from core.webhook_service import WebhookReconciler
from jobs.orders import start_pending_order_sweep_worker

logger = get_logger(__name__)


def default_rate_limiters() -> Dict[str, RateLimiter]:
    return {
        "checkout": limiter_from_config("checkout", 10, 900),
        "download": limiter_from_config("download", 100, 900),
    }


def _store_error_response(exc: StoreError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited):
        headers = {
            "Retry-After": str(exc.retry_after),
            "X-RateLimit-Limit": str(exc.limit),
            "X-RateLimit-Remaining": "0",
        }
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def create_app(
    database: Optional[Database] = None,
    gateway: Optional[PaymentGateway] = None,
    mailer: Optional[Mailer] = None,
    storage: Optional[AssetStorage] = None,
    rate_limiters: Optional[Dict[str, RateLimiter]] = None,
    start_jobs: Optional[bool] = None,
) -> FastAPI:
    app = FastAPI(
        title=cfg.get("app_name", "Plan Store API"),
        description="Checkout, payment reconciliation and licensed downloads for architectural plans",
        version=VERSION,
        docs_url=f"{API_BASE}/docs",
        redoc_url=f"{API_BASE}/redoc",
        openapi_url=f"{API_BASE}/openapi.json",
    )

    app.state.database = database or Database()
    app.state.gateway = gateway or StripeGateway.from_config()
    app.state.mailer = mailer if mailer is not None else Mailer.from_config()
    app.state.storage = storage or AssetStorage.from_config()
    app.state.rate_limiters = rate_limiters or default_rate_limiters()
    app.state.reconciler = WebhookReconciler(app.state.database, app.state.gateway, app.state.mailer)
    if start_jobs is None:
        start_jobs = bool(cfg.get("orders.sweep_enabled", True))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.get("cors.allow_origins", ["*"]) or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        tid = set_trace_id(request.headers.get("X-Request-Id", ""))
        response = await call_next(request)
        response.headers["X-Request-Id"] = tid
        response.headers["X-Version"] = VERSION
        return response

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        if exc.status_code >= 500:
            logger.error(
                "request failed: %s %s code=%s error=%s",
                request.method,
                request.url.path,
                exc.code,
                exc.message,
                exc_info=exc if not isinstance(exc, UpstreamFailure) else None,
            )
        return _store_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        fields = sorted({".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()})
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request data", "code": "validation", "details": {"fields": fields}},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("unhandled error: %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "code": "internal"},
        )

    api_router = APIRouter(prefix=f"{API_BASE}")
    api_router.include_router(auth_router)
    api_router.include_router(csrf_router)
    api_router.include_router(checkout_router)
    api_router.include_router(webhooks_router)
    api_router.include_router(download_router)
    api_router.include_router(orders_router)
    api_router.include_router(licenses_router)
    api_router.include_router(catalog_router)
    app.include_router(api_router)

    @app.on_event("startup")
    async def on_startup():
        app.state.database.create_tables()
        log_event(logger, E.SYSTEM_STARTUP, version=VERSION, api_base=API_BASE)
        if start_jobs:
            start_pending_order_sweep_worker(app.state.database)

    return app


app = create_app()
