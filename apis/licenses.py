from fastapi import APIRouter, Depends, Query, Request

from core.auth import get_current_user
from core.license_service import list_user_licenses
from core.pricing import get_pricing_catalog
from .base import success_response

router = APIRouter(prefix="/licenses", tags=["Licenses"])
catalog_router = APIRouter(prefix="/catalog", tags=["Catalog"])


@router.get("", summary="List the caller's licenses")
def get_my_licenses(
    request: Request,
    include_inactive: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
):
    session = request.app.state.database.get_session()
    try:
        return success_response(
            list_user_licenses(session, current_user["id"], include_inactive=include_inactive, limit=limit)
        )
    finally:
        session.close()


@catalog_router.get("/licenses", summary="License tiers and prices")
async def license_catalog():
    return success_response(get_pricing_catalog())
