from datetime import timedelta

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from core.auth import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    authenticate_user,
    bearer_token,
    get_current_user,
    identity_from_user,
    issue_token_for,
)
from core.errors import Unauthenticated
from core.events import log_event, E
from core.log import get_logger
from core.security import CSRF_COOKIE_NAME, csrf_token_hash, generate_csrf_token
from .base import success_response

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])
csrf_router = APIRouter(tags=["Auth"])


@router.post("/login", summary="Log in with email and password")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends()):
    session = request.app.state.database.get_session()
    try:
        user = authenticate_user(session, form_data.username, form_data.password)
        if not user:
            log_event(logger, E.AUTH_LOGIN_FAIL, level="warning", email=form_data.username)
            raise Unauthenticated("Incorrect email or password")
        log_event(logger, E.AUTH_LOGIN_SUCCESS, user_id=user.id)
        return {
            "access_token": issue_token_for(user),
            "token_type": "bearer",
            "expires_in": int(timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES).total_seconds()),
            "user": identity_from_user(user),
        }
    finally:
        session.close()


@router.get("/me", summary="Current identity")
async def me(current_user: dict = Depends(get_current_user)):
    return success_response(current_user)


@csrf_router.get("/csrf", summary="Issue a CSRF token and its cookie")
async def issue_csrf_token(request: Request):
    token = generate_csrf_token()
    response = JSONResponse(success_response({"csrfToken": token}))
    # __Host- cookies require Secure, Path=/ and no Domain
    response.set_cookie(
        CSRF_COOKIE_NAME,
        csrf_token_hash(token, bearer_token(request)),
        httponly=True,
        secure=True,
        samesite="strict",
        path="/",
        max_age=60 * 60 * 24,
    )
    return response
