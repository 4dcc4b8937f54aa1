from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext

from core.config import cfg, API_BASE
from core.errors import Unauthenticated
from core.events import log_event, E
from core.log import get_logger
from core.models.user import User as DBUser

logger = get_logger(__name__)

SECRET_KEY = str(cfg.get("jwt.secret_key", "change-me-in-config"))
ALGORITHM = str(cfg.get("jwt.algorithm", "HS256"))
ACCESS_TOKEN_EXPIRE_MINUTES = int(cfg.get("jwt.expire_minutes", 60 * 24 * 7))

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{API_BASE}/auth/login", auto_error=False)


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = dict(data)
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def identity_from_user(user: DBUser) -> Dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name or "",
        "role": user.role or "CUSTOMER",
    }


def authenticate_user(session, email: str, password: str) -> Optional[DBUser]:
    user = session.query(DBUser).filter(DBUser.email == str(email or "").strip().lower()).first()
    if not user or not user.is_active:
        return None
    if not user.verify_password(password):
        return None
    return user


def issue_token_for(user: DBUser) -> str:
    return create_access_token({"sub": user.id, "email": user.email, "role": user.role})


def verify_token(session, token: str) -> Optional[Dict]:
    """Bearer token -> identity dict, or None when invalid, expired or unknown."""
    token = str(token or "").strip()
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        log_event(logger, E.AUTH_TOKEN_INVALID, level="debug", error=type(e).__name__)
        return None
    user_id = str(payload.get("sub") or "")
    if not user_id:
        return None
    user = session.query(DBUser).filter(DBUser.id == user_id).first()
    if not user or not user.is_active:
        return None
    return identity_from_user(user)


def _resolve(request: Request, token: Optional[str]) -> Optional[Dict]:
    if not token:
        return None
    session = request.app.state.database.get_session()
    try:
        return verify_token(session, token)
    finally:
        session.close()


async def get_optional_user(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Optional[Dict]:
    return _resolve(request, token)


async def get_current_user(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Dict:
    identity = _resolve(request, token)
    if not identity:
        raise Unauthenticated("Invalid or expired token" if token else "Authentication required")
    return identity


def bearer_token(request: Request) -> str:
    header = str(request.headers.get("Authorization", "") or "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return ""
