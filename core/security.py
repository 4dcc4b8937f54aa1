"""
core/security.py: request admission gates

CSRF double-submit check and a per-identity fixed-window rate limiter. Both run
before any business logic; a rejection here is a transport-level denial.
"""

import hashlib
import hmac
import secrets
import threading
import time
from typing import Dict, Optional, Tuple

from fastapi import Request

from core.config import cfg
from core.errors import CsrfRejected, RateLimited
from core.events import log_event, E
from core.log import get_logger

logger = get_logger(__name__)

CSRF_TOKEN_LENGTH = 32
CSRF_HEADER_NAME = "x-csrf-token"
CSRF_COOKIE_NAME = "__Host-csrf-token"
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def _csrf_secret() -> str:
    return str(cfg.get("csrf.secret", "csrf-secret-change-me"))


def csrf_enabled() -> bool:
    return bool(cfg.get("csrf.enabled", True))


def generate_csrf_token() -> str:
    return secrets.token_hex(CSRF_TOKEN_LENGTH)


def csrf_token_hash(token: str, user_session: str = "") -> str:
    data = f"{token}:{user_session or 'anonymous'}:{_csrf_secret()}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def verify_csrf_token(provided_token: str, expected_hash: str, user_session: str = "") -> bool:
    if not provided_token or not expected_hash:
        return False
    computed = csrf_token_hash(provided_token, user_session)
    return hmac.compare_digest(computed, str(expected_hash))


def check_csrf(request: Request, user_session: str = "") -> None:
    if not csrf_enabled():
        return
    if request.method.upper() in SAFE_METHODS:
        return
    token = request.headers.get(CSRF_HEADER_NAME, "")
    expected = request.cookies.get(CSRF_COOKIE_NAME, "")
    if not verify_csrf_token(token, expected, user_session):
        log_event(logger, E.GATE_CSRF_REJECT, level="warning", path=request.url.path)
        raise CsrfRejected()


def client_ip(request: Request) -> str:
    forwarded = str(request.headers.get("x-forwarded-for", "") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = str(request.headers.get("x-real-ip", "") or "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "127.0.0.1"


class RateLimiter:
    """Fixed-window counter per key, held in process memory."""

    def __init__(self, max_requests: int = 100, window_seconds: int = 900, name: str = "default"):
        self.max_requests = max(1, int(max_requests))
        self.window_seconds = max(1, int(window_seconds))
        self.name = name
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now: Optional[float] = None) -> Tuple[bool, int, float]:
        """Count one request; returns (allowed, remaining, window_reset_epoch)."""
        now = time.time() if now is None else now
        with self._lock:
            started, count = self._hits.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            reset_at = started + self.window_seconds
            if count >= self.max_requests:
                return False, 0, reset_at
            count += 1
            self._hits[key] = (started, count)
            if len(self._hits) > 10000:
                self._evict(now)
            return True, self.max_requests - count, reset_at

    def _evict(self, now: float) -> None:
        stale = [k for k, (started, _) in self._hits.items() if now - started >= self.window_seconds]
        for k in stale:
            self._hits.pop(k, None)

    def check(self, key: str) -> int:
        allowed, remaining, reset_at = self.hit(key)
        if not allowed:
            retry_after = max(1, int(reset_at - time.time()))
            log_event(logger, E.GATE_RATE_LIMIT, level="warning", limiter=self.name, key=key)
            raise RateLimited(retry_after=retry_after, limit=self.max_requests)
        return remaining

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


def rate_limit_key(request: Request, user_session: str = "") -> str:
    if user_session:
        return "token:" + hashlib.sha256(user_session.encode("utf-8")).hexdigest()[:24]
    return f"ip:{client_ip(request)}"


def limiter_from_config(name: str, default_max: int, default_window: int) -> RateLimiter:
    return RateLimiter(
        max_requests=int(cfg.get(f"rate_limit.{name}.max_requests", default_max) or default_max),
        window_seconds=int(cfg.get(f"rate_limit.{name}.window_seconds", default_window) or default_window),
        name=name,
    )
