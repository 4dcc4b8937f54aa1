"""Error taxonomy shared by services and API routes."""

from typing import Dict, Optional


class StoreError(Exception):
    status_code = 500
    code = "internal"
    default_message = "Internal server error"

    def __init__(self, message: str = "", *, detail: Optional[Dict] = None):
        self.message = message or self.default_message
        self.detail = detail or {}
        super().__init__(self.message)

    def public_message(self) -> str:
        return self.message

    def to_dict(self) -> Dict:
        body = {"success": False, "error": self.public_message(), "code": self.code}
        if self.detail:
            body["details"] = self.detail
        return body


class Unauthenticated(StoreError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Authentication required"


class Forbidden(StoreError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class NotFound(StoreError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Conflict(StoreError):
    # duplicate purchases surface as 400 to the checkout client
    status_code = 400
    code = "conflict"
    default_message = "Conflict"


class Validation(StoreError):
    status_code = 400
    code = "validation"
    default_message = "Validation failed"


class UpstreamFailure(StoreError):
    status_code = 500
    code = "upstream_failure"
    default_message = "Upstream service failure"

    def public_message(self) -> str:
        return "Internal server error"


class Internal(StoreError):
    def public_message(self) -> str:
        return "Internal server error"


class RateLimited(StoreError):
    status_code = 429
    code = "rate_limited"
    default_message = "Too many requests, please try again later"

    def __init__(self, message: str = "", *, retry_after: int = 60, limit: int = 0):
        super().__init__(message)
        self.retry_after = int(retry_after)
        self.limit = int(limit)


class AssetUnavailable(NotFound):
    code = "asset_unavailable"
    default_message = "Asset not found or not available for purchase"


class DuplicateEntitlement(Conflict):
    code = "duplicate_entitlement"
    default_message = "You already own this license for this asset"


class InvalidSignature(Validation):
    code = "invalid_signature"
    default_message = "Invalid signature"


class EventDecodeError(Validation):
    code = "event_decode"
    default_message = "Webhook event is missing required fields"


class AuthenticationRequired(Forbidden):
    code = "authentication_required"
    default_message = "Authentication required for this license type"


class NotEntitled(Forbidden):
    code = "not_entitled"
    default_message = "No active license covers this download"


class CsrfRejected(Forbidden):
    code = "csrf"
    default_message = "CSRF token validation failed"
