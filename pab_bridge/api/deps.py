import secrets
from typing import NoReturn, Optional

from fastapi import Header, HTTPException, Request

from ..core.bridge.runtime import BridgeRuntime
from ..core.recovery.errors import ErrorCategory, RecoverableError, UnrecoverableError

STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.TRANSACTION_REVERTED: 409,
    ErrorCategory.TRANSIENT_SUBMISSION: 503,
    ErrorCategory.FINALITY_TIMEOUT: 504,
}


def get_runtime(request: Request) -> BridgeRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Bridge runtime is not configured")
    return runtime


def verify_admin_key(
    request: Request,
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> bool:
    """Verify the admin API key for endpoints that act as the gateway owner."""
    expected = getattr(request.app.state, "admin_api_key", None)
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API is disabled")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Invalid admin API key")
    return True


def raise_http_error(exc: Exception) -> NoReturn:
    """Translate a bridge error into an ``HTTPException``."""
    if isinstance(exc, (RecoverableError, UnrecoverableError)):
        status = STATUS_BY_CATEGORY.get(exc.category, 500)
        detail = {"code": exc.code, "message": exc.message, "category": exc.category.value}
        if exc.context and exc.context.details:
            detail["details"] = exc.context.details
        raise HTTPException(status_code=status, detail=detail) from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc
