"""Error taxonomy and normalized handlers."""

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from licenselink.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    """Malformed caller input."""
    code = "validation_error"
    status_code = 400


class AuthError(AppError):
    """Missing, invalid or expired session, or vendor credential rejection.

    401 by default; pass status_code=403 for a bad signature or expired token.
    """
    code = "unauthorized"
    status_code = 401


class SignatureError(AppError):
    """Webhook signature did not verify."""
    code = "invalid_signature"
    status_code = 400


class InternalError(AppError):
    code = "internal_error"
    status_code = 500


class ProviderDisabledError(AppError):
    """A vendor integration is not configured in this deployment."""
    code = "provider_disabled"
    status_code = 503


class UpstreamError(AppError):
    """A vendor answered with an error (or did not answer in time)."""
    code = "upstream_error"
    status_code = 500

    def __init__(
        self,
        provider: str,
        detail: str,
        *,
        upstream_status: Optional[int] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        timeout: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(f"{provider}: {detail}", status_code=status_code)
        self.provider = provider
        self.detail = detail
        self.upstream_status = upstream_status
        self.errors = errors or []
        self.timeout = timeout

    def with_status(self, status_code: int) -> "UpstreamError":
        """Return the same error re-targeted at a different HTTP status."""
        return UpstreamError(
            self.provider,
            self.detail,
            upstream_status=self.upstream_status,
            errors=self.errors,
            timeout=self.timeout,
            status_code=status_code,
        )


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("licenselink")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    extra = {"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code}
    if isinstance(exc, UpstreamError):
        extra.update(provider=exc.provider, upstream_status=exc.upstream_status, timeout=exc.timeout)
    logger.log(log_level, "app.error", extra=extra)
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("licenselink")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
    message = f"Invalid request: {', '.join(f for f in fields if f) or 'body'}"
    payload = _error_payload(ValidationError.code, message, rid)
    logging.getLogger("licenselink").warning(
        "validation.error", extra={"request_id": rid, "error_code": ValidationError.code, "status": 400}
    )
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("licenselink")
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
