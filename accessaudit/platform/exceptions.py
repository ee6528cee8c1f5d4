import logging
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from accessaudit.platform.response import api_response


class ScanError(Exception):
    """Base class for every failure a scan attempt reports to its caller."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_data(self) -> Dict[str, Any]:
        return {}

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class InvalidTargetError(ScanError):
    """Malformed URL, unsupported scheme, unresolvable host or private target."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class RateLimitedError(ScanError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(
        self,
        retry_after: int,
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
    ):
        super().__init__("Rate limit exceeded. Please try again later.")
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining

    def to_data(self) -> Dict[str, Any]:
        return {"retry_after": self.retry_after}

    def headers(self) -> Optional[Dict[str, str]]:
        headers = {"Retry-After": str(self.retry_after)}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
        if self.remaining is not None:
            headers["X-RateLimit-Remaining"] = str(self.remaining)
        return headers


class AtCapacityError(ScanError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Too many scans in progress. Please try again in a moment."):
        super().__init__(message)


class ScanBlockedError(ScanError):
    """The target's own bot defenses served a block/challenge page instead of the site."""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str, page_title: str, http_status: int):
        super().__init__(message)
        self.page_title = page_title
        self.http_status = http_status

    @property
    def blocked(self) -> bool:
        return True

    def to_data(self) -> Dict[str, Any]:
        return {
            "blocked": True,
            "page_title": self.page_title,
            "http_status": self.http_status,
        }


class SessionFailureError(ScanError):
    """Navigation/evaluation timed out or the automation endpoint was unreachable."""

    status_code = status.HTTP_502_BAD_GATEWAY


class RuleEngineError(Exception):
    """The injected rule engine threw while evaluating. Absorbed by the escalation chain."""


def add_exception_handlers(app):
    @app.exception_handler(ScanError)
    async def scan_error_handler(request: Request, exc: ScanError):
        return api_response(
            message=exc.message,
            status_code=exc.status_code,
            data=exc.to_data(),
            headers=exc.headers(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logging.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
