"""Application errors and the HTTP responses they map to."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any


class AppError(Exception):
    """Base class for every error the service reports to clients."""

    status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    template: str = "{detail}"

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(self.template.format(detail=detail))

    def _body(self) -> str:
        return self.detail

    def to_response(self) -> Any:
        """Return the ``(status, body)`` pair sent to the client."""
        return self.status, self._body()


class ValidationFailed(AppError):
    status = HTTPStatus.BAD_REQUEST
    template = "Validation failed: {detail}"


class CodeGenFailed(AppError):
    template = "Code generation failed: {detail}"


class CacheError(AppError):
    template = "Cache error: {detail}"


class RedisConnectionError(AppError):
    status = HTTPStatus.SERVICE_UNAVAILABLE
    template = "Redis connection failed"


class RedisOperationError(AppError):
    template = "Redis operation failed: {detail}"


class CircuitBreakerOpen(AppError):
    status = HTTPStatus.SERVICE_UNAVAILABLE
    template = "Circuit breaker open for node: {detail}"

    def _body(self) -> str:
        return str(self)


class StorageError(AppError):
    template = "Storage error: {detail}"


class GeoLookupError(AppError):
    template = "GeoIP lookup error: {detail}"


class AnalyticsError(AppError):
    template = "Analytics error: {detail}"


class RateLimitExceeded(AppError):
    """Too many requests; may carry a ready-made response to send instead."""

    status = HTTPStatus.TOO_MANY_REQUESTS
    template = "Rate limit exceeded"

    def __init__(self, response: Any = None) -> None:
        super().__init__()
        self.response = response

    def _body(self) -> str:
        return "Rate limit exceeded"

    def to_response(self) -> Any:
        if self.response is not None:
            return self.response
        return super().to_response()


class NotFound(AppError):
    status = HTTPStatus.NOT_FOUND
    template = "Not found: {detail}"


class BadRequest(AppError):
    status = HTTPStatus.BAD_REQUEST
    template = "Bad request: {detail}"


class InternalError(AppError):
    template = "Internal server error: {detail}"


class Expired(AppError):
    status = HTTPStatus.GONE
    template = "URL expired"

    def _body(self) -> str:
        return "URL expired"


class DuplicateAlias(AppError):
    status = HTTPStatus.CONFLICT
    template = "Duplicate alias: {detail}"

    def _body(self) -> str:
        return str(self)


class InvalidUrl(AppError):
    status = HTTPStatus.BAD_REQUEST
    template = "Invalid URL: {detail}"


class Unauthorized(AppError):
    status = HTTPStatus.UNAUTHORIZED
    template = "Unauthorized access"


class Conflict(AppError):
    status = HTTPStatus.CONFLICT
    template = "Conflict in associated resource"


class Forbidden(AppError):
    status = HTTPStatus.FORBIDDEN
    template = "Forbidden access"