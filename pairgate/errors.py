"""Mapping of coordinator gRPC errors to HTTP error responses."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus

import grpc
from werkzeug.wrappers import Request, Response

_log = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Application error codes returned to HTTP clients."""

    UNKNOWN = "UNKNOWN"
    INVALID_REQUEST = "INVALID_REQUEST"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    TENANT_EXISTS = "TENANT_EXISTS"
    KEY_NOT_FOUND = "KEY_NOT_FOUND"
    QUORUM_NOT_REACHED = "QUORUM_NOT_REACHED"
    IDEMPOTENCY_KEY_CONFLICT = "IDEMPOTENCY_KEY_CONFLICT"
    INVALID_REPLICATION_FACTOR = "INVALID_REPLICATION_FACTOR"
    NODE_IN_USE = "NODE_IN_USE"
    MIGRATION_NOT_FOUND = "MIGRATION_NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"


@dataclass
class ErrorResponse:
    """The JSON body of every error reply."""

    error_code: ErrorCode
    message: str
    request_id: str = ""
    status: str = "error"

    def to_dict(self) -> dict:
        body = {
            "status": self.status,
            "error_code": ErrorCode(self.error_code).value,
            "message": self.message,
        }
        if self.request_id:
            body["request_id"] = self.request_id
        return body


def status_from_error(err: BaseException | None) -> tuple[grpc.StatusCode, str] | None:
    """Return the gRPC code and message carried by err.

    None yields (OK, ""); an error that carries no gRPC status yields None.
    """
    if err is None:
        return grpc.StatusCode.OK, ""
    if isinstance(err, grpc.RpcError):
        code = getattr(err, "code", None)
        details = getattr(err, "details", None)
        if callable(code) and callable(details):
            status = code()
            if isinstance(status, grpc.StatusCode):
                return status, details() or ""
    return None


_HTTP_STATUS = {
    grpc.StatusCode.OK: HTTPStatus.OK,
    grpc.StatusCode.INVALID_ARGUMENT: HTTPStatus.BAD_REQUEST,
    grpc.StatusCode.NOT_FOUND: HTTPStatus.NOT_FOUND,
    grpc.StatusCode.ALREADY_EXISTS: HTTPStatus.CONFLICT,
    grpc.StatusCode.PERMISSION_DENIED: HTTPStatus.FORBIDDEN,
    grpc.StatusCode.UNAUTHENTICATED: HTTPStatus.UNAUTHORIZED,
    grpc.StatusCode.RESOURCE_EXHAUSTED: HTTPStatus.TOO_MANY_REQUESTS,
    grpc.StatusCode.FAILED_PRECONDITION: HTTPStatus.PRECONDITION_FAILED,
    grpc.StatusCode.ABORTED: HTTPStatus.CONFLICT,
    grpc.StatusCode.OUT_OF_RANGE: HTTPStatus.BAD_REQUEST,
    grpc.StatusCode.UNIMPLEMENTED: HTTPStatus.NOT_IMPLEMENTED,
    grpc.StatusCode.INTERNAL: HTTPStatus.INTERNAL_SERVER_ERROR,
    grpc.StatusCode.UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED: HTTPStatus.GATEWAY_TIMEOUT,
}

_SIMPLE_CODES = {
    grpc.StatusCode.INVALID_ARGUMENT: ErrorCode.INVALID_REQUEST,
    grpc.StatusCode.PERMISSION_DENIED: ErrorCode.FORBIDDEN,
    grpc.StatusCode.UNAUTHENTICATED: ErrorCode.UNAUTHORIZED,
    grpc.StatusCode.RESOURCE_EXHAUSTED: ErrorCode.RATE_LIMITED,
    grpc.StatusCode.UNAVAILABLE: ErrorCode.SERVICE_UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED: ErrorCode.TIMEOUT,
}

_NOT_FOUND_CODES = (
    ("tenant", ErrorCode.TENANT_NOT_FOUND),
    ("key", ErrorCode.KEY_NOT_FOUND),
    ("migration", ErrorCode.MIGRATION_NOT_FOUND),
)

_ALREADY_EXISTS_CODES = (
    ("tenant", ErrorCode.TENANT_EXISTS),
    ("idempotency", ErrorCode.IDEMPOTENCY_KEY_CONFLICT),
)


def _match_word(message: str, table: tuple[tuple[str, ErrorCode], ...]) -> ErrorCode:
    lowered = message.lower()
    return next((code for word, code in table if word in lowered), ErrorCode.INVALID_REQUEST)


class ErrorHandler:
    """Turns errors into JSON error responses."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or _log

    def grpc_to_http_status(self, err: BaseException | None) -> int:
        """Return the HTTP status code that corresponds to err."""
        if err is None:
            return HTTPStatus.OK
        status = status_from_error(err)
        if status is None:
            return HTTPStatus.INTERNAL_SERVER_ERROR
        return _HTTP_STATUS.get(status[0], HTTPStatus.INTERNAL_SERVER_ERROR)

    def grpc_to_error_code(self, err: BaseException | None) -> ErrorCode:
        """Return the application error code that corresponds to err."""
        if err is None:
            return ErrorCode.UNKNOWN
        status = status_from_error(err)
        if status is None:
            return ErrorCode.INTERNAL_ERROR
        code, message = status
        if code == grpc.StatusCode.NOT_FOUND:
            return _match_word(message, _NOT_FOUND_CODES)
        if code == grpc.StatusCode.ALREADY_EXISTS:
            return _match_word(message, _ALREADY_EXISTS_CODES)
        return _SIMPLE_CODES.get(code, ErrorCode.INTERNAL_ERROR)

    def handle_error(self, request: Request, err: BaseException) -> Response:
        """Build the error response for err raised while serving request."""
        status = status_from_error(err)
        message = status[1] if status is not None else str(err)
        request_id = request.headers.get("X-Request-ID", "")
        return self.error_response(
            self.grpc_to_http_status(err),
            self.grpc_to_error_code(err),
            message,
            request_id,
        )

    def error_response(
        self, status_code: int, error_code: ErrorCode, message: str, request_id: str
    ) -> Response:
        """Log and build a JSON error response."""
        code = ErrorCode(error_code)
        self.logger.warning(
            "HTTP error response",
            extra={
                "status_code": int(status_code),
                "error_code": code.value,
                "error_message": message,
                "request_id": request_id,
            },
        )
        body = ErrorResponse(error_code=code, message=message, request_id=request_id)
        payload = json.dumps(body.to_dict(), ensure_ascii=False, separators=(",", ":")) + "\n"
        return Response(payload, status=int(status_code), content_type="application/json")

    def validation_error(self, message: str, request_id: str) -> Response:
        return self.error_response(HTTPStatus.BAD_REQUEST, ErrorCode.INVALID_REQUEST, message, request_id)

    def internal_error(self, message: str, request_id: str) -> Response:
        return self.error_response(
            HTTPStatus.INTERNAL_SERVER_ERROR, ErrorCode.INTERNAL_ERROR, message, request_id
        )

    def service_unavailable(self, message: str, request_id: str) -> Response:
        return self.error_response(
            HTTPStatus.SERVICE_UNAVAILABLE, ErrorCode.SERVICE_UNAVAILABLE, message, request_id
        )

    def rate_limited_error(self, request_id: str) -> Response:
        return self.error_response(
            HTTPStatus.TOO_MANY_REQUESTS, ErrorCode.RATE_LIMITED, "rate limit exceeded", request_id
        )