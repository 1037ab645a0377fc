"""WSGI middleware: request ids, access logging, recovery, CORS, rate limiting and timeouts."""

from __future__ import annotations

import logging
import math
import sys
import threading
import time
import uuid
from typing import Any, Callable, Iterable, Iterator, Sequence

_log = logging.getLogger(__name__)

REQUEST_ID_KEY = "pairgate.request_id"
START_TIME_KEY = "pairgate.start_time"
DEADLINE_KEY = "pairgate.deadline"

RECOVERY_BODY = b'{"status":"error","error_code":"INTERNAL_ERROR","message":"internal server error"}'
RATE_LIMITED_BODY = b'{"status":"error","error_code":"RATE_LIMITED","message":"rate limit exceeded"}'

CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization, X-Request-ID, Idempotency-Key"
CORS_MAX_AGE = "86400"


def _status_code(status: str) -> int:
    return int(status.split(" ", 1)[0])


def _with_default_headers(start_response: Callable, defaults: Sequence[tuple[str, str]]) -> Callable:
    """Wrap start_response so that defaults are added unless the app set them itself."""

    def wrapped(status: str, headers: list, exc_info: Any = None) -> Callable:
        present = {name.lower() for name, _ in headers}
        merged = list(headers) + [(name, value) for name, value in defaults if name.lower() not in present]
        return start_response(status, merged, exc_info)

    return wrapped


class _ClosingBody:
    """Response body that runs a callback once it is closed."""

    def __init__(self, body: Iterable[bytes], on_close: Callable[[], None]):
        self._body = body
        self._on_close = on_close
        self._closed = False

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._body)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            close = getattr(self._body, "close", None)
            if close is not None:
                close()
        finally:
            self._on_close()


class RequestIDMiddleware:
    """Give every request an X-Request-ID, generating one when the client sent none."""

    def __init__(self, app: Callable):
        self.app = app

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        request_id = environ.get("HTTP_X_REQUEST_ID") or str(uuid.uuid4())
        environ["HTTP_X_REQUEST_ID"] = request_id
        environ[REQUEST_ID_KEY] = request_id
        return self.app(environ, _with_default_headers(start_response, [("X-Request-ID", request_id)]))


class LoggingMiddleware:
    """Log method, path, status, duration and client details of each request."""

    def __init__(self, app: Callable, logger: logging.Logger | None = None):
        self.app = app
        self.logger = logger or _log

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        started = time.monotonic()
        environ[START_TIME_KEY] = time.time()
        status = [200]

        def capture(status_line: str, headers: list, exc_info: Any = None) -> Callable:
            status[0] = _status_code(status_line)
            return start_response(status_line, headers, exc_info)

        body = self.app(environ, capture)

        def log_request() -> None:
            self.logger.info(
                "HTTP request",
                extra={
                    "method": environ.get("REQUEST_METHOD", ""),
                    "path": environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", ""),
                    "status": status[0],
                    "duration": time.monotonic() - started,
                    "request_id": environ.get("HTTP_X_REQUEST_ID", ""),
                    "remote_addr": environ.get("REMOTE_ADDR", ""),
                    "user_agent": environ.get("HTTP_USER_AGENT", ""),
                },
            )

        return _ClosingBody(body, log_request)


class RecoveryMiddleware:
    """Turn an exception raised by the app into a 500 JSON error response."""

    def __init__(self, app: Callable, logger: logging.Logger | None = None):
        self.app = app
        self.logger = logger or _log

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        try:
            return self.app(environ, start_response)
        except Exception as err:
            self.logger.error(
                "panic recovered",
                extra={
                    "error": repr(err),
                    "request_id": environ.get("HTTP_X_REQUEST_ID", ""),
                    "path": environ.get("PATH_INFO", ""),
                },
                exc_info=True,
            )
            start_response(
                "500 Internal Server Error",
                [("Content-Type", "application/json")],
                sys.exc_info(),
            )
            return [RECOVERY_BODY]


class CORSMiddleware:
    """Add CORS headers for allowed origins and answer preflight requests."""

    def __init__(self, app: Callable, allowed_origins: Sequence[str] = ("*",)):
        self.app = app
        self.allowed_origins = tuple(allowed_origins)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        origin = environ.get("HTTP_ORIGIN", "")
        allowed = any(candidate == "*" or candidate == origin for candidate in self.allowed_origins)
        headers: list[tuple[str, str]] = []
        if allowed and origin:
            headers = [
                ("Access-Control-Allow-Origin", origin),
                ("Access-Control-Allow-Methods", CORS_ALLOW_METHODS),
                ("Access-Control-Allow-Headers", CORS_ALLOW_HEADERS),
                ("Access-Control-Max-Age", CORS_MAX_AGE),
            ]
        if environ.get("REQUEST_METHOD") == "OPTIONS":
            start_response("204 No Content", headers)
            return []
        return self.app(environ, _with_default_headers(start_response, headers))


class TokenBucket:
    """Token-bucket limiter: rate tokens per second, holding at most burst; starts full."""

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock
        self._tokens = float(self.burst)
        self._last = clock()
        self._lock = threading.Lock()

    def allow(self) -> bool:
        """Take one token if there is one; tell whether it was taken."""
        if math.isinf(self.rate) and self.rate > 0:
            return True
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


class RateLimitMiddleware:
    """Reject requests with 429 when the limiter has no token left."""

    def __init__(self, app: Callable, limiter: TokenBucket, logger: logging.Logger | None = None):
        self.app = app
        self.limiter = limiter
        self.logger = logger or _log

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        if not self.limiter.allow():
            self.logger.warning(
                "rate limit exceeded",
                extra={
                    "request_id": environ.get("HTTP_X_REQUEST_ID", ""),
                    "path": environ.get("PATH_INFO", ""),
                    "remote_addr": environ.get("REMOTE_ADDR", ""),
                },
            )
            start_response(
                "429 Too Many Requests",
                [("Content-Type", "application/json"), ("Retry-After", "1")],
            )
            return [RATE_LIMITED_BODY]
        return self.app(environ, start_response)


class ContentTypeMiddleware:
    """Default the response Content-Type to application/json."""

    def __init__(self, app: Callable):
        self.app = app

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        return self.app(environ, _with_default_headers(start_response, [("Content-Type", "application/json")]))


class TimeoutMiddleware:
    """Store a monotonic deadline in the environ, keeping any earlier one."""

    def __init__(self, app: Callable, timeout: float):
        self.app = app
        self.timeout = timeout

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        deadline = time.monotonic() + self.timeout
        existing = environ.get(DEADLINE_KEY)
        if existing is not None:
            deadline = min(deadline, existing)
        environ[DEADLINE_KEY] = deadline
        return self.app(environ, start_response)


def chain(*args: Callable[[Callable], Callable]) -> Callable[[Callable], Callable]:
    """Compose middleware factories; the first one given becomes the outermost."""

    def apply(final: Callable) -> Callable:
        for middleware in reversed(args):
            final = middleware(final)
        return final

    return apply