"""The gateway's HTTP server: routing, middleware and lifecycle."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from http import HTTPStatus
from typing import Any, Callable, Iterable

from werkzeug.exceptions import HTTPException, MethodNotAllowed
from werkzeug.routing import Map, Rule
from werkzeug.serving import make_server
from werkzeug.wrappers import Request

from pairgate.errors import ErrorCode, ErrorHandler
from pairgate.handlers import Handlers
from pairgate.health import HealthCheck
from pairgate.middleware import (
    CORSMiddleware,
    LoggingMiddleware,
    RateLimitMiddleware,
    RecoveryMiddleware,
    RequestIDMiddleware,
    TokenBucket,
    chain,
)

_log = logging.getLogger(__name__)

_ROUTE_KEY = "pairgate.route"
_START_GRACE = 0.1


class GatewayServer:
    """WSGI application and HTTP server in front of the coordinator.

    Middleware runs only for requests that match a route; unknown paths and
    wrong methods are answered directly with JSON errors.
    """

    def __init__(self, cfg: Any, client: Any, health_check: HealthCheck | None = None):
        self.cfg = cfg
        self.client = client
        self.error_handler = ErrorHandler()
        self.handlers = Handlers(client, self.error_handler, cfg.coordinator.timeout)
        self.health_check = health_check if health_check is not None else HealthCheck(client)
        self._url_map = Map(strict_slashes=False)
        self._app: Callable = self._dispatch
        self._server: Any = None
        self._bound = threading.Event()
        self._lock = threading.Lock()

    @property
    def port(self) -> int:
        """The port actually bound once started, else the configured one."""
        with self._lock:
            if self._server is not None:
                return self._server.server_address[1]
        return self.cfg.server.port

    def setup_routes(self) -> None:
        """Install the middleware chain and every route."""
        middlewares: list[Callable[[Callable], Callable]] = [
            lambda app: RecoveryMiddleware(app, _log),
            RequestIDMiddleware,
            lambda app: LoggingMiddleware(app, _log),
            lambda app: CORSMiddleware(app, ["*"]),
        ]
        limits = self.cfg.rate_limiter
        if limits.enabled:
            limiter = TokenBucket(limits.requests_per_second, limits.burst_size)
            middlewares.append(lambda app: RateLimitMiddleware(app, limiter, _log))
        self._app = chain(*middlewares)(self._dispatch)

        handlers = self.handlers
        self._url_map = Map(
            [
                Rule("/health", methods=["GET"], endpoint=self.health_check.liveness),
                Rule("/ready", methods=["GET"], endpoint=self.health_check.readiness),
                Rule("/v1/key-value", methods=["POST"], endpoint=handlers.write_key_value),
                Rule("/v1/key-value", methods=["GET"], endpoint=handlers.read_key_value),
                Rule("/v1/tenants", methods=["POST"], endpoint=handlers.create_tenant),
                Rule("/v1/tenants/<tenant_id>", methods=["GET"], endpoint=handlers.get_tenant),
                Rule(
                    "/v1/tenants/<tenant_id>/replication-factor",
                    methods=["PUT"],
                    endpoint=handlers.update_replication_factor,
                ),
                Rule("/v1/admin/storage-nodes", methods=["POST"], endpoint=handlers.add_storage_node),
                Rule("/v1/admin/storage-nodes", methods=["GET"], endpoint=handlers.list_storage_nodes),
                Rule(
                    "/v1/admin/storage-nodes/<node_id>",
                    methods=["DELETE"],
                    endpoint=handlers.remove_storage_node,
                ),
                Rule(
                    "/v1/admin/migrations/<migration_id>",
                    methods=["GET"],
                    endpoint=handlers.get_migration_status,
                ),
            ],
            strict_slashes=False,
        )

    def _dispatch(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        endpoint, values = environ[_ROUTE_KEY]
        response = endpoint(Request(environ), **values)
        return response(environ, start_response)

    def _error(self, environ: dict, start_response: Callable, status: int, message: str) -> Iterable[bytes]:
        request_id = environ.get("HTTP_X_REQUEST_ID", "")
        response = self.error_handler.error_response(status, ErrorCode.INVALID_REQUEST, message, request_id)
        return response(environ, start_response)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        adapter = self._url_map.bind_to_environ(environ)
        try:
            endpoint, values = adapter.match()
        except MethodNotAllowed:
            return self._error(environ, start_response, HTTPStatus.METHOD_NOT_ALLOWED, "method not allowed")
        except HTTPException:
            return self._error(environ, start_response, HTTPStatus.NOT_FOUND, "endpoint not found")
        environ[_ROUTE_KEY] = (endpoint, values)
        return self._app(environ, start_response)

    def start(self) -> None:
        """Serve HTTP until shutdown() is called."""
        _log.info("starting HTTP server", extra={"port": self.cfg.server.port})
        with self._lock:
            if self._server is None:
                try:
                    self._server = make_server("0.0.0.0", self.cfg.server.port, self, threaded=True)
                except OSError as exc:
                    raise RuntimeError(f"failed to start HTTP server: {exc}") from exc
            server = self._server
        self.health_check.start()
        self._bound.set()
        server.serve_forever()

    def start_async(self) -> Future:
        """Start serving in a thread; the future completes when serving ends."""
        future: Future = Future()

        def run() -> None:
            try:
                self.start()
            except BaseException as exc:
                future.set_exception(exc)
            else:
                future.set_result(None)

        threading.Thread(target=run, name="gateway-http", daemon=True).start()
        self._bound.wait(_START_GRACE)
        return future

    def shutdown(self) -> None:
        """Stop serving, release the socket and stop the background health checks."""
        _log.info("shutting down HTTP server")
        self.health_check.stop()
        with self._lock:
            server, self._server = self._server, None
        if server is not None:
            if self._bound.is_set():
                server.shutdown()
            server.server_close()
        self._bound.clear()