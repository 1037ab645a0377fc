"""Liveness and readiness checks backed by the coordinator connection."""

from __future__ import annotations

import json
import logging
import threading
import time
from http import HTTPStatus
from typing import Any

from werkzeug.wrappers import Request, Response

_log = logging.getLogger(__name__)

CHECK_TIMEOUT = 5.0
DEFAULT_CHECK_INTERVAL = 5.0


def _json(status_code: int, body: dict) -> Response:
    payload = json.dumps(body, ensure_ascii=False, separators=(",", ":")) + "\n"
    return Response(payload, status=int(status_code), content_type="application/json")


def _ready_body() -> dict:
    return {"status": "ready", "checks": {"coordinator": "healthy"}}


class HealthCheck:
    """Tracks whether the coordinator is reachable and serves health endpoints."""

    def __init__(self, client: Any, check_interval: float = DEFAULT_CHECK_INTERVAL):
        self.client = client
        self.check_interval = check_interval
        self.last_check: float | None = None
        self._ready = False
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start periodic background checks; calling it again does nothing."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="health-check", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background checks and wait for them to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.check_interval):
            self.check_once()

    def check_once(self) -> bool:
        """Probe the coordinator once, record the result and return it."""
        try:
            self.client.health_check(timeout=CHECK_TIMEOUT)
        except Exception as err:
            ready = False
            _log.warning("health check failed", extra={"error": str(err)})
        else:
            ready = True
        with self._lock:
            self._ready = ready
            self.last_check = time.time()
        return ready

    def liveness(self, request: Request | None = None) -> Response:
        """GET /health: the process is running."""
        return _json(HTTPStatus.OK, {"status": "healthy"})

    def readiness(self, request: Request | None = None) -> Response:
        """GET /ready: the coordinator can be reached."""
        if self.is_ready():
            return _json(HTTPStatus.OK, _ready_body())
        try:
            self.client.health_check(timeout=CHECK_TIMEOUT)
        except Exception as err:
            body = {
                "status": "not_ready",
                "checks": {"coordinator": "unhealthy"},
                "error": str(err),
            }
            return _json(HTTPStatus.SERVICE_UNAVAILABLE, body)
        with self._lock:
            self._ready = True
            self.last_check = time.time()
        return _json(HTTPStatus.OK, _ready_body())

    def is_ready(self) -> bool:
        with self._lock:
            return self._ready

    def set_ready(self, ready: bool) -> None:
        with self._lock:
            self._ready = ready