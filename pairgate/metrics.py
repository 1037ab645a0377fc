"""Prometheus-style metrics for the gateway and an HTTP server that exposes them."""

from __future__ import annotations

import bisect
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Iterable, Iterator, Sequence

from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

_log = logging.getLogger(__name__)

LATENCY_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)
SIZE_BUCKETS = (100, 500, 1000, 5000, 10000, 50000, 100000)
EXPOSITION_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _label_text(names: Sequence[str], values: Sequence[str], extra: Sequence[tuple[str, str]] = ()) -> str:
    pairs = list(zip(names, values)) + list(extra)
    if not pairs:
        return ""
    return "{" + ",".join(f'{name}="{_escape_label(value)}"' for name, value in pairs) + "}"


def _seconds(duration: float | timedelta) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, help: str, labelnames: Sequence[str] = ()):
        self.name = name
        self.help = help
        self.labelnames = tuple(labelnames)
        self._lock = threading.Lock()

    def _key(self, values: Sequence[Any]) -> tuple[str, ...]:
        if len(values) != len(self.labelnames):
            raise ValueError(
                f"{self.name}: expected {len(self.labelnames)} label values, got {len(values)}"
            )
        return tuple(str(value) for value in values)

    def _header(self) -> list[str]:
        return [f"# HELP {self.name} {_escape_help(self.help)}", f"# TYPE {self.name} {self.kind}"]


class Counter(_Metric):
    """A monotonically increasing count, one per combination of label values."""

    kind = "counter"

    def __init__(self, name: str, help: str, labelnames: Sequence[str] = ()):
        super().__init__(name, help, labelnames)
        self._values: dict[tuple[str, ...], float] = {}

    def inc(self, *args: Any) -> None:
        """Add one to the series named by the label values in args."""
        key = self._key(args)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + 1.0

    def value(self, *args: Any) -> float:
        """Return the count of the series named by args (0 if never incremented)."""
        key = self._key(args)
        with self._lock:
            return self._values.get(key, 0.0)

    def expose(self) -> str:
        with self._lock:
            series = sorted(self._values.items())
        if not series and not self.labelnames:
            series = [((), 0.0)]
        lines = self._header()
        lines.extend(
            f"{self.name}{_label_text(self.labelnames, key)} {_format_value(value)}"
            for key, value in series
        )
        return "\n".join(lines) + "\n"


class Gauge(_Metric):
    """A single value that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, help: str):
        super().__init__(name, help)
        self._value = 0.0

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def inc(self) -> None:
        with self._lock:
            self._value += 1.0

    def dec(self) -> None:
        with self._lock:
            self._value -= 1.0

    def expose(self) -> str:
        lines = self._header()
        lines.append(f"{self.name} {_format_value(self.value)}")
        return "\n".join(lines) + "\n"


@dataclass
class _HistogramSeries:
    counts: list[int]
    total: float = 0.0
    count: int = 0


class Histogram(_Metric):
    """Observations sorted into cumulative buckets, per combination of label values."""

    kind = "histogram"

    def __init__(self, name: str, help: str, buckets: Iterable[float], labelnames: Sequence[str] = ()):
        super().__init__(name, help, labelnames)
        bounds = sorted(float(bound) for bound in buckets)
        if bounds and math.isinf(bounds[-1]):
            bounds.pop()
        self.buckets = tuple(bounds)
        self._series: dict[tuple[str, ...], _HistogramSeries] = {}

    def observe(self, value: float, *args: Any) -> None:
        """Record value in the series named by the label values in args."""
        key = self._key(args)
        value = float(value)
        slot = bisect.bisect_left(self.buckets, value)
        with self._lock:
            series = self._series.get(key)
            if series is None:
                series = _HistogramSeries(counts=[0] * (len(self.buckets) + 1))
                self._series[key] = series
            series.counts[slot] += 1
            series.total += value
            series.count += 1

    def count(self, *args: Any) -> int:
        """Return how many observations the series named by args holds."""
        key = self._key(args)
        with self._lock:
            series = self._series.get(key)
            return series.count if series is not None else 0

    def expose(self) -> str:
        with self._lock:
            snapshot = sorted(
                (key, list(series.counts), series.total, series.count)
                for key, series in self._series.items()
            )
        lines = self._header()
        for key, counts, total, count in snapshot:
            cumulative = 0
            for bound, bucket_count in zip(self.buckets, counts):
                cumulative += bucket_count
                labels = _label_text(self.labelnames, key, [("le", _format_value(bound))])
                lines.append(f"{self.name}_bucket{labels} {cumulative}")
            labels = _label_text(self.labelnames, key, [("le", "+Inf")])
            lines.append(f"{self.name}_bucket{labels} {count}")
            plain = _label_text(self.labelnames, key)
            lines.append(f"{self.name}_sum{plain} {_format_value(total)}")
            lines.append(f"{self.name}_count{plain} {count}")
        return "\n".join(lines) + "\n"


class Metrics:
    """The gateway's HTTP, gRPC and health metrics."""

    def __init__(self) -> None:
        self.requests_total = Counter(
            "api_gateway_http_requests_total",
            "Total number of HTTP requests",
            ["method", "path", "status"],
        )
        self.request_duration = Histogram(
            "api_gateway_http_request_duration_seconds",
            "HTTP request duration in seconds",
            LATENCY_BUCKETS,
            ["method", "path", "status"],
        )
        self.requests_in_flight = Gauge(
            "api_gateway_http_requests_in_flight",
            "Number of HTTP requests currently being processed",
        )
        self.response_size = Histogram(
            "api_gateway_http_response_size_bytes",
            "HTTP response size in bytes",
            SIZE_BUCKETS,
            ["method", "path"],
        )
        self.grpc_requests_total = Counter(
            "api_gateway_grpc_requests_total",
            "Total number of gRPC requests to coordinator",
            ["method", "status"],
        )
        self.grpc_request_duration = Histogram(
            "api_gateway_grpc_request_duration_seconds",
            "gRPC request duration in seconds",
            LATENCY_BUCKETS,
            ["method"],
        )
        self.grpc_errors = Counter(
            "api_gateway_grpc_errors_total",
            "Total number of gRPC errors",
            ["method", "code"],
        )
        self.health_status = Gauge(
            "api_gateway_health_status",
            "Health status of the API Gateway (1 = healthy, 0 = unhealthy)",
        )

    def _all(self) -> list[_Metric]:
        return [
            self.requests_total,
            self.request_duration,
            self.requests_in_flight,
            self.response_size,
            self.grpc_requests_total,
            self.grpc_request_duration,
            self.grpc_errors,
            self.health_status,
        ]

    def record_http_request(self, method: str, path: str, status_code: int, duration: float | timedelta) -> None:
        """Count an HTTP request and record its duration (seconds or timedelta)."""
        status = str(int(status_code))
        self.requests_total.inc(method, path, status)
        self.request_duration.observe(_seconds(duration), method, path, status)

    def record_response_size(self, method: str, path: str, size: int) -> None:
        self.response_size.observe(float(size), method, path)

    def inc_requests_in_flight(self) -> None:
        self.requests_in_flight.inc()

    def dec_requests_in_flight(self) -> None:
        self.requests_in_flight.dec()

    def record_grpc_request(self, method: str, status: str, duration: float | timedelta) -> None:
        self.grpc_requests_total.inc(method, status)
        self.grpc_request_duration.observe(_seconds(duration), method)

    def record_grpc_error(self, method: str, code: str) -> None:
        self.grpc_errors.inc(method, code)

    def set_health_status(self, healthy: bool) -> None:
        self.health_status.set(1 if healthy else 0)

    def render(self) -> str:
        """Return every metric in the Prometheus text exposition format."""
        return "".join(metric.expose() for metric in self._all())


_global_metrics: Metrics | None = None
_global_lock = threading.Lock()


def get_metrics() -> Metrics:
    """Return the process-wide Metrics, creating it on first use."""
    global _global_metrics
    with _global_lock:
        if _global_metrics is None:
            _global_metrics = Metrics()
        return _global_metrics


def _status_code(status: str) -> int:
    return int(status.split(" ", 1)[0])


class _TrackedBody:
    """Response body wrapper that counts bytes and reports when it is closed."""

    def __init__(self, body: Iterable[bytes], on_chunk: Callable[[int], None], on_close: Callable[[bool], None]):
        self._body = body
        self._on_chunk = on_chunk
        self._on_close = on_close
        self._closed = False
        self._failed = False

    def __iter__(self) -> Iterator[bytes]:
        try:
            for chunk in self._body:
                self._on_chunk(len(chunk))
                yield chunk
        except Exception:
            self._failed = True
            raise

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            close = getattr(self._body, "close", None)
            if close is not None:
                close()
        finally:
            self._on_close(not self._failed)


@dataclass
class _Exchange:
    status: int = 200
    size: int = 0
    started: float = field(default_factory=time.monotonic)


class MetricsMiddleware:
    """WSGI middleware recording request counts, durations, sizes and in-flight requests."""

    def __init__(self, app: Callable, metrics: Metrics | None = None):
        self.app = app
        self.metrics = metrics if metrics is not None else get_metrics()

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        method = environ.get("REQUEST_METHOD", "GET")
        path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
        self.metrics.inc_requests_in_flight()
        exchange = _Exchange()

        def capture(status: str, headers: list, exc_info: Any = None) -> Callable:
            exchange.status = _status_code(status)
            write = start_response(status, headers, exc_info)

            def counting_write(data: bytes) -> Any:
                exchange.size += len(data)
                return write(data)

            return counting_write

        try:
            body = self.app(environ, capture)
        except BaseException:
            self.metrics.dec_requests_in_flight()
            raise

        def on_chunk(size: int) -> None:
            exchange.size += size

        def on_close(completed: bool) -> None:
            self.metrics.dec_requests_in_flight()
            if completed:
                duration = time.monotonic() - exchange.started
                self.metrics.record_http_request(method, path, exchange.status, duration)
                self.metrics.record_response_size(method, path, exchange.size)

        return _TrackedBody(body, on_chunk, on_close)


class MetricsServer:
    """A separate HTTP server that serves the metrics at one path."""

    def __init__(self, port: int, path: str = "/metrics", metrics: Metrics | None = None):
        self.path = path
        self.metrics = metrics if metrics is not None else get_metrics()
        self._server = make_server("0.0.0.0", port, self._app, threaded=True)
        self._serving = threading.Event()

    @property
    def port(self) -> int:
        """The port actually bound (useful when 0 was asked for)."""
        return self._server.server_address[1]

    def _app(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        request = Request(environ)
        if request.path != self.path:
            response = Response("404 page not found\n", status=404, content_type="text/plain; charset=utf-8")
        else:
            response = Response(self.metrics.render(), content_type=EXPOSITION_CONTENT_TYPE)
        return response(environ, start_response)

    def start(self) -> None:
        """Serve until shutdown() is called."""
        _log.info("starting metrics server", extra={"addr": f":{self.port}"})
        self._serving.set()
        self._server.serve_forever()

    def shutdown(self) -> None:
        """Stop serving and release the socket."""
        if self._serving.is_set():
            self._server.shutdown()
            self._serving.clear()
        self._server.server_close()