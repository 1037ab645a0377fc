"""HTTP API gateway (WSGI) for a replicated key-value store, with hash ring, quorum and vector clock helpers."""

__version__ = "0.1.0"

__all__ = [
    "client",
    "consistent_hash",
    "converter",
    "coordinator_config",
    "errors",
    "gateway_config",
    "handlers",
    "health",
    "messages",
    "metrics",
    "middleware",
    "quorum",
    "responses",
    "server",
    "vector_clock",
]