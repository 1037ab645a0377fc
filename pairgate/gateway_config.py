"""Gateway configuration: built-in defaults, an optional YAML file and environment overrides."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable

import yaml

ENV_PREFIX = "API_GATEWAY"
CONFIG_FILE_NAMES = ("config.yaml", "config.yml")
SEARCH_PATHS = (Path("."), Path("/etc/api-gateway"))


class ConfigError(Exception):
    """Raised when configuration cannot be read, decoded or validated."""


def _setting(kind: str, default: Any = None, *, factory: Callable[[], Any] | None = None) -> Any:
    meta = {"kind": kind}
    if factory is not None:
        return field(default_factory=factory, metadata=meta)
    return field(default=default, metadata=meta)


@dataclass
class ServerConfig:
    """HTTP server settings; timeouts are in seconds."""

    port: int = _setting("int", 8080)
    read_timeout: float = _setting("duration", 30.0)
    write_timeout: float = _setting("duration", 30.0)
    idle_timeout: float = _setting("duration", 120.0)
    shutdown_timeout: float = _setting("duration", 30.0)


@dataclass
class CoordinatorConfig:
    """Settings for the coordinator client; durations are in seconds."""

    endpoints: list[str] = _setting("list", factory=lambda: ["localhost:50051"])
    timeout: float = _setting("duration", 30.0)
    max_retries: int = _setting("int", 3)
    retry_backoff: float = _setting("duration", 0.1)
    keepalive_time: float = _setting("duration", 30.0)
    keepalive_timeout: float = _setting("duration", 10.0)
    max_receive_message_size: int = _setting("int", 16777216)
    max_send_message_size: int = _setting("int", 16777216)


@dataclass
class RateLimiterConfig:
    """Token-bucket rate limiter settings."""

    enabled: bool = _setting("bool", True)
    requests_per_second: float = _setting("float", 1000.0)
    burst_size: int = _setting("int", 100)


@dataclass
class MetricsConfig:
    """Prometheus metrics endpoint settings."""

    enabled: bool = _setting("bool", True)
    port: int = _setting("int", 9090)
    path: str = _setting("str", "/metrics")


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = _setting("str", "info")
    format: str = _setting("str", "json")
    output: str = _setting("str", "stdout")


@dataclass
class Config:
    """Complete gateway configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    rate_limiter: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Raise ConfigError if the configuration is not usable."""
        if not 0 < self.server.port <= 65535:
            raise ConfigError(f"invalid server port: {self.server.port}")
        if not self.coordinator.endpoints:
            raise ConfigError("at least one coordinator endpoint is required")
        if self.coordinator.timeout <= 0:
            raise ConfigError("coordinator timeout must be positive")
        if self.rate_limiter.enabled:
            if self.rate_limiter.requests_per_second <= 0:
                raise ConfigError("rate limiter requests per second must be positive")
            if self.rate_limiter.burst_size <= 0:
                raise ConfigError("rate limiter burst size must be positive")
        if self.metrics.enabled and not 0 < self.metrics.port <= 65535:
            raise ConfigError(f"invalid metrics port: {self.metrics.port}")


_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_COMPONENT = r"(?:\d+\.?\d*|\.\d+)(?:ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"([-+]?)((?:{_COMPONENT})+)")
_COMPONENT_RE = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: Any) -> float:
    """Parse a duration such as "1h30m" or "100ms" into seconds.

    Numbers are taken to be seconds already.
    """
    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ConfigError(f"invalid duration: {value!r}")
    if value in ("0", "+0", "-0"):
        return 0.0
    match = _DURATION_RE.fullmatch(value)
    if match is None:
        raise ConfigError(f"invalid duration: {value!r}")
    sign, body = match.groups()
    total = sum(float(number) * _UNIT_SECONDS[unit] for number, unit in _COMPONENT_RE.findall(body))
    return -total if sign == "-" else total


_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"cannot parse {value!r} as an integer") from exc
    raise ConfigError(f"expected an integer, got {value!r}")


def _to_float(value: Any) -> float:
    if isinstance(value, (bool, int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"cannot parse {value!r} as a number") from exc
    raise ConfigError(f"expected a number, got {value!r}")


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        if value in _TRUE_WORDS:
            return True
        if value in _FALSE_WORDS:
            return False
        raise ConfigError(f"cannot parse {value!r} as a boolean")
    raise ConfigError(f"expected a boolean, got {value!r}")


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    raise ConfigError(f"expected a string, got {value!r}")


def _to_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [_to_str(item) for item in value]
    if isinstance(value, str):
        return value.split(",") if value else []
    return [_to_str(value)]


_COERCERS: dict[str, Callable[[Any], Any]] = {
    "int": _to_int,
    "float": _to_float,
    "bool": _to_bool,
    "str": _to_str,
    "list": _to_list,
    "duration": parse_duration,
}

_SECTIONS = {
    "server": ServerConfig,
    "coordinator": CoordinatorConfig,
    "rate_limiter": RateLimiterConfig,
    "metrics": MetricsConfig,
    "logging": LoggingConfig,
}


def _lower_keys(mapping: dict) -> dict:
    return {str(key).lower(): value for key, value in mapping.items()}


def _build_section(cls: type, name: str, file_values: dict) -> Any:
    kwargs = {}
    for spec in fields(cls):
        env_value = os.environ.get(f"{ENV_PREFIX}_{name}_{spec.name}".upper())
        if env_value:
            raw = env_value
        elif file_values.get(spec.name) is not None:
            raw = file_values[spec.name]
        else:
            continue
        try:
            kwargs[spec.name] = _COERCERS[spec.metadata["kind"]](raw)
        except ConfigError as exc:
            raise ConfigError(f"failed to unmarshal config: {name}.{spec.name}: {exc}") from exc
    return cls(**kwargs)


def _read_file(path: Path) -> dict:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("failed to read config file: top level must be a mapping")
    return _lower_keys(data)


def _find_config_file() -> Path | None:
    for directory in SEARCH_PATHS:
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def load(config_path: str | os.PathLike | None = None) -> Config:
    """Load configuration from defaults, a YAML file and API_GATEWAY_* variables.

    With no path, config.yaml is looked for in the working directory and in
    /etc/api-gateway; a missing file there is not an error.
    """
    if config_path:
        data = _read_file(Path(config_path))
    else:
        found = _find_config_file()
        data = _read_file(found) if found is not None else {}

    sections = {}
    for name, cls in _SECTIONS.items():
        section_data = data.get(name) or {}
        if not isinstance(section_data, dict):
            raise ConfigError(f"failed to unmarshal config: {name} must be a mapping")
        sections[name] = _build_section(cls, name, _lower_keys(section_data))

    cfg = Config(**sections)
    try:
        cfg.validate()
    except ConfigError as exc:
        raise ConfigError(f"config validation failed: {exc}") from exc
    return cfg