"""Coordinator configuration: built-in defaults overlaid by a YAML file."""

from __future__ import annotations

import os
from dataclasses import Field, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from pairgate.gateway_config import ConfigError, parse_duration

CONSISTENCY_LEVELS = frozenset({"one", "quorum", "all"})


def _duration(default: float) -> Any:
    return field(default=default, metadata={"duration": True})


@dataclass
class ServerConfig:
    """gRPC server settings; timeouts are in seconds."""

    host: str = "0.0.0.0"
    port: int = 50051
    node_id: str = "coordinator-1"
    max_connections: int = 1000
    read_timeout: float = _duration(10.0)
    write_timeout: float = _duration(10.0)
    shutdown_timeout: float = _duration(30.0)


@dataclass
class DatabaseConfig:
    """Metadata store settings."""

    host: str = "localhost"
    port: int = 5432
    database: str = "pairdb_metadata"
    user: str = "coordinator"
    password: str = ""
    max_connections: int = 50
    min_connections: int = 10
    conn_max_lifetime: float = _duration(30 * 60.0)


@dataclass
class RedisConfig:
    """Idempotency store settings."""

    host: str = "localhost"
    port: int = 6379
    password: str = ""
    db: int = 0
    max_retries: int = 3
    pool_size: int = 100
    min_idle_conns: int = 10


@dataclass
class HashRingConfig:
    """Consistent hashing settings."""

    virtual_nodes: int = 150
    update_interval: float = _duration(30.0)


@dataclass
class ConsistencyConfig:
    """Consistency level and replica timeouts."""

    default_level: str = "quorum"
    write_timeout: float = _duration(5.0)
    read_timeout: float = _duration(3.0)
    repair_async: bool = True


@dataclass
class CacheConfig:
    """Tenant configuration cache settings."""

    tenant_config_ttl: float = _duration(5 * 60.0)
    max_size: int = 10000


@dataclass
class MetricsConfig:
    """Prometheus metrics endpoint settings."""

    enabled: bool = True
    port: int = 9090
    path: str = "/metrics"


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"


@dataclass
class Config:
    """Complete coordinator configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    hash_ring: HashRingConfig = field(default_factory=HashRingConfig)
    consistency: ConsistencyConfig = field(default_factory=ConsistencyConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        """Raise ConfigError if unusable; fill in empty consistency and logging settings."""
        if not self.server.host:
            raise ConfigError("server.host is required")
        if not 0 < self.server.port <= 65535:
            raise ConfigError("server.port must be between 1 and 65535")
        if not self.server.node_id:
            raise ConfigError("server.node_id is required")
        if not self.database.host:
            raise ConfigError("database.host is required")
        if not self.database.database:
            raise ConfigError("database.database is required")
        if not self.database.user:
            raise ConfigError("database.user is required")
        if not self.redis.host:
            raise ConfigError("redis.host is required")
        if self.hash_ring.virtual_nodes <= 0:
            raise ConfigError("hash_ring.virtual_nodes must be positive")
        if not self.consistency.default_level:
            self.consistency.default_level = "quorum"
        if self.consistency.default_level not in CONSISTENCY_LEVELS:
            raise ConfigError("consistency.default_level must be one of: one, quorum, all")
        if not self.logging.level:
            self.logging.level = "info"
        if not self.logging.format:
            self.logging.format = "json"


def default_config() -> Config:
    """Return a configuration holding the built-in defaults."""
    return Config()


_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False", ""})


def _coerce(spec: Field, value: Any) -> Any:
    if spec.metadata.get("duration"):
        return parse_duration(value)
    kind = type(spec.default)
    if kind is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str) and value in _TRUE_WORDS | _FALSE_WORDS:
            return value in _TRUE_WORDS
        raise ConfigError(f"cannot decode {value!r} as a boolean")
    if kind is int:
        if isinstance(value, (bool, int, float)):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value, 0)
            except ValueError as exc:
                raise ConfigError(f"cannot parse {value!r} as an integer") from exc
        raise ConfigError(f"expected an integer, got {value!r}")
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    raise ConfigError(f"expected a string, got {value!r}")


def _lower_keys(mapping: dict) -> dict:
    return {str(key).lower(): value for key, value in mapping.items()}


def _apply(cfg: Config, data: dict) -> None:
    """Overlay file values, and environment values for keys the file names, onto cfg."""
    section_names = {spec.name for spec in fields(cfg)}
    for section_name, section_data in _lower_keys(data).items():
        if section_name not in section_names or section_data is None:
            continue
        if not isinstance(section_data, dict):
            raise ConfigError(f"{section_name} must be a mapping")
        section = getattr(cfg, section_name)
        specs = {spec.name: spec for spec in fields(section)}
        for key, raw in _lower_keys(section_data).items():
            spec = specs.get(key)
            if spec is None:
                continue
            env_value = os.environ.get(f"{section_name}.{key}".upper())
            if env_value:
                raw = env_value
            if raw is None:
                continue
            try:
                setattr(section, key, _coerce(spec, raw))
            except ConfigError as exc:
                raise ConfigError(f"{section_name}.{key}: {exc}") from exc


def load(config_path: str | os.PathLike) -> Config:
    """Load the YAML file at config_path over the defaults and validate the result."""
    if not config_path:
        raise ConfigError("failed to read config file: no config file given")
    try:
        with Path(config_path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("failed to read config file: top level must be a mapping")

    cfg = default_config()
    try:
        _apply(cfg, data)
    except ConfigError as exc:
        raise ConfigError(f"failed to unmarshal config: {exc}") from exc
    try:
        cfg.validate()
    except ConfigError as exc:
        raise ConfigError(f"configuration validation failed: {exc}") from exc
    return cfg