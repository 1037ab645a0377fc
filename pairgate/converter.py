"""Validation and conversion of HTTP request data into coordinator requests."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pairgate.messages import (
    AddStorageNodeRequest,
    CreateTenantRequest,
    GetMigrationStatusRequest,
    GetTenantRequest,
    ListStorageNodesRequest,
    ReadKeyValueRequest,
    RemoveStorageNodeRequest,
    UpdateReplicationFactorRequest,
    WriteKeyValueRequest,
)

DEFAULT_CONSISTENCY = "quorum"
DEFAULT_REPLICATION_FACTOR = 3
DEFAULT_VIRTUAL_NODES = 150
CONSISTENCY_LEVELS = frozenset({"one", "quorum", "all"})

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class ConversionError(ValueError):
    """Raised when HTTP request data cannot be turned into a valid request."""


def is_valid_consistency(consistency: str) -> bool:
    """Tell whether consistency is one of "one", "quorum" or "all"."""
    return consistency in CONSISTENCY_LEVELS


def parse_bool(text: str) -> bool:
    """Parse the usual spellings of true and false; raise ValueError otherwise."""
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f'parsing "{text}": invalid syntax')


def _json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid character {name!r} in JSON")


def _check(name: str, kind: str, value: Any) -> Any:
    if kind == "string" and isinstance(value, str):
        return value
    if kind == "bool" and isinstance(value, bool):
        return value
    if kind == "int32" and isinstance(value, int) and not isinstance(value, bool):
        if _INT32_MIN <= value <= _INT32_MAX:
            return value
        raise ConversionError(
            f"failed to parse request body: number {value} overflows field {name} of type int32"
        )
    raise ConversionError(
        f"failed to parse request body: cannot unmarshal {_json_kind(value)} "
        f"into field {name} of type {kind}"
    )


def _decode(body: Any, schema: dict[str, str]) -> dict[str, Any]:
    """Decode a JSON object body, keeping only the fields named in schema."""
    if hasattr(body, "read"):
        try:
            body = body.read()
        except OSError as exc:
            raise ConversionError(f"failed to read request body: {exc}") from exc
    try:
        data = json.loads(body, parse_constant=_reject_constant)
    except (ValueError, TypeError) as exc:
        raise ConversionError(f"failed to parse request body: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConversionError(
            f"failed to parse request body: cannot unmarshal {_json_kind(data)} into an object"
        )
    folded = {name.lower(): name for name in schema}
    values: dict[str, Any] = {}
    for key, value in data.items():
        name = folded.get(key.lower())
        if name is None or value is None:
            continue
        values[name] = _check(name, schema[name], value)
    return values


def _header(headers: Any, name: str) -> str:
    if not headers:
        return ""
    wanted = name.lower()
    return next((value for key, value in headers.items() if key.lower() == wanted), "")


def _query_value(query: Mapping[str, Any] | None, name: str) -> str:
    if not query:
        return ""
    value = query.get(name)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return value[0] if value else ""
    return value


def _consistency(value: str) -> str:
    consistency = value or DEFAULT_CONSISTENCY
    if not is_valid_consistency(consistency):
        raise ConversionError(
            f"invalid consistency level: {consistency} (must be one, quorum, or all)"
        )
    return consistency


def write_key_value_request(body: Any, headers: Any = None) -> WriteKeyValueRequest:
    """Build a write request from a JSON body and the Idempotency-Key header."""
    values = _decode(
        body, {"tenant_id": "string", "key": "string", "value": "string", "consistency": "string"}
    )
    if not values.get("key"):
        raise ConversionError("key is required")
    if not values.get("tenant_id"):
        raise ConversionError("tenant_id is required")
    idempotency_key = _header(headers, "Idempotency-Key")
    consistency = _consistency(values.get("consistency", ""))
    return WriteKeyValueRequest(
        tenant_id=values["tenant_id"],
        key=values["key"],
        value=values.get("value", "").encode("utf-8"),
        consistency=consistency,
        idempotency_key=idempotency_key,
    )


def read_key_value_request(query: Mapping[str, Any] | None) -> ReadKeyValueRequest:
    """Build a read request from query parameters."""
    key = _query_value(query, "key")
    if not key:
        raise ConversionError("key query parameter is required")
    tenant_id = _query_value(query, "tenant_id")
    if not tenant_id:
        raise ConversionError("tenant_id query parameter is required")
    consistency = _consistency(_query_value(query, "consistency"))
    return ReadKeyValueRequest(tenant_id=tenant_id, key=key, consistency=consistency)


def create_tenant_request(body: Any) -> CreateTenantRequest:
    """Build a tenant creation request; the replication factor defaults to 3."""
    values = _decode(body, {"tenant_id": "string", "replication_factor": "int32"})
    if not values.get("tenant_id"):
        raise ConversionError("tenant_id is required")
    replication_factor = values.get("replication_factor", 0) or DEFAULT_REPLICATION_FACTOR
    if replication_factor < 1:
        raise ConversionError("replication_factor must be at least 1")
    return CreateTenantRequest(
        tenant_id=values["tenant_id"], replication_factor=replication_factor
    )


def update_replication_factor_request(tenant_id: str, body: Any) -> UpdateReplicationFactorRequest:
    """Build a replication factor change for the tenant named in the path."""
    if not tenant_id:
        raise ConversionError("tenant_id path parameter is required")
    values = _decode(body, {"replication_factor": "int32"})
    replication_factor = values.get("replication_factor", 0)
    if replication_factor < 1:
        raise ConversionError("replication_factor must be at least 1")
    return UpdateReplicationFactorRequest(
        tenant_id=tenant_id, new_replication_factor=replication_factor
    )


def get_tenant_request(tenant_id: str) -> GetTenantRequest:
    """Build a tenant lookup for the tenant named in the path."""
    if not tenant_id:
        raise ConversionError("tenant_id path parameter is required")
    return GetTenantRequest(tenant_id=tenant_id)


def add_storage_node_request(body: Any) -> AddStorageNodeRequest:
    """Build a storage node addition; virtual nodes default to 150."""
    values = _decode(
        body, {"node_id": "string", "host": "string", "port": "int32", "virtual_nodes": "int32"}
    )
    if not values.get("node_id"):
        raise ConversionError("node_id is required")
    if not values.get("host"):
        raise ConversionError("host is required")
    port = values.get("port", 0)
    if not 0 < port <= 65535:
        raise ConversionError(f"invalid port: {port}")
    virtual_nodes = values.get("virtual_nodes", 0) or DEFAULT_VIRTUAL_NODES
    return AddStorageNodeRequest(
        node_id=values["node_id"], host=values["host"], port=port, virtual_nodes=virtual_nodes
    )


def remove_storage_node_request(
    node_id: str, query: Mapping[str, Any] | None = None
) -> RemoveStorageNodeRequest:
    """Build a storage node removal; the force query parameter is optional."""
    if not node_id:
        raise ConversionError("node_id path parameter is required")
    force = False
    force_text = _query_value(query, "force")
    if force_text:
        try:
            force = parse_bool(force_text)
        except ValueError as exc:
            raise ConversionError(f"invalid force parameter: {exc}") from exc
    return RemoveStorageNodeRequest(node_id=node_id, force=force)


def get_migration_status_request(migration_id: str) -> GetMigrationStatusRequest:
    """Build a migration status lookup for the migration named in the path."""
    if not migration_id:
        raise ConversionError("migration_id path parameter is required")
    return GetMigrationStatusRequest(migration_id=migration_id)


def list_storage_nodes_request() -> ListStorageNodesRequest:
    """Build a request listing every storage node."""
    return ListStorageNodesRequest()