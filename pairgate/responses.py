"""Conversion of coordinator responses into JSON-ready HTTP response bodies."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any

from pairgate.messages import (
    AddStorageNodeResponse,
    CreateTenantResponse,
    GetMigrationStatusResponse,
    GetTenantResponse,
    ListStorageNodesResponse,
    ReadKeyValueResponse,
    RemoveStorageNodeResponse,
    UpdateReplicationFactorResponse,
    VectorClock,
    WriteKeyValueResponse,
)

_STATUS_LABELS = {True: "success", False: "error"}


def _omitempty(default: Any = None) -> Any:
    return field(default=default, metadata={"omitempty": True})


@dataclass
class WriteKeyValueHTTPResponse:
    status: str = ""
    key: str = ""
    idempotency_key: str = ""
    vector_clock: dict[str, int] | None = _omitempty()
    replica_count: int = 0
    consistency: str = ""
    is_duplicate: bool = False


@dataclass
class ReadKeyValueHTTPResponse:
    status: str = ""
    key: str = ""
    value: str = ""
    vector_clock: dict[str, int] | None = _omitempty()


@dataclass
class CreateTenantHTTPResponse:
    status: str = ""
    tenant_id: str = ""
    replication_factor: int = 0
    created_at: int = 0


@dataclass
class UpdateReplicationFactorHTTPResponse:
    status: str = ""
    tenant_id: str = ""
    old_replication_factor: int = 0
    new_replication_factor: int = 0
    migration_id: str = _omitempty("")
    updated_at: int = 0


@dataclass
class GetTenantHTTPResponse:
    status: str = ""
    tenant_id: str = ""
    replication_factor: int = 0
    created_at: int = 0
    updated_at: int = 0


@dataclass
class AddStorageNodeHTTPResponse:
    status: str = ""
    node_id: str = ""
    migration_id: str = _omitempty("")
    message: str = ""
    estimated_completion: int = _omitempty(0)


@dataclass
class RemoveStorageNodeHTTPResponse:
    status: str = ""
    node_id: str = ""
    migration_id: str = _omitempty("")
    message: str = ""
    estimated_completion: int = _omitempty(0)


@dataclass
class MigrationProgressHTTPResponse:
    keys_migrated: int = 0
    total_keys: int = 0
    percentage: float = 0.0


@dataclass
class GetMigrationStatusHTTPResponse:
    status: str = ""
    migration_id: str = ""
    type: str = ""
    node_id: str = ""
    migration_status: str = ""
    progress: MigrationProgressHTTPResponse | None = _omitempty()
    started_at: int = 0
    estimated_completion: int = _omitempty(0)


@dataclass
class StorageNodeInfoHTTPResponse:
    node_id: str = ""
    host: str = ""
    port: int = 0
    status: str = ""
    virtual_nodes: int = 0
    keys_count: int = 0
    disk_usage_percent: float = 0.0


@dataclass
class ListStorageNodesHTTPResponse:
    status: str = ""
    nodes: list[StorageNodeInfoHTTPResponse] = field(default_factory=list)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict)):
        return len(value) == 0
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return to_json_dict(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def to_json_dict(response: Any) -> dict[str, Any]:
    """Return the JSON object for a response, leaving out empty optional fields."""
    body: dict[str, Any] = {}
    for spec in fields(response):
        value = getattr(response, spec.name)
        if spec.metadata.get("omitempty") and _is_empty(value):
            continue
        body[spec.name] = _jsonable(value)
    return body


def status_label(success: Any) -> str:
    """Return "success" for a truthy outcome and "error" otherwise."""
    return _STATUS_LABELS[bool(success)]


def vector_clock_map(vector_clock: VectorClock | None) -> dict[str, int] | None:
    """Map a vector clock to node id -> timestamp; None when absent or empty."""
    if vector_clock is None or not vector_clock.entries:
        return None
    return vector_clock.as_dict()


def write_key_value_response(resp: WriteKeyValueResponse) -> WriteKeyValueHTTPResponse:
    return WriteKeyValueHTTPResponse(
        status=status_label(resp.success),
        key=resp.key,
        idempotency_key=resp.idempotency_key,
        vector_clock=vector_clock_map(resp.vector_clock),
        replica_count=resp.replica_count,
        consistency=resp.consistency,
        is_duplicate=resp.is_duplicate,
    )


def read_key_value_response(resp: ReadKeyValueResponse) -> ReadKeyValueHTTPResponse:
    value = resp.value
    text = value.decode("utf-8", errors="replace") if isinstance(value, (bytes, bytearray)) else str(value)
    return ReadKeyValueHTTPResponse(
        status=status_label(resp.success),
        key=resp.key,
        value=text,
        vector_clock=vector_clock_map(resp.vector_clock),
    )


def create_tenant_response(resp: CreateTenantResponse) -> CreateTenantHTTPResponse:
    return CreateTenantHTTPResponse(
        status=status_label(resp.success),
        tenant_id=resp.tenant_id,
        replication_factor=resp.replication_factor,
        created_at=resp.created_at,
    )


def update_replication_factor_response(
    resp: UpdateReplicationFactorResponse,
) -> UpdateReplicationFactorHTTPResponse:
    return UpdateReplicationFactorHTTPResponse(
        status=status_label(resp.success),
        tenant_id=resp.tenant_id,
        old_replication_factor=resp.old_replication_factor,
        new_replication_factor=resp.new_replication_factor,
        migration_id=resp.migration_id,
        updated_at=resp.updated_at,
    )


def get_tenant_response(resp: GetTenantResponse) -> GetTenantHTTPResponse:
    return GetTenantHTTPResponse(
        status=status_label(resp.success),
        tenant_id=resp.tenant_id,
        replication_factor=resp.replication_factor,
        created_at=resp.created_at,
        updated_at=resp.updated_at,
    )


def add_storage_node_response(resp: AddStorageNodeResponse) -> AddStorageNodeHTTPResponse:
    return AddStorageNodeHTTPResponse(
        status=status_label(resp.success),
        node_id=resp.node_id,
        migration_id=resp.migration_id,
        message=resp.message,
        estimated_completion=resp.estimated_completion,
    )


def remove_storage_node_response(resp: RemoveStorageNodeResponse) -> RemoveStorageNodeHTTPResponse:
    return RemoveStorageNodeHTTPResponse(
        status=status_label(resp.success),
        node_id=resp.node_id,
        migration_id=resp.migration_id,
        message=resp.message,
        estimated_completion=resp.estimated_completion,
    )


def get_migration_status_response(resp: GetMigrationStatusResponse) -> GetMigrationStatusHTTPResponse:
    progress = None
    if resp.progress is not None:
        progress = MigrationProgressHTTPResponse(
            keys_migrated=resp.progress.keys_migrated,
            total_keys=resp.progress.total_keys,
            percentage=resp.progress.percentage,
        )
    return GetMigrationStatusHTTPResponse(
        status=status_label(resp.success),
        migration_id=resp.migration_id,
        type=resp.type,
        node_id=resp.node_id,
        migration_status=resp.status,
        progress=progress,
        started_at=resp.started_at,
        estimated_completion=resp.estimated_completion,
    )


def list_storage_nodes_response(resp: ListStorageNodesResponse) -> ListStorageNodesHTTPResponse:
    nodes = [
        StorageNodeInfoHTTPResponse(
            node_id=node.node_id,
            host=node.host,
            port=node.port,
            status=node.status,
            virtual_nodes=node.virtual_nodes,
            keys_count=node.keys_count,
            disk_usage_percent=node.disk_usage_percent,
        )
        for node in resp.nodes
    ]
    return ListStorageNodesHTTPResponse(status=status_label(resp.success), nodes=nodes)