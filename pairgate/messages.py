"""Request and response messages exchanged with the coordinator service."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class VectorClockEntry:
    """One coordinator's logical timestamp within a vector clock."""

    coordinator_node_id: str = ""
    logical_timestamp: int = 0


@dataclass
class VectorClock:
    """A vector clock as a list of per-coordinator entries."""

    entries: list[VectorClockEntry] = field(default_factory=list)

    def as_dict(self) -> dict[str, int]:
        """Map coordinator node ids to timestamps; a later entry for the same id wins."""
        return {entry.coordinator_node_id: entry.logical_timestamp for entry in self.entries}


@dataclass
class WriteKeyValueRequest:
    tenant_id: str = ""
    key: str = ""
    value: bytes = b""
    consistency: str = ""
    idempotency_key: str = ""


@dataclass
class WriteKeyValueResponse:
    success: bool = False
    key: str = ""
    idempotency_key: str = ""
    vector_clock: VectorClock | None = None
    replica_count: int = 0
    consistency: str = ""
    is_duplicate: bool = False
    error_message: str = ""


@dataclass
class ReadKeyValueRequest:
    tenant_id: str = ""
    key: str = ""
    consistency: str = ""


@dataclass
class ReadKeyValueResponse:
    success: bool = False
    key: str = ""
    value: bytes = b""
    vector_clock: VectorClock | None = None
    error_message: str = ""


@dataclass
class CreateTenantRequest:
    tenant_id: str = ""
    replication_factor: int = 0


@dataclass
class CreateTenantResponse:
    success: bool = False
    tenant_id: str = ""
    replication_factor: int = 0
    created_at: int = 0
    error_message: str = ""


@dataclass
class UpdateReplicationFactorRequest:
    tenant_id: str = ""
    new_replication_factor: int = 0


@dataclass
class UpdateReplicationFactorResponse:
    success: bool = False
    tenant_id: str = ""
    old_replication_factor: int = 0
    new_replication_factor: int = 0
    migration_id: str = ""
    updated_at: int = 0
    error_message: str = ""


@dataclass
class GetTenantRequest:
    tenant_id: str = ""


@dataclass
class GetTenantResponse:
    success: bool = False
    tenant_id: str = ""
    replication_factor: int = 0
    created_at: int = 0
    updated_at: int = 0
    error_message: str = ""


@dataclass
class AddStorageNodeRequest:
    node_id: str = ""
    host: str = ""
    port: int = 0
    virtual_nodes: int = 0


@dataclass
class AddStorageNodeResponse:
    success: bool = False
    node_id: str = ""
    migration_id: str = ""
    message: str = ""
    estimated_completion: int = 0
    error_message: str = ""


@dataclass
class RemoveStorageNodeRequest:
    node_id: str = ""
    force: bool = False


@dataclass
class RemoveStorageNodeResponse:
    success: bool = False
    node_id: str = ""
    migration_id: str = ""
    message: str = ""
    estimated_completion: int = 0
    error_message: str = ""


@dataclass
class GetMigrationStatusRequest:
    migration_id: str = ""


@dataclass
class MigrationProgress:
    keys_migrated: int = 0
    total_keys: int = 0
    percentage: float = 0.0


@dataclass
class GetMigrationStatusResponse:
    success: bool = False
    migration_id: str = ""
    type: str = ""
    node_id: str = ""
    status: str = ""
    progress: MigrationProgress | None = None
    started_at: int = 0
    estimated_completion: int = 0
    error_message: str = ""


@dataclass
class ListStorageNodesRequest:
    pass


@dataclass
class StorageNodeInfo:
    node_id: str = ""
    host: str = ""
    port: int = 0
    status: str = ""
    virtual_nodes: int = 0
    keys_count: int = 0
    disk_usage_percent: float = 0.0


@dataclass
class ListStorageNodesResponse:
    success: bool = False
    nodes: list[StorageNodeInfo] = field(default_factory=list)
    error_message: str = ""