"""Coordinator client with retry and exponential backoff."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import grpc

from pairgate.errors import status_from_error
from pairgate.gateway_config import CoordinatorConfig
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

_log = logging.getLogger(__name__)

_RETRYABLE = frozenset(
    {
        grpc.StatusCode.UNAVAILABLE,
        grpc.StatusCode.DEADLINE_EXCEEDED,
        grpc.StatusCode.ABORTED,
        grpc.StatusCode.RESOURCE_EXHAUSTED,
    }
)


def is_retryable(err: BaseException | None) -> bool:
    """Tell whether err is a gRPC error worth retrying."""
    if err is None:
        return False
    status = status_from_error(err)
    return status is not None and status[0] in _RETRYABLE


def _channel_options(cfg: CoordinatorConfig) -> list[tuple[str, int]]:
    return [
        ("grpc.max_receive_message_length", cfg.max_receive_message_size),
        ("grpc.max_send_message_length", cfg.max_send_message_size),
        ("grpc.keepalive_time_ms", int(cfg.keepalive_time * 1000)),
        ("grpc.keepalive_timeout_ms", int(cfg.keepalive_timeout * 1000)),
        ("grpc.keepalive_permit_without_calls", 1),
    ]


class CoordinatorClient:
    """Calls the coordinator service, retrying transient failures.

    stub is either an object exposing the service's RPC methods or a stub
    class, which is then built on channel (an insecure channel to the first
    endpoint when none is given).
    """

    def __init__(
        self,
        cfg: CoordinatorConfig,
        stub: Any = None,
        channel: Any = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not cfg.endpoints:
            raise ValueError("no coordinator endpoints provided")
        if stub is None:
            raise ValueError("a coordinator service stub is required")
        self.cfg = cfg
        self._sleep = sleep
        self._lock = threading.Lock()
        self._healthy = True
        if isinstance(stub, type):
            if channel is None:
                channel = grpc.insecure_channel(cfg.endpoints[0], options=_channel_options(cfg))
            stub = stub(channel)
        self.channel = channel
        self.stub = stub

    def close(self) -> None:
        """Close the underlying channel, if there is one."""
        if self.channel is not None:
            self.channel.close()

    def is_healthy(self) -> bool:
        with self._lock:
            return self._healthy

    def _set_healthy(self, healthy: bool) -> None:
        with self._lock:
            self._healthy = healthy

    def health_check(self, timeout: float | None = None) -> None:
        """Probe the coordinator with a node listing; raise if it fails."""
        try:
            self.stub.ListStorageNodes(ListStorageNodesRequest(), timeout=timeout)
        except Exception:
            self._set_healthy(False)
            raise
        self._set_healthy(True)

    def _call(self, method: str, request: Any, timeout: float | None) -> Any:
        rpc = getattr(self.stub, method)
        deadline = None if timeout is None else time.monotonic() + timeout
        last_error: BaseException | None = None
        for attempt in range(self.cfg.max_retries + 1):
            if attempt > 0:
                backoff = self.cfg.retry_backoff * (1 << (attempt - 1))
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining < backoff:
                        self._sleep(max(remaining, 0.0))
                        raise TimeoutError("context deadline exceeded") from last_error
                self._sleep(backoff)
            call_timeout = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            try:
                return rpc(request, timeout=call_timeout)
            except Exception as err:
                last_error = err
                if not is_retryable(err):
                    raise
                _log.warning("gRPC call failed, retrying", extra={"attempt": attempt + 1, "error": str(err)})
        assert last_error is not None
        raise last_error

    def write_key_value(self, request: WriteKeyValueRequest, timeout: float | None = None) -> Any:
        return self._call("WriteKeyValue", request, timeout)

    def read_key_value(self, request: ReadKeyValueRequest, timeout: float | None = None) -> Any:
        return self._call("ReadKeyValue", request, timeout)

    def create_tenant(self, request: CreateTenantRequest, timeout: float | None = None) -> Any:
        return self._call("CreateTenant", request, timeout)

    def update_replication_factor(
        self, request: UpdateReplicationFactorRequest, timeout: float | None = None
    ) -> Any:
        return self._call("UpdateReplicationFactor", request, timeout)

    def get_tenant(self, request: GetTenantRequest, timeout: float | None = None) -> Any:
        return self._call("GetTenant", request, timeout)

    def add_storage_node(self, request: AddStorageNodeRequest, timeout: float | None = None) -> Any:
        return self._call("AddStorageNode", request, timeout)

    def remove_storage_node(self, request: RemoveStorageNodeRequest, timeout: float | None = None) -> Any:
        return self._call("RemoveStorageNode", request, timeout)

    def get_migration_status(self, request: GetMigrationStatusRequest, timeout: float | None = None) -> Any:
        return self._call("GetMigrationStatus", request, timeout)

    def list_storage_nodes(self, request: ListStorageNodesRequest | None = None, timeout: float | None = None) -> Any:
        return self._call("ListStorageNodes", request or ListStorageNodesRequest(), timeout)