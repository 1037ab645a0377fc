import json
from http import HTTPStatus

import grpc
import pytest
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from pairgate.errors import ErrorHandler
from pairgate.handlers import Handlers, json_response
from pairgate.messages import (
    AddStorageNodeResponse,
    CreateTenantResponse,
    GetMigrationStatusResponse,
    GetTenantResponse,
    ListStorageNodesResponse,
    MigrationProgress,
    ReadKeyValueResponse,
    RemoveStorageNodeResponse,
    StorageNodeInfo,
    UpdateReplicationFactorResponse,
    VectorClock,
    VectorClockEntry,
    WriteKeyValueResponse,
)


class FakeRpcError(grpc.RpcError):
    def __init__(self, code, details):
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


class FakeClient:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def _respond(self, name, request, timeout):
        self.calls.append((name, request, timeout))
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result

    def write_key_value(self, request, timeout=None):
        return self._respond("write_key_value", request, timeout)

    def read_key_value(self, request, timeout=None):
        return self._respond("read_key_value", request, timeout)

    def create_tenant(self, request, timeout=None):
        return self._respond("create_tenant", request, timeout)

    def update_replication_factor(self, request, timeout=None):
        return self._respond("update_replication_factor", request, timeout)

    def get_tenant(self, request, timeout=None):
        return self._respond("get_tenant", request, timeout)

    def add_storage_node(self, request, timeout=None):
        return self._respond("add_storage_node", request, timeout)

    def remove_storage_node(self, request, timeout=None):
        return self._respond("remove_storage_node", request, timeout)

    def get_migration_status(self, request, timeout=None):
        return self._respond("get_migration_status", request, timeout)

    def list_storage_nodes(self, request, timeout=None):
        return self._respond("list_storage_nodes", request, timeout)


def make_request(method="GET", body=None, headers=None, query=None):
    data = json.dumps(body) if body is not None else None
    builder = EnvironBuilder(
        method=method, path="/", data=data, headers=headers or {}, query_string=query
    )
    return Request(builder.get_environ())


def make_handlers(result, timeout=2.5):
    client = FakeClient(result)
    return Handlers(client, ErrorHandler(), timeout=timeout), client


def test_write_key_value_success():
    reply = WriteKeyValueResponse(
        success=True,
        key="k1",
        idempotency_key="idem-1",
        vector_clock=VectorClock([VectorClockEntry("c1", 4)]),
        replica_count=3,
        consistency="quorum",
    )
    handlers, client = make_handlers(reply)
    request = make_request(
        "POST", {"tenant_id": "t1", "key": "k1", "value": "v"}, {"Idempotency-Key": "idem-1"}
    )
    response = handlers.write_key_value(request)
    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert body["status"] == "success"
    assert body["key"] == "k1"
    assert body["vector_clock"] == {"c1": 4}
    name, sent, timeout = client.calls[0]
    assert sent.idempotency_key == "idem-1"
    assert sent.consistency == "quorum"
    assert sent.value == b"v"
    assert timeout == 2.5


def test_write_key_value_validation_error_skips_client():
    handlers, client = make_handlers(WriteKeyValueResponse(success=True))
    request = make_request("POST", {"tenant_id": "t1"}, {"X-Request-ID": "req-1"})
    response = handlers.write_key_value(request)
    assert response.status_code == HTTPStatus.BAD_REQUEST
    body = response.get_json()
    assert body["error_code"] == "INVALID_REQUEST"
    assert body["message"] == "key is required"
    assert body["request_id"] == "req-1"
    assert client.calls == []


def test_write_key_value_application_failure():
    handlers, _ = make_handlers(WriteKeyValueResponse(success=False, error_message="quorum lost"))
    response = handlers.write_key_value(make_request("POST", {"tenant_id": "t1", "key": "k"}))
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["message"] == "quorum lost"


def test_write_key_value_grpc_error_is_mapped():
    handlers, _ = make_handlers(FakeRpcError(grpc.StatusCode.NOT_FOUND, "tenant t1 missing"))
    response = handlers.write_key_value(make_request("POST", {"tenant_id": "t1", "key": "k"}))
    assert response.status_code == HTTPStatus.NOT_FOUND
    body = response.get_json()
    assert body["error_code"] == "TENANT_NOT_FOUND"
    assert body["message"] == "tenant t1 missing"


def test_non_grpc_error_is_internal():
    handlers, _ = make_handlers(RuntimeError("boom"))
    response = handlers.get_tenant(make_request(), "t1")
    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    body = response.get_json()
    assert body["error_code"] == "INTERNAL_ERROR"
    assert body["message"] == "boom"


def test_read_key_value_success_decodes_value():
    reply = ReadKeyValueResponse(success=True, key="k1", value=b"hello")
    handlers, client = make_handlers(reply)
    response = handlers.read_key_value(make_request(query={"key": "k1", "tenant_id": "t1"}))
    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert body["value"] == "hello"
    assert "vector_clock" not in body
    assert client.calls[0][1].tenant_id == "t1"


def test_read_key_value_not_found():
    handlers, _ = make_handlers(ReadKeyValueResponse(success=False, error_message="no such key"))
    response = handlers.read_key_value(make_request(query={"key": "k1", "tenant_id": "t1"}))
    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.get_json()["error_code"] == "KEY_NOT_FOUND"


def test_read_key_value_missing_key():
    handlers, client = make_handlers(ReadKeyValueResponse(success=True))
    response = handlers.read_key_value(make_request(query={"tenant_id": "t1"}))
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["message"] == "key query parameter is required"
    assert client.calls == []


def test_create_tenant_created_with_default_factor():
    reply = CreateTenantResponse(success=True, tenant_id="t1", replication_factor=3, created_at=10)
    handlers, client = make_handlers(reply)
    response = handlers.create_tenant(make_request("POST", {"tenant_id": "t1"}))
    assert response.status_code == HTTPStatus.CREATED
    assert response.get_json()["tenant_id"] == "t1"
    assert client.calls[0][1].replication_factor == 3


def test_create_tenant_conflict():
    handlers, _ = make_handlers(CreateTenantResponse(success=False, error_message="exists"))
    response = handlers.create_tenant(make_request("POST", {"tenant_id": "t1"}))
    assert response.status_code == HTTPStatus.CONFLICT
    assert response.get_json()["error_code"] == "TENANT_EXISTS"


def test_update_replication_factor_success():
    reply = UpdateReplicationFactorResponse(
        success=True, tenant_id="t1", old_replication_factor=3, new_replication_factor=5
    )
    handlers, client = make_handlers(reply)
    response = handlers.update_replication_factor(
        make_request("PUT", {"replication_factor": 5}), "t1"
    )
    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert body["new_replication_factor"] == 5
    assert "migration_id" not in body
    assert client.calls[0][1].new_replication_factor == 5


def test_update_replication_factor_invalid_body():
    handlers, client = make_handlers(UpdateReplicationFactorResponse(success=True))
    response = handlers.update_replication_factor(
        make_request("PUT", {"replication_factor": 0}), "t1"
    )
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["message"] == "replication_factor must be at least 1"
    assert client.calls == []


def test_update_replication_factor_failure():
    handlers, _ = make_handlers(UpdateReplicationFactorResponse(success=False, error_message="bad"))
    response = handlers.update_replication_factor(
        make_request("PUT", {"replication_factor": 2}), "t1"
    )
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["error_code"] == "INVALID_REPLICATION_FACTOR"


def test_get_tenant_requires_id():
    handlers, _ = make_handlers(GetTenantResponse(success=True))
    response = handlers.get_tenant(make_request(), "")
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["message"] == "tenant_id path parameter is required"


def test_get_tenant_not_found():
    handlers, _ = make_handlers(GetTenantResponse(success=False, error_message="gone"))
    response = handlers.get_tenant(make_request(), "t1")
    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.get_json()["error_code"] == "TENANT_NOT_FOUND"


def test_add_storage_node_accepted_with_default_vnodes():
    reply = AddStorageNodeResponse(success=True, node_id="n1", message="ok")
    handlers, client = make_handlers(reply)
    response = handlers.add_storage_node(
        make_request("POST", {"node_id": "n1", "host": "localhost", "port": 7000})
    )
    assert response.status_code == HTTPStatus.ACCEPTED
    body = response.get_json()
    assert body["node_id"] == "n1"
    assert "estimated_completion" not in body
    assert client.calls[0][1].virtual_nodes == 150


def test_remove_storage_node_force_and_failure():
    handlers, client = make_handlers(RemoveStorageNodeResponse(success=False, error_message="busy"))
    response = handlers.remove_storage_node(make_request("DELETE", query={"force": "true"}), "n1")
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["error_code"] == "NODE_IN_USE"
    assert client.calls[0][1].force is True


def test_remove_storage_node_invalid_force():
    handlers, client = make_handlers(RemoveStorageNodeResponse(success=True))
    response = handlers.remove_storage_node(make_request("DELETE", query={"force": "maybe"}), "n1")
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["message"].startswith("invalid force parameter")
    assert client.calls == []


def test_get_migration_status_with_progress():
    reply = GetMigrationStatusResponse(
        success=True,
        migration_id="m1",
        status="running",
        progress=MigrationProgress(keys_migrated=5, total_keys=10, percentage=50.0),
    )
    handlers, _ = make_handlers(reply)
    response = handlers.get_migration_status(make_request(), "m1")
    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert body["migration_status"] == "running"
    assert body["progress"] == {"keys_migrated": 5, "total_keys": 10, "percentage": 50.0}


def test_get_migration_status_not_found():
    handlers, _ = make_handlers(GetMigrationStatusResponse(success=False, error_message="none"))
    response = handlers.get_migration_status(make_request(), "m1")
    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.get_json()["error_code"] == "MIGRATION_NOT_FOUND"


def test_list_storage_nodes():
    reply = ListStorageNodesResponse(
        success=True, nodes=[StorageNodeInfo(node_id="n1", host="h", port=1, status="active")]
    )
    handlers, _ = make_handlers(reply)
    response = handlers.list_storage_nodes(make_request())
    assert response.status_code == HTTPStatus.OK
    body = response.get_json()
    assert [node["node_id"] for node in body["nodes"]] == ["n1"]


def test_list_storage_nodes_failure():
    handlers, _ = make_handlers(ListStorageNodesResponse(success=False, error_message="down"))
    response = handlers.list_storage_nodes(make_request())
    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert response.get_json()["error_code"] == "INTERNAL_ERROR"


@pytest.mark.parametrize("data", [{"a": 1}, {"nested": {"b": [1, 2]}}])
def test_json_response_round_trip(data):
    response = json_response(HTTPStatus.OK, data)
    assert response.content_type == "application/json"
    text = response.get_data(as_text=True)
    assert text.endswith("\n")
    assert json.loads(text) == data