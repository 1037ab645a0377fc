import grpc
import pytest

from pairgate.client import CoordinatorClient, is_retryable
from pairgate.gateway_config import CoordinatorConfig
from pairgate.messages import (
    GetTenantRequest,
    GetTenantResponse,
    ListStorageNodesRequest,
    ListStorageNodesResponse,
    WriteKeyValueRequest,
    WriteKeyValueResponse,
)


class FakeRpcError(grpc.RpcError):
    def __init__(self, code, details="failure"):
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


class FakeStub:
    def __init__(self, outcomes=()):
        self.outcomes = list(outcomes)
        self.calls = []

    def _next(self, name, request, timeout):
        self.calls.append((name, request, timeout))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def WriteKeyValue(self, request, timeout=None):
        return self._next("WriteKeyValue", request, timeout)

    def GetTenant(self, request, timeout=None):
        return self._next("GetTenant", request, timeout)

    def ListStorageNodes(self, request, timeout=None):
        return self._next("ListStorageNodes", request, timeout)


class FakeChannel:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


def make_client(outcomes, **cfg_kwargs):
    sleeps = []
    stub = FakeStub(outcomes)
    client = CoordinatorClient(CoordinatorConfig(**cfg_kwargs), stub=stub, sleep=sleeps.append)
    return client, stub, sleeps


@pytest.mark.parametrize(
    "code, expected",
    [
        (grpc.StatusCode.UNAVAILABLE, True),
        (grpc.StatusCode.DEADLINE_EXCEEDED, True),
        (grpc.StatusCode.ABORTED, True),
        (grpc.StatusCode.RESOURCE_EXHAUSTED, True),
        (grpc.StatusCode.NOT_FOUND, False),
        (grpc.StatusCode.INVALID_ARGUMENT, False),
    ],
)
def test_is_retryable_codes(code, expected):
    assert is_retryable(FakeRpcError(code)) is expected


def test_is_retryable_non_grpc_and_none():
    assert is_retryable(None) is False
    assert is_retryable(RuntimeError("boom")) is False


def test_requires_endpoints():
    with pytest.raises(ValueError, match="no coordinator endpoints provided"):
        CoordinatorClient(CoordinatorConfig(endpoints=[]), stub=FakeStub())


def test_successful_call_returns_response_without_retry():
    expected = WriteKeyValueResponse(success=True, key="k")
    client, stub, sleeps = make_client([expected])
    request = WriteKeyValueRequest(tenant_id="t", key="k")
    assert client.write_key_value(request) is expected
    assert [call[1] for call in stub.calls] == [request]
    assert sleeps == []


def test_retries_then_succeeds():
    expected = GetTenantResponse(success=True, tenant_id="t")
    client, stub, sleeps = make_client(
        [FakeRpcError(grpc.StatusCode.UNAVAILABLE), FakeRpcError(grpc.StatusCode.ABORTED), expected]
    )
    assert client.get_tenant(GetTenantRequest(tenant_id="t")) is expected
    assert len(stub.calls) == 3
    assert len(sleeps) == 2


def test_exhausts_retries_and_raises_last_error():
    errors = [FakeRpcError(grpc.StatusCode.UNAVAILABLE, f"down {i}") for i in range(4)]
    client, stub, sleeps = make_client(errors, max_retries=3, retry_backoff=0.1)
    with pytest.raises(FakeRpcError) as info:
        client.get_tenant(GetTenantRequest(tenant_id="t"))
    assert info.value is errors[-1]
    assert len(stub.calls) == 4
    assert sleeps[0] == pytest.approx(0.1)
    for earlier, later in zip(sleeps, sleeps[1:]):
        assert later == pytest.approx(2 * earlier)


def test_non_retryable_error_raised_immediately():
    err = FakeRpcError(grpc.StatusCode.NOT_FOUND, "tenant not found")
    client, stub, sleeps = make_client([err, GetTenantResponse()])
    with pytest.raises(FakeRpcError) as info:
        client.get_tenant(GetTenantRequest(tenant_id="t"))
    assert info.value is err
    assert len(stub.calls) == 1
    assert sleeps == []


def test_plain_exception_not_retried():
    client, stub, _ = make_client([RuntimeError("broken"), GetTenantResponse()])
    with pytest.raises(RuntimeError, match="broken"):
        client.get_tenant(GetTenantRequest(tenant_id="t"))
    assert len(stub.calls) == 1


def test_deadline_stops_backoff():
    client, stub, sleeps = make_client(
        [FakeRpcError(grpc.StatusCode.UNAVAILABLE), GetTenantResponse()], retry_backoff=100.0
    )
    with pytest.raises(TimeoutError, match="context deadline exceeded"):
        client.get_tenant(GetTenantRequest(tenant_id="t"), timeout=0.5)
    assert len(stub.calls) == 1
    assert sleeps[0] <= 0.5


def test_timeout_passed_to_stub():
    client, stub, _ = make_client([GetTenantResponse()])
    client.get_tenant(GetTenantRequest(tenant_id="t"), timeout=5.0)
    assert 0 < stub.calls[0][2] <= 5.0


def test_health_check_updates_health():
    client, stub, _ = make_client(
        [FakeRpcError(grpc.StatusCode.UNAVAILABLE), ListStorageNodesResponse(success=True)]
    )
    assert client.is_healthy() is True
    with pytest.raises(FakeRpcError):
        client.health_check()
    assert client.is_healthy() is False
    client.health_check()
    assert client.is_healthy() is True
    assert all(isinstance(call[1], ListStorageNodesRequest) for call in stub.calls)


def test_stub_class_built_on_channel_and_close():
    class StubClass(FakeStub):
        def __init__(self, channel):
            super().__init__([ListStorageNodesResponse(success=True)])
            self.channel = channel

    channel = FakeChannel()
    client = CoordinatorClient(CoordinatorConfig(), stub=StubClass, channel=channel)
    assert client.stub.channel is channel
    assert client.list_storage_nodes().success is True
    client.close()
    assert channel.closed is True