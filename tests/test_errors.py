import json
from http import HTTPStatus

import grpc
import pytest
from werkzeug.wrappers import Request

from pairgate.errors import ErrorCode, ErrorHandler, ErrorResponse, status_from_error


class FakeRpcError(grpc.RpcError):
    def __init__(self, code, details):
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


@pytest.fixture
def handler():
    return ErrorHandler()


def body_of(response):
    return json.loads(response.get_data(as_text=True))


@pytest.mark.parametrize(
    "code, expected",
    [
        (grpc.StatusCode.OK, HTTPStatus.OK),
        (grpc.StatusCode.INVALID_ARGUMENT, HTTPStatus.BAD_REQUEST),
        (grpc.StatusCode.NOT_FOUND, HTTPStatus.NOT_FOUND),
        (grpc.StatusCode.ALREADY_EXISTS, HTTPStatus.CONFLICT),
        (grpc.StatusCode.PERMISSION_DENIED, HTTPStatus.FORBIDDEN),
        (grpc.StatusCode.UNAUTHENTICATED, HTTPStatus.UNAUTHORIZED),
        (grpc.StatusCode.RESOURCE_EXHAUSTED, HTTPStatus.TOO_MANY_REQUESTS),
        (grpc.StatusCode.FAILED_PRECONDITION, HTTPStatus.PRECONDITION_FAILED),
        (grpc.StatusCode.ABORTED, HTTPStatus.CONFLICT),
        (grpc.StatusCode.OUT_OF_RANGE, HTTPStatus.BAD_REQUEST),
        (grpc.StatusCode.UNIMPLEMENTED, HTTPStatus.NOT_IMPLEMENTED),
        (grpc.StatusCode.INTERNAL, HTTPStatus.INTERNAL_SERVER_ERROR),
        (grpc.StatusCode.UNAVAILABLE, HTTPStatus.SERVICE_UNAVAILABLE),
        (grpc.StatusCode.DEADLINE_EXCEEDED, HTTPStatus.GATEWAY_TIMEOUT),
        (grpc.StatusCode.DATA_LOSS, HTTPStatus.INTERNAL_SERVER_ERROR),
    ],
)
def test_http_status_mapping(handler, code, expected):
    assert handler.grpc_to_http_status(FakeRpcError(code, "x")) == expected


def test_http_status_for_none_and_plain_errors(handler):
    assert handler.grpc_to_http_status(None) == HTTPStatus.OK
    assert handler.grpc_to_http_status(ValueError("boom")) == HTTPStatus.INTERNAL_SERVER_ERROR


@pytest.mark.parametrize(
    "code, message, expected",
    [
        (grpc.StatusCode.INVALID_ARGUMENT, "bad", ErrorCode.INVALID_REQUEST),
        (grpc.StatusCode.NOT_FOUND, "Tenant acme not found", ErrorCode.TENANT_NOT_FOUND),
        (grpc.StatusCode.NOT_FOUND, "KEY missing", ErrorCode.KEY_NOT_FOUND),
        (grpc.StatusCode.NOT_FOUND, "no such migration", ErrorCode.MIGRATION_NOT_FOUND),
        (grpc.StatusCode.NOT_FOUND, "gone", ErrorCode.INVALID_REQUEST),
        (grpc.StatusCode.ALREADY_EXISTS, "tenant exists", ErrorCode.TENANT_EXISTS),
        (grpc.StatusCode.ALREADY_EXISTS, "Idempotency clash", ErrorCode.IDEMPOTENCY_KEY_CONFLICT),
        (grpc.StatusCode.ALREADY_EXISTS, "dup", ErrorCode.INVALID_REQUEST),
        (grpc.StatusCode.PERMISSION_DENIED, "", ErrorCode.FORBIDDEN),
        (grpc.StatusCode.UNAUTHENTICATED, "", ErrorCode.UNAUTHORIZED),
        (grpc.StatusCode.RESOURCE_EXHAUSTED, "", ErrorCode.RATE_LIMITED),
        (grpc.StatusCode.UNAVAILABLE, "", ErrorCode.SERVICE_UNAVAILABLE),
        (grpc.StatusCode.DEADLINE_EXCEEDED, "", ErrorCode.TIMEOUT),
        (grpc.StatusCode.OK, "", ErrorCode.INTERNAL_ERROR),
        (grpc.StatusCode.INTERNAL, "", ErrorCode.INTERNAL_ERROR),
    ],
)
def test_error_code_mapping(handler, code, message, expected):
    assert handler.grpc_to_error_code(FakeRpcError(code, message)) == expected


def test_error_code_for_none_and_plain_errors(handler):
    assert handler.grpc_to_error_code(None) == ErrorCode.UNKNOWN
    assert handler.grpc_to_error_code(RuntimeError("x")) == ErrorCode.INTERNAL_ERROR


def test_status_from_error():
    assert status_from_error(None) == (grpc.StatusCode.OK, "")
    assert status_from_error(ValueError("x")) is None
    err = FakeRpcError(grpc.StatusCode.NOT_FOUND, "tenant t1 not found")
    assert status_from_error(err) == (grpc.StatusCode.NOT_FOUND, "tenant t1 not found")


def test_handle_error_uses_grpc_message_and_request_id(handler):
    request = Request.from_values(headers={"X-Request-ID": "req-7"})
    response = handler.handle_error(request, FakeRpcError(grpc.StatusCode.NOT_FOUND, "tenant t1 not found"))
    assert response.status_code == HTTPStatus.NOT_FOUND
    assert response.headers["Content-Type"] == "application/json"
    assert body_of(response) == {
        "status": "error",
        "error_code": "TENANT_NOT_FOUND",
        "message": "tenant t1 not found",
        "request_id": "req-7",
    }


def test_handle_error_plain_exception(handler):
    request = Request.from_values()
    response = handler.handle_error(request, ValueError("broken pipe"))
    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    body = body_of(response)
    assert body["message"] == "broken pipe"
    assert body["error_code"] == "INTERNAL_ERROR"
    assert "request_id" not in body


def test_helper_responses(handler):
    assert handler.validation_error("bad", "r").status_code == HTTPStatus.BAD_REQUEST
    assert body_of(handler.validation_error("bad", "r"))["error_code"] == "INVALID_REQUEST"
    assert handler.internal_error("x", "").status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    unavailable = handler.service_unavailable("down", "")
    assert unavailable.status_code == HTTPStatus.SERVICE_UNAVAILABLE
    assert body_of(unavailable)["error_code"] == "SERVICE_UNAVAILABLE"
    limited = handler.rate_limited_error("r1")
    assert limited.status_code == HTTPStatus.TOO_MANY_REQUESTS
    assert body_of(limited)["message"] == "rate limit exceeded"


def test_error_response_to_dict_omits_empty_request_id():
    body = ErrorResponse(error_code=ErrorCode.TIMEOUT, message="slow").to_dict()
    assert body == {"status": "error", "error_code": "TIMEOUT", "message": "slow"}
    with_id = ErrorResponse(error_code=ErrorCode.TIMEOUT, message="slow", request_id="abc").to_dict()
    assert with_id["request_id"] == "abc"


def test_body_is_single_json_line(handler):
    text = handler.error_response(HTTPStatus.CONFLICT, ErrorCode.NODE_IN_USE, "busy", "").get_data(as_text=True)
    assert text.endswith("\n")
    assert text.count("\n") == 1
    assert json.loads(text)["error_code"] == "NODE_IN_USE"