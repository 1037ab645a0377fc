"""HTTP handlers that forward gateway requests to the coordinator."""

from __future__ import annotations

import json
import logging
from dataclasses import is_dataclass
from http import HTTPStatus
from typing import Any, Callable

from werkzeug.wrappers import Request, Response

from pairgate import converter, responses
from pairgate.converter import ConversionError
from pairgate.errors import ErrorCode, ErrorHandler

_log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def json_response(status_code: int, data: Any) -> Response:
    """Build a JSON response; dataclass bodies lose their empty optional fields."""
    if is_dataclass(data) and not isinstance(data, type):
        data = responses.to_json_dict(data)
    try:
        payload = json.dumps(data, ensure_ascii=False, separators=(",", ":")) + "\n"
    except (TypeError, ValueError) as exc:
        _log.error("failed to encode response", extra={"error": str(exc)})
        payload = ""
    return Response(payload, status=int(status_code), content_type="application/json")


class Handlers:
    """Request handlers for the key-value, tenant and admin endpoints."""

    def __init__(self, client: Any, error_handler: ErrorHandler | None = None, timeout: float = DEFAULT_TIMEOUT):
        self.client = client
        self.error_handler = error_handler or ErrorHandler()
        self.timeout = timeout

    def _forward(
        self,
        request: Request,
        build: Callable[[], Any],
        call: Callable[..., Any],
        failure_status: int,
        failure_code: ErrorCode,
        convert: Callable[[Any], Any],
        success_status: int = HTTPStatus.OK,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", "")
        try:
            coordinator_request = build()
        except ConversionError as exc:
            return self.error_handler.validation_error(str(exc), request_id)
        try:
            reply = call(coordinator_request, timeout=self.timeout)
        except Exception as err:
            return self.error_handler.handle_error(request, err)
        if not reply.success:
            message = getattr(reply, "error_message", "") or ""
            return self.error_handler.error_response(failure_status, failure_code, message, request_id)
        return json_response(success_status, convert(reply))

    def write_key_value(self, request: Request) -> Response:
        """POST /v1/key-value"""
        return self._forward(
            request,
            lambda: converter.write_key_value_request(request.get_data(), request.headers),
            self.client.write_key_value,
            HTTPStatus.BAD_REQUEST,
            ErrorCode.INVALID_REQUEST,
            responses.write_key_value_response,
        )

    def read_key_value(self, request: Request) -> Response:
        """GET /v1/key-value"""
        return self._forward(
            request,
            lambda: converter.read_key_value_request(request.args),
            self.client.read_key_value,
            HTTPStatus.NOT_FOUND,
            ErrorCode.KEY_NOT_FOUND,
            responses.read_key_value_response,
        )

    def create_tenant(self, request: Request) -> Response:
        """POST /v1/tenants"""
        return self._forward(
            request,
            lambda: converter.create_tenant_request(request.get_data()),
            self.client.create_tenant,
            HTTPStatus.CONFLICT,
            ErrorCode.TENANT_EXISTS,
            responses.create_tenant_response,
            HTTPStatus.CREATED,
        )

    def update_replication_factor(self, request: Request, tenant_id: str) -> Response:
        """PUT /v1/tenants/{tenant_id}/replication-factor"""
        return self._forward(
            request,
            lambda: converter.update_replication_factor_request(tenant_id, request.get_data()),
            self.client.update_replication_factor,
            HTTPStatus.BAD_REQUEST,
            ErrorCode.INVALID_REPLICATION_FACTOR,
            responses.update_replication_factor_response,
        )

    def get_tenant(self, request: Request, tenant_id: str) -> Response:
        """GET /v1/tenants/{tenant_id}"""
        return self._forward(
            request,
            lambda: converter.get_tenant_request(tenant_id),
            self.client.get_tenant,
            HTTPStatus.NOT_FOUND,
            ErrorCode.TENANT_NOT_FOUND,
            responses.get_tenant_response,
        )

    def add_storage_node(self, request: Request) -> Response:
        """POST /v1/admin/storage-nodes"""
        return self._forward(
            request,
            lambda: converter.add_storage_node_request(request.get_data()),
            self.client.add_storage_node,
            HTTPStatus.BAD_REQUEST,
            ErrorCode.INVALID_REQUEST,
            responses.add_storage_node_response,
            HTTPStatus.ACCEPTED,
        )

    def remove_storage_node(self, request: Request, node_id: str) -> Response:
        """DELETE /v1/admin/storage-nodes/{node_id}"""
        return self._forward(
            request,
            lambda: converter.remove_storage_node_request(node_id, request.args),
            self.client.remove_storage_node,
            HTTPStatus.BAD_REQUEST,
            ErrorCode.NODE_IN_USE,
            responses.remove_storage_node_response,
            HTTPStatus.ACCEPTED,
        )

    def get_migration_status(self, request: Request, migration_id: str) -> Response:
        """GET /v1/admin/migrations/{migration_id}"""
        return self._forward(
            request,
            lambda: converter.get_migration_status_request(migration_id),
            self.client.get_migration_status,
            HTTPStatus.NOT_FOUND,
            ErrorCode.MIGRATION_NOT_FOUND,
            responses.get_migration_status_response,
        )

    def list_storage_nodes(self, request: Request) -> Response:
        """GET /v1/admin/storage-nodes"""
        return self._forward(
            request,
            converter.list_storage_nodes_request,
            self.client.list_storage_nodes,
            HTTPStatus.INTERNAL_SERVER_ERROR,
            ErrorCode.INTERNAL_ERROR,
            responses.list_storage_nodes_response,
        )