"""
Tests for JSON-RPC envelope types.
"""

import pytest

from src.zabbix_installer.communication.jsonrpc_models import (
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
)


class TestJsonRpcRequest:
    """Test request serialisation."""

    def test_without_auth(self):
        request = JsonRpcRequest("apiinfo.version", {}, request_id=7)
        assert request.to_dict() == {
            "jsonrpc": "2.0",
            "method": "apiinfo.version",
            "params": {},
            "id": 7,
        }

    def test_with_session_token(self):
        body = JsonRpcRequest("host.get", {"output": "extend"}, auth="abc").to_dict()
        assert body["auth"] == "abc"


class TestJsonRpcResponse:
    """Test response decoding."""

    def test_result(self):
        response = JsonRpcResponse.from_dict({"jsonrpc": "2.0", "result": [], "id": 1})
        assert not response.is_error
        assert response.result == []
        assert response.response_id == 1

    def test_error(self):
        response = JsonRpcResponse.from_dict(
            {
                "jsonrpc": "2.0",
                "error": {
                    "code": "-32602",
                    "message": "Invalid params.",
                    "data": "Incorrect API token.",
                },
                "id": 2,
            }
        )
        assert response.is_error
        assert response.error == JsonRpcError(
            -32602, "Invalid params.", "Incorrect API token."
        )

    def test_null_error_with_result(self):
        response = JsonRpcResponse.from_dict({"result": "7.0.4", "error": None})
        assert response.result == "7.0.4"

    @pytest.mark.parametrize("body", [[], "text", {"jsonrpc": "2.0", "id": 1}])
    def test_malformed(self, body):
        with pytest.raises(ValueError):
            JsonRpcResponse.from_dict(body)

    def test_error_not_an_object(self):
        error = JsonRpcError.from_dict("boom")
        assert error.code is None
        assert error.message == "boom"
