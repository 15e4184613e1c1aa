"""
JSON-RPC 2.0 envelope types used to talk to the Zabbix API.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

JSONRPC_VERSION = "2.0"


@dataclass(frozen=True)
class JsonRpcRequest:
    """A single JSON-RPC call."""

    method: str
    params: Any = field(default_factory=dict)
    request_id: int = 1
    auth: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Request body; session tokens travel in the legacy "auth" member."""
        body: Dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "method": self.method,
            "params": self.params,
            "id": self.request_id,
        }
        if self.auth is not None:
            body["auth"] = self.auth
        return body


@dataclass(frozen=True)
class JsonRpcError:
    """The "error" member of a failed response."""

    code: Optional[int]
    message: str
    data: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> "JsonRpcError":
        if not isinstance(data, dict):
            return cls(code=None, message=str(data))
        code = data.get("code")
        try:
            code = int(code) if code is not None else None
        except (TypeError, ValueError):
            code = None
        return cls(
            code=code,
            message=str(data.get("message", "")),
            data=data.get("data"),
        )


@dataclass(frozen=True)
class JsonRpcResponse:
    """A decoded response carrying either a result or an error."""

    result: Any = None
    error: Optional[JsonRpcError] = None
    response_id: Any = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JsonRpcResponse":
        """
        Decode a response body.

        Raises:
            ValueError: when the body is not a JSON-RPC response object.
        """
        if not isinstance(data, dict):
            raise ValueError("JSON-RPC response must be an object")
        if "error" in data and data["error"] is not None:
            return cls(
                error=JsonRpcError.from_dict(data["error"]),
                response_id=data.get("id"),
            )
        if "result" not in data:
            raise ValueError("JSON-RPC response has neither result nor error")
        return cls(result=data["result"], response_id=data.get("id"))
