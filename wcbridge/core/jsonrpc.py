"""
JSON-RPC response shapes and the error codes the bridge answers with.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


# Standard JSON-RPC / EIP-1193 codes
METHOD_NOT_SUPPORTED = 4200
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32000


class JsonRpcError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: int
    message: str


class JsonRpcResponse(BaseModel):
    """``{id, result}`` on success, ``{id, error{code, message}}`` on failure."""

    model_config = ConfigDict(frozen=True)

    id: int
    jsonrpc: str = "2.0"
    result: Optional[Any] = None
    error: Optional[JsonRpcError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "jsonrpc": self.jsonrpc}
        if self.error is not None:
            payload["error"] = self.error.model_dump()
        else:
            payload["result"] = self.result
        return payload


# WalletConnect SDK error reasons (subset used by a wallet)
SDK_ERRORS: Dict[str, JsonRpcError] = {
    "USER_REJECTED": JsonRpcError(code=5000, message="User rejected."),
    "UNSUPPORTED_CHAINS": JsonRpcError(code=5100, message="Unsupported chains."),
    "UNSUPPORTED_METHODS": JsonRpcError(code=5101, message="Unsupported methods."),
    "UNSUPPORTED_EVENTS": JsonRpcError(code=5102, message="Unsupported events."),
    "UNSUPPORTED_ACCOUNTS": JsonRpcError(code=5103, message="Unsupported accounts."),
    "USER_DISCONNECTED": JsonRpcError(code=6000, message="User disconnected."),
}


def get_sdk_error(key: str) -> JsonRpcError:
    """Look up a WalletConnect SDK error reason by name."""
    try:
        return SDK_ERRORS[key]
    except KeyError:
        raise ValueError(f"Unknown SDK error: {key}") from None


def format_result(request_id: int, result: Any) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, result=result)


def format_error(request_id: int, code: int, message: str) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=JsonRpcError(code=code, message=message))


def format_sdk_error(request_id: int, key: str) -> JsonRpcResponse:
    return JsonRpcResponse(id=request_id, error=get_sdk_error(key))
