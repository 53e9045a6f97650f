"""
JSON-RPC 2.0 envelopes and server-sent-event framing used by the tool
protocol client and server.
"""

import json
from typing import Any, Dict, Optional, Union

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
# Implementation-defined: request carried an unknown or missing session id
SESSION_NOT_FOUND = -32001

RequestId = Optional[Union[int, str]]


def make_request(method: str, params: Optional[Dict[str, Any]] = None, request_id: RequestId = None) -> Dict[str, Any]:
    """Build a request envelope; without an id the envelope is a notification."""
    envelope: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        envelope["params"] = params
    if request_id is not None:
        envelope["id"] = request_id
    return envelope


def make_result(request_id: RequestId, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(request_id: RequestId, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def is_notification(envelope: Dict[str, Any]) -> bool:
    return "id" not in envelope


def encode_sse(payload: Dict[str, Any], event: str = "message") -> str:
    """Frame a JSON payload as a single server-sent event."""
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


def parse_sse_data(body: str) -> Optional[Dict[str, Any]]:
    """
    Extract the JSON payload of an SSE-framed body.

    Only the first line starting with ``data: `` is read. Returns None when
    there is no such line or its payload is not a JSON object.
    """
    for line in body.splitlines():
        if line.startswith("data: "):
            try:
                payload = json.loads(line[len("data: "):])
            except json.JSONDecodeError:
                return None
            return payload if isinstance(payload, dict) else None
    return None
