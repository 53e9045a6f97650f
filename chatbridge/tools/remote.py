"""
Tool provider backed by a remote tool server.
"""

import json
import logging
from typing import Any, Dict, List

from ..errors import ProtocolHandshakeError, ToolDispatchError
from ..mcp_client import ToolProtocolClient
from ..models import ToolDescriptor, ToolInvocation, ToolResult
from .base import ToolProvider

logger = logging.getLogger("chatbridge.tools.remote")


def _content_text(result: Dict[str, Any]) -> str:
    content = result.get("content")
    if isinstance(content, list):
        parts = [item.get("text", "") for item in content if isinstance(item, dict) and item.get("type") == "text"]
        return "\n".join(parts)
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    return json.dumps(content)


class RemoteToolProvider(ToolProvider):
    """
    Exposes the tools of one remote server.

    If the handshake fails the server simply has no tools for this exchange;
    the next listing tries the handshake again.
    """

    def __init__(self, name: str, client: ToolProtocolClient):
        self.name = name
        self.client = client

    def list_tools(self) -> List[ToolDescriptor]:
        try:
            return self.client.list_tools()
        except (ProtocolHandshakeError, ToolDispatchError) as e:
            logger.warning(f"Remote tool server '{self.name}' unavailable: {e}")
            return []

    def call_tool(self, invocation: ToolInvocation) -> ToolResult:
        try:
            arguments = invocation.arguments()
        except ValueError as e:
            raise ToolDispatchError(f"Malformed arguments for '{invocation.name}': {e}") from e

        result = self.client.call_tool(invocation.name, arguments)
        text = _content_text(result)
        if result.get("isError"):
            return ToolResult.failure(invocation.id, text or "Remote tool reported an error")
        return ToolResult(invocation_id=invocation.id, payload=text, structured=result.get("structuredContent"))
