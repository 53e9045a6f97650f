#!/usr/bin/env python3
"""
Tool Protocol Client
This module provides a JSON-RPC client for remote tool servers that speak
the MCP streamable-HTTP dialect: an ``initialize`` handshake establishes a
session id, after which tools can be listed and called.
"""

import itertools
import logging
import threading
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from . import __version__
from .config import MCP_PROTOCOL_VERSION, MCP_SESSION_HEADER
from .errors import ProtocolHandshakeError, ToolDispatchError
from .jsonrpc import make_request, parse_sse_data
from .models import ToolDescriptor

logger = logging.getLogger("chatbridge.mcp_client")


class ClientState(Enum):
    UNINITIALIZED = "uninitialized"
    SESSION_ESTABLISHED = "session_established"
    READY = "ready"


class ToolProtocolClient:
    """
    Client for one remote tool server.

    The session id obtained from ``initialize`` is reused for the lifetime of
    the handle. Requests are never retried automatically.
    """

    def __init__(self,
                 url: str,
                 timeout: float = 30,
                 client_name: str = "chatbridge",
                 http_client: Optional[httpx.Client] = None):
        """
        Initialize the client.

        Args:
            url: Endpoint of the tool server, e.g. http://localhost:8000/mcp
            timeout: Timeout in seconds applied to every request
            client_name: Name announced to the server during the handshake
            http_client: Optional preconfigured httpx client
        """
        self.url = url
        self.client_name = client_name
        self.state = ClientState.UNINITIALIZED
        self.session_id: Optional[str] = None
        self.server_info: Dict[str, Any] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self.session_id:
            headers[MCP_SESSION_HEADER] = self.session_id
        return headers

    def _post(self, envelope: Dict[str, Any]) -> httpx.Response:
        try:
            response = self._http.post(self.url, json=envelope, headers=self._headers())
            response.raise_for_status()
            return response
        except httpx.HTTPError as exc:
            raise ProtocolHandshakeError(f"Request '{envelope.get('method')}' to {self.url} failed: {exc}") from exc

    def _rpc(self, method: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """Send a request envelope with a fresh id."""
        return self._post(make_request(method, params, request_id=next(self._ids)))

    def _result(self, response: httpx.Response, method: str) -> Dict[str, Any]:
        payload = parse_sse_data(response.text)
        if payload is None:
            raise ProtocolHandshakeError(f"No readable data line in response to '{method}' from {self.url}")
        if "error" in payload:
            error = payload["error"] or {}
            raise ToolDispatchError(f"{method} failed: {error.get('message', 'unknown error')} "
                                    f"(code {error.get('code')})")
        result = payload.get("result")
        if not isinstance(result, dict):
            raise ProtocolHandshakeError(f"Response to '{method}' from {self.url} carried no result")
        return result

    def initialize(self) -> Dict[str, Any]:
        """
        Perform the initialize handshake.

        Returns:
            The server's initialize result

        Raises:
            ProtocolHandshakeError: If no session id or no readable body came back
        """
        with self._lock:
            self.state = ClientState.UNINITIALIZED
            self.session_id = None
            logger.info(f"Initializing tool protocol session with {self.url}")

            response = self._rpc("initialize", {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": __version__},
            })
            session_id = response.headers.get(MCP_SESSION_HEADER)
            if not session_id:
                raise ProtocolHandshakeError(f"Tool server at {self.url} returned no session id")

            result = self._result(response, "initialize")
            self.session_id = session_id
            self.server_info = result.get("serverInfo", {})
            self.state = ClientState.SESSION_ESTABLISHED

            self._notify_initialized()
            self.state = ClientState.READY
            logger.info(f"Tool protocol session {session_id} ready with {self.url}")
            return result

    def _notify_initialized(self) -> None:
        try:
            self._post(make_request("notifications/initialized"))
        except ProtocolHandshakeError as e:
            logger.warning(f"initialized notification to {self.url} was not accepted: {e}")

    def ensure_ready(self) -> None:
        if self.state != ClientState.READY:
            self.initialize()

    def list_tools(self) -> List[ToolDescriptor]:
        """
        List the tools the server exposes.

        Returns:
            List of ToolDescriptor objects
        """
        self.ensure_ready()
        result = self._result(self._rpc("tools/list", {}), "tools/list")
        descriptors = []
        for raw in result.get("tools") or []:
            try:
                descriptors.append(ToolDescriptor.from_wire(raw))
            except (KeyError, TypeError) as e:
                logger.warning(f"Ignoring malformed tool descriptor from {self.url}: {e}")
        return descriptors

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call a tool by name.

        Args:
            name: Tool name as listed by the server
            arguments: Decoded tool arguments

        Returns:
            The ``tools/call`` result: ``content``, optional ``structuredContent`` and ``isError``
        """
        self.ensure_ready()
        logger.info(f"Calling remote tool '{name}' on {self.url}")
        return self._result(self._rpc("tools/call", {"name": name, "arguments": arguments}), "tools/call")

    def close(self) -> None:
        if self._owns_client:
            self._http.close()
