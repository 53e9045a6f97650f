#!/usr/bin/env python3
"""
Tool Server
This module exposes the tools of a ToolRegistry over the JSON-RPC tool
protocol at ``POST /mcp``. Every response body is framed as a server-sent
event.
"""

import json
import logging
import threading
import uuid
from typing import Any, Dict, Optional, Set

from flask import Flask, Response, jsonify, request

from . import __version__
from .config import MCP_PROTOCOL_VERSION, MCP_SESSION_HEADER
from .jsonrpc import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    SESSION_NOT_FOUND,
    encode_sse,
    is_notification,
    make_error,
    make_result,
)
from .models import ToolInvocation
from .tools.registry import ToolRegistry

logger = logging.getLogger("chatbridge.tool_server")


def _sse_response(payload: Dict[str, Any], status: int = 200, session_id: Optional[str] = None) -> Response:
    response = Response(encode_sse(payload), status=status, mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    if session_id:
        response.headers[MCP_SESSION_HEADER] = session_id
    return response


class ToolServer:
    """Protocol state of the server: issued session ids and the tools behind them."""

    def __init__(self, registry: ToolRegistry, server_name: str = "chatbridge-tools"):
        self.registry = registry
        self.server_name = server_name
        self._sessions: Set[str] = set()
        self._lock = threading.Lock()

    def open_session(self) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            self._sessions.add(session_id)
        return session_id

    def has_session(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        with self._lock:
            return session_id in self._sessions

    def initialize_result(self) -> Dict[str, Any]:
        return {
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.server_name, "version": __version__},
        }

    def list_tools_result(self) -> Dict[str, Any]:
        return {"tools": [descriptor.to_wire() for descriptor in self.registry.list_all()]}

    def call_tool_result(self, request_id: Any, params: Dict[str, Any]) -> Dict[str, Any]:
        arguments = params.get("arguments") or {}
        invocation = ToolInvocation(
            id=str(request_id),
            name=params["name"],
            arguments_json=json.dumps(arguments),
        )
        result = self.registry.dispatch(invocation)
        body: Dict[str, Any] = {
            "content": [{"type": "text", "text": result.content}],
            "isError": result.is_error,
        }
        if result.structured is not None:
            body["structuredContent"] = result.structured
        return body


def create_app(registry: ToolRegistry, server_name: str = "chatbridge-tools") -> Flask:
    """
    Create the Flask application serving ``registry``.

    Args:
        registry: Tools to expose
        server_name: Name announced in the initialize result

    Returns:
        Flask app
    """
    app = Flask(__name__)
    server = ToolServer(registry, server_name)
    app.config["TOOL_SERVER"] = server

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "name": server.server_name,
            "version": __version__,
            "protocolVersion": MCP_PROTOCOL_VERSION,
            "endpoint": "/mcp",
        })

    @app.route("/mcp", methods=["POST"])
    def mcp():
        envelope = request.get_json(silent=True)
        if not isinstance(envelope, dict):
            return _sse_response(make_error(None, PARSE_ERROR, "Request body must be a JSON object"), 400)

        method = envelope.get("method")
        request_id = envelope.get("id")
        params = envelope.get("params") or {}
        if not isinstance(method, str):
            return _sse_response(make_error(request_id, INVALID_REQUEST, "Missing method"), 400)
        if not isinstance(params, dict):
            return _sse_response(make_error(request_id, INVALID_PARAMS, "params must be an object"), 400)

        if method == "initialize":
            session_id = server.open_session()
            client = params.get("clientInfo", {}).get("name", "unknown")
            logger.info(f"Opened tool session {session_id} for client {client}")
            return _sse_response(make_result(request_id, server.initialize_result()), session_id=session_id)

        session_id = request.headers.get(MCP_SESSION_HEADER)
        if not server.has_session(session_id):
            logger.warning(f"Rejected '{method}' for unknown session {session_id}")
            return _sse_response(make_error(request_id, SESSION_NOT_FOUND, "Unknown or missing session"), 404)

        if is_notification(envelope):
            logger.debug(f"Notification '{method}' for session {session_id}")
            return Response(status=202)

        if method == "ping":
            return _sse_response(make_result(request_id, {}), session_id=session_id)

        if method == "tools/list":
            return _sse_response(make_result(request_id, server.list_tools_result()), session_id=session_id)

        if method == "tools/call":
            if not isinstance(params.get("name"), str) or not isinstance(params.get("arguments", {}), dict):
                return _sse_response(
                    make_error(request_id, INVALID_PARAMS, "tools/call needs a tool name and an arguments object"),
                    session_id=session_id,
                )
            logger.info(f"Session {session_id} calling tool '{params['name']}'")
            return _sse_response(make_result(request_id, server.call_tool_result(request_id, params)),
                                 session_id=session_id)

        return _sse_response(make_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}"),
                             session_id=session_id)

    return app


def run_server(registry: ToolRegistry, host: str = "0.0.0.0", port: int = 8000) -> None:
    """Run the tool server with Flask's built-in server."""
    app = create_app(registry)
    logger.info(f"Starting tool server on {host}:{port}")
    app.run(host=host, port=port, threaded=True)
