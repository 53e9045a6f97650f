"""
Tests for the tool protocol client against a scripted transport.
"""

import json
import os
import sys
import unittest

import httpx

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chatbridge.config import MCP_PROTOCOL_VERSION, MCP_SESSION_HEADER
from chatbridge.errors import ProtocolHandshakeError, ToolDispatchError
from chatbridge.jsonrpc import encode_sse, make_error, make_result, parse_sse_data
from chatbridge.mcp_client import ClientState, ToolProtocolClient
from chatbridge.tools.remote import RemoteToolProvider

URL = "http://tools.test/mcp"

WEATHER_TOOL = {
    "name": "weather",
    "description": "Current weather for a city",
    "inputSchema": {"type": "object", "properties": {"city": {"type": "string"}}},
}


class ScriptedServer:
    """Answers tool protocol requests and records them."""

    def __init__(self, session_id="session-123", call_status=200):
        self.session_id = session_id
        self.call_status = call_status
        self.requests = []

    def sse(self, payload, headers=None, status=200):
        return httpx.Response(status, text=encode_sse(payload), headers=headers or {})

    def __call__(self, request):
        body = json.loads(request.content)
        self.requests.append((body, request.headers.get(MCP_SESSION_HEADER)))
        method = body["method"]

        if method == "initialize":
            headers = {MCP_SESSION_HEADER: self.session_id} if self.session_id else {}
            return self.sse(make_result(body["id"], {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "serverInfo": {"name": "scripted", "version": "1"},
            }), headers)
        if method == "notifications/initialized":
            return httpx.Response(202)
        if method == "tools/list":
            return self.sse(make_result(body["id"], {"tools": [WEATHER_TOOL]}))
        if method == "tools/call":
            if self.call_status != 200:
                return httpx.Response(self.call_status, text="server error")
            if body["params"]["name"] != "weather":
                return self.sse(make_error(body["id"], -32602, "unknown tool"))
            city = body["params"]["arguments"]["city"]
            return self.sse(make_result(body["id"], {
                "content": [{"type": "text", "text": f"Sunny in {city}"}],
                "isError": False,
            }))
        return self.sse(make_error(body["id"], -32601, "not found"))

    def methods(self):
        return [body["method"] for body, _ in self.requests]


def make_client(server):
    return ToolProtocolClient(URL, http_client=httpx.Client(transport=httpx.MockTransport(server)))


class TestSseParsing(unittest.TestCase):

    def test_first_data_line_wins(self):
        body = 'event: message\ndata: {"id": 1}\ndata: {"id": 2}\n\n'
        self.assertEqual(parse_sse_data(body), {"id": 1})

    def test_no_data_line(self):
        self.assertIsNone(parse_sse_data("event: message\n\n"))

    def test_unparsable_data_line(self):
        self.assertIsNone(parse_sse_data("data: {broken\n\n"))


class TestToolProtocolClient(unittest.TestCase):

    def test_handshake_then_list(self):
        server = ScriptedServer()
        client = make_client(server)

        tools = client.list_tools()

        self.assertEqual([t.name for t in tools], ["weather"])
        self.assertEqual(client.state, ClientState.READY)
        self.assertEqual(server.methods(), ["initialize", "notifications/initialized", "tools/list"])
        init_body, init_session = server.requests[0]
        self.assertIsNone(init_session)
        self.assertEqual(init_body["params"]["protocolVersion"], MCP_PROTOCOL_VERSION)
        self.assertEqual(init_body["jsonrpc"], "2.0")
        self.assertNotIn("id", server.requests[1][0])
        self.assertEqual(server.requests[2][1], "session-123")

    def test_session_reused_for_calls(self):
        server = ScriptedServer()
        client = make_client(server)

        client.list_tools()
        result = client.call_tool("weather", {"city": "Oslo"})

        self.assertEqual(result["content"][0]["text"], "Sunny in Oslo")
        self.assertEqual(server.methods().count("initialize"), 1)
        self.assertEqual(server.requests[-1][1], "session-123")

    def test_missing_session_id_makes_server_unavailable(self):
        server = ScriptedServer(session_id=None)
        client = make_client(server)

        with self.assertRaises(ProtocolHandshakeError):
            client.list_tools()
        self.assertEqual(client.state, ClientState.UNINITIALIZED)
        self.assertNotIn("tools/list", server.methods())
        self.assertEqual(RemoteToolProvider("scripted", client).list_tools(), [])

    def test_no_retry_on_failure(self):
        server = ScriptedServer(call_status=500)
        client = make_client(server)
        client.list_tools()

        with self.assertRaises(ProtocolHandshakeError):
            client.call_tool("weather", {"city": "Oslo"})
        self.assertEqual(server.methods().count("tools/call"), 1)

    def test_jsonrpc_error(self):
        client = make_client(ScriptedServer())

        with self.assertRaises(ToolDispatchError):
            client.call_tool("unknown", {})

    def test_body_without_data_line(self):
        def handler(request):
            return httpx.Response(200, text="event: message\n\n", headers={MCP_SESSION_HEADER: "s"})
        client = ToolProtocolClient(URL, http_client=httpx.Client(transport=httpx.MockTransport(handler)))

        with self.assertRaises(ProtocolHandshakeError):
            client.initialize()
        self.assertIsNone(client.session_id)


if __name__ == '__main__':
    unittest.main()
