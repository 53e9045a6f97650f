"""
Tests for tool providers and the registry that dispatches to them.
"""

import json
import os
import sys
import tempfile
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chatbridge.errors import ProtocolHandshakeError
from chatbridge.models import ToolDescriptor, ToolInvocation
from chatbridge.tools.base import LocalToolProvider
from chatbridge.tools.registry import ToolRegistry
from chatbridge.tools.remote import RemoteToolProvider
from chatbridge.tools.shell import ShellToolProvider


def make_provider(name, tool_name, handler):
    provider = LocalToolProvider(name)
    provider.register(ToolDescriptor(name=tool_name, description=f"{tool_name} from {name}"), handler)
    return provider


class TestToolRegistry(unittest.TestCase):

    def test_unknown_tool_returns_error_result(self):
        registry = ToolRegistry([make_provider("local", "echo", lambda args: args)])

        result = registry.dispatch(ToolInvocation("call_1", "does_not_exist", "{}"))

        self.assertTrue(result.is_error)
        self.assertEqual(result.invocation_id, "call_1")
        self.assertIn("does_not_exist", result.error)

    def test_provider_exception_becomes_error_result(self):
        def explode(args):
            raise RuntimeError("boom")
        registry = ToolRegistry([make_provider("local", "explode", explode)])

        result = registry.dispatch(ToolInvocation("call_2", "explode", "{}"))

        self.assertTrue(result.is_error)
        self.assertIn("boom", result.error)

    def test_malformed_arguments(self):
        registry = ToolRegistry([make_provider("local", "echo", lambda args: args)])

        bad_json = registry.dispatch(ToolInvocation("call_3", "echo", "{not json"))
        not_object = registry.dispatch(ToolInvocation("call_4", "echo", "[1, 2]"))

        self.assertTrue(bad_json.is_error)
        self.assertTrue(not_object.is_error)

    def test_structured_values_are_json_encoded(self):
        registry = ToolRegistry([make_provider("local", "echo", lambda args: {"echo": args["text"]})])

        result = registry.dispatch(ToolInvocation("call_5", "echo", json.dumps({"text": "hi"})))

        self.assertFalse(result.is_error)
        self.assertEqual(json.loads(result.payload), {"echo": "hi"})
        self.assertEqual(result.structured, {"echo": "hi"})

    def test_first_registered_provider_wins(self):
        first = make_provider("first", "lookup", lambda args: "from first")
        second = make_provider("second", "lookup", lambda args: "from second")
        registry = ToolRegistry([first, second])

        descriptors = registry.list_all()
        result = registry.dispatch(ToolInvocation("call_6", "lookup", "{}"))

        self.assertEqual([d.name for d in descriptors], ["lookup"])
        self.assertEqual(result.payload, "from first")

    def test_failing_provider_does_not_hide_others(self):
        client = MagicMock()
        client.list_tools.side_effect = ProtocolHandshakeError("no session id")
        client.call_tool.side_effect = ProtocolHandshakeError("no session id")
        remote = RemoteToolProvider("remote", client)
        local = make_provider("local", "echo", lambda args: "ok")
        registry = ToolRegistry([remote, local])

        names = [d.name for d in registry.list_all()]
        result = registry.dispatch(ToolInvocation("call_7", "echo", "{}"))

        self.assertEqual(names, ["echo"])
        self.assertEqual(result.payload, "ok")

    def test_remote_result_conversion(self):
        client = MagicMock()
        client.list_tools.return_value = [ToolDescriptor(name="weather")]
        client.call_tool.return_value = {
            "content": [{"type": "text", "text": "sunny"}],
            "structuredContent": {"sky": "clear"},
            "isError": False,
        }
        registry = ToolRegistry([RemoteToolProvider("remote", client)])

        result = registry.dispatch(ToolInvocation("call_8", "weather", json.dumps({"city": "Oslo"})))

        client.call_tool.assert_called_once_with("weather", {"city": "Oslo"})
        self.assertEqual(result.payload, "sunny")
        self.assertEqual(result.structured, {"sky": "clear"})

    def test_remote_error_flag(self):
        client = MagicMock()
        client.list_tools.return_value = [ToolDescriptor(name="weather")]
        client.call_tool.return_value = {"content": [{"type": "text", "text": "no such city"}], "isError": True}
        registry = ToolRegistry([RemoteToolProvider("remote", client)])

        result = registry.dispatch(ToolInvocation("call_9", "weather", "{}"))

        self.assertTrue(result.is_error)
        self.assertIn("no such city", result.error)


class TestShellToolProvider(unittest.TestCase):

    def test_runs_command(self):
        registry = ToolRegistry([ShellToolProvider(timeout=10)])
        with tempfile.TemporaryDirectory() as tmp:
            arguments = {"command": sys.executable, "commandParameters": ["-c", "print('hello')"],
                         "workingDirectory": tmp}
            result = registry.dispatch(ToolInvocation("call_1", "execute_shell_command", json.dumps(arguments)))

        self.assertFalse(result.is_error)
        self.assertEqual(result.structured["exitCode"], 0)
        self.assertEqual(result.structured["stdout"].strip(), "hello")

    def test_missing_executable_is_error_result(self):
        registry = ToolRegistry([ShellToolProvider(timeout=10)])
        arguments = {"command": "definitely-not-a-real-command-xyz", "commandParameters": []}

        result = registry.dispatch(ToolInvocation("call_2", "execute_shell_command", json.dumps(arguments)))

        self.assertTrue(result.is_error)


if __name__ == '__main__':
    unittest.main()
