"""
Tests for component wiring.
"""

import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chatbridge.app import ChatBridge
from chatbridge.config import BridgeConfig, RetrievalConfig, SessionConfig, ToolServerConfig
from chatbridge.models import ModelResponse
from chatbridge.ollama_client import ModelProvider


class CannedModel(ModelProvider):
    def submit(self, system_role, turns, tools=None, temperature=None, model=None, tool_choice=None):
        return ModelResponse(text=f"echo: {turns[-1].content}")


class TestChatBridge(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config = BridgeConfig(
            session=SessionConfig(log_path=os.path.join(self.tmp.name, "turns.jsonl")),
            retrieval=RetrievalConfig(store_dir=os.path.join(self.tmp.name, "rag")),
            tool_servers=[ToolServerConfig(name="offline", url="http://127.0.0.1:9/mcp", timeout=1)],
        )

    def tearDown(self):
        self.tmp.cleanup()

    def test_local_tools_survive_unreachable_remote(self):
        bridge = ChatBridge(self.config)
        try:
            names = [d.name for d in bridge.registry.list_all()]
        finally:
            bridge.shutdown()

        self.assertEqual(names, ["execute_shell_command", "schedule_watch", "stop_watches"])
        self.assertIsNotNone(bridge.watch_tools.run_exchange)

    def test_exchange_through_wired_components(self):
        self.config.tool_servers = []
        self.config.enable_shell_tool = False
        bridge = ChatBridge(self.config, ollama=CannedModel())
        try:
            answer = bridge.orchestrator.answer_text("s1", "hello", "Be brief")
        finally:
            bridge.shutdown()

        self.assertEqual(answer, "echo: hello")
        self.assertEqual(bridge.sessions.get("s1").system_role, "Be brief")


if __name__ == '__main__':
    unittest.main()
