"""
Wiring of the chat bridge components from a BridgeConfig.
"""

import logging
from typing import List, Optional

from .config import BridgeConfig
from .mcp_client import ToolProtocolClient
from .notifications import BroadcastHub
from .ollama_client import OllamaClient
from .orchestrator import OrchestrationLoop
from .retrieval import RetrievalAugmenter
from .scheduler import ReportScheduler, WatchRegistry
from .session_store import SessionStore
from .tools.base import ToolProvider
from .tools.registry import ToolRegistry
from .tools.remote import RemoteToolProvider
from .tools.shell import ShellToolProvider
from .tools.watch import WatchToolProvider
from .turn_log import JsonlTurnLog
from .vector_store import ChunkVectorStore

logger = logging.getLogger("chatbridge.app")


class ChatBridge:
    """Owns every long-lived component of one running bridge."""

    def __init__(self, config: BridgeConfig, ollama: Optional[OllamaClient] = None):
        self.config = config
        self.ollama = ollama or OllamaClient(config.ollama)

        self.turn_log = JsonlTurnLog(config.session.log_path)
        self.sessions = SessionStore(self.turn_log, self.ollama, config.session)

        self.vector_store = ChunkVectorStore(config.retrieval.store_dir)
        self.augmenter = RetrievalAugmenter(self.ollama, self.vector_store, config.retrieval)

        self.watches = WatchRegistry()
        self.watch_tools = WatchToolProvider(self.watches, config.scheduler.watch_interval_seconds)
        self.remote_clients: List[ToolProtocolClient] = []
        self.registry = ToolRegistry(self._build_providers())

        self.orchestrator = OrchestrationLoop(
            self.sessions,
            self.ollama,
            registry=self.registry,
            augmenter=self.augmenter,
            max_tool_rounds=config.session.max_tool_rounds,
        )
        self.watch_tools.bind(self.orchestrator.answer_text)

        self.hub = BroadcastHub(config.scheduler.heartbeat_interval_seconds)
        self.reports = ReportScheduler(
            self.orchestrator.answer_text,
            self.hub.broadcast,
            prompt=config.scheduler.report_prompt,
            system_role=config.scheduler.report_role,
            interval_seconds=config.scheduler.report_interval_seconds,
        )
        logger.info(f"Chat bridge initialized with Ollama at {config.ollama.base_url} and "
                    f"{len(self.registry.providers)} tool provider(s)")

    def _build_providers(self) -> List[ToolProvider]:
        providers: List[ToolProvider] = []
        if self.config.enable_shell_tool:
            providers.append(ShellToolProvider())
        providers.append(self.watch_tools)

        for server in self.config.tool_servers:
            client = ToolProtocolClient(server.url, timeout=server.timeout)
            self.remote_clients.append(client)
            providers.append(RemoteToolProvider(server.name, client))
        return providers

    def start_background(self, reports: bool = True) -> None:
        self.hub.start_heartbeat()
        if reports:
            self.reports.start()

    def shutdown(self) -> None:
        stopped = self.watches.cancel_all()
        if stopped:
            logger.info(f"Stopped {stopped} watch(es)")
        self.reports.stop(timeout=5)
        self.hub.stop(timeout=5)
        for client in self.remote_clients:
            client.close()
