"""
Aggregation of tool providers behind a single dispatch contract.
"""

import logging
import threading
from typing import Dict, List, Optional

from ..models import ToolDescriptor, ToolInvocation, ToolResult
from .base import ToolProvider

logger = logging.getLogger("chatbridge.tools.registry")


class ToolRegistry:
    """
    Routes tool invocations to the provider that declared the tool.

    Providers are injected at construction. When two providers declare the
    same tool name the one registered first keeps it.
    """

    def __init__(self, providers: Optional[List[ToolProvider]] = None):
        self.providers: List[ToolProvider] = list(providers or [])
        self._routes: Dict[str, ToolProvider] = {}
        self._lock = threading.Lock()

    def list_all(self) -> List[ToolDescriptor]:
        """
        Merge the descriptors of every provider and rebuild the routing table.

        A provider that cannot list its tools contributes nothing this time.
        """
        routes: Dict[str, ToolProvider] = {}
        descriptors: List[ToolDescriptor] = []
        for provider in self.providers:
            try:
                provided = provider.list_tools()
            except Exception as e:
                logger.warning(f"Tools of provider '{provider.name}' are unavailable: {e}")
                continue

            for descriptor in provided:
                owner = routes.get(descriptor.name)
                if owner is not None:
                    logger.warning(f"Tool '{descriptor.name}' from '{provider.name}' is shadowed by '{owner.name}'")
                    continue
                routes[descriptor.name] = provider
                descriptors.append(descriptor)

        with self._lock:
            self._routes = routes
        return descriptors

    def provider_for(self, tool_name: str) -> Optional[ToolProvider]:
        with self._lock:
            routes = self._routes
        if not routes:
            self.list_all()
            with self._lock:
                routes = self._routes
        return routes.get(tool_name)

    def dispatch(self, invocation: ToolInvocation) -> ToolResult:
        """
        Execute an invocation. Never raises: every failure becomes an error result.
        """
        provider = self.provider_for(invocation.name)
        if provider is None:
            logger.warning(f"Model requested unknown tool '{invocation.name}'")
            return ToolResult.failure(invocation.id, f"Unknown tool: {invocation.name}")

        logger.info(f"Dispatching '{invocation.name}' to provider '{provider.name}'")
        try:
            result = provider.call_tool(invocation)
        except Exception as e:
            logger.warning(f"Tool '{invocation.name}' failed: {e}")
            return ToolResult.failure(invocation.id, f"Tool '{invocation.name}' failed: {e}")

        if result.invocation_id != invocation.id:
            result.invocation_id = invocation.id
        return result
