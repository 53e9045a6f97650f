"""
Tool provider contract and the in-process provider.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import ToolDispatchError
from ..models import ToolDescriptor, ToolInvocation, ToolResult

ToolHandler = Callable[[Dict[str, Any]], Any]


class ToolProvider(ABC):
    """A source of tools: lists descriptors and executes invocations."""

    name: str = "provider"

    @abstractmethod
    def list_tools(self) -> List[ToolDescriptor]:
        """Return the descriptors of every tool this provider can execute."""

    @abstractmethod
    def call_tool(self, invocation: ToolInvocation) -> ToolResult:
        """
        Execute one invocation.

        Providers may raise; the registry turns any failure into an error result.
        """


def result_from_value(invocation_id: str, value: Any) -> ToolResult:
    """Wrap a handler's return value: strings pass through, anything else is JSON encoded."""
    if isinstance(value, ToolResult):
        return value
    if value is None:
        return ToolResult(invocation_id=invocation_id, payload="")
    if isinstance(value, str):
        return ToolResult(invocation_id=invocation_id, payload=value)
    return ToolResult(invocation_id=invocation_id, payload=json.dumps(value, default=str), structured=value)


class LocalToolProvider(ToolProvider):
    """Tools implemented as Python callables in this process."""

    def __init__(self, name: str = "local"):
        self.name = name
        self.logger = logging.getLogger(f"chatbridge.tools.{name}")
        self._tools: Dict[str, Tuple[ToolDescriptor, ToolHandler]] = {}

    def register(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        """Register ``handler`` to receive the decoded arguments of ``descriptor``'s tool."""
        self._tools[descriptor.name] = (descriptor, handler)

    def tool(self,
             name: str,
             description: str,
             input_schema: Optional[Dict[str, Any]] = None,
             output_schema: Optional[Dict[str, Any]] = None) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register`."""
        def decorator(handler: ToolHandler) -> ToolHandler:
            descriptor = ToolDescriptor(name=name, description=description, output_schema=output_schema)
            if input_schema is not None:
                descriptor.input_schema = input_schema
            self.register(descriptor, handler)
            return handler
        return decorator

    def list_tools(self) -> List[ToolDescriptor]:
        return [descriptor for descriptor, _ in self._tools.values()]

    def call_tool(self, invocation: ToolInvocation) -> ToolResult:
        entry = self._tools.get(invocation.name)
        if entry is None:
            raise ToolDispatchError(f"Unknown tool: {invocation.name}")

        try:
            arguments = invocation.arguments()
        except ValueError as e:
            raise ToolDispatchError(f"Malformed arguments for '{invocation.name}': {e}") from e

        _, handler = entry
        self.logger.info(f"Calling tool '{invocation.name}' with arguments: {arguments}")
        return result_from_value(invocation.id, handler(arguments))
