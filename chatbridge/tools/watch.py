"""
Local tools that let the model start and stop background watches.
"""

import uuid
from typing import Any, Callable, Dict, Optional

from ..scheduler import WatchRegistry
from .base import LocalToolProvider

# (session_id, prompt, system_role) -> answer or None
ExchangeRunner = Callable[[str, str, str], Optional[str]]

WATCH_ROLE = (
    "You are an automated monitoring assistant. Check the current state of the resource "
    "with the available tools before acting, and call stop_watches once nothing more is needed."
)


class WatchToolProvider(LocalToolProvider):
    """
    Provides ``schedule_watch`` and ``stop_watches``.

    Each watch tick runs a fresh tooled exchange on a new session id. The
    exchange runner is bound after construction since it needs the
    orchestrator that in turn lists these tools.
    """

    def __init__(self, registry: WatchRegistry, interval_seconds: float = 60,
                 run_exchange: Optional[ExchangeRunner] = None):
        super().__init__("watch")
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.run_exchange = run_exchange

        self.tool(
            "schedule_watch",
            "Start a background task that periodically checks a resource and acts on it following the given instructions",
            {
                "type": "object",
                "properties": {
                    "resourceId": {"type": "string", "description": "Identifier of the resource to watch"},
                    "instructions": {"type": "string", "description": "What to check and do on every tick"},
                },
                "required": ["resourceId", "instructions"],
            },
        )(self.schedule_watch)
        self.tool(
            "stop_watches",
            "Stop every running background watch",
            {"type": "object", "properties": {}},
        )(self.stop_watches)

    def bind(self, run_exchange: ExchangeRunner) -> None:
        self.run_exchange = run_exchange

    def _tick(self, resource_id: str, instructions: str) -> None:
        if self.run_exchange is None:
            self.logger.warning(f"Watch for {resource_id} has no exchange runner bound")
            return
        session_id = str(uuid.uuid4())
        self.logger.info(f"Running watch check for resource {resource_id} in session {session_id}")
        answer = self.run_exchange(session_id, instructions, WATCH_ROLE)
        if answer is None:
            self.logger.warning(f"No answer for watch check of resource {resource_id}")
        else:
            self.logger.info(f"Watch check completed for resource {resource_id}: {answer}")

    def schedule_watch(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        resource_id = str(arguments.get("resourceId") or "").strip()
        instructions = str(arguments.get("instructions") or "").strip()
        if not resource_id or not instructions:
            raise ValueError("'resourceId' and 'instructions' are required")

        started = self.registry.start(
            resource_id,
            lambda: self._tick(resource_id, instructions),
            self.interval_seconds,
        )
        if not started:
            return {
                "success": False,
                "message": f"Watch already running for resource {resource_id}",
                "resourceId": resource_id,
            }
        return {
            "success": True,
            "message": f"Watch started for resource {resource_id} with {self.interval_seconds} second interval",
            "resourceId": resource_id,
        }

    def stop_watches(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        count = self.registry.cancel_all()
        return {
            "success": True,
            "message": f"Successfully stopped {count} watch(es)",
            "stoppedCount": count,
        }
