"""
Background work: per-resource watch tasks and the periodic report.

Both run on daemon threads, are fire-and-forget and only log their failures.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

logger = logging.getLogger("chatbridge.scheduler")


def _run_every(interval: float, stop_event: threading.Event, task: Callable[[], None], label: str) -> None:
    logger.info(f"{label} started with interval: {interval} seconds")
    while not stop_event.is_set():
        try:
            task()
        except Exception:
            logger.exception(f"Error during {label}")
        stop_event.wait(interval)
    logger.info(f"{label} stopped")


@dataclass
class WatchHandle:
    resource_id: str
    stop_event: threading.Event
    thread: threading.Thread
    started_at: float = field(default_factory=time.time)

    def is_alive(self) -> bool:
        return self.thread.is_alive() and not self.stop_event.is_set()


class WatchRegistry:
    """
    Table of long-lived watch tasks keyed by resource id.

    At most one watch runs per resource. Watches can be cancelled one at a
    time or all together.
    """

    def __init__(self):
        self._handles: Dict[str, WatchHandle] = {}
        self._lock = threading.Lock()

    def start(self, resource_id: str, task: Callable[[], None], interval: float) -> bool:
        """
        Start a watch for ``resource_id`` that runs ``task`` every ``interval`` seconds.

        Returns:
            False if a watch for the resource is already running, True otherwise
        """
        with self._lock:
            existing = self._handles.get(resource_id)
            if existing is not None and existing.is_alive():
                logger.info(f"Watch already running for resource: {resource_id}")
                return False

            stop_event = threading.Event()
            thread = threading.Thread(
                target=_run_every,
                args=(interval, stop_event, task, f"watch for {resource_id}"),
                name=f"watch-{resource_id}",
                daemon=True,
            )
            self._handles[resource_id] = WatchHandle(resource_id, stop_event, thread)
            thread.start()
            return True

    def cancel(self, resource_id: str) -> bool:
        with self._lock:
            handle = self._handles.pop(resource_id, None)
        if handle is None:
            return False
        handle.stop_event.set()
        logger.info(f"Watch stopped for resource: {resource_id}")
        return True

    def cancel_all(self) -> int:
        """Cancel every watch and return how many were running."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.stop_event.set()
            logger.info(f"Watch stopped for resource: {handle.resource_id}")
        return len(handles)

    def active(self) -> List[str]:
        with self._lock:
            return [rid for rid, handle in self._handles.items() if handle.is_alive()]

    def is_running(self, resource_id: str) -> bool:
        with self._lock:
            handle = self._handles.get(resource_id)
        return handle is not None and handle.is_alive()


class ReportScheduler:
    """
    Runs a prompt at a fixed interval on a fresh session and broadcasts the answer.

    ``run_exchange`` takes ``(session_id, prompt, system_role)`` and returns the
    answer text or None; ``broadcast`` receives every non-empty answer.
    """

    def __init__(self,
                 run_exchange: Callable[[str, str, str], Optional[str]],
                 broadcast: Callable[[str], int],
                 prompt: str,
                 system_role: str,
                 interval_seconds: float):
        self.run_exchange = run_exchange
        self.broadcast = broadcast
        self.prompt = prompt
        self.system_role = system_role
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Optional[str]:
        session_id = str(uuid.uuid4())
        logger.info(f"Running scheduled report in session {session_id}")
        answer = self.run_exchange(session_id, self.prompt, self.system_role)
        if not answer:
            logger.warning("Scheduled report produced no answer")
            return None
        delivered = self.broadcast(answer)
        logger.info(f"Scheduled report delivered to {delivered} channel(s)")
        return answer

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=_run_every,
            args=(self.interval_seconds, self._stop_event, self.run_once, "scheduled report"),
            name="report-scheduler",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
