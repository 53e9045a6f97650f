"""
Outbound notification channels.

A channel is anything with a ``send(text)`` method (a websocket wrapper, a
queue feeding an SSE response, a test double). Channels that fail a delivery
are dropped from the broadcast set.
"""

import logging
import threading
from typing import Dict, List, Optional, Protocol

logger = logging.getLogger("chatbridge.notifications")

HEARTBEAT_MESSAGE = "ping"


class Channel(Protocol):
    def send(self, message: str) -> None:
        ...


class BroadcastHub:
    """Keeps live channels open with heartbeats and fans messages out to all of them."""

    def __init__(self, heartbeat_interval: float = 30, heartbeat_message: str = HEARTBEAT_MESSAGE):
        self.heartbeat_interval = heartbeat_interval
        self.heartbeat_message = heartbeat_message
        self._channels: Dict[str, Channel] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._heartbeat_thread: Optional[threading.Thread] = None

    def register(self, channel_id: str, channel: Channel) -> None:
        with self._lock:
            self._channels[channel_id] = channel
        logger.info(f"Channel registered: {channel_id}")

    def unregister(self, channel_id: str) -> bool:
        with self._lock:
            removed = self._channels.pop(channel_id, None) is not None
        if removed:
            logger.info(f"Channel removed: {channel_id}")
        return removed

    def channel_ids(self) -> List[str]:
        with self._lock:
            return list(self._channels)

    def broadcast(self, message: str) -> int:
        """
        Send ``message`` to every channel.

        Returns:
            Number of channels that received it
        """
        with self._lock:
            channels = list(self._channels.items())

        delivered = 0
        for channel_id, channel in channels:
            try:
                channel.send(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Failed to send to channel {channel_id}, dropping it: {e}")
                self.unregister(channel_id)
        return delivered

    def send_heartbeat(self) -> int:
        logger.debug(f"Sending heartbeat to {len(self.channel_ids())} channel(s)")
        return self.broadcast(self.heartbeat_message)

    def _heartbeat_loop(self) -> None:
        while not self._stop_event.wait(self.heartbeat_interval):
            self.send_heartbeat()

    def start_heartbeat(self) -> None:
        if self._heartbeat_thread is not None and self._heartbeat_thread.is_alive():
            return
        self._stop_event.clear()
        self._heartbeat_thread = threading.Thread(target=self._heartbeat_loop, name="heartbeat", daemon=True)
        self._heartbeat_thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._heartbeat_thread is not None:
            self._heartbeat_thread.join(timeout)
            self._heartbeat_thread = None
