"""
Durable storage for conversation turns.

The log is the source of truth for every session. Each line of the JSONL
file is either a ``system`` record fixing a session's role or one turn.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .errors import TurnLogError
from .models import Turn, TurnRole

logger = logging.getLogger("chatbridge.turn_log")

SYSTEM_KIND = "system"


class TurnLog(ABC):
    """Read/write contract of the durable turn log."""

    @abstractmethod
    def append_system_role(self, session_id: str, system_role: str) -> None:
        """Record the system role of a new session."""

    @abstractmethod
    def append_turn(self, session_id: str, turn: Turn) -> None:
        """Append one turn; the turn's role is stored as its kind."""

    @abstractmethod
    def read_turns_since(self, session_id: str, after_summary: bool = True) -> List[Turn]:
        """
        Read a session's turns in recorded order.

        With ``after_summary`` only the most recent summary turn and everything
        recorded after it are returned.
        """

    @abstractmethod
    def find_system_role(self, session_id: str) -> Optional[str]:
        """Return the session's system role, or None if the session was never created."""


class JsonlTurnLog(TurnLog):
    """Append-only JSONL file implementation of the turn log."""

    def __init__(self, storage_path: str = "data/chat_turns.jsonl"):
        self.storage_path = storage_path
        self._lock = threading.Lock()
        # Ensure the directory for the storage path exists
        storage_dir = os.path.dirname(self.storage_path)
        if storage_dir and not os.path.exists(storage_dir):
            os.makedirs(storage_dir, exist_ok=True)

    def _write(self, record: Dict[str, Any]) -> None:
        try:
            with self._lock:
                with open(self.storage_path, "a", encoding="utf-8") as f:
                    json.dump(record, f)
                    f.write("\n")
        except OSError as e:
            raise TurnLogError(f"Could not write to turn log '{self.storage_path}': {e}") from e

    def _records(self, session_id: str) -> List[Dict[str, Any]]:
        if not os.path.exists(self.storage_path):
            return []

        records = []
        try:
            with self._lock:
                with open(self.storage_path, "r", encoding="utf-8") as f:
                    lines = f.readlines()
        except OSError as e:
            raise TurnLogError(f"Could not read turn log '{self.storage_path}': {e}") from e

        for line_number, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed JSON line {line_number} in '{self.storage_path}': {e}")
                continue
            if data.get("session_id") == session_id:
                records.append(data)
        return records

    def append_system_role(self, session_id: str, system_role: str) -> None:
        self._write({"session_id": session_id, "kind": SYSTEM_KIND, "content": system_role})

    def append_turn(self, session_id: str, turn: Turn) -> None:
        record = {"session_id": session_id, "kind": turn.role.value}
        record.update(turn.to_dict())
        self._write(record)

    def read_turns_since(self, session_id: str, after_summary: bool = True) -> List[Turn]:
        turns = []
        for record in self._records(session_id):
            if record.get("kind") == SYSTEM_KIND:
                continue
            try:
                turns.append(Turn.from_dict(record))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable turn for session '{session_id}': {e}")

        if after_summary:
            for index in range(len(turns) - 1, -1, -1):
                if turns[index].role == TurnRole.SUMMARY:
                    return turns[index:]
        return turns

    def find_system_role(self, session_id: str) -> Optional[str]:
        for record in self._records(session_id):
            if record.get("kind") == SYSTEM_KIND:
                return record.get("content", "")
        return None
