"""
Session storage: an expiring in-memory cache in front of the durable turn log,
plus history compaction.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .config import SessionConfig
from .errors import (
    CompactionError,
    MalformedModelResponse,
    ModelUnavailable,
    SessionFinishedError,
    TurnLogError,
)
from .models import Session, Turn, TurnRole
from .ollama_client import ModelProvider
from .turn_log import TurnLog

logger = logging.getLogger("chatbridge.session_store")


class SessionCache:
    """In-memory session cache; entries expire a fixed time after they were written."""

    def __init__(self, ttl_seconds: float = 15 * 60, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Session, float]] = {}
        self._lock = threading.Lock()

    def set(self, session: Session) -> None:
        with self._lock:
            now = self._clock()
            self._drop_expired(now)
            self._entries[session.id] = (session.copy(), now + self.ttl_seconds)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _drop_expired(self, now: float) -> int:
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            session, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[session_id]
                return None
            return session.copy()

    def invalidate(self, session_id: str) -> bool:
        with self._lock:
            return self._entries.pop(session_id, None) is not None


def _is_finished(session: Session) -> bool:
    answer = session.last_structured_answer()
    return bool(answer and answer.is_finished)


class SessionStore:
    """
    Owns the Session aggregate.

    Every write goes to the turn log first; the cache only ever holds what the
    log already records.
    """

    def __init__(self,
                 turn_log: TurnLog,
                 model_provider: Optional[ModelProvider] = None,
                 config: Optional[SessionConfig] = None,
                 cache: Optional[SessionCache] = None):
        self.turn_log = turn_log
        self.model_provider = model_provider
        self.config = config or SessionConfig()
        self.cache = cache if cache is not None else SessionCache(self.config.cache_ttl_seconds)

    def _cache_put(self, session: Session) -> None:
        try:
            self.cache.set(session)
        except Exception as e:
            logger.warning(f"Could not cache session '{session.id}', continuing from the turn log: {e}")

    def get(self, session_id: str) -> Optional[Session]:
        """
        Return the session for ``session_id`` or None if it was never created.

        A cache miss rebuilds the session from the turn log, starting at the
        most recent summary turn.
        """
        cached = self.cache.get(session_id)
        if cached is not None:
            return cached

        system_role = self.turn_log.find_system_role(session_id)
        if system_role is None:
            return None

        turns = self.turn_log.read_turns_since(session_id, after_summary=True)
        session = Session(id=session_id, system_role=system_role, turns=turns)
        session.finished = _is_finished(session)
        logger.info(f"Rebuilt session '{session_id}' from the turn log ({len(turns)} turns)")
        self._cache_put(session)
        return session

    def create(self, session_id: str, system_role: str) -> Session:
        """Record a new session with its fixed system role."""
        self.turn_log.append_system_role(session_id, system_role)
        session = Session(id=session_id, system_role=system_role)
        self._cache_put(session)
        logger.info(f"Created session '{session_id}'")
        return session

    def get_or_create(self, session_id: str, system_role: str) -> Session:
        session = self.get(session_id)
        if session is None:
            session = self.create(session_id, system_role)
        return session

    def append(self, session_id: str, turn: Turn) -> Session:
        """
        Append a turn to a session and return the updated session.

        Raises:
            KeyError: If the session does not exist
            SessionFinishedError: If the session has already finished
            ValueError: If a tool-result turn references an unknown invocation
            TurnLogError: If the turn could not be persisted; nothing is cached
        """
        session = self.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session '{session_id}'")

        if session.finished:
            answer = session.last_structured_answer()
            raise SessionFinishedError(session_id, answer.response if answer else "")

        if turn.role == TurnRole.TOOL_RESULT and turn.invocation_id not in session.invocation_ids():
            raise ValueError(
                f"Tool result references unknown invocation '{turn.invocation_id}' in session '{session_id}'"
            )

        self.turn_log.append_turn(session_id, turn)

        session.turns.append(turn)
        session.finished = _is_finished(session)
        self._cache_put(session)
        return session

    def compact_if_needed(self, session: Session, model: Optional[str] = None) -> Session:
        """
        Replace a long history with a single summary turn.

        Once the session holds ``summary_threshold`` turns the model is asked
        for a summary, which is persisted as a summary turn. Failures leave the
        session untouched so the next exchange tries again.
        """
        if len(session.turns) < self.config.summary_threshold or self.model_provider is None:
            return session

        logger.info(f"Compacting session '{session.id}' ({len(session.turns)} turns)")
        try:
            summary = self._summarize(session, model)
            self.turn_log.append_turn(session.id, summary)
        except (CompactionError, TurnLogError) as e:
            logger.warning(f"Compaction of session '{session.id}' failed, continuing uncompacted: {e}")
            return session

        self.cache.invalidate(session.id)
        return Session(id=session.id, system_role=session.system_role, turns=[summary],
                       finished=session.finished)

    def _summarize(self, session: Session, model: Optional[str]) -> Turn:
        request = list(session.turns) + [Turn.user(self.config.summary_prompt)]
        try:
            response = self.model_provider.submit(session.system_role, request, model=model)
        except (ModelUnavailable, MalformedModelResponse) as e:
            raise CompactionError(f"Summary completion failed: {e}") from e

        if not response.text or not response.text.strip():
            raise CompactionError("Summary completion returned no text")
        return Turn.summary(response.text.strip())
