"""
Orchestration of a single user exchange: session resolution, optional
retrieval, the model/tool round-trip loop, and structured answers.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional, Set

from .config import DEFAULT_SYSTEM_ROLE
from .errors import (
    MalformedModelResponse,
    ModelUnavailable,
    SessionFinishedError,
    ToolLoopLimitExceeded,
    TurnLogError,
)
from .models import (
    STRUCTURED_ANSWER_TOOL,
    ExchangeResult,
    ModelResponse,
    Session,
    StructuredAnswer,
    TokenUsage,
    ToolDescriptor,
    ToolInvocation,
    ToolResult,
    Turn,
)
from .ollama_client import ModelProvider
from .retrieval import RetrievalAugmenter
from .session_store import SessionStore
from .tools.registry import ToolRegistry
from .tools.structured import STRUCTURED_ANSWER_DESCRIPTOR

logger = logging.getLogger("chatbridge.orchestrator")

# Errors that end an exchange without an answer
EXCHANGE_ERRORS = (ModelUnavailable, MalformedModelResponse, TurnLogError, ToolLoopLimitExceeded)


class _SessionLock:
    """A session's exchange lock and the number of exchanges waiting on or holding it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class OrchestrationLoop:
    """
    Runs user exchanges to completion.

    Exchanges on different sessions run in parallel; exchanges on the same
    session are serialised. Every method returns ``None`` when the exchange
    could not produce an answer; turns committed before the failure stay in
    the log.
    """

    def __init__(self,
                 session_store: SessionStore,
                 model_provider: ModelProvider,
                 registry: Optional[ToolRegistry] = None,
                 augmenter: Optional[RetrievalAugmenter] = None,
                 max_tool_rounds: int = 10):
        self.sessions = session_store
        self.model = model_provider
        self.registry = registry
        self.augmenter = augmenter
        self.max_tool_rounds = max_tool_rounds
        self._session_locks: Dict[str, _SessionLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _exclusive(self, session_id: str):
        """Hold the session's lock; the lock is dropped once no exchange uses it."""
        with self._locks_guard:
            entry = self._session_locks.get(session_id)
            if entry is None:
                entry = self._session_locks[session_id] = _SessionLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._session_locks[session_id]

    def _resolve_session(self, session_id: str, system_role: str, model: Optional[str]) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            return self.sessions.create(session_id, system_role)
        return self.sessions.compact_if_needed(session, model)

    def _dispatch(self, invocation: ToolInvocation, offered: Set[str]) -> ToolResult:
        # Only tools offered in this exchange may run
        if self.registry is None or invocation.name not in offered:
            logger.warning(f"Model requested tool '{invocation.name}' that was not offered")
            return ToolResult.failure(invocation.id, f"Unknown tool: {invocation.name}")
        return self.registry.dispatch(invocation)

    def tooled_chat(self,
                    session_id: str,
                    prompt: str,
                    system_role: Optional[str] = None,
                    use_retrieval: bool = False,
                    min_similarity: Optional[float] = None,
                    model: Optional[str] = None,
                    temperature: Optional[float] = None,
                    use_tools: bool = True) -> Optional[ExchangeResult]:
        """
        Run one exchange, letting the model call tools until it answers in text.

        Args:
            session_id: Conversation id; created on first use
            prompt: User prompt
            system_role: Role for a new session; for an existing one it only
                replaces the role sent with this exchange's model requests
            use_retrieval: Ground the prompt in the knowledge base first
            min_similarity: Exclusive similarity threshold for retrieval
            model: Optional model override
            temperature: Optional temperature override
            use_tools: Offer registry tools to the model

        Returns:
            ExchangeResult, or None if no answer could be produced
        """
        with self._exclusive(session_id):
            try:
                return self._run_tooled(session_id, prompt, system_role, use_retrieval,
                                        min_similarity, model, temperature, use_tools)
            except SessionFinishedError as e:
                logger.info(f"Session '{session_id}' is finished, replaying its last answer")
                return ExchangeResult(answer=e.last_answer, finished=True)
            except EXCHANGE_ERRORS as e:
                logger.error(f"Exchange on session '{session_id}' aborted: {e}", exc_info=True)
                return None

    def chat(self, session_id: str, prompt: str, system_role: Optional[str] = None,
             model: Optional[str] = None, temperature: Optional[float] = None) -> Optional[ExchangeResult]:
        """Conversation without tools; history and compaction behave as in tooled_chat."""
        return self.tooled_chat(session_id, prompt, system_role, model=model,
                                temperature=temperature, use_tools=False)

    def _run_tooled(self, session_id, prompt, system_role, use_retrieval, min_similarity,
                    model, temperature, use_tools) -> ExchangeResult:
        session = self._resolve_session(session_id, system_role or DEFAULT_SYSTEM_ROLE, model)
        request_role = system_role or session.system_role

        if use_retrieval and self.augmenter is not None:
            prompt = self.augmenter.enrich(prompt, min_similarity)

        session = self.sessions.append(session_id, Turn.user(prompt))

        tools: List[ToolDescriptor] = []
        if use_tools and self.registry is not None:
            tools = self.registry.list_all()

        usage = TokenUsage()
        rounds = 0
        while True:
            response = self.model.submit(request_role, session.turns, tools or None, temperature, model)
            usage = usage + response.usage
            if not response.has_tool_calls:
                break

            rounds += 1
            if rounds > self.max_tool_rounds:
                raise ToolLoopLimitExceeded(
                    f"Model requested tools for more than {self.max_tool_rounds} rounds in session '{session_id}'"
                )
            session = self._resolve_tool_calls(session_id, response, {tool.name for tool in tools})

        answer = response.text or ""
        logger.info(f"Text response for session '{session_id}': {answer[:200]}")
        session = self.sessions.append(session_id, Turn.assistant(answer))
        return ExchangeResult(answer=answer, usage=usage, turns=session.turns, stop_reason=response.stop_reason)

    def _resolve_tool_calls(self, session_id: str, response: ModelResponse, offered: Set[str]) -> Session:
        session = self.sessions.append(session_id, Turn.assistant(response.text or "", response.tool_calls))
        for invocation in response.tool_calls:
            logger.info(f"Calling tool: {invocation.name} with arguments: {invocation.arguments_json}")
            result = self._dispatch(invocation, offered)
            if result.is_error:
                logger.warning(f"Tool {invocation.name} returned an error: {result.error}")
            session = self.sessions.append(session_id, Turn.tool_result(result, invocation.name))
        return session

    def structured_chat(self,
                        session_id: str,
                        prompt: str,
                        system_role: Optional[str] = None,
                        model: Optional[str] = None,
                        temperature: Optional[float] = None) -> Optional[ExchangeResult]:
        """
        Run one exchange in which the model must answer through the structured-answer tool.

        Once the model marks the conversation finished, later calls replay the
        last answer without contacting the model.

        Raises:
            ValueError: If the session does not exist yet and no system role is given
        """
        with self._exclusive(session_id):
            try:
                session = self.sessions.get(session_id)
                if session is None:
                    if not system_role:
                        raise ValueError("A system role is required to start a structured session")
                    session = self.sessions.create(session_id, system_role)

                if session.finished:
                    return self._replay(session)
                return self._run_structured(session, prompt, system_role, model, temperature)
            except SessionFinishedError as e:
                return ExchangeResult(answer=e.last_answer, finished=True)
            except EXCHANGE_ERRORS as e:
                logger.error(f"Structured exchange on session '{session_id}' aborted: {e}", exc_info=True)
                return None

    def _replay(self, session: Session) -> ExchangeResult:
        answer = session.last_structured_answer()
        logger.info(f"Session '{session.id}' is finished, replaying its last structured answer")
        return ExchangeResult(answer=answer.response if answer else "", turns=session.turns, finished=True)

    def _run_structured(self, session: Session, prompt: str, system_role: Optional[str],
                        model: Optional[str], temperature: Optional[float]) -> ExchangeResult:
        session = self.sessions.compact_if_needed(session, model)
        request_role = system_role or session.system_role

        # Follow-up prompts answer the model's previous structured call
        previous = session.last_structured_invocation()
        if previous is None:
            turn = Turn.user(prompt)
        else:
            turn = Turn.tool_result(ToolResult(invocation_id=previous.id, payload=prompt), STRUCTURED_ANSWER_TOOL)
        session = self.sessions.append(session.id, turn)

        response = self.model.submit(request_role, session.turns, [STRUCTURED_ANSWER_DESCRIPTOR],
                                     temperature, model, tool_choice=STRUCTURED_ANSWER_TOOL)
        invocation = next((c for c in response.tool_calls if c.name == STRUCTURED_ANSWER_TOOL), None)
        if invocation is None:
            raise MalformedModelResponse("Model did not answer through the structured answer tool")
        try:
            answer = StructuredAnswer.from_invocation(invocation)
        except ValueError as e:
            raise MalformedModelResponse(f"Structured answer arguments are not valid JSON: {e}") from e

        session = self.sessions.append(session.id, Turn.assistant("", [invocation]))
        if answer.is_finished:
            logger.info(f"Session '{session.id}' finished")
        return ExchangeResult(answer=answer.response, usage=response.usage, turns=session.turns,
                              finished=answer.is_finished, stop_reason=response.stop_reason)

    def single_prompt(self, prompt: str, model: Optional[str] = None,
                      temperature: Optional[float] = None) -> Optional[ExchangeResult]:
        """Stateless one-shot completion."""
        try:
            response = self.model.complete(prompt, model=model, temperature=temperature)
        except (ModelUnavailable, MalformedModelResponse) as e:
            logger.error(f"Single prompt failed: {e}", exc_info=True)
            return None
        answer = response.text or ""
        return ExchangeResult(
            answer=answer,
            usage=response.usage,
            turns=[Turn.user(prompt), Turn.assistant(answer)],
            stop_reason=response.stop_reason,
        )

    def answer_text(self, session_id: str, prompt: str, system_role: str) -> Optional[str]:
        """Tooled exchange that returns only the answer text; used by background tasks."""
        result = self.tooled_chat(session_id, prompt, system_role)
        return result.answer if result is not None else None
