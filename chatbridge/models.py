"""
Data structures for conversations, tool calls and retrieval.
"""

import datetime
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Name of the fixed tool the model answers through in structured mode
STRUCTURED_ANSWER_TOOL = "structured_answer"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool_result"
    SUMMARY = "summary"


@dataclass
class ToolDescriptor:
    """Declared name, purpose and argument schema of a callable tool."""
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    output_schema: Optional[Dict[str, Any]] = None

    def to_function_spec(self) -> Dict[str, Any]:
        """Render as an OpenAI-compatible function tool for the chat endpoint."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def to_wire(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
        if self.output_schema is not None:
            data["outputSchema"] = self.output_schema
        return data

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ToolDescriptor":
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {"type": "object", "properties": {}},
            output_schema=data.get("outputSchema"),
        )


@dataclass
class ToolInvocation:
    """A single tool call requested by the model."""
    id: str
    name: str
    arguments_json: str = "{}"

    def arguments(self) -> Dict[str, Any]:
        """
        Decode the raw argument JSON.

        Raises:
            ValueError: If the arguments are not a JSON object
        """
        if not self.arguments_json or not self.arguments_json.strip():
            return {}
        decoded = json.loads(self.arguments_json)
        if not isinstance(decoded, dict):
            raise ValueError(f"Arguments for '{self.name}' must be a JSON object")
        return decoded

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments_json}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolInvocation":
        return cls(id=data["id"], name=data["name"], arguments_json=data.get("arguments") or "{}")


@dataclass
class ToolResult:
    """Outcome of one tool invocation: either a payload or an error message."""
    invocation_id: str
    payload: Optional[str] = None
    error: Optional[str] = None
    structured: Optional[Any] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def content(self) -> str:
        if self.is_error:
            return f"Error: {self.error}"
        return self.payload or ""

    @classmethod
    def failure(cls, invocation_id: str, message: str) -> "ToolResult":
        return cls(invocation_id=invocation_id, error=message)


@dataclass
class Turn:
    """One entry of a conversation history."""
    role: TurnRole
    content: str = ""
    tool_invocations: List[ToolInvocation] = field(default_factory=list)
    invocation_id: Optional[str] = None
    tool_name: Optional[str] = None
    is_error: bool = False
    created_at: datetime.datetime = field(default_factory=_utcnow)

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role=TurnRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str = "", tool_invocations: Optional[List[ToolInvocation]] = None) -> "Turn":
        return cls(role=TurnRole.ASSISTANT, content=content or "", tool_invocations=list(tool_invocations or []))

    @classmethod
    def summary(cls, content: str) -> "Turn":
        return cls(role=TurnRole.SUMMARY, content=content)

    @classmethod
    def tool_result(cls, result: ToolResult, tool_name: Optional[str] = None) -> "Turn":
        return cls(
            role=TurnRole.TOOL_RESULT,
            content=result.content,
            invocation_id=result.invocation_id,
            tool_name=tool_name,
            is_error=result.is_error,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Converts a Turn to a JSON-serializable dictionary."""
        data: Dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }
        if self.tool_invocations:
            data["tool_invocations"] = [inv.to_dict() for inv in self.tool_invocations]
        if self.invocation_id is not None:
            data["invocation_id"] = self.invocation_id
        if self.tool_name is not None:
            data["tool_name"] = self.tool_name
        if self.is_error:
            data["is_error"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        """Converts a dictionary (from JSON) back to a Turn."""
        created_at = data.get("created_at")
        return cls(
            role=TurnRole(data["role"]),
            content=data.get("content") or "",
            tool_invocations=[ToolInvocation.from_dict(d) for d in data.get("tool_invocations", [])],
            invocation_id=data.get("invocation_id"),
            tool_name=data.get("tool_name"),
            is_error=bool(data.get("is_error", False)),
            created_at=datetime.datetime.fromisoformat(created_at) if created_at else _utcnow(),
        )

    def as_history_entry(self) -> Dict[str, str]:
        """Compact ``{role: content}`` view returned to callers."""
        if self.tool_invocations and not self.content:
            calls = ", ".join(f"{inv.name}({inv.arguments_json})" for inv in self.tool_invocations)
            return {self.role.value: f"[tool calls] {calls}"}
        return {self.role.value: self.content}


@dataclass
class StructuredAnswer:
    response: str
    is_finished: bool = False

    @classmethod
    def from_invocation(cls, invocation: ToolInvocation) -> "StructuredAnswer":
        args = invocation.arguments()
        finished = args.get("isFinished", False)
        if isinstance(finished, str):
            finished = finished.strip().lower() == "true"
        return cls(response=str(args.get("response", "")), is_finished=bool(finished))


@dataclass
class Session:
    """A conversation: fixed system role plus its ordered turns."""
    id: str
    system_role: str
    turns: List[Turn] = field(default_factory=list)
    finished: bool = False

    def invocation_ids(self) -> List[str]:
        ids = []
        for turn in self.turns:
            if turn.role == TurnRole.ASSISTANT:
                ids.extend(inv.id for inv in turn.tool_invocations)
        return ids

    def last_structured_invocation(self) -> Optional[ToolInvocation]:
        for turn in reversed(self.turns):
            for inv in reversed(turn.tool_invocations):
                if inv.name == STRUCTURED_ANSWER_TOOL:
                    return inv
        return None

    def last_structured_answer(self) -> Optional[StructuredAnswer]:
        invocation = self.last_structured_invocation()
        if invocation is None:
            return None
        try:
            return StructuredAnswer.from_invocation(invocation)
        except ValueError:
            return None

    def copy(self) -> "Session":
        return Session(id=self.id, system_role=self.system_role, turns=list(self.turns), finished=self.finished)


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    def to_dict(self) -> Dict[str, int]:
        return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens}


@dataclass
class ModelResponse:
    """Normalised completion returned by a model provider."""
    text: Optional[str] = None
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    stop_reason: str = "stop"

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class ExchangeResult:
    """What a caller receives for one completed exchange."""
    answer: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    turns: List[Turn] = field(default_factory=list)
    finished: bool = False
    stop_reason: Optional[str] = None

    def history(self) -> List[Dict[str, str]]:
        return [turn.as_history_entry() for turn in self.turns]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.answer,
            "usage": self.usage.to_dict(),
            "finished": self.finished,
            "history": self.history(),
        }


@dataclass
class RetrievalChunk:
    text: str
    embedding: List[float]
    similarity: Optional[float] = None
