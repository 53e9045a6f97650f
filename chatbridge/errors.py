"""
Exceptions raised across the chat bridge.
"""


class ChatBridgeError(Exception):
    """Base class for all chat bridge errors."""


class ModelUnavailable(ChatBridgeError):
    """The model provider could not be reached or answered with a failure status."""


class MalformedModelResponse(ChatBridgeError):
    """The model provider answered with a body that cannot be interpreted."""


class ToolDispatchError(ChatBridgeError):
    """A tool could not be found, decoded or executed."""


class ProtocolHandshakeError(ChatBridgeError):
    """A remote tool server did not complete the initialize handshake or sent an unreadable body."""


class RetrievalError(ChatBridgeError):
    """Knowledge-base lookup failed."""


class EmbeddingError(RetrievalError):
    """An embedding request failed."""


class CompactionError(ChatBridgeError):
    """The summary completion used to compact a session failed."""


class SessionFinishedError(ChatBridgeError):
    """A user turn was offered to a structured session that has already finished."""

    def __init__(self, session_id: str, last_answer: str = ""):
        super().__init__(f"Session '{session_id}' is finished")
        self.session_id = session_id
        self.last_answer = last_answer


class TurnLogError(ChatBridgeError):
    """The durable turn log could not be read or written."""


class ToolLoopLimitExceeded(ChatBridgeError):
    """The model kept requesting tools past the configured number of rounds."""


class UnsupportedDocumentError(ChatBridgeError):
    """A document cannot be converted to plain text for ingestion."""
