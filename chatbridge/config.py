"""
Configuration module for the Ollama Chat Bridge.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import List

DEFAULT_SYSTEM_ROLE = "Use tools if needed"

SUMMARY_PROMPT = (
    "Please make a summary of our dialog split by keywords 'user' and 'assistant', "
    "so I could use this summary to continue dialog"
)

MCP_PROTOCOL_VERSION = "2024-11-05"
MCP_SESSION_HEADER = "mcp-session-id"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class OllamaConfig:
    """Configuration for the Ollama client."""
    base_url: str = "http://localhost:11434"
    # Chat model; qwen2.5 supports tool calling on the OpenAI-compatible endpoint.
    model: str = "qwen2.5:3b"
    # Embedding model; nomic-embed-text produces 768-dimensional vectors.
    embedding_model: str = "nomic-embed-text"
    temperature: float = 0.7
    max_tokens: int = 2048
    timeout: int = 120  # Timeout for requests in seconds


@dataclass
class ToolServerConfig:
    """Configuration for one remote tool server."""
    name: str
    url: str
    timeout: int = 30


@dataclass
class SessionConfig:
    """Configuration for conversation sessions."""
    log_path: str = "data/chat_turns.jsonl"
    # Cached sessions expire this many seconds after their last write
    cache_ttl_seconds: int = 15 * 60
    # Number of turns that triggers a summary of the dialogue
    summary_threshold: int = 8
    summary_prompt: str = SUMMARY_PROMPT
    # Upper bound on model/tool round trips within one exchange
    max_tool_rounds: int = 10


@dataclass
class RetrievalConfig:
    """Configuration for retrieval augmentation."""
    store_dir: str = "data/rag_store"
    chunk_size: int = 300
    overlap: int = 50
    query_chunk_size: int = 50
    query_overlap: int = 10
    min_similarity: float = 0.7


@dataclass
class SchedulerConfig:
    """Configuration for background work."""
    report_interval_seconds: int = 3600
    report_prompt: str = "Give me a short status report using the available tools."
    report_role: str = "You are a personal assistant preparing a periodic report."
    watch_interval_seconds: int = 60
    heartbeat_interval_seconds: int = 30


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    log_file: str = "chatbridge.log"
    console_logging: bool = True
    file_logging: bool = False
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_tool_servers(raw: str, timeout: int) -> List[ToolServerConfig]:
    """
    Parse TOOL_SERVER_URLS.

    Entries are comma separated and may be given as ``name=url``; unnamed
    entries are numbered in order of appearance.
    """
    servers = []
    for index, entry in enumerate(e.strip() for e in raw.split(",")):
        if not entry:
            continue
        if "=" in entry and not entry.startswith("http"):
            name, url = entry.split("=", 1)
        else:
            name, url = f"remote-{index + 1}", entry
        servers.append(ToolServerConfig(name=name.strip(), url=url.strip(), timeout=timeout))
    return servers


@dataclass
class BridgeConfig:
    """Configuration for the Bridge."""
    ollama: OllamaConfig = field(default_factory=OllamaConfig)
    tool_servers: List[ToolServerConfig] = field(default_factory=list)
    session: SessionConfig = field(default_factory=SessionConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    enable_shell_tool: bool = True

    @classmethod
    def from_env(cls) -> "BridgeConfig":
        """
        Create a BridgeConfig object from environment variables.

        Returns:
            BridgeConfig object
        """
        ollama_config = OllamaConfig(
            base_url=os.getenv("OLLAMA_URL", "http://localhost:11434"),
            model=os.getenv("OLLAMA_MODEL", "qwen2.5:3b"),
            embedding_model=os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text"),
            temperature=float(os.getenv("OLLAMA_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("OLLAMA_MAX_TOKENS", "2048")),
            timeout=int(os.getenv("OLLAMA_TIMEOUT", "120")),
        )

        tool_servers = _parse_tool_servers(
            os.getenv("TOOL_SERVER_URLS", ""),
            timeout=int(os.getenv("TOOL_SERVER_TIMEOUT", "30")),
        )

        session_config = SessionConfig(
            log_path=os.getenv("SESSION_LOG_PATH", "data/chat_turns.jsonl"),
            cache_ttl_seconds=int(os.getenv("SESSION_CACHE_TTL", str(15 * 60))),
            summary_threshold=int(os.getenv("SUMMARY_THRESHOLD", "8")),
            max_tool_rounds=int(os.getenv("MAX_TOOL_ROUNDS", "10")),
        )

        retrieval_config = RetrievalConfig(
            store_dir=os.getenv("RAG_STORE_DIR", "data/rag_store"),
            chunk_size=int(os.getenv("RAG_CHUNK_SIZE", "300")),
            overlap=int(os.getenv("RAG_OVERLAP", "50")),
            min_similarity=float(os.getenv("RAG_MIN_SIMILARITY", "0.7")),
        )

        scheduler_config = SchedulerConfig(
            report_interval_seconds=int(os.getenv("REPORT_INTERVAL_SECONDS", "3600")),
            report_prompt=os.getenv("REPORT_PROMPT", SchedulerConfig.report_prompt),
            report_role=os.getenv("REPORT_ROLE", SchedulerConfig.report_role),
            watch_interval_seconds=int(os.getenv("WATCH_INTERVAL_SECONDS", "60")),
            heartbeat_interval_seconds=int(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "30")),
        )

        logging_config = LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "chatbridge.log"),
            console_logging=_env_bool("LOG_CONSOLE", "true"),
            file_logging=_env_bool("LOG_FILE_ENABLED", "false"),
        )

        return cls(
            ollama=ollama_config,
            tool_servers=tool_servers,
            session=session_config,
            retrieval=retrieval_config,
            scheduler=scheduler_config,
            logging=logging_config,
            enable_shell_tool=_env_bool("ENABLE_SHELL_TOOL", "true"),
        )


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """Set up logging configuration."""
    handlers: List[logging.Handler] = []

    if config.console_logging:
        handlers.append(logging.StreamHandler(sys.stdout))

    if config.file_logging:
        log_dir = os.path.dirname(config.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format=config.format,
        handlers=handlers or None,
        force=True,
    )

    return logging.getLogger("chatbridge")
