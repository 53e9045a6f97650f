"""
Tool providers and the registry that dispatches to them.
"""

from .base import LocalToolProvider, ToolProvider
from .registry import ToolRegistry
from .remote import RemoteToolProvider
from .shell import ShellToolProvider
from .structured import STRUCTURED_ANSWER_DESCRIPTOR
from .watch import WatchToolProvider

__all__ = [
    "LocalToolProvider",
    "RemoteToolProvider",
    "ShellToolProvider",
    "STRUCTURED_ANSWER_DESCRIPTOR",
    "ToolProvider",
    "ToolRegistry",
    "WatchToolProvider",
]
