"""
Ollama Chat Bridge
------------------
This package connects an Ollama-hosted language model to local and remote
tools, keeps durable conversation history with automatic summarisation, and
can ground prompts in a private knowledge base.
"""

__version__ = "0.1.0"

import logging

# Library default: stay silent until the entry point calls setup_logging().
logging.getLogger(__name__).addHandler(logging.NullHandler())
