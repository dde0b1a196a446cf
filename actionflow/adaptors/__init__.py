"""Completion clients for actionflow.

This module provides implementations of CompletionClient for various LLM providers.
"""

from actionflow.adaptors.openai import OpenAIAdaptor

__all__ = ["OpenAIAdaptor"]

# Conditional imports for optional SDK-based adaptors
try:
    from actionflow.adaptors.anthropic import AnthropicAdaptor

    __all__.append("AnthropicAdaptor")
except ImportError:
    pass

try:
    from actionflow.adaptors.ollama import OllamaAdaptor

    __all__.append("OllamaAdaptor")
except ImportError:
    pass
