"""
Adapters for text generation backends.

Provider-agnostic architecture: Protocol defines WHAT, implementations define HOW.
"""

from .anthropic import AnthropicAdapter
from .base import AdapterStatus, GenerationAdapter
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai import OpenAIAdapter

__all__ = [
    "AdapterStatus",
    "AnthropicAdapter",
    "GeminiAdapter",
    "GenerationAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
]
