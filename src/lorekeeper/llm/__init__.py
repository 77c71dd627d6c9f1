"""LLM client module for Lorekeeper.

This module provides the text generation provider via Ollama.
"""

from lorekeeper.llm.client import OllamaClient

__all__ = ["OllamaClient"]
