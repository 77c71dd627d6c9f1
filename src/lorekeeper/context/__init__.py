"""Context assembly and prompt rendering for generation requests."""

from lorekeeper.context.builder import ContextBuilder
from lorekeeper.context.templates import PromptTemplateEngine

__all__ = ["ContextBuilder", "PromptTemplateEngine"]
