"""Interaction analyzers that turn a generation round trip into memory candidates.

The learner only depends on the ``InteractionAnalyzer`` protocol, so the
keyword heuristics here can be swapped for a model-backed classifier without
changing the learner's control flow.
"""

import logging
from typing import Protocol

from lorekeeper.core.types import ContextBundle, MemoryCandidate, MemoryEntry

logger = logging.getLogger(__name__)

EMOTIONS = ("joy", "sadness", "anger", "fear", "surprise", "disgust")
STORY_THEMES = ("conflict", "love", "power")
ENHANCEMENT_PREVIEW_CHARS = 100


class InteractionAnalyzer(Protocol):
    """Strategy used by the learner and the engine responses."""

    def propose_memories(
        self, prompt_text: str, response_text: str, bundle: ContextBundle
    ) -> list[MemoryCandidate]:
        """Propose memories worth storing. Must never raise."""
        ...

    def should_refresh(self, memory: MemoryEntry, prompt_text: str, response_text: str) -> bool:
        """Whether an active memory was touched by this interaction."""
        ...

    def enhance_text(self, text: str, response_text: str) -> str:
        """New text for a refreshed memory."""
        ...

    def detect_emotion(self, text: str) -> str:
        """Dominant emotion named in text, or "neutral"."""
        ...


def _lines_mentioning(text: str, *keywords: str) -> list[str]:
    lines = []
    for line in (text or "").splitlines():
        lowered = line.lower()
        if line.strip() and any(keyword in lowered for keyword in keywords):
            lines.append(line.strip())
    return lines


class KeywordAnalyzer:
    """Deterministic keyword heuristics.

    - "remember" in the response proposes a past-events memory tagged
      ``[temporal:past]`` and ``[lore:history]``.
    - "feel" or "emotion" in the response proposes an emotion memory tagged
      with the detected emotion (``joy`` when none is named).
    - A soft memory is refreshed when the prompt mentions "remember" or the
      response mentions "memory".

    Matching is case-insensitive.
    """

    def __init__(self, auto_tag: bool = True):
        self.auto_tag = auto_tag

    def propose_memories(
        self, prompt_text: str, response_text: str, bundle: ContextBundle
    ) -> list[MemoryCandidate]:
        try:
            return self._propose(response_text or "")
        except Exception as e:
            logger.warning(f"Interaction analysis failed, proposing nothing: {e}")
            return []

    def _propose(self, response_text: str) -> list[MemoryCandidate]:
        lowered = response_text.lower()
        candidates: list[MemoryCandidate] = []

        if "remember" in lowered:
            candidates.append(
                MemoryCandidate(
                    text=f"Character recalls past events: {response_text}",
                    tags=["[temporal:past]", "[lore:history]"] if self.auto_tag else [],
                )
            )

        if "feel" in lowered or "emotion" in lowered:
            emotion = self.detect_emotion(response_text)
            if emotion == "neutral":
                emotion = "joy"
            candidates.append(
                MemoryCandidate(
                    text=f"Character expresses emotion: {response_text}",
                    tags=[f"[emotion:{emotion}]"] if self.auto_tag else [],
                )
            )

        return candidates

    def should_refresh(self, memory: MemoryEntry, prompt_text: str, response_text: str) -> bool:
        return memory.memory_kind == "soft" and (
            "remember" in (prompt_text or "").lower() or "memory" in (response_text or "").lower()
        )

    def enhance_text(self, text: str, response_text: str) -> str:
        preview = (response_text or "")[:ENHANCEMENT_PREVIEW_CHARS]
        return f"{text} [Enhanced with: {preview}...]"

    def detect_emotion(self, text: str) -> str:
        lowered = (text or "").lower()
        for emotion in EMOTIONS:
            if emotion in lowered:
                return emotion
        return "neutral"

    # Response parsing used by the engine

    def scene_suggestions(self, text: str) -> list[str]:
        return _lines_mentioning(text, "scene", "suggest")

    def character_actions(self, text: str) -> list[str]:
        return _lines_mentioning(text, "action", "do")

    def plot_developments(self, text: str) -> list[str]:
        return _lines_mentioning(text, "plot", "develop")

    def suggested_actions(self, text: str) -> list[str]:
        return _lines_mentioning(text, "suggest", "could")

    def story_themes(self, bundle: ContextBundle) -> str:
        world = bundle.world_context.lower()
        return ", ".join(theme for theme in STORY_THEMES if theme in world)
