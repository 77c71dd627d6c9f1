"""Memory engine: the caller-facing surface of Lorekeeper.

The engine is an explicit value built once per process from injected
collaborators and passed to request handlers. It wires the context builder,
template engine, generation client and interaction learner together:

    build context -> render prompt -> generate -> log -> learn
"""

import logging
from typing import Any

from lorekeeper.context.builder import ContextBuilder, format_memory_context
from lorekeeper.context.templates import PromptTemplateEngine
from lorekeeper.core.config import EngineConfig
from lorekeeper.core.exceptions import NotFoundError
from lorekeeper.core.protocols import (
    GenerationClient,
    InteractionLogSink,
    NarrativeStore,
    TagStore,
    TemplateStore,
)
from lorekeeper.core.types import (
    Character,
    CharacterChatResponse,
    ContextBundle,
    InteractionLog,
    LearningResult,
    MemoryAnalytics,
    MemoryEntry,
    MemoryFilter,
    MemoryUpdate,
    NewMemory,
    PlotSuggestionResponse,
    SceneContinuationResponse,
)
from lorekeeper.curator.analyzers import KeywordAnalyzer
from lorekeeper.curator.learner import InteractionLearner
from lorekeeper.memory.store import EntitySummaryStore

logger = logging.getLogger(__name__)


def format_character_background(character: Character) -> str:
    return f"{character.name} is a {character.species} from {character.origin}. {character.arc_summary}"


class MemoryEngine:
    """Coordinates memory-aware generation for characters, scenes and plots.

    Attributes:
        store: Entity summary store.
        narrative: Narrative data collaborator.
        generator: Text generation client.
        config: Engine configuration.
        context_builder: Builds context bundles.
        templates: Renders prompt templates.
        analyzer: Interaction heuristics and response parsing.
        learner: Post-response memory learner.
        interaction_log: Optional log sink.
    """

    def __init__(
        self,
        store: EntitySummaryStore,
        narrative: NarrativeStore,
        tags: TagStore,
        templates: TemplateStore,
        generator: GenerationClient,
        interaction_log: InteractionLogSink | None = None,
        config: EngineConfig | None = None,
        analyzer: KeywordAnalyzer | None = None,
    ):
        self.config = config or EngineConfig()
        self.store = store
        self.narrative = narrative
        self.generator = generator
        self.interaction_log = interaction_log
        self.analyzer = analyzer or KeywordAnalyzer(auto_tag=self.config.auto_tag_memories)
        self.context_builder = ContextBuilder(store, narrative, tags)
        self.templates = PromptTemplateEngine(templates)
        self.learner = InteractionLearner(store, analyzer=self.analyzer)

        logger.info(
            f"Initialized MemoryEngine with model={self.config.model}, "
            f"learning={self.config.enable_memory_learning}"
        )

    # ========== Generation ==========

    async def chat_with_character(
        self,
        character_id: str,
        message: str,
        world_id: str,
        scene_context: str | None = None,
    ) -> CharacterChatResponse:
        """Generate a character's reply to a user message.

        Raises:
            NotFoundError: If the character or the character_chat template is missing.
            GenerationError: If the generation provider fails.
        """
        character = await self.narrative.get_character(character_id)
        if character is None:
            raise NotFoundError(character_id, "character")

        bundle = await self.context_builder.build(world_id, character_id=character_id)
        prompt = await self.templates.render(
            "character_chat",
            {
                "character_name": character.name,
                "character_background": format_character_background(character),
                "current_situation": scene_context or "General conversation",
                "user_message": message,
                "active_memories": format_memory_context(bundle.active_memories),
            },
        )

        text = await self.generator.generate(model=self.config.model, prompt=prompt)
        emotion = self.analyzer.detect_emotion(text)

        await self._log_interaction(
            InteractionLog(
                entity_id=character_id,
                world_id=world_id,
                prompt=message,
                response=text,
                memories_used=[m.id for m in bundle.active_memories],
                detected_emotion=emotion,
                scene_context=bundle.scene_context,
            )
        )

        metadata: dict[str, Any] = {}
        if self.config.enable_memory_learning:
            learned = await self.learner.learn(character_id, message, text, bundle)
            metadata["learned_memories"] = [entry.id for entry in learned.new_entries]
            metadata["refreshed_memories"] = [entry.id for entry in learned.updated_entries]

        return CharacterChatResponse(
            text=text,
            memories_used=[m.id for m in bundle.active_memories],
            character_name=character.name,
            detected_emotion=emotion,
            metadata=metadata,
        )

    async def continue_scene(
        self, scene_id: str, previous_dialogue: str, world_id: str
    ) -> SceneContinuationResponse:
        """Continue a scene from its previous dialogue.

        Raises:
            NotFoundError: If the scene or the scene_continuation template is missing.
            GenerationError: If the generation provider fails.
        """
        scene = await self.narrative.get_scene(scene_id)
        if scene is None:
            raise NotFoundError(scene_id, "scene")

        bundle = await self.context_builder.build(world_id, scene_id=scene_id)
        prompt = await self.templates.render(
            "scene_continuation",
            {
                "world_context": bundle.world_context,
                "character_context": bundle.character_context,
                "scene_context": bundle.scene_context,
                "previous_dialogue": previous_dialogue,
                "memory_context": bundle.memory_context,
            },
        )

        text = await self.generator.generate(model=self.config.model, prompt=prompt)

        return SceneContinuationResponse(
            text=text,
            memories_used=[m.id for m in bundle.active_memories],
            scene_suggestions=self.analyzer.scene_suggestions(text),
            character_actions=self.analyzer.character_actions(text),
            plot_developments=self.analyzer.plot_developments(text),
        )

    async def generate_plot_suggestions(self, world_id: str) -> PlotSuggestionResponse:
        """Suggest plot developments for a world.

        Raises:
            NotFoundError: If the plot_development template is missing.
            GenerationError: If the generation provider fails.
        """
        bundle = await self.context_builder.build(world_id)
        prompt = await self.templates.render(
            "plot_development",
            {
                "world_state": bundle.world_context,
                "character_arcs": bundle.character_context,
                "recent_events": bundle.scene_context,
                "story_themes": self.analyzer.story_themes(bundle),
                "memory_context": bundle.memory_context,
            },
        )

        text = await self.generator.generate(model=self.config.model, prompt=prompt)

        return PlotSuggestionResponse(
            text=text,
            memories_used=[m.id for m in bundle.active_memories],
            suggested_actions=self.analyzer.suggested_actions(text),
        )

    async def _log_interaction(self, entry: InteractionLog) -> None:
        """Append to the interaction log. A failing sink never fails the request."""
        if self.interaction_log is None:
            return
        try:
            await self.interaction_log.append(entry)
        except Exception as e:
            logger.warning(f"Failed to log interaction for {entry.entity_id}: {e}")

    # ========== Context Passthroughs ==========

    async def build_context(
        self,
        world_id: str,
        character_id: str | None = None,
        scene_id: str | None = None,
    ) -> ContextBundle:
        return await self.context_builder.build(world_id, character_id, scene_id)

    async def render_prompt(self, template_kind: str, variables: dict[str, Any]) -> str:
        return await self.templates.render(template_kind, variables)

    async def learn_from_interaction(
        self,
        character_id: str,
        prompt_text: str,
        response_text: str,
        bundle: ContextBundle,
    ) -> LearningResult:
        return await self.learner.learn(character_id, prompt_text, response_text, bundle)

    # ========== Memory Management ==========

    async def create_memory(
        self,
        entity_type: str,
        entity_id: str,
        text: str,
        kind: str = "hard",
        tags: list[str] | None = None,
    ) -> MemoryEntry:
        return await self.store.create_entry(entity_type, entity_id, text, kind, tags)

    async def batch_create_memories(
        self, items: list[NewMemory | dict[str, Any]]
    ) -> list[MemoryEntry]:
        return await self.store.batch_create_entries(items)

    async def update_memory(
        self, memory_id: str, update: MemoryUpdate | dict[str, Any]
    ) -> MemoryEntry:
        return await self.store.update_entry(memory_id, update)

    async def query_memories(
        self,
        entity_type: str,
        entity_id: str,
        filter: MemoryFilter | dict[str, Any] | None = None,
    ) -> list[MemoryEntry]:
        return await self.store.query(entity_type, entity_id, filter)

    async def get_relevant_memories(
        self,
        entity_type: str,
        entity_id: str,
        context: str,
        limit: int | None = None,
    ) -> list[MemoryEntry]:
        return await self.store.get_relevant_memories(
            entity_type, entity_id, context, limit or self.config.memory_context_length
        )

    async def get_memory_history(self, entity_type: str, entity_id: str) -> list[MemoryEntry]:
        return await self.store.get_history(entity_type, entity_id)

    async def get_memory_analytics(self, entity_type: str, entity_id: str) -> MemoryAnalytics:
        return await self.store.get_analytics(entity_type, entity_id)
