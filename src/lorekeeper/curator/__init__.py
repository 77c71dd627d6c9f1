"""Memory curation after each interaction.

The curator mines new memories from a generated response, refreshes the
memories the interaction touched and links related memories together.
"""

from lorekeeper.curator.analyzers import InteractionAnalyzer, KeywordAnalyzer
from lorekeeper.curator.learner import InteractionLearner
from lorekeeper.curator.linkers import MemoryLinker

__all__ = [
    "InteractionAnalyzer",
    "KeywordAnalyzer",
    "InteractionLearner",
    "MemoryLinker",
]
