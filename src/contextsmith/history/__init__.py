"""Conversation history — pruning, structured memory, summarization."""

from contextsmith.history.memory import ConversationMemory, MemoryConfig
from contextsmith.history.models import (
    CompressedHistory,
    ConversationTurn,
    Decision,
    MemoryEntry,
    Phase,
    ProjectMemoryState,
)
from contextsmith.history.pruner import ContextPruner, PruningConfig, PruningResult

__all__ = [
    "CompressedHistory",
    "ContextPruner",
    "ConversationMemory",
    "ConversationTurn",
    "Decision",
    "MemoryConfig",
    "MemoryEntry",
    "Phase",
    "ProjectMemoryState",
    "PruningConfig",
    "PruningResult",
]
