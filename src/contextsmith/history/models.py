"""Data model for conversation history and project memory."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum

ROLES: frozenset[str] = frozenset(["system", "user", "assistant"])


@dataclass(frozen=True)
class ConversationTurn:
    """One message in a conversation.

    Attributes:
        role: 'system', 'user' or 'assistant'.
        content: Message text.
        token_count: Cached token estimate; ``None`` means not yet counted.
    """

    role: str
    content: str
    token_count: int | None = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"role must be one of {sorted(ROLES)}, got {self.role!r}")

    def with_content(self, content: str) -> ConversationTurn:
        """Return a copy carrying *content*; the cached count is dropped."""
        return replace(self, content=content, token_count=None)


class Phase(str, Enum):
    """Build phase of a project, inferred from conversation keywords."""

    PLANNING = "planning"
    BUILDING = "building"
    REFINING = "refining"
    DEBUGGING = "debugging"


@dataclass(frozen=True)
class Decision:
    """A design decision lifted from the conversation."""

    text: str
    reasoning: str
    recorded_at: float = field(default_factory=time.time)


@dataclass
class ProjectMemoryState:
    """Accumulated 'what has been built' summary for one project.

    Every list is capped; the oldest entries drop first.
    """

    project_id: str
    files: list[str] = field(default_factory=list)
    components: list[str] = field(default_factory=list)
    endpoints: list[str] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    tech_stack: list[str] = field(default_factory=list)
    phase: Phase = Phase.PLANNING
    updated_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class MemoryEntry:
    """Compressed form of one conversation turn."""

    role: str
    summary: str
    entities: tuple[str, ...]
    actions: tuple[str, ...]
    original_tokens: int
    compressed_tokens: int


@dataclass
class CompressedHistory:
    """Result of ConversationMemory.compress()."""

    state: ProjectMemoryState
    entries: list[MemoryEntry]
    original_tokens: int
    compressed_tokens: int

    @property
    def compression_ratio(self) -> float:
        return self.original_tokens / max(1, self.compressed_tokens)
