"""Conversation memory compressor — structured project state across turns.

Raw history grows without bound; what a code model actually needs is "what
has been built so far".  ConversationMemory lifts that out of the turns with
rule tables (files, components, endpoints, decisions, tech stack, phase) and
keeps it per project in a bounded cache.  Extraction is additive and
idempotent: feeding the same turns twice changes nothing.

Each turn is also compressed into a MemoryEntry (extractive summary plus
entities/actions).  Recent turns get the full per-entry token cap, older
ones half of it.
"""

from __future__ import annotations

import copy
import logging
import re
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from contextsmith.cache import BoundedCache
from contextsmith.estimator import TokenEstimator, default_estimator
from contextsmith.history.models import (
    CompressedHistory,
    ConversationTurn,
    Decision,
    MemoryEntry,
    Phase,
    ProjectMemoryState,
)

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Extraction rules
# ------------------------------------------------------------------

_FILE_PATH_RE = re.compile(
    r"(?<![\w/.:@-])(?:\.{1,2}/)?(?:[\w@-][\w.@-]*/)+[\w.-]+\.[A-Za-z0-9]{1,6}\b"
)
_FILE_MENTION_RE = re.compile(
    r"\b(?:created|updated|modified|edited)\s+(?:the\s+)?file\s+[`'\"]?([\w./-]+\w)",
    re.IGNORECASE,
)
_DECLARATION_RE = re.compile(
    r"\b(?:function|const|let|class|interface|type)\s+([A-Z][A-Za-z0-9_]*)"
)
_FUNCTION_RE = re.compile(r"\b(?:function|def)\s+([A-Za-z_][A-Za-z0-9_]*)")
_IMPORT_RE = re.compile(
    r"""\bfrom\s+['"]([^'"]+)['"]"""
    r"""|\brequire\(\s*['"]([^'"]+)['"]\s*\)"""
    r"""|^\s*from\s+([\w.]+)\s+import\b"""
    r"""|^\s*import\s+([\w.]+)\s*$""",
    re.MULTILINE,
)
_ENDPOINT_RE = re.compile(r"\b(GET|POST|PUT|DELETE|PATCH)\s+(/[\w\-./:{}]*)")
_DECISION_RE = re.compile(
    r"\b(?:decided|chose|using|switched to|went with)\s+(.+?)(?:\.|$)",
    re.IGNORECASE | re.MULTILINE,
)
_REASON_RE = re.compile(r"\b(?:because|since|so that)\s+(.+)$", re.IGNORECASE)
_ACTION_RE = re.compile(
    r"\b(created|updated|deleted|fixed|added|removed)\s+(\S+(?:\s+\S+)?)",
    re.IGNORECASE,
)
_DECISION_SENTENCE_RE = re.compile(
    r"\b(?:decided|chose|using|switched|went with|because|therefore)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_CODE_FENCE_RE = re.compile(r"```[\s\S]*?```")

TECH_VOCABULARY: tuple[str, ...] = (
    "React", "Express", "Tailwind", "TypeScript", "JavaScript", "Node.js",
    "Next.js", "Vite", "PostgreSQL", "MongoDB", "Redis", "Docker", "GraphQL",
    "REST", "Prisma", "Drizzle", "Vue", "Angular", "Svelte", "Flask",
    "Django", "FastAPI", "TailwindCSS", "Bootstrap", "Material UI", "Chakra UI",
)

# Names that are also ordinary English words only count when capitalised.
_CASE_SENSITIVE_TECH: frozenset[str] = frozenset(["REST", "Express"])


def _tech_pattern(name: str) -> re.Pattern[str]:
    flags = 0 if name in _CASE_SENSITIVE_TECH else re.IGNORECASE
    return re.compile(r"(?<![A-Za-z0-9])" + re.escape(name) + r"(?![A-Za-z0-9])", flags)


_TECH_RULES: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (name, _tech_pattern(name)) for name in TECH_VOCABULARY
)

# Checked in priority order; the first phase wins a tie.
_PHASE_RULES: tuple[tuple[Phase, re.Pattern[str]], ...] = (
    (
        Phase.DEBUGGING,
        re.compile(
            r"\b(?:fix(?:ing|ed)?|debug(?:ging)?|errors?|bugs?|broken|crash(?:es|ing)?|exceptions?)\b",
            re.IGNORECASE,
        ),
    ),
    (
        Phase.REFINING,
        re.compile(
            r"\b(?:refactor(?:ing)?|improv(?:e|ing)|polish(?:ing)?|optimi[sz](?:e|ing)|clean(?:ing)?\s+up)\b",
            re.IGNORECASE,
        ),
    ),
    (
        Phase.BUILDING,
        re.compile(
            r"\b(?:build(?:ing)?|implement(?:ing)?|creat(?:e|ing)|add(?:ing)?)\b",
            re.IGNORECASE,
        ),
    ),
    (
        Phase.PLANNING,
        re.compile(
            r"\b(?:plan(?:ning)?|design(?:ing)?|architecture|outline|requirements?)\b",
            re.IGNORECASE,
        ),
    ),
)

_MAX_ENTITIES_PER_ENTRY = 15
_MAX_ACTIONS_PER_ENTRY = 10
_MAX_DECISION_CHARS = 200
_CHARS_PER_TOKEN = 4
_RENDER_DECISIONS = 5


@dataclass
class MemoryConfig:
    """Caps and entry sizing for ConversationMemory."""

    max_entries: int = 20
    max_tokens_per_entry: int = 200
    preserve_recent: int = 3
    max_files: int = 30
    max_decisions: int = 20
    max_components: int = 50
    max_endpoints: int = 50
    max_tech: int = 30

    @classmethod
    def from_config(cls, cfg) -> MemoryConfig:
        """Build from a ``MemoryCfg`` section."""
        return cls(
            max_entries=cfg.max_entries,
            max_tokens_per_entry=cfg.max_tokens_per_entry,
            preserve_recent=cfg.preserve_recent,
            max_files=cfg.max_files,
            max_decisions=cfg.max_decisions,
            max_components=cfg.max_components,
            max_endpoints=cfg.max_endpoints,
            max_tech=cfg.max_tech,
        )


# ------------------------------------------------------------------
# Pure extraction helpers
# ------------------------------------------------------------------


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _append_capped(target: list, items: Iterable, cap: int) -> None:
    """Append unseen *items* to *target*, then drop the oldest past *cap*."""
    for item in items:
        if item not in target:
            target.append(item)
    if len(target) > cap:
        del target[: len(target) - cap]


def _strip_code(text: str) -> str:
    return _CODE_FENCE_RE.sub(" ", text)


def extract_files(text: str) -> list[str]:
    found = [m.group(0) for m in _FILE_PATH_RE.finditer(text)]
    found += [m.group(1) for m in _FILE_MENTION_RE.finditer(text)]
    return _dedupe(found)


def extract_components(text: str) -> list[str]:
    return _dedupe(m.group(1) for m in _DECLARATION_RE.finditer(text))


def extract_endpoints(text: str) -> list[str]:
    return _dedupe(f"{m.group(1)} {m.group(2)}" for m in _ENDPOINT_RE.finditer(text))


def extract_decisions(text: str) -> list[Decision]:
    """Decision sentences from prose; code fences are ignored."""
    decisions: list[Decision] = []
    seen: set[str] = set()
    for m in _DECISION_RE.finditer(_strip_code(text)):
        sentence = " ".join(m.group(0).split())[:_MAX_DECISION_CHARS]
        key = sentence.lower()
        if key in seen:
            continue
        seen.add(key)
        reason = _REASON_RE.search(m.group(1))
        decisions.append(Decision(text=sentence, reasoning=reason.group(1).strip() if reason else ""))
    return decisions


def extract_tech(text: str) -> list[str]:
    return [name for name, pattern in _TECH_RULES if pattern.search(text)]


def classify_phase(texts: Iterable[str], current: Phase | None = None) -> Phase | None:
    """Phase with the most keyword hits; ties go to the earlier phase in priority order.

    Returns *current* when no phase keyword appears at all.
    """
    counts = {phase: 0 for phase, _ in _PHASE_RULES}
    for text in texts:
        for phase, pattern in _PHASE_RULES:
            counts[phase] += len(pattern.findall(text))

    best: Phase | None = None
    best_count = 0
    for phase, _ in _PHASE_RULES:
        if counts[phase] > best_count:
            best, best_count = phase, counts[phase]
    return best if best is not None else current


def extract_entities(text: str) -> list[str]:
    imports = [next(g for g in m.groups() if g) for m in _IMPORT_RE.finditer(text)]
    return _dedupe(
        [p.rsplit("/", 1)[-1] for p in extract_files(text)]
        + extract_components(text)
        + [m.group(1) for m in _FUNCTION_RE.finditer(text)]
        + imports
    )[:_MAX_ENTITIES_PER_ENTRY]


def extract_actions(text: str) -> list[str]:
    return _dedupe(
        f"{m.group(1).lower()} {m.group(2).rstrip('.,;:')}" for m in _ACTION_RE.finditer(text)
    )[:_MAX_ACTIONS_PER_ENTRY]


def extractive_summary(text: str, max_tokens: int) -> str:
    """First sentence + decision-bearing sentences + last sentence, char-capped."""
    prose = " ".join(_strip_code(text).split())
    if not prose:
        return ""
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(prose) if s]
    picked = [sentences[0]]
    picked += [s for s in sentences[1:-1] if _DECISION_SENTENCE_RE.search(s)]
    if len(sentences) > 1:
        picked.append(sentences[-1])
    summary = " ".join(_dedupe(picked))

    limit = max(1, max_tokens) * _CHARS_PER_TOKEN
    if len(summary) > limit:
        summary = summary[: max(0, limit - 3)].rstrip() + "..."
    return summary


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------


class ConversationMemory:
    """Per-project structured memory with bounded storage.

    Args:
        estimator: Token estimator for accounting; defaults to the shared one.
        config: Default caps and entry sizing.
        cache: Store for ProjectMemoryState objects; defaults to a 100-entry LRU.
    """

    def __init__(
        self,
        estimator: TokenEstimator | None = None,
        config: MemoryConfig | None = None,
        *,
        cache: BoundedCache[str, ProjectMemoryState] | None = None,
    ) -> None:
        self._estimator = estimator or default_estimator()
        self.config = config or MemoryConfig()
        self._states: BoundedCache[str, ProjectMemoryState] = cache or BoundedCache(
            100, "lru", name="project-memory"
        )

    @classmethod
    def from_config(cls, cfg, estimator: TokenEstimator | None = None) -> ConversationMemory:
        """Build from a ``MemoryCfg`` section."""
        return cls(
            estimator,
            MemoryConfig.from_config(cfg),
            cache=BoundedCache(cfg.max_projects, "lru", name="project-memory"),
        )

    # ------------------------------------------------------------------
    # Compression
    # ------------------------------------------------------------------

    def compress(
        self,
        project_id: str,
        turns: Sequence[ConversationTurn],
        config: MemoryConfig | None = None,
    ) -> CompressedHistory:
        """Fold *turns* into the project's state and compress them into entries."""
        config = config or self.config

        with self._states.lock(project_id):
            state = self._states.get(project_id)
            if state is None:
                state = ProjectMemoryState(project_id=project_id)
                logger.debug("Created memory state for project %s", project_id)
            self._merge(state, turns, config)
            self._states.set(project_id, state)
            snapshot = copy.deepcopy(state)

        entries = self._compress_turns(turns, config)
        history = CompressedHistory(
            state=snapshot,
            entries=entries,
            original_tokens=sum(self._count(t) for t in turns),
            compressed_tokens=0,
        )
        history.compressed_tokens = self._estimator.estimate(self.render(history))
        return history

    def _merge(
        self,
        state: ProjectMemoryState,
        turns: Sequence[ConversationTurn],
        config: MemoryConfig,
    ) -> None:
        texts = [t.content for t in turns if t.role != "system"]
        for text in texts:
            _append_capped(state.files, extract_files(text), config.max_files)
            _append_capped(state.components, extract_components(text), config.max_components)
            _append_capped(state.endpoints, extract_endpoints(text), config.max_endpoints)
            _append_capped(state.tech_stack, extract_tech(text), config.max_tech)
            known = {d.text.lower() for d in state.decisions}
            fresh = [d for d in extract_decisions(text) if d.text.lower() not in known]
            _append_capped(state.decisions, fresh, config.max_decisions)

        state.phase = classify_phase(texts, state.phase) or state.phase
        state.updated_at = time.time()

    def _compress_turns(
        self,
        turns: Sequence[ConversationTurn],
        config: MemoryConfig,
    ) -> list[MemoryEntry]:
        conversation = [t for t in turns if t.role != "system"]
        recent_start = len(conversation) - config.preserve_recent
        entries: list[MemoryEntry] = []
        for i, turn in enumerate(conversation):
            cap = config.max_tokens_per_entry
            if i < recent_start:
                cap = max(1, cap // 2)
            entries.append(self.compress_turn(turn, cap))
        return entries[-config.max_entries:] if config.max_entries > 0 else []

    def compress_turn(self, turn: ConversationTurn, max_tokens: int) -> MemoryEntry:
        summary = extractive_summary(turn.content, max_tokens)
        return MemoryEntry(
            role=turn.role,
            summary=summary,
            entities=tuple(extract_entities(turn.content)),
            actions=tuple(extract_actions(turn.content)),
            original_tokens=self._count(turn),
            compressed_tokens=self._estimator.estimate(summary),
        )

    def _count(self, turn: ConversationTurn) -> int:
        if turn.token_count is not None:
            return turn.token_count
        return self._estimator.estimate(turn.content)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def get_state(self, project_id: str) -> ProjectMemoryState | None:
        """Return a copy of the project's state, or None if unknown or evicted."""
        state = self._states.get(project_id)
        return copy.deepcopy(state) if state is not None else None

    def record_decision(self, project_id: str, decision: str, reasoning: str = "") -> None:
        """Log a decision made outside the conversation (e.g. by a build step)."""
        with self._states.lock(project_id):
            state = self._states.get(project_id) or ProjectMemoryState(project_id=project_id)
            if decision.lower() not in {d.text.lower() for d in state.decisions}:
                _append_capped(
                    state.decisions,
                    [Decision(text=decision[:_MAX_DECISION_CHARS], reasoning=reasoning)],
                    self.config.max_decisions,
                )
            state.updated_at = time.time()
            self._states.set(project_id, state)

    def forget(self, project_id: str) -> None:
        self._states.pop(project_id)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, history: CompressedHistory) -> str:
        """Flatten *history* into a prompt block."""
        state = history.state
        lines = ["[Project Context]", f"Phase: {state.phase.value}"]
        if state.files:
            lines.append(f"Files: {', '.join(state.files)}")
        if state.components:
            lines.append(f"Components: {', '.join(state.components)}")
        if state.endpoints:
            lines.append(f"API Endpoints: {', '.join(state.endpoints)}")
        if state.tech_stack:
            lines.append(f"Tech Stack: {', '.join(state.tech_stack)}")
        if state.decisions:
            lines.append("Key Decisions:")
            lines.extend(f"- {d.text}" for d in state.decisions[-_RENDER_DECISIONS:])

        if history.entries:
            lines.append("")
            lines.append("[Conversation Summary]")
            for i, entry in enumerate(history.entries, start=1):
                lines.append(f"{i}. [{entry.role}] {entry.summary}")
        return "\n".join(lines)
