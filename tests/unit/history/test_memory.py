"""Tests for ConversationMemory and its extraction rules."""

from __future__ import annotations

from contextsmith.cache import BoundedCache
from contextsmith.config import MemoryCfg
from contextsmith.history.memory import (
    ConversationMemory,
    MemoryConfig,
    classify_phase,
    extract_decisions,
    extract_endpoints,
    extract_files,
    extract_tech,
    extractive_summary,
)
from contextsmith.history.models import ConversationTurn, Phase

_CODE_TURN = (
    "I created src/components/TodoList.tsx and src/hooks/useTodos.ts. "
    "We decided to use Tailwind because it speeds up styling.\n\n"
    "```tsx\n"
    "import { useTodos } from '../hooks/useTodos';\n"
    "export function TodoList() {\n"
    "  return <ul />;\n"
    "}\n"
    "```\n"
    "The list now calls POST /api/todos when you add an item."
)


def _turns() -> list[ConversationTurn]:
    return [
        ConversationTurn("system", "Never touch config/secret.yaml in answers."),
        ConversationTurn("user", "Let's build a todo app with React."),
        ConversationTurn("assistant", _CODE_TURN),
    ]


# ---------------------------------------------------------------------------
# Extraction rules
# ---------------------------------------------------------------------------


def test_extract_files():
    files = extract_files(_CODE_TURN)
    assert "src/components/TodoList.tsx" in files
    assert "src/hooks/useTodos.ts" in files


def test_extract_files_from_mention():
    assert extract_files("I updated the file README.md today") == ["README.md"]


def test_extract_endpoints():
    assert extract_endpoints("GET /api/users and DELETE /api/users/:id") == [
        "GET /api/users",
        "DELETE /api/users/:id",
    ]


def test_extract_decisions_with_reason():
    decisions = extract_decisions(_CODE_TURN)
    assert len(decisions) == 1
    assert decisions[0].text.startswith("decided to use Tailwind")
    assert decisions[0].reasoning == "it speeds up styling"


def test_extract_decisions_ignores_code():
    text = "```js\n// using a hack here.\n```\nNothing settled yet"
    assert extract_decisions(text) == []


def test_extract_decisions_needs_whole_word_cue():
    text = "The error message is confusing the user. The retry is causing a loop."
    assert extract_decisions(text) == []


def test_extract_tech_is_word_bounded():
    assert extract_tech("A React app on Next.js") == ["React", "Next.js"]
    assert extract_tech("the reactor") == []


def test_express_needs_capital():
    assert extract_tech("express your intent") == []
    assert extract_tech("An Express server") == ["Express"]


def test_classify_phase_priority_and_default():
    assert classify_phase(["There is an error, please fix the bug"]) is Phase.DEBUGGING
    assert classify_phase(["refactor and build"]) is Phase.REFINING  # tie → earlier phase
    assert classify_phase(["hello there"], Phase.BUILDING) is Phase.BUILDING


def test_extractive_summary_caps_length():
    text = "First sentence is rather long indeed. " + "Middle part. " * 10 + "Last one here."
    summary = extractive_summary(text, max_tokens=5)
    assert len(summary) <= 20
    assert summary.endswith("...")


def test_extractive_summary_keeps_decision_sentences():
    text = "Intro. Some noise. We chose Vite for speed. More noise. Outro."
    assert extractive_summary(text, 200) == "Intro. We chose Vite for speed. Outro."


# ---------------------------------------------------------------------------
# Compression + state
# ---------------------------------------------------------------------------


def test_compress_builds_project_state(estimator):
    memory = ConversationMemory(estimator)
    history = memory.compress("p1", _turns())
    state = history.state

    assert "src/components/TodoList.tsx" in state.files
    assert "TodoList" in state.components
    assert state.endpoints == ["POST /api/todos"]
    assert state.tech_stack == ["React", "Tailwind"]
    assert state.phase is Phase.BUILDING
    assert len(state.decisions) == 1


def test_system_turns_are_not_mined(estimator):
    memory = ConversationMemory(estimator)
    state = memory.compress("p1", _turns()).state
    assert "config/secret.yaml" not in state.files


def test_compress_is_idempotent(estimator):
    memory = ConversationMemory(estimator)
    first = memory.compress("p1", _turns()).state
    second = memory.compress("p1", _turns()).state

    assert second.files == first.files
    assert second.components == first.components
    assert second.decisions == first.decisions
    assert second.tech_stack == first.tech_stack


def test_state_lists_are_capped_oldest_first(estimator):
    memory = ConversationMemory(estimator, MemoryConfig(max_files=2))
    turns = [ConversationTurn("user", "see a/one.py then b/two.py then c/three.py")]
    state = memory.compress("p1", turns).state
    assert state.files == ["b/two.py", "c/three.py"]


def test_entries_skip_system_and_shrink_older(estimator):
    memory = ConversationMemory(estimator, MemoryConfig(max_tokens_per_entry=10, preserve_recent=1))
    long_text = "Opening statement goes here. " + "Detail. " * 20 + "Closing statement goes here."
    turns = [
        ConversationTurn("system", "sys"),
        ConversationTurn("user", long_text),
        ConversationTurn("assistant", long_text),
    ]
    history = memory.compress("p1", turns)

    assert [e.role for e in history.entries] == ["user", "assistant"]
    assert len(history.entries[0].summary) <= 20
    assert len(history.entries[1].summary) <= 40


def test_entries_capped_at_max_entries(estimator):
    memory = ConversationMemory(estimator, MemoryConfig(max_entries=2))
    turns = [ConversationTurn("user", f"message number {i}") for i in range(5)]
    history = memory.compress("p1", turns)
    assert [e.summary for e in history.entries] == ["message number 3", "message number 4"]


def test_compression_ratio(estimator):
    memory = ConversationMemory(estimator)
    history = memory.compress("p1", _turns())
    assert history.compressed_tokens > 0
    assert history.compression_ratio == history.original_tokens / history.compressed_tokens


def test_get_state_returns_copy(estimator):
    memory = ConversationMemory(estimator)
    memory.compress("p1", _turns())
    state = memory.get_state("p1")
    state.files.append("tampered.py")
    assert "tampered.py" not in memory.get_state("p1").files


def test_unknown_project_has_no_state(estimator):
    assert ConversationMemory(estimator).get_state("nope") is None


def test_record_decision_deduplicates(estimator):
    memory = ConversationMemory(estimator)
    memory.record_decision("p1", "Use Zustand for state", "small API")
    memory.record_decision("p1", "use zustand for state")
    state = memory.get_state("p1")
    assert len(state.decisions) == 1
    assert state.decisions[0].reasoning == "small API"


def test_projects_are_evicted_by_capacity(estimator):
    memory = ConversationMemory(estimator, cache=BoundedCache(1, name="test"))
    memory.compress("p1", _turns())
    memory.compress("p2", _turns())
    assert memory.get_state("p1") is None
    assert memory.get_state("p2") is not None


def test_forget(estimator):
    memory = ConversationMemory(estimator)
    memory.compress("p1", _turns())
    memory.forget("p1")
    assert memory.get_state("p1") is None


def test_render(estimator):
    memory = ConversationMemory(estimator)
    block = memory.render(memory.compress("p1", _turns()))

    assert block.startswith("[Project Context]\nPhase: building")
    assert "API Endpoints: POST /api/todos" in block
    assert "Tech Stack: React, Tailwind" in block
    assert "Key Decisions:" in block
    assert "[Conversation Summary]" in block
    assert "1. [user] Let's build a todo app with React." in block


def test_from_config(estimator):
    memory = ConversationMemory.from_config(MemoryCfg(max_files=3, max_projects=2), estimator)
    assert memory.config.max_files == 3
