"""Budgeted file selection — choose whole files for a prompt under a token budget.

Each candidate file gets a relevance score in [0, 1]::

    0.40 × keyword relevance    (query keywords in path / content)
  + 0.20 × structural quality   (import/export/control-flow line density)
  + 0.25 × adjacency            (imports or is imported by the active file)
  + 0.15 × export density

Files are added greedily by score while they fit.  The first file that does
not fit but scores at or above the high-relevance cutoff is still included,
compressed line-by-line so that its most structural lines survive.  The
selection never exceeds its budget.
"""

from __future__ import annotations

import logging
import posixpath
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from contextsmith.estimator import STRUCTURAL_OVERHEAD, TokenEstimator, default_estimator
from contextsmith.index.chunker import extract_exports
from contextsmith.index.models import SourceFile
from contextsmith.index.retriever import as_source_files

logger = logging.getLogger(__name__)

_STOPWORDS: frozenset[str] = frozenset(
    """a an and are as at be but by can do for from has have how i if in into is it
    its make me my need not of on or please should so that the their them then this
    to use using want we what when where which will with would you your add create
    build update change fix new file files code app""".split()
)

_WORD_RE = re.compile(r"[A-Za-z][A-Za-z0-9_]*")
_STRUCTURE_RE = re.compile(
    r"^\s*(?:import|export|from|return|throw|raise|if|elif|else|for|while|switch|case|"
    r"try|catch|except|class|def|function|const|let|var|interface|type|async)\b"
)

# Line priorities used when a file must be compressed.
_DECLARATION_LINE_RE = re.compile(
    r"^\s*(?:import|export|from|function|class|def|async|interface|type|const|let|var)\b"
)
_CONTROL_LINE_RE = re.compile(
    r"^\s*(?:return|throw|raise|if|elif|else|for|while|switch|try|catch|except|with)\b"
)
_LINE_COMMENT_RE = re.compile(r"^\s*(?://|#)")

PRIORITY_DECLARATION = 5.0
PRIORITY_CONTROL = 4.0
PRIORITY_CODE = 2.0
PRIORITY_LINE_COMMENT = 1.0
PRIORITY_BLOCK_COMMENT = 0.5
PRIORITY_BLANK = 0.3


@dataclass
class SelectionConfig:
    high_relevance: float = 0.6
    max_elisions: int = 5
    keyword_weight: float = 0.40
    structure_weight: float = 0.20
    adjacency_weight: float = 0.25
    export_weight: float = 0.15

    @classmethod
    def from_config(cls, cfg) -> SelectionConfig:
        """Build from a ``SelectionCfg`` section."""
        return cls(high_relevance=cfg.high_relevance, max_elisions=cfg.max_elisions)


@dataclass
class FileScore:
    path: str
    score: float
    keyword: float
    structure: float
    adjacency: float
    exports: float


@dataclass
class SelectedFile:
    path: str
    content: str
    tokens: int
    score: float
    compressed: bool = False


@dataclass
class ContextSelection:
    """Files chosen for a prompt.

    Attributes:
        budget_exhausted: At least one candidate was left out for lack of budget.
    """

    files: list[SelectedFile] = field(default_factory=list)
    total_tokens: int = 0
    budget: int = 0
    skipped: list[str] = field(default_factory=list)
    budget_exhausted: bool = False

    def render(self) -> str:
        return "\n\n".join(f"// File: {f.path}\n{f.content}" for f in self.files)


# ------------------------------------------------------------------
# Scoring
# ------------------------------------------------------------------


def query_keywords(query: str) -> list[str]:
    words = [w.lower() for w in _WORD_RE.findall(query)]
    return list(dict.fromkeys(w for w in words if len(w) > 2 and w not in _STOPWORDS))


def _stem(path: str) -> str:
    return posixpath.splitext(posixpath.basename(path))[0]


def _imports_module(content: str, stem: str) -> bool:
    if not stem:
        return False
    s = re.escape(stem)
    return bool(
        re.search(r"""(?:from|import|require\()\s*['"][^'"]*\b""" + s + r"""(?:\.\w+)?['"]""", content)
        or re.search(r"^\s*(?:from\s+[\w.]*\b" + s + r"\b\s+import|import\s+[\w.]*\b" + s + r"\b)", content, re.MULTILINE)
    )


def _adjacency(file: SourceFile, active: SourceFile | None) -> float:
    if active is None:
        return 0.0
    if file.path == active.path:
        return 1.0
    if _imports_module(file.content, _stem(active.path)) or _imports_module(active.content, _stem(file.path)):
        return 1.0
    if posixpath.dirname(file.path) == posixpath.dirname(active.path):
        return 0.4
    return 0.0


def score_file(
    file: SourceFile,
    keywords: list[str],
    active: SourceFile | None = None,
    config: SelectionConfig | None = None,
) -> FileScore:
    """Blend the four relevance signals for one file."""
    config = config or SelectionConfig()
    path = file.path.lower()
    content = file.content.lower()

    if keywords:
        hits = [1.0 if kw in path else 0.6 if kw in content else 0.0 for kw in keywords]
        keyword = sum(hits) / len(keywords)
    else:
        keyword = 0.0

    code_lines = [ln for ln in file.content.split("\n") if ln.strip()]
    if code_lines:
        density = sum(1 for ln in code_lines if _STRUCTURE_RE.match(ln)) / len(code_lines)
        structure = min(1.0, density * 2)
    else:
        structure = 0.0

    adjacency = _adjacency(file, active)
    exports = min(1.0, len(extract_exports(file.content)) / 5)

    score = (
        config.keyword_weight * keyword
        + config.structure_weight * structure
        + config.adjacency_weight * adjacency
        + config.export_weight * exports
    )
    return FileScore(file.path, score, keyword, structure, adjacency, exports)


# ------------------------------------------------------------------
# Line-priority compression
# ------------------------------------------------------------------


def line_priorities(lines: list[str]) -> list[float]:
    priorities: list[float] = []
    in_block = False
    for line in lines:
        stripped = line.strip()
        if in_block:
            priorities.append(PRIORITY_BLOCK_COMMENT)
            if "*/" in stripped:
                in_block = False
            continue
        if not stripped:
            priorities.append(PRIORITY_BLANK)
        elif stripped.startswith("/*"):
            priorities.append(PRIORITY_BLOCK_COMMENT)
            in_block = "*/" not in stripped
        elif _LINE_COMMENT_RE.match(line):
            priorities.append(PRIORITY_LINE_COMMENT)
        elif _DECLARATION_LINE_RE.match(line):
            priorities.append(PRIORITY_DECLARATION)
        elif _CONTROL_LINE_RE.match(line):
            priorities.append(PRIORITY_CONTROL)
        else:
            priorities.append(PRIORITY_CODE)
    return priorities


def _elision(count: int) -> str:
    return f"// ... ({count} lines elided)"


def _assemble(lines: list[str], keep: set[int], max_elisions: int) -> str:
    out: list[str] = []
    markers = 0
    gap = 0
    for i, line in enumerate(lines):
        if i in keep:
            if gap:
                if markers < max_elisions:
                    out.append(_elision(gap))
                    markers += 1
                gap = 0
            out.append(line)
        else:
            gap += 1
    if gap and out and markers < max_elisions:
        out.append(_elision(gap))
    return "\n".join(out)


def compress_lines(
    content: str,
    max_tokens: int,
    estimator: TokenEstimator | None = None,
    max_elisions: int = 5,
) -> str:
    """Keep the highest-priority lines of *content* within *max_tokens*.

    Kept lines stay in source order; each run of dropped lines becomes one
    elision marker, at most *max_elisions* of them.  Returns "" when not
    even one line fits.
    """
    estimator = estimator or default_estimator()
    if max_tokens <= STRUCTURAL_OVERHEAD or not content.strip():
        return ""
    if estimator.estimate(content) <= max_tokens:
        return content

    lines = content.split("\n")
    priorities = line_priorities(lines)
    order = sorted(range(len(lines)), key=lambda i: (-priorities[i], i))

    marker_cost = estimator.estimate(_elision(len(lines)), include_overhead=False)
    left = max_tokens - STRUCTURAL_OVERHEAD - marker_cost * max_elisions
    keep: set[int] = set()
    for i in order:
        cost = estimator.estimate(lines[i], include_overhead=False) if lines[i].strip() else 0
        if cost <= left:
            keep.add(i)
            left -= cost

    result = _assemble(lines, keep, max_elisions)
    # Per-line costs are approximate; drop lowest-priority lines until it fits.
    kept_order = [i for i in order if i in keep]
    while kept_order and estimator.estimate(result) > max_tokens:
        keep.discard(kept_order.pop())
        result = _assemble(lines, keep, max_elisions) if keep else ""
    return result if keep else ""


# ------------------------------------------------------------------
# Selection
# ------------------------------------------------------------------


def select_files(
    query: str,
    files: Mapping[str, str] | Iterable[SourceFile],
    token_budget: int,
    *,
    active_file: str | None = None,
    estimator: TokenEstimator | None = None,
    config: SelectionConfig | None = None,
) -> ContextSelection:
    """Pick the most relevant files for *query* without exceeding *token_budget*."""
    estimator = estimator or default_estimator()
    config = config or SelectionConfig()
    sources = as_source_files(files)
    budget = max(0, token_budget)
    selection = ContextSelection(budget=budget)
    if not sources:
        return selection

    keywords = query_keywords(query)
    active = next((f for f in sources if f.path == active_file), None)
    scored = sorted(
        ((score_file(f, keywords, active, config), f) for f in sources),
        key=lambda pair: (-pair[0].score, pair[1].path),
    )

    overflow_used = False
    for fs, source in scored:
        tokens = estimator.estimate(source.content)
        remaining = budget - selection.total_tokens
        if tokens <= remaining:
            selection.files.append(SelectedFile(source.path, source.content, tokens, fs.score))
            selection.total_tokens += tokens
            continue

        selection.budget_exhausted = True
        if not overflow_used and fs.score >= config.high_relevance:
            overflow_used = True
            compressed = compress_lines(source.content, remaining, estimator, config.max_elisions)
            compressed_tokens = estimator.estimate(compressed)
            if compressed and compressed_tokens <= remaining:
                selection.files.append(
                    SelectedFile(source.path, compressed, compressed_tokens, fs.score, compressed=True)
                )
                selection.total_tokens += compressed_tokens
                logger.debug(
                    "Compressed %s from %d to %d tokens to fit budget",
                    source.path,
                    tokens,
                    compressed_tokens,
                )
                continue
        selection.skipped.append(source.path)

    return selection
