"""Code chunker — split source files into semantic units.

Boundaries come from an ordered rule table; the first rule that matches a
line decides the chunk kind:

  class → interface → route → component → function

Functions and components named ``useXxx`` are reported as hooks.  Only
top-level declarations start a chunk, so nested functions and methods stay
with their parent.  A file with no boundaries is sliced into fixed-size line
blocks so every file remains searchable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from contextsmith.index.models import CodeChunk

# ------------------------------------------------------------------
# Boundary rules
# ------------------------------------------------------------------


@dataclass(frozen=True)
class BoundaryRule:
    kind: str
    pattern: re.Pattern[str]


_EXPORT = r"(?:export\s+)?(?:default\s+)?"

BOUNDARY_RULES: tuple[BoundaryRule, ...] = (
    BoundaryRule(
        "class",
        re.compile(_EXPORT + r"(?:abstract\s+)?class\s+([A-Za-z_$][\w$]*)"),
    ),
    BoundaryRule(
        "interface",
        re.compile(
            r"(?:export\s+)?(?:interface\s+([A-Z][\w$]*)|type\s+([A-Z][\w$]*)\s*(?:<[^>]*>)?\s*=)"
        ),
    ),
    BoundaryRule(
        "route",
        re.compile(
            r"@?(?:app|router|api|bp|blueprint)\.(get|post|put|delete|patch|route|all)"
            r"\s*\(\s*['\"]([^'\"]*)['\"]"
        ),
    ),
    BoundaryRule(
        "component",
        re.compile(
            _EXPORT
            + r"(?:function\s+([A-Z][\w$]*)\s*\("
            r"|const\s+([A-Z][\w$]*)\s*(?::\s*[\w.<>\[\], ]+)?=\s*(?:\([^)]*\)|[\w$]+)\s*=>)"
        ),
    ),
    BoundaryRule(
        "function",
        re.compile(
            _EXPORT
            + r"(?:async\s+)?(?:function\s*\*?\s*([A-Za-z_$][\w$]*)\s*\("
            r"|(?:const|let)\s+([A-Za-z_$][\w$]*)\s*=\s*(?:async\s+)?(?:\([^)]*\)|[A-Za-z_$][\w$]*)\s*=>"
            r"|def\s+([A-Za-z_]\w*)\s*\()"
        ),
    ),
)

_HOOK_NAME_RE = re.compile(r"^use[A-Z]")

# ------------------------------------------------------------------
# Import / export rules
# ------------------------------------------------------------------

_JS_IMPORT_RE = re.compile(
    r"^\s*import\s+(?:type\s+)?(?:([\w$]+)\s*,?\s*)?(?:\{([^}]*)\})?(?:\s*\*\s+as\s+([\w$]+))?\s*from\s+['\"][^'\"]+['\"]",
    re.MULTILINE,
)
_PY_FROM_IMPORT_RE = re.compile(r"^from\s+[\w.]+\s+import\s+\(?([^)\n]+)\)?", re.MULTILINE)
_PY_IMPORT_RE = re.compile(r"^import\s+([\w.]+)(?:\s+as\s+(\w+))?", re.MULTILINE)

_JS_EXPORT_DECL_RE = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?(?:function\*?|class|const|let|var|interface|type|enum)\s+([\w$]+)",
    re.MULTILINE,
)
_JS_EXPORT_LIST_RE = re.compile(r"^\s*export\s*\{([^}]*)\}", re.MULTILINE)
_JS_EXPORT_DEFAULT_RE = re.compile(r"^\s*export\s+default\s+([A-Za-z_$][\w$]*)\s*;?\s*$", re.MULTILINE)
_PY_PUBLIC_DEF_RE = re.compile(r"^(?:async\s+)?(?:def|class)\s+([A-Za-z]\w*)", re.MULTILINE)


def _split_names(raw: str) -> list[str]:
    """'a, b as c, type D' → ['a', 'c', 'D']"""
    names = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        part = re.sub(r"^type\s+", "", part)
        if " as " in part:
            part = part.split(" as ", 1)[1]
        part = part.strip()
        if re.fullmatch(r"[\w$]+", part):
            names.append(part)
    return names


def extract_imports(content: str) -> list[str]:
    """Local names bound by import statements (JS/TS and Python)."""
    names: list[str] = []
    for m in _JS_IMPORT_RE.finditer(content):
        if m.group(1):
            names.append(m.group(1))
        if m.group(2):
            names.extend(_split_names(m.group(2)))
        if m.group(3):
            names.append(m.group(3))
    for m in _PY_FROM_IMPORT_RE.finditer(content):
        names.extend(_split_names(m.group(1)))
    for m in _PY_IMPORT_RE.finditer(content):
        names.append(m.group(2) or m.group(1).split(".")[0])
    return list(dict.fromkeys(names))


def extract_exports(content: str) -> list[str]:
    """Names a file exposes: JS/TS ``export`` forms, Python public top-level defs."""
    names: list[str] = [m.group(1) for m in _JS_EXPORT_DECL_RE.finditer(content)]
    for m in _JS_EXPORT_LIST_RE.finditer(content):
        names.extend(_split_names(m.group(1)))
    names.extend(m.group(1) for m in _JS_EXPORT_DEFAULT_RE.finditer(content))
    names.extend(m.group(1) for m in _PY_PUBLIC_DEF_RE.finditer(content))
    return list(dict.fromkeys(names))


def _references(content: str, names: list[str]) -> tuple[str, ...]:
    return tuple(n for n in names if re.search(r"(?<![\w$])" + re.escape(n) + r"(?![\w$])", content))


def match_boundary(line: str) -> tuple[str, str] | None:
    """Return ``(kind, name)`` if *line* opens a top-level declaration."""
    if not line or line[0].isspace():
        return None
    for rule in BOUNDARY_RULES:
        m = rule.pattern.match(line)
        if m is None:
            continue
        if rule.kind == "route":
            return "route", f"{m.group(1).upper()} {m.group(2)}"
        name = next((g for g in m.groups() if g), "")
        kind = rule.kind
        if kind in ("function", "component") and _HOOK_NAME_RE.match(name):
            kind = "hook"
        return kind, name
    return None


# ------------------------------------------------------------------
# Chunker
# ------------------------------------------------------------------


class CodeChunker:
    """Split source files into CodeChunks.

    Args:
        block_lines: Lines per block when a region has no declarations.
        max_chunk_lines: Longest declaration chunk; the rest of an oversized
            declaration is emitted as blocks.

    Raises:
        ValueError: If either size is < 1.
    """

    def __init__(self, block_lines: int = 50, max_chunk_lines: int = 200) -> None:
        if block_lines < 1:
            raise ValueError("block_lines must be >= 1")
        if max_chunk_lines < 1:
            raise ValueError("max_chunk_lines must be >= 1")
        self.block_lines = block_lines
        self.max_chunk_lines = max_chunk_lines

    def chunk(self, path: str, content: str) -> list[CodeChunk]:
        """Return the ordered chunks of one file; blank files yield none."""
        if not content.strip():
            return []

        lines = content.split("\n")
        imports = extract_imports(content)
        exports = extract_exports(content)
        boundaries = self._find_boundaries(lines)

        spans: list[tuple[int, int, str, str]] = []  # (start, end_exclusive, kind, name)
        if not boundaries:
            spans.extend(self._blocks(0, len(lines)))
        else:
            spans.extend(self._blocks(0, boundaries[0][0]))
            for i, (start, kind, name) in enumerate(boundaries):
                next_start = boundaries[i + 1][0] if i + 1 < len(boundaries) else len(lines)
                end = min(start + self.max_chunk_lines, next_start)
                spans.append((start, end, kind, name))
                spans.extend(self._blocks(end, next_start))

        chunks: list[CodeChunk] = []
        for start, end, kind, name in spans:
            text = "\n".join(lines[start:end]).rstrip()
            if not text.strip():
                continue
            chunks.append(
                CodeChunk(
                    id=f"{path}:{start + 1}-{end}",
                    file_path=path,
                    kind=kind,
                    name=name,
                    start_line=start + 1,
                    end_line=end,
                    content=text,
                    imports=_references(text, imports),
                    exports=_references(text, exports),
                )
            )
        return chunks

    def _find_boundaries(self, lines: list[str]) -> list[tuple[int, str, str]]:
        boundaries: list[tuple[int, str, str]] = []
        for i, line in enumerate(lines):
            found = match_boundary(line)
            if found is None:
                continue
            kind, name = found
            start = i
            # Pull decorators above the declaration into its chunk.
            floor = boundaries[-1][0] if boundaries else -1
            while start - 1 > floor and lines[start - 1].startswith("@"):
                start -= 1
            if boundaries and start - 1 == floor and lines[floor].startswith("@"):
                # A route decorator already opened this chunk.
                continue
            boundaries.append((start, kind, name))
        return boundaries

    def _blocks(self, start: int, end: int) -> list[tuple[int, int, str, str]]:
        return [
            (s, min(s + self.block_lines, end), "block", "")
            for s in range(start, end, self.block_lines)
        ]
