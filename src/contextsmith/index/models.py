"""Data model for the code index."""

from __future__ import annotations

import math
import time
from collections.abc import Sequence
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SourceFile:
    """A candidate source file handed in by the caller."""

    path: str
    content: str


@dataclass(frozen=True)
class CodeChunk:
    """One semantic unit of source code.

    Attributes:
        id: ``"{file_path}:{start_line}-{end_line}"``.
        kind: 'class', 'interface', 'route', 'component', 'hook', 'function' or 'block'.
        name: Declared name, or ``""`` for blocks.
        start_line: 1-based first line.
        end_line: 1-based last line (inclusive).
        imports: Imported names this chunk references.
        exports: Exported names declared in this chunk.
    """

    id: str
    file_path: str
    kind: str
    name: str
    start_line: int
    end_line: int
    content: str
    imports: tuple[str, ...] = ()
    exports: tuple[str, ...] = ()

    def embedding_text(self) -> str:
        """Serialized form sent to the embedding provider."""
        parts = [f"File: {self.file_path}", f"Type: {self.kind}"]
        if self.name:
            parts.append(f"Name: {self.name}")
        if self.exports:
            parts.append(f"Exports: {', '.join(self.exports)}")
        if self.imports:
            parts.append(f"Imports: {', '.join(self.imports)}")
        parts.append("")
        parts.append(self.content)
        return "\n".join(parts)


@dataclass(frozen=True)
class EmbeddingVector:
    """Fixed-dimension vector with its precomputed L2 norm."""

    values: tuple[float, ...]
    norm: float

    @classmethod
    def of(cls, values: Sequence[float]) -> EmbeddingVector:
        vals = tuple(float(v) for v in values)
        return cls(values=vals, norm=math.sqrt(sum(v * v for v in vals)))

    @property
    def dimensions(self) -> int:
        return len(self.values)

    def cosine(self, other: EmbeddingVector) -> float:
        """Cosine similarity; 0.0 when either vector is all zeros or sizes differ."""
        if self.norm == 0 or other.norm == 0 or len(self.values) != len(other.values):
            return 0.0
        dot = sum(a * b for a, b in zip(self.values, other.values))
        return dot / (self.norm * other.norm)


@dataclass
class ProjectIndex:
    """Every chunk and embedding for one project; replaced wholesale on reindex."""

    project_id: str
    chunks: dict[str, CodeChunk] = field(default_factory=dict)
    embeddings: dict[str, EmbeddingVector] = field(default_factory=dict)
    file_count: int = 0
    indexed_at: float = field(default_factory=time.time)
