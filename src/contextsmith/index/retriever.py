"""Code relevance retriever — index projects, rank chunks for a query.

Score per chunk::

    score = 10   if the chunk's declared name matches the query
          + 5    if the query phrase appears verbatim in the chunk
          + 3  × cosine(query vector, chunk vector)
          + 0.5 × number of query tokens present in the chunk

Exact and lexical signals carry most of the weight because identifier
queries ("TodoList", "useAuth") embed poorly, and the hashing fallback is
only a bag of words.  Chunks at or below ``min_score`` are dropped.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from contextsmith.cache import BoundedCache
from contextsmith.estimator import TokenEstimator, default_estimator
from contextsmith.index.chunker import CodeChunker
from contextsmith.index.embeddings import (
    EmbeddingProvider,
    HashingEmbeddingProvider,
    ResilientEmbeddingProvider,
)
from contextsmith.index.models import CodeChunk, EmbeddingVector, ProjectIndex, SourceFile

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z_][a-z0-9_]*")

_NAME_BONUS = 10.0
_PHRASE_BONUS = 5.0
_COSINE_WEIGHT = 3.0
_OVERLAP_WEIGHT = 0.5


@dataclass
class RetrieverConfig:
    top_k: int = 10
    min_score: float = 0.5
    max_indices: int = 50
    context_tokens: int = 4_000


@dataclass
class ScoredChunk:
    """A chunk with its ranking signals.

    Attributes:
        match_type: 'name', 'content' or 'semantic' — the strongest signal hit.
    """

    chunk: CodeChunk
    score: float
    similarity: float
    match_type: str


def as_source_files(files: Mapping[str, str] | Iterable[SourceFile]) -> list[SourceFile]:
    """Accept ``{path: content}`` or SourceFile objects."""
    if isinstance(files, Mapping):
        return [SourceFile(path, content) for path, content in files.items()]
    return list(files)


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 1}


class CodeRetriever:
    """Per-project chunk index with hybrid lexical/embedding ranking.

    Args:
        embedder: Vector provider; defaults to the hashing provider wrapped
            resiliently (no network).
        chunker: Chunker used at index time.
        cache: Store for ProjectIndex objects; defaults to a 50-entry LRU.
        estimator: Token estimator for ``context_for_generation``.
        config: Ranking defaults.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider | None = None,
        *,
        chunker: CodeChunker | None = None,
        cache: BoundedCache[str, ProjectIndex] | None = None,
        estimator: TokenEstimator | None = None,
        config: RetrieverConfig | None = None,
    ) -> None:
        self.config = config or RetrieverConfig()
        self._embedder = embedder or ResilientEmbeddingProvider(None, HashingEmbeddingProvider())
        self._chunker = chunker or CodeChunker()
        self._indices: BoundedCache[str, ProjectIndex] = cache or BoundedCache(
            self.config.max_indices, "lru", name="code-index"
        )
        self._estimator = estimator or default_estimator()

    @classmethod
    def from_config(cls, cfg, estimator: TokenEstimator | None = None) -> CodeRetriever:
        """Build from a root ``ContextsmithConfig``."""
        r = cfg.retrieval
        config = RetrieverConfig(
            top_k=r.top_k,
            min_score=r.min_score,
            max_indices=r.max_indices,
            context_tokens=r.context_tokens,
        )
        return cls(
            ResilientEmbeddingProvider.from_config(cfg.embedding),
            chunker=CodeChunker(r.block_lines, r.max_chunk_lines),
            estimator=estimator,
            config=config,
        )

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def index_project(
        self,
        project_id: str,
        files: Mapping[str, str] | Iterable[SourceFile],
    ) -> ProjectIndex:
        """Chunk and embed *files*, replacing any previous index for the project."""
        sources = as_source_files(files)
        with self._indices.lock(project_id):
            chunks: list[CodeChunk] = []
            for source in sources:
                chunks.extend(self._chunker.chunk(source.path, source.content))

            vectors: list[list[float]] = []
            if chunks:
                vectors = self._embedder.embed([c.embedding_text() for c in chunks])

            index = ProjectIndex(
                project_id=project_id,
                chunks={c.id: c for c in chunks},
                embeddings={c.id: EmbeddingVector.of(v) for c, v in zip(chunks, vectors)},
                file_count=len(sources),
            )
            self._indices.set(project_id, index)

        logger.info(
            "Indexed project %s: %d files, %d chunks", project_id, len(sources), len(chunks)
        )
        return index

    def get_index(self, project_id: str) -> ProjectIndex | None:
        return self._indices.get(project_id)

    def invalidate(self, project_id: str) -> bool:
        """Drop a project's index. Returns True if one existed."""
        return self._indices.pop(project_id) is not None

    def close(self) -> None:
        """Release the embedder's worker threads, if it holds any."""
        close = getattr(self._embedder, "close", None)
        if close is not None:
            close()

    def stats(self, project_id: str) -> dict[str, Any] | None:
        index = self._indices.get(project_id)
        if index is None:
            return None
        return {
            "project_id": project_id,
            "files": index.file_count,
            "chunks": len(index.chunks),
            "kinds": dict(Counter(c.kind for c in index.chunks.values())),
            "indexed_at": index.indexed_at,
        }

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, project_id: str, query: str, top_k: int | None = None) -> list[ScoredChunk]:
        """Rank the project's chunks for *query*; unknown projects return []."""
        top_k = top_k if top_k is not None else self.config.top_k
        index = self._indices.get(project_id)
        if index is None:
            logger.warning("No index for project %s; search returns nothing", project_id)
            return []
        phrase = query.strip().lower()
        if not phrase or not index.chunks or top_k <= 0:
            return []

        query_vec = EmbeddingVector.of(self._embedder.embed([query])[0])
        query_tokens = _tokens(query)

        results: list[ScoredChunk] = []
        for chunk_id, chunk in index.chunks.items():
            scored = self._score(chunk, index.embeddings.get(chunk_id), phrase, query_tokens, query_vec)
            if scored.score > self.config.min_score:
                results.append(scored)

        results.sort(key=lambda s: (-s.score, s.chunk.id))
        return results[:top_k]

    def _score(
        self,
        chunk: CodeChunk,
        vector: EmbeddingVector | None,
        phrase: str,
        query_tokens: set[str],
        query_vec: EmbeddingVector,
    ) -> ScoredChunk:
        score = 0.0
        match_type = "semantic"
        name = chunk.name.lower()

        if name and (name in query_tokens or phrase in name):
            score += _NAME_BONUS
            match_type = "name"
        if phrase in chunk.content.lower():
            score += _PHRASE_BONUS
            if match_type == "semantic":
                match_type = "content"

        similarity = vector.cosine(query_vec) if vector is not None else 0.0
        score += _COSINE_WEIGHT * similarity
        score += _OVERLAP_WEIGHT * len(query_tokens & _tokens(chunk.content))
        return ScoredChunk(chunk=chunk, score=score, similarity=similarity, match_type=match_type)

    def context_for_generation(
        self,
        project_id: str,
        query: str,
        max_tokens: int | None = None,
    ) -> str:
        """Best-ranked chunks rendered as one context block, within *max_tokens*."""
        budget = max_tokens if max_tokens is not None else self.config.context_tokens
        parts: list[str] = []
        used = 0
        for scored in self.search(project_id, query):
            c = scored.chunk
            label = f"{c.kind} {c.name}".strip()
            block = f"// {c.file_path} ({label}, lines {c.start_line}-{c.end_line})\n{c.content}"
            tokens = self._estimator.estimate(block)
            if used + tokens > budget:
                continue
            parts.append(block)
            used += tokens
        return "\n\n".join(parts)
