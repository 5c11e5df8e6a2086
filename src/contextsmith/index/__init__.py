"""Code index — chunking, embeddings, ranking and budgeted file selection."""

from contextsmith.index.chunker import CodeChunker
from contextsmith.index.embeddings import (
    EMBEDDING_DIM,
    EmbeddingProvider,
    HashingEmbeddingProvider,
    LiteLLMEmbeddingProvider,
    ResilientEmbeddingProvider,
)
from contextsmith.index.models import CodeChunk, EmbeddingVector, ProjectIndex, SourceFile
from contextsmith.index.retriever import CodeRetriever, RetrieverConfig, ScoredChunk
from contextsmith.index.selector import ContextSelection, SelectionConfig, select_files

__all__ = [
    "EMBEDDING_DIM",
    "CodeChunk",
    "CodeChunker",
    "CodeRetriever",
    "ContextSelection",
    "EmbeddingProvider",
    "EmbeddingVector",
    "HashingEmbeddingProvider",
    "LiteLLMEmbeddingProvider",
    "ProjectIndex",
    "ResilientEmbeddingProvider",
    "RetrieverConfig",
    "ScoredChunk",
    "SelectionConfig",
    "SourceFile",
    "select_files",
]
