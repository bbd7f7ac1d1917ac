"""Vector search: filters, vector stores and the retrieval pipeline.

This module provides:
- VectorStore protocol with in-memory, Qdrant and no-op implementations
- FilterSpec evaluation and merging
- RetrievalPipeline / RetrievalTool: query -> embedding -> filtered search
"""

from retrieval.filters import FilterSource, StaticFilterSource, matches_filter, merge_filter_specs
from retrieval.vector_store import NoVectorStore, VectorStore, cosine_similarity
from retrieval.memory_store import MemoryVectorStore
from retrieval.qdrant_store import QdrantVectorStore
from retrieval.retrieval_tool import RetrievalPipeline, RetrievalTool

__all__ = [
    "FilterSource",
    "StaticFilterSource",
    "matches_filter",
    "merge_filter_specs",
    "VectorStore",
    "NoVectorStore",
    "cosine_similarity",
    "MemoryVectorStore",
    "QdrantVectorStore",
    "RetrievalPipeline",
    "RetrievalTool",
]
