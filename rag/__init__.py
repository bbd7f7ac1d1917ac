"""
Ingestion-side RAG components.

- XrmChunker / SemanticChunker / NoChunker: priority-selected text chunkers
- EmbeddingModel implementations: litellm-backed, hashing, zero and cached
- PayloadNormalizer: collection schema authority and payload builder
- IngestionPipeline: chunk -> embed -> upsert with skip/update duplicate modes
"""

from .chunking import NoChunker, SemanticChunker, XrmChunker, select_chunker
from .embeddings import (
    CachedEmbeddingModel,
    EmbeddingModel,
    HashEmbeddingModel,
    LiteLLMEmbeddingModel,
    ZeroEmbeddingModel,
)
from .normalizer import CollectionSchema, PayloadNormalizer
from .ingestion import IngestionPipeline, IngestionStats

__all__ = [
    "XrmChunker",
    "SemanticChunker",
    "NoChunker",
    "select_chunker",
    "EmbeddingModel",
    "LiteLLMEmbeddingModel",
    "HashEmbeddingModel",
    "ZeroEmbeddingModel",
    "CachedEmbeddingModel",
    "CollectionSchema",
    "PayloadNormalizer",
    "IngestionPipeline",
    "IngestionStats",
]
