"""Vector store contract shared by the in-memory and Qdrant backends.

Design rules:
- The store does not decide routing; every call names its ``collection_key``.
- Payloads are built by the payload normalizer, never by the store.
- ``upsert`` does not deduplicate by hash. Callers that want idempotent
  ingestion check ``exists_by_hash`` / ``exists_by_filter`` first.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

import numpy as np

from models.rag import CollectionInfo, EmbeddingChunk, SearchHit
from retrieval.filters import FilterLike
from services.exceptions import InputValidationError


class VectorStore(Protocol):
    def upsert(self, chunk: EmbeddingChunk) -> str:
        ...

    def exists_by_hash(self, collection_key: str, hash: str) -> bool:
        ...

    def exists_by_filter(self, collection_key: str, flt: FilterLike) -> bool:
        ...

    def delete_by_filter(self, collection_key: str, flt: FilterLike) -> int:
        ...

    def search(
        self,
        collection_key: str,
        vector: Sequence[float],
        limit: int = 3,
        min_score: Optional[float] = None,
        filter_spec: Optional[FilterLike] = None,
    ) -> List[SearchHit]:
        ...

    def create_collection(self, collection_key: str) -> None:
        ...

    def delete_collection(self, collection_key: str) -> None:
        ...

    def get_info(self, collection_key: str) -> CollectionInfo:
        ...


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity that degrades to 0.0 instead of raising.

    Empty vectors, mismatched lengths, zero norms and non-numeric input all
    score 0.0 so ranking stays stable on malformed points.
    """
    if a is None or b is None or len(a) == 0 or len(b) == 0 or len(a) != len(b):
        return 0.0

    try:
        va = np.asarray(a, dtype=float)
        vb = np.asarray(b, dtype=float)
    except (TypeError, ValueError):
        return 0.0

    if va.ndim != 1 or vb.ndim != 1:
        return 0.0

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0 or not np.isfinite(norm_a) or not np.isfinite(norm_b):
        return 0.0

    score = float(np.dot(va, vb) / (norm_a * norm_b))
    # Guard against float drift pushing identical vectors past 1.0
    return max(-1.0, min(1.0, score))


class NoVectorStore:
    """A no-operation vector store. Stores nothing and finds nothing."""

    def upsert(self, chunk: EmbeddingChunk) -> str:
        return ""

    def exists_by_hash(self, collection_key: str, hash: str) -> bool:
        return False

    def exists_by_filter(self, collection_key: str, flt: FilterLike) -> bool:
        return False

    def delete_by_filter(self, collection_key: str, flt: FilterLike) -> int:
        return 0

    def search(
        self,
        collection_key: str,
        vector: Sequence[float],
        limit: int = 3,
        min_score: Optional[float] = None,
        filter_spec: Optional[FilterLike] = None,
    ) -> List[SearchHit]:
        return []

    def create_collection(self, collection_key: str) -> None:
        pass

    def delete_collection(self, collection_key: str) -> None:
        pass

    def get_info(self, collection_key: str) -> CollectionInfo:
        return CollectionInfo(
            type="no-op",
            collection_key=collection_key,
            details={
                "persistent": False,
                "description": "This vector store does not store or return any data.",
            },
        )


def validate_collection_key(collection_key: str) -> str:
    key = (collection_key or "").strip()
    if not key:
        raise InputValidationError("collection_key is required", "vector_store")
    return key


def validate_limit(limit: int, stage: str = "vector_store") -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InputValidationError(f"limit must be an integer >= 1, got {limit!r}", stage)
    return limit
