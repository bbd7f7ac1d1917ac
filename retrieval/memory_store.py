"""In-memory vector store for tests and local development. Nothing is persisted."""

from __future__ import annotations

import threading
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from loguru import logger

from models.rag import CollectionInfo, EmbeddingChunk, SearchHit
from rag.normalizer import PayloadNormalizer
from retrieval.filters import FilterLike, matches_filter
from retrieval.vector_store import cosine_similarity, validate_collection_key, validate_limit
from services.exceptions import InputValidationError


class MemoryVectorStore:
    """Collection-aware store keeping points in per-collection dicts.

    Points keep insertion order, so equal scores come back in the order they
    were written.
    """

    def __init__(self, normalizer: Optional[PayloadNormalizer] = None):
        self.normalizer = normalizer or PayloadNormalizer(strict=False)
        self._points: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def _bucket(self, collection_key: str) -> Dict[str, Dict[str, Any]]:
        key = validate_collection_key(collection_key).lower()
        return self._points.setdefault(key, {})

    def upsert(self, chunk: EmbeddingChunk) -> str:
        if not chunk.has_vector():
            raise InputValidationError("EmbeddingChunk.vector must be non-empty", "vector_store")

        payload = self.normalizer.build_payload(chunk)
        point_id = str(uuid4())

        with self._lock:
            self._bucket(chunk.collection_key)[point_id] = {
                "vector": list(chunk.vector),
                "payload": payload,
            }

        return point_id

    def exists_by_hash(self, collection_key: str, hash: str) -> bool:
        return self.exists_by_filter(collection_key, {"hash": hash})

    def exists_by_filter(self, collection_key: str, flt: FilterLike) -> bool:
        with self._lock:
            points = list(self._bucket(collection_key).values())
        return any(matches_filter(p["payload"], flt) for p in points)

    def delete_by_filter(self, collection_key: str, flt: FilterLike) -> int:
        with self._lock:
            bucket = self._bucket(collection_key)
            doomed = [pid for pid, p in bucket.items() if matches_filter(p["payload"], flt)]
            for pid in doomed:
                del bucket[pid]

        if doomed:
            logger.debug("Deleted {} points from '{}'", len(doomed), collection_key)
        return len(doomed)

    def search(
        self,
        collection_key: str,
        vector: Sequence[float],
        limit: int = 3,
        min_score: Optional[float] = None,
        filter_spec: Optional[FilterLike] = None,
    ) -> List[SearchHit]:
        validate_limit(limit)

        with self._lock:
            points = list(self._bucket(collection_key).items())

        hits: List[SearchHit] = []
        for point_id, point in points:
            if filter_spec is not None and not matches_filter(point["payload"], filter_spec):
                continue

            score = cosine_similarity(vector, point["vector"])
            if min_score is not None and score < min_score:
                continue

            hits.append(SearchHit(id=point_id, score=score, payload=dict(point["payload"])))

        # sorted() is stable: ties keep insertion order
        hits = sorted(hits, key=lambda h: h.score, reverse=True)
        return hits[:limit]

    def create_collection(self, collection_key: str) -> None:
        with self._lock:
            self._bucket(collection_key)

    def delete_collection(self, collection_key: str) -> None:
        key = validate_collection_key(collection_key).lower()
        with self._lock:
            self._points.pop(key, None)

    def get_info(self, collection_key: str) -> CollectionInfo:
        key = validate_collection_key(collection_key).lower()
        with self._lock:
            count = len(self._points.get(key, {}))

        return CollectionInfo(
            type="memory",
            collection_key=key,
            collection=self.normalizer.get_backend_collection_name(key),
            vector_size=self.normalizer.get_vector_size(key),
            distance=self.normalizer.get_distance(key),
            count=count,
            details={"persistent": False},
        )


__all__ = ["MemoryVectorStore"]
