"""Qdrant vector store over the Qdrant REST API.

The store is collection-aware: every call names a ``collection_key`` and the
payload normalizer resolves it to the physical collection, its vector size and
distance. Transport failures and 5xx answers raise ``StoreUnavailableError``;
4xx answers and malformed bodies raise ``StoreProtocolError``.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

import httpx
from loguru import logger

from models.rag import CollectionInfo, EmbeddingChunk, SearchHit
from rag.normalizer import PayloadNormalizer
from retrieval.filters import FilterLike, coerce_filter_spec
from retrieval.vector_store import validate_collection_key, validate_limit
from services.exceptions import InputValidationError, StoreProtocolError, StoreUnavailableError


def _condition(key: str, value: Any) -> Dict[str, Any]:
    if isinstance(value, (list, tuple, set)):
        return {"key": key, "match": {"any": list(value)}}
    return {"key": key, "match": {"value": value}}


def build_qdrant_filter(flt: Optional[FilterLike]) -> Optional[Dict[str, Any]]:
    """Translate a flat filter or FilterSpec into Qdrant's filter JSON.

    ``must`` and ``must_not`` map one-to-one; ``any`` becomes ``should``.
    Returns ``None`` when nothing constrains the query.
    """
    spec = coerce_filter_spec(flt)
    if spec is None or spec.is_empty():
        return None

    out: Dict[str, Any] = {}
    if spec.must:
        out["must"] = [_condition(k, v) for k, v in spec.must.items()]
    if spec.any:
        out["should"] = [_condition(k, v) for k, v in spec.any.items()]
    if spec.must_not:
        out["must_not"] = [_condition(k, v) for k, v in spec.must_not.items()]
    return out


class QdrantVectorStore:
    def __init__(
        self,
        url: str,
        normalizer: PayloadNormalizer,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        if not url:
            raise InputValidationError("Qdrant url is required", "vector_store")

        self.url = url.rstrip("/")
        self.normalizer = normalizer
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["api-key"] = api_key

        self._client = client or httpx.Client(
            base_url=self.url, headers=headers, timeout=timeout, transport=transport
        )

    @classmethod
    def from_settings(cls, settings, normalizer: PayloadNormalizer, client: Optional[httpx.Client] = None):
        return cls(
            url=settings.QDRANT_URL or "",
            normalizer=normalizer,
            api_key=settings.QDRANT_API_KEY,
            timeout=float(settings.TIMEOUT),
            client=client,
        )

    def close(self) -> None:
        self._client.close()

    def _collection(self, collection_key: str) -> str:
        return self.normalizer.get_backend_collection_name(validate_collection_key(collection_key))

    def _request(self, method: str, path: str, body: Optional[Mapping[str, Any]] = None) -> Any:
        """Send one request and return the ``result`` member of the response."""
        try:
            resp = self._client.request(method, path, json=body)
        except httpx.TransportError as e:
            logger.error("Qdrant {} {} failed: {}", method, path, e)
            raise StoreUnavailableError(f"Qdrant request failed: {e}") from e

        if resp.status_code >= 500:
            logger.error("Qdrant {} {} returned HTTP {}", method, path, resp.status_code)
            raise StoreUnavailableError(
                f"Qdrant {method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise StoreProtocolError(
                f"Qdrant {method} {path} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise StoreProtocolError(f"Qdrant {method} {path} returned invalid JSON") from e

        if not isinstance(data, dict) or "result" not in data:
            raise StoreProtocolError(f"Qdrant {method} {path} response has no 'result'")

        return data["result"]

    def upsert(self, chunk: EmbeddingChunk) -> str:
        if not chunk.has_vector():
            raise InputValidationError("EmbeddingChunk.vector must be non-empty", "vector_store")

        collection = self._collection(chunk.collection_key)
        payload = self.normalizer.build_payload(chunk)
        point_id = str(uuid4())

        body = {"points": [{"id": point_id, "vector": list(chunk.vector), "payload": payload}]}
        self._request("PUT", f"/collections/{collection}/points?wait=true", body)
        return point_id

    def exists_by_hash(self, collection_key: str, hash: str) -> bool:
        return self.exists_by_filter(collection_key, {"hash": hash})

    def exists_by_filter(self, collection_key: str, flt: FilterLike) -> bool:
        collection = self._collection(collection_key)
        body: Dict[str, Any] = {"limit": 1, "with_payload": False, "with_vector": False}
        qfilter = build_qdrant_filter(flt)
        if qfilter:
            body["filter"] = qfilter

        result = self._request("POST", f"/collections/{collection}/points/scroll", body)
        points = result.get("points") if isinstance(result, dict) else None
        if not isinstance(points, list):
            raise StoreProtocolError("Qdrant scroll response has no 'points' list")
        return len(points) > 0

    def count(self, collection_key: str, flt: Optional[FilterLike] = None) -> int:
        collection = self._collection(collection_key)
        body: Dict[str, Any] = {"exact": True}
        qfilter = build_qdrant_filter(flt)
        if qfilter:
            body["filter"] = qfilter

        result = self._request("POST", f"/collections/{collection}/points/count", body)
        if not isinstance(result, dict) or not isinstance(result.get("count"), int):
            raise StoreProtocolError("Qdrant count response has no integer 'count'")
        return result["count"]

    def delete_by_filter(self, collection_key: str, flt: FilterLike) -> int:
        qfilter = build_qdrant_filter(flt)
        if not qfilter:
            # An empty filter would wipe the collection
            raise InputValidationError("delete_by_filter requires a non-empty filter", "vector_store")

        matched = self.count(collection_key, flt)
        if matched == 0:
            return 0

        collection = self._collection(collection_key)
        self._request("POST", f"/collections/{collection}/points/delete?wait=true", {"filter": qfilter})
        logger.debug("Deleted {} points from Qdrant collection '{}'", matched, collection)
        return matched

    def search(
        self,
        collection_key: str,
        vector: Sequence[float],
        limit: int = 3,
        min_score: Optional[float] = None,
        filter_spec: Optional[FilterLike] = None,
    ) -> List[SearchHit]:
        validate_limit(limit)

        collection = self._collection(collection_key)
        body: Dict[str, Any] = {
            "vector": list(vector),
            "limit": limit,
            "with_payload": True,
            "with_vector": False,
        }
        if min_score is not None:
            body["score_threshold"] = min_score
        qfilter = build_qdrant_filter(filter_spec)
        if qfilter:
            body["filter"] = qfilter

        result = self._request("POST", f"/collections/{collection}/points/search", body)
        if not isinstance(result, list):
            raise StoreProtocolError("Qdrant search response 'result' is not a list")

        hits: List[SearchHit] = []
        for raw in result:
            if not isinstance(raw, dict) or "id" not in raw or "score" not in raw:
                raise StoreProtocolError("Qdrant search hit is missing 'id' or 'score'")
            score = float(raw["score"])
            if min_score is not None and score < min_score:
                continue
            hits.append(SearchHit(id=str(raw["id"]), score=score, payload=raw.get("payload") or {}))

        return hits[:limit]

    def create_collection(self, collection_key: str) -> None:
        key = validate_collection_key(collection_key)
        collection = self._collection(key)
        body = {
            "vectors": {
                "size": self.normalizer.get_vector_size(key),
                "distance": self.normalizer.get_distance(key),
            }
        }
        self._request("PUT", f"/collections/{collection}", body)
        logger.info("Created Qdrant collection '{}' for key '{}'", collection, key)

    def delete_collection(self, collection_key: str) -> None:
        collection = self._collection(collection_key)
        self._request("DELETE", f"/collections/{collection}")
        logger.info("Deleted Qdrant collection '{}'", collection)

    def get_info(self, collection_key: str) -> CollectionInfo:
        key = validate_collection_key(collection_key)
        collection = self._collection(key)
        result = self._request("GET", f"/collections/{collection}")
        if not isinstance(result, dict):
            raise StoreProtocolError("Qdrant collection info 'result' is not an object")

        count = result.get("points_count")
        return CollectionInfo(
            type="qdrant",
            collection_key=key,
            collection=collection,
            vector_size=self.normalizer.get_vector_size(key),
            distance=self.normalizer.get_distance(key),
            count=count if isinstance(count, int) else 0,
            details={"url": self.url, "status": result.get("status")},
        )


__all__ = ["QdrantVectorStore", "build_qdrant_filter"]
