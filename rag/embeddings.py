"""
Embedding models for ingestion and retrieval.

Every model implements ``embed(texts) -> List[List[float]]`` with one vector per
input text. A per-text failure may surface as an empty vector; callers log
and skip those rather than aborting the batch.

Models:
- LiteLLMEmbeddingModel: remote embeddings through litellm, retried with tenacity
- HashEmbeddingModel: deterministic, offline token hashing for tests and dev
- ZeroEmbeddingModel: zero vectors, exercises the pipeline without a provider
- CachedEmbeddingModel: in-process cache proxy in front of any other model
"""

from __future__ import annotations

import hashlib
import threading
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Protocol, Sequence

import litellm
import numpy as np
from loguru import logger

from utils.error_handling import RetryConfig, tenacity_retry_decorator

DEFAULT_CACHE_SIZE = 10_000


class EmbeddingModel(Protocol):
    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        ...


def _vector_of(item: Any) -> List[float]:
    if isinstance(item, dict):
        vec = item.get("embedding")
    else:
        vec = getattr(item, "embedding", None)
    if not isinstance(vec, (list, tuple)):
        return []
    return [float(v) for v in vec]


class LiteLLMEmbeddingModel:
    """Remote embedding model; the provider is chosen by the litellm model name."""

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = 30.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout
        self._embed_batch = tenacity_retry_decorator(retry_config or RetryConfig())(self._call_provider)

    @classmethod
    def from_settings(cls, settings):
        return cls(
            model=settings.EMBEDDING_MODEL or "text-embedding-3-small",
            api_key=settings.EMBEDDING_API_KEY,
            timeout=float(settings.TIMEOUT),
        )

    def get_options(self) -> Dict[str, Any]:
        return {"model": self.model, "api_base": self.api_base, "timeout": self.timeout}

    def _call_provider(self, texts: List[str]):
        kwargs: Dict[str, Any] = {"model": self.model, "input": texts, "timeout": self.timeout}
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        return litellm.embedding(**kwargs)

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        texts = [str(t) for t in texts]
        if not texts:
            return []

        response = self._embed_batch(texts)
        data = getattr(response, "data", None)
        if data is None and isinstance(response, dict):
            data = response.get("data")
        data = list(data or [])

        vectors = [_vector_of(data[i]) if i < len(data) else [] for i in range(len(texts))]
        empty = sum(1 for v in vectors if not v)
        if empty:
            logger.warning("Embedding model {} returned {} empty vectors", self.model, empty)
        return vectors


class HashEmbeddingModel:
    """Deterministic bag-of-tokens embedding.

    Each lowercase token is hashed into one of ``dimension`` buckets with a
    signed weight and the result is L2-normalized, so identical texts always
    embed identically and texts sharing words score higher.
    """

    def __init__(self, dimension: int = 256):
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        self.dimension = dimension

    @classmethod
    def from_settings(cls, settings):
        return cls(dimension=settings.EMBEDDING_DIMENSION)

    def _embed_one(self, text: str) -> List[float]:
        vec = np.zeros(self.dimension, dtype=float)
        for token in text.lower().split():
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimension
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vec[bucket] += sign

        norm = float(np.linalg.norm(vec))
        if norm == 0.0:
            return vec.tolist()
        return (vec / norm).tolist()

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        return [self._embed_one(str(t)) for t in texts]


class ZeroEmbeddingModel:
    """Returns zero vectors of a fixed dimension."""

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        return [[0.0] * self.dimension for _ in texts]


class CachedEmbeddingModel:
    """Cache proxy forwarding only cache misses to the wrapped model.

    Keys are ``sha256(model + "\\n" + salt + "\\n" + normalized_text)``. Empty
    vectors are returned to the caller but never cached. At most ``max_size``
    vectors are kept; the least recently used one is evicted first.
    """

    def __init__(
        self,
        embedding: EmbeddingModel,
        model_name: str = "default",
        salt: str = "",
        max_size: int = DEFAULT_CACHE_SIZE,
    ):
        self.embedding = embedding
        self.model_name = model_name
        self.salt = salt
        self.max_size = max(1, int(max_size))
        self._cache: OrderedDict[str, List[float]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def normalize_text(text: str) -> str:
        return " ".join(str(text).split())

    def cache_key(self, text: str) -> str:
        raw = f"{self.model_name}\n{self.salt}\n{self.normalize_text(text)}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def _store(self, key: str, vector: List[float]) -> None:
        # Caller holds _lock
        self._cache[key] = vector
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        if not texts:
            return []

        keys = [self.cache_key(t) for t in texts]
        result: List[List[float]] = [[] for _ in texts]
        missing: List[int] = []

        with self._lock:
            for i, key in enumerate(keys):
                cached = self._cache.get(key)
                if cached is not None:
                    self._cache.move_to_end(key)
                    result[i] = list(cached)
                else:
                    missing.append(i)

            self.hits += len(texts) - len(missing)
            self.misses += len(missing)

        if not missing:
            logger.debug("Embedding cache hit: {}/{}", len(texts), len(texts))
            return result

        logger.debug("Embedding cache miss: {}/{}", len(missing), len(texts))
        embedded = self.embedding.embed([texts[i] for i in missing])

        with self._lock:
            for k, original_index in enumerate(missing):
                vector = list(embedded[k]) if k < len(embedded) else []
                result[original_index] = vector
                if not vector:
                    logger.warning("Empty vector for text #{}; not cached", original_index)
                    continue
                self._store(keys[original_index], vector)

        return result


__all__ = [
    "EmbeddingModel",
    "LiteLLMEmbeddingModel",
    "HashEmbeddingModel",
    "ZeroEmbeddingModel",
    "CachedEmbeddingModel",
]
