"""Payload normalizer: collection schema owner and strict chunk validator.

Vector stores stay "dumb". They ask the normalizer which physical collection a
``collection_key`` maps to, how large its vectors are, and what the stored
payload looks like. Validation is strict: no best-effort repair, no guessing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from models.rag import EmbeddingChunk
from services.exceptions import InputValidationError

DEFAULT_FIELDS: Dict[str, Dict[str, str]] = {
    "text": {"type": "text"},
    "hash": {"type": "keyword"},
    "collection_key": {"type": "keyword"},
    "content_uuid": {"type": "keyword"},
    "chunktoken": {"type": "keyword"},
    "chunk_index": {"type": "integer"},
    "source_id": {"type": "keyword"},
    "name": {"type": "keyword"},
    "type_alias": {"type": "keyword"},
    "content_id": {"type": "keyword"},
    "url": {"type": "keyword"},
    "filename": {"type": "keyword"},
    "lang": {"type": "keyword"},
    "created_at": {"type": "keyword"},
    "updated_at": {"type": "keyword"},
}

OPTIONAL_STRING_FIELDS = (
    "content_uuid",
    "source_id",
    "name",
    "type_alias",
    "content_id",
    "url",
    "filename",
    "lang",
    "created_at",
    "updated_at",
)

RESERVED_KEYS = {"hash", "chunk_index", "chunktoken", "collection_key", "text"}

# Queue/workflow and routing control fields are never persisted
CONTROL_KEYS = {
    "job_id",
    "attempts",
    "locked_until",
    "claim_token",
    "claimed_at",
    "state",
    "error_message",
    "action",
    "collectionKey",
}


@dataclass
class CollectionSchema:
    collection_key: str
    backend_name: str
    vector_size: int = 1536
    distance: str = "Cosine"
    required_fields: Sequence[str] = ()
    fields: Dict[str, Dict[str, str]] = field(default_factory=lambda: dict(DEFAULT_FIELDS))


def build_chunk_token(hash: str, chunk_index: int) -> str:
    hash = hash.strip()
    if not hash:
        raise InputValidationError("Cannot build chunktoken: hash is empty.", "normalizer")
    return f"{hash}-{chunk_index}" if chunk_index > 0 else hash


def _as_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


class PayloadNormalizer:
    """Maps collection keys to schemas and builds stored payloads.

    With ``strict=False`` unknown collection keys get a generic schema whose
    backend name equals the key, which is what the in-memory store and local
    development want. Remote stores should use a strict normalizer.
    """

    def __init__(
        self,
        schemas: Optional[Iterable[CollectionSchema]] = None,
        strict: bool = True,
        default_vector_size: int = 1536,
        default_distance: str = "Cosine",
    ):
        self._schemas: Dict[str, CollectionSchema] = {}
        for schema in schemas or []:
            self._schemas[self._key(schema.collection_key)] = schema
        self.strict = strict
        self.default_vector_size = default_vector_size
        self.default_distance = default_distance

    @staticmethod
    def _key(collection_key: str) -> str:
        return (collection_key or "").strip().lower()

    def get_collection_keys(self) -> List[str]:
        return list(self._schemas.keys())

    def schema_for(self, collection_key: str) -> CollectionSchema:
        key = self._key(collection_key)
        if not key:
            raise InputValidationError("collection_key is required.", "normalizer")

        schema = self._schemas.get(key)
        if schema is not None:
            return schema

        if self.strict:
            raise InputValidationError(f"Unknown collection_key '{key}'.", "normalizer")

        return CollectionSchema(
            collection_key=key,
            backend_name=key,
            vector_size=self.default_vector_size,
            distance=self.default_distance,
        )

    def get_backend_collection_name(self, collection_key: str) -> str:
        return self.schema_for(collection_key).backend_name

    def get_vector_size(self, collection_key: str) -> int:
        return self.schema_for(collection_key).vector_size

    def get_distance(self, collection_key: str) -> str:
        return self.schema_for(collection_key).distance

    def get_schema(self, collection_key: str) -> Dict[str, Dict[str, str]]:
        return dict(self.schema_for(collection_key).fields)

    def validate(self, chunk: EmbeddingChunk) -> None:
        schema = self.schema_for(chunk.collection_key)

        if chunk.chunk_index < 0:
            raise InputValidationError("EmbeddingChunk.chunk_index must be >= 0.", "normalizer")
        if not chunk.text.strip():
            raise InputValidationError("EmbeddingChunk.text must be non-empty.", "normalizer")
        if not chunk.hash.strip():
            raise InputValidationError("EmbeddingChunk.hash must be non-empty.", "normalizer")

        for name in schema.required_fields:
            value = chunk.metadata.get(name)
            if not isinstance(value, str) or not value.strip():
                raise InputValidationError(
                    f"Missing required metadata field '{name}' for collection '{schema.collection_key}'.",
                    "normalizer",
                )

    def build_payload(self, chunk: EmbeddingChunk) -> Dict[str, Any]:
        self.validate(chunk)
        schema = self.schema_for(chunk.collection_key)
        meta = chunk.metadata

        payload: Dict[str, Any] = {
            "text": chunk.text.strip(),
            "hash": chunk.hash.strip(),
            "collection_key": schema.collection_key,
            "chunktoken": build_chunk_token(chunk.hash, chunk.chunk_index),
            "chunk_index": chunk.chunk_index,
        }

        for name in OPTIONAL_STRING_FIELDS:
            value = _as_string(meta.get(name))
            if value is not None and value.strip():
                payload[name] = value.strip()

        # Remaining domain metadata is stored flat so filters can address it
        for k, v in meta.items():
            if k in OPTIONAL_STRING_FIELDS or k in RESERVED_KEYS or k in CONTROL_KEYS:
                continue
            payload[k] = v

        dropped = [k for k in meta if k in CONTROL_KEYS]
        if dropped:
            logger.debug("Dropped control fields from payload: {}", dropped)

        return payload


__all__ = ["CollectionSchema", "PayloadNormalizer", "build_chunk_token"]
