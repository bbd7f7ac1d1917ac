from __future__ import annotations

from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

Scalar = Union[str, int, float, bool, None]


class ParsedContent(BaseModel):
    """One item handed to the chunkers during ingestion.

    ``structured`` carries record-shaped input (XRM entities), ``text`` carries
    plain documents. ``hash`` is filled by the ingestion pipeline when absent.
    """

    structured: Optional[Dict[str, Any]] = None
    text: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    hash: Optional[str] = None


class Chunk(BaseModel):
    """A bounded-size text segment produced by a chunker. Immutable."""

    id: str = Field(default_factory=lambda: f"chunk_{uuid4().hex}")
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class EmbeddingChunk(BaseModel):
    """The unit stored in a vector index.

    ``collection_key`` routes the chunk to its collection, ``hash`` fingerprints
    the source version and ``chunk_index`` is its position within the source.
    """

    collection_key: str
    chunk_index: int
    text: str
    hash: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    vector: List[float] = Field(default_factory=list)

    def has_vector(self) -> bool:
        return len(self.vector) > 0


class FilterSpec(BaseModel):
    """Structured payload predicate.

    must:     AND across keys; a list value is an OR of accepted values.
    any:      OR across all key/value pairs; empty means no constraint.
    must_not: no listed condition may match.
    """

    must: Dict[str, Any] = Field(default_factory=dict)
    any: Dict[str, Any] = Field(default_factory=dict)
    must_not: Dict[str, Any] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.must or self.any or self.must_not)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Return the wire shape, omitting empty groups."""
        out: Dict[str, Dict[str, Any]] = {}
        if self.must:
            out["must"] = dict(self.must)
        if self.any:
            out["any"] = dict(self.any)
        if self.must_not:
            out["must_not"] = dict(self.must_not)
        return out


class SearchHit(BaseModel):
    id: str
    score: float
    payload: Dict[str, Any] = Field(default_factory=dict)


class CollectionInfo(BaseModel):
    """Collection metadata returned by ``VectorStore.get_info``."""

    type: str
    collection_key: str
    collection: Optional[str] = None
    vector_size: Optional[int] = None
    distance: Optional[str] = None
    count: int = 0
    details: Dict[str, Any] = Field(default_factory=dict)


class RetrievalResult(BaseModel):
    query: str
    collection_key: str
    filter: Optional[Dict[str, Any]] = None
    results: List[SearchHit] = Field(default_factory=list)


__all__ = [
    "ParsedContent",
    "Chunk",
    "EmbeddingChunk",
    "FilterSpec",
    "SearchHit",
    "CollectionInfo",
    "RetrievalResult",
    "Scalar",
]
