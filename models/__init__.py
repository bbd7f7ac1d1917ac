from .chat import ChatResponse, Message, RouteTarget, TargetHealth, TargetPolicy
from .rag import (
    Chunk,
    CollectionInfo,
    EmbeddingChunk,
    FilterSpec,
    ParsedContent,
    RetrievalResult,
    SearchHit,
)

__all__ = [
    "ChatResponse",
    "Message",
    "RouteTarget",
    "TargetHealth",
    "TargetPolicy",
    "Chunk",
    "CollectionInfo",
    "EmbeddingChunk",
    "FilterSpec",
    "ParsedContent",
    "RetrievalResult",
    "SearchHit",
]
