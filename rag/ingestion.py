"""
Ingestion pipeline: parsed items -> chunks -> embeddings -> vector store.

Duplicate handling is a caller-side convention since ``VectorStore.upsert``
never deduplicates:

- ``skip``: items whose content hash already exists are not re-indexed
- ``update``: prior points of the same item (``content_uuid`` or hash) are
  deleted once the new chunks are embedded, right before they are written

A failed upsert removes the points already written for that item, so a
half-indexed item is never mistaken for an indexed one.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from models.rag import Chunk, EmbeddingChunk, ParsedContent
from rag.chunking import BaseChunker, select_chunker
from rag.embeddings import EmbeddingModel
from retrieval.vector_store import VectorStore, validate_collection_key
from services.exceptions import InputValidationError

INGEST_MODES = ("skip", "update")


@dataclass
class IngestionStats:
    num_items: int = 0
    num_indexed: int = 0
    num_chunks: int = 0
    num_skipped: int = 0
    num_empty: int = 0
    num_failed: int = 0
    elapsed_ms: float = 0.0

    def to_dict(self):
        return asdict(self)


def content_hash(item: ParsedContent) -> str:
    """SHA-256 over the canonical JSON of the item's content."""
    canonical = json.dumps(
        {"structured": item.structured, "text": item.text},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IngestionPipeline:
    def __init__(
        self,
        chunkers: Sequence[BaseChunker],
        embedder: EmbeddingModel,
        vector_store: VectorStore,
        collection_key: str = "default",
        mode: str = "skip",
    ):
        if not chunkers:
            raise InputValidationError("At least one chunker is required", "ingestion")

        mode = (mode or "skip").strip().lower()
        if mode not in INGEST_MODES:
            raise InputValidationError(f"Unknown ingest mode '{mode}'", "ingestion")

        self.chunkers = sorted(chunkers, key=lambda c: c.priority)
        self.embedder = embedder
        self.vector_store = vector_store
        self.collection_key = validate_collection_key(collection_key)
        self.mode = mode

    def ingest(self, items: Iterable[ParsedContent]) -> IngestionStats:
        stats = IngestionStats()
        start = time.perf_counter()

        for item in items:
            stats.num_items += 1
            try:
                self._ingest_one(item, stats)
            except Exception as e:  # noqa: BLE001 - one bad item must not abort the batch
                stats.num_failed += 1
                logger.exception("Ingestion failed for item #{}: {}", stats.num_items, e)

        stats.elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "Ingestion finished: {} items, {} indexed, {} chunks, {} skipped, {} empty, {} failed ({:.1f} ms)",
            stats.num_items,
            stats.num_indexed,
            stats.num_chunks,
            stats.num_skipped,
            stats.num_empty,
            stats.num_failed,
            stats.elapsed_ms,
        )
        return stats

    def _ingest_one(self, item: ParsedContent, stats: IngestionStats) -> None:
        item_hash = item.hash or content_hash(item)

        if self.mode == "skip" and self.vector_store.exists_by_hash(self.collection_key, item_hash):
            logger.debug("Skipping already indexed item {}", item_hash[:12])
            stats.num_skipped += 1
            return

        chunks = self.chunk_item(item)
        if not chunks:
            if self.mode == "update":
                self._delete_previous(item, item_hash)
            logger.debug("Nothing to index for item {}", item_hash[:12])
            stats.num_empty += 1
            return

        points = self.embed_chunks(chunks, item_hash)

        # Old points go only once the replacement vectors exist
        if self.mode == "update" and points:
            self._delete_previous(item, item_hash)

        written = 0
        try:
            for point in points:
                self.vector_store.upsert(point)
                written += 1
        except Exception:
            if written:
                self._rollback(item, item_hash, written)
            raise

        stats.num_chunks += written
        if written:
            stats.num_indexed += 1

    def embed_chunks(self, chunks: Sequence[Chunk], item_hash: str) -> List[EmbeddingChunk]:
        vectors = self.embedder.embed([c.text for c in chunks])

        points: List[EmbeddingChunk] = []
        for index, chunk in enumerate(chunks):
            vector = vectors[index] if index < len(vectors) else []
            if not vector:
                logger.warning("Empty embedding for chunk {} of item {}; skipped", index, item_hash[:12])
                continue

            points.append(
                EmbeddingChunk(
                    collection_key=self.collection_key,
                    chunk_index=index,
                    text=chunk.text,
                    hash=item_hash,
                    metadata=dict(chunk.metadata),
                    vector=list(vector),
                )
            )
        return points

    def chunk_item(self, item: ParsedContent) -> List[Chunk]:
        chunker = select_chunker(self.chunkers, item)
        if chunker is None:
            logger.warning("No chunker supports item; nothing to index")
            return []
        return chunker.chunk(item)

    def _delete_previous(self, item: ParsedContent, item_hash: str) -> Optional[int]:
        content_uuid = item.metadata.get("content_uuid")
        flt = {"content_uuid": content_uuid} if content_uuid else {"hash": item_hash}
        deleted = self.vector_store.delete_by_filter(self.collection_key, flt)
        if deleted:
            logger.debug("Deleted {} previous points for {}", deleted, flt)
        return deleted

    def _rollback(self, item: ParsedContent, item_hash: str, written: int) -> None:
        """Remove the points of a partially written item so ``exists_by_hash`` stays honest."""
        flt = {"hash": item_hash}
        content_uuid = item.metadata.get("content_uuid")
        if content_uuid:
            flt["content_uuid"] = content_uuid

        try:
            removed = self.vector_store.delete_by_filter(self.collection_key, flt)
        except Exception as e:  # noqa: BLE001 - the upsert error is the one re-raised
            logger.error("Rollback of {} partial points for item {} failed: {}", written, item_hash[:12], e)
            return
        logger.warning("Rolled back {} partially written points for item {}", removed, item_hash[:12])


__all__ = ["IngestionPipeline", "IngestionStats", "content_hash"]
