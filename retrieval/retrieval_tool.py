"""Read-only similarity search over a vector store, plus its agent tool wrapper."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from models.rag import RetrievalResult
from rag.embeddings import EmbeddingModel
from retrieval.filters import FilterSource, merge_filter_specs
from retrieval.vector_store import VectorStore, validate_collection_key, validate_limit
from services.exceptions import CapabilityUnavailableError, CatalogError, InputValidationError
from utils.agent_logger import AgentLogger

TOOL_NAME = "retrieval_search"


class RetrievalPipeline:
    """Embed a query, merge the configured filters and search one collection.

    Holds no state beyond its configuration and its two collaborators, and
    never retries: store and embedding failures propagate to the caller.
    """

    def __init__(
        self,
        embedding_model: Optional[EmbeddingModel],
        vector_store: Optional[VectorStore],
        collection_key: str = "default",
        limit: int = 3,
        min_score: Optional[float] = 0.75,
        filter_sources: Sequence[FilterSource] = (),
        agent_logger: Optional[AgentLogger] = None,
        id: str = "retrieval",
    ):
        self.embedding_model = embedding_model
        self.vector_store = vector_store
        self.collection_key = validate_collection_key(collection_key)
        self.limit = validate_limit(limit, "retrieval")
        self.min_score = min_score
        self.filter_sources = list(filter_sources)
        self.agent_logger = agent_logger
        self.id = id

    @classmethod
    def from_settings(
        cls,
        settings,
        embedding_model: Optional[EmbeddingModel],
        vector_store: Optional[VectorStore],
        filter_sources: Sequence[FilterSource] = (),
        agent_logger: Optional[AgentLogger] = None,
    ):
        return cls(
            embedding_model=embedding_model,
            vector_store=vector_store,
            collection_key=settings.RETRIEVAL_COLLECTION_KEY,
            limit=settings.RETRIEVAL_LIMIT,
            min_score=settings.RETRIEVAL_MIN_SCORE,
            filter_sources=filter_sources,
            agent_logger=agent_logger,
        )

    def log(self, message: str) -> None:
        if self.agent_logger is not None:
            self.agent_logger.log("RetrievalPipeline", f"[{self.id}] {message}")

    def build_filter(self):
        return merge_filter_specs(source.get_filter_spec() for source in self.filter_sources)

    def search(self, query: str) -> RetrievalResult:
        if not isinstance(query, str) or not query.strip():
            raise InputValidationError("Missing required parameter: query", "retrieval")
        if self.embedding_model is None or self.vector_store is None:
            raise CapabilityUnavailableError("Retrieval requires an embedding model and a vector store.")

        query = query.strip()
        filter_spec = self.build_filter()
        filter_dict = filter_spec.to_dict() if filter_spec is not None else None

        self.log(
            f'Search collection_key={self.collection_key} query="{query}" '
            f"filter={json.dumps(filter_dict) if filter_dict is not None else 'null'}"
        )

        vectors = self.embedding_model.embed([query])
        vector = vectors[0] if vectors else None
        if not vector:
            raise CatalogError("No embedding generated for query.", "embedding")

        hits = self.vector_store.search(
            self.collection_key,
            vector,
            limit=self.limit,
            min_score=self.min_score,
            filter_spec=filter_spec,
        )
        logger.debug("Retrieval returned {} hits for '{}'", len(hits), query[:80])

        return RetrievalResult(
            query=query,
            collection_key=self.collection_key,
            filter=filter_dict,
            results=list(hits),
        )


class RetrievalTool:
    """Exposes ``RetrievalPipeline.search`` as the ``retrieval_search`` agent tool.

    Failures inside the tool are returned as ``{"error": message}`` so the
    agent loop can show them to the model instead of aborting the turn.
    """

    def __init__(self, pipeline: RetrievalPipeline):
        self.pipeline = pipeline

    def get_tool_definitions(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "label": "Knowledge Base Lookup",
                "category": "knowledge",
                "tags": ["retrieval", "search"],
                "priority": 50,
                "function": {
                    "name": TOOL_NAME,
                    "description": "Searches the vector store for documents relevant to a query.",
                    "parameters": {
                        "type": "object",
                        "properties": {
                            "query": {
                                "type": "string",
                                "description": "The natural language query to search for.",
                            }
                        },
                        "required": ["query"],
                    },
                },
            }
        ]

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        if name != TOOL_NAME:
            raise InputValidationError(f"Unsupported tool: {name}", "retrieval")

        try:
            result = self.pipeline.search((arguments or {}).get("query"))
        except Exception as e:  # noqa: BLE001 - reported back to the agent loop
            logger.warning("{} failed: {}", TOOL_NAME, e)
            self.pipeline.log(f"ERROR: {e}")
            return {"error": str(e)}

        return result.model_dump()


__all__ = ["RetrievalPipeline", "RetrievalTool", "TOOL_NAME"]
