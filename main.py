"""Agent resource catalog command line.

Subcommands:
    chunk  <file>    print the chunks a file produces
    ingest <file>    chunk, embed and upsert a file into the configured store
    search <query>   similarity search against the configured collection
    chat   <prompt>  route one prompt through the configured chat targets
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger

from config import get_settings
from models.chat import Message
from models.rag import ParsedContent
from rag.chunking import NoChunker, SemanticChunker, XrmChunker, select_chunker
from rag.embeddings import HashEmbeddingModel, LiteLLMEmbeddingModel
from rag.ingestion import IngestionPipeline
from rag.normalizer import PayloadNormalizer
from retrieval.memory_store import MemoryVectorStore
from retrieval.qdrant_store import QdrantVectorStore
from retrieval.retrieval_tool import RetrievalPipeline
from services.exceptions import CatalogError
from utils.agent_logger import LoguruAgentLogger
from utils.context import AgentContext
from utils.llm_router import ChatRouter
from utils.logging_setup import setup_logging


def load_items(path: Path) -> List[ParsedContent]:
    """Read a JSON record (or list of records) or a plain text file."""
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() != ".json":
        return [ParsedContent(text=raw, metadata={"filename": path.name})]

    data = json.loads(raw)
    records = data if isinstance(data, list) else [data]
    items = []
    for record in records:
        if isinstance(record, dict):
            items.append(ParsedContent(structured=record, metadata={"filename": path.name}))
        else:
            items.append(ParsedContent(text=str(record), metadata={"filename": path.name}))
    return items


def build_chunkers(settings):
    return [
        XrmChunker.from_settings(settings),
        SemanticChunker.from_settings(settings),
        NoChunker.from_settings(settings),
    ]


def build_embedder(settings):
    if settings.EMBEDDING_MODEL:
        return LiteLLMEmbeddingModel.from_settings(settings)
    logger.warning("EMBEDDING_MODEL not set; using offline hash embeddings")
    return HashEmbeddingModel.from_settings(settings)


def build_store(settings):
    normalizer = PayloadNormalizer(strict=False, default_vector_size=settings.EMBEDDING_DIMENSION)
    if settings.QDRANT_URL:
        return QdrantVectorStore.from_settings(settings, normalizer)
    logger.warning("QDRANT_URL not set; using a process-local in-memory store")
    return MemoryVectorStore(normalizer)


def cmd_chunk(args, settings) -> int:
    chunkers = build_chunkers(settings)
    for item in load_items(Path(args.file)):
        chunker = select_chunker(chunkers, item)
        if chunker is None:
            continue
        for i, chunk in enumerate(chunker.chunk(item)):
            print(f"--- chunk {i} ({type(chunker).__name__}, {len(chunk.text)} chars) ---")
            print(chunk.text)
    return 0


def cmd_ingest(args, settings) -> int:
    store = build_store(settings)
    collection_key = args.collection or settings.RETRIEVAL_COLLECTION_KEY
    if args.create:
        store.create_collection(collection_key)

    pipeline = IngestionPipeline(
        build_chunkers(settings),
        build_embedder(settings),
        store,
        collection_key=collection_key,
        mode=args.mode,
    )
    stats = pipeline.ingest(load_items(Path(args.file)))
    print(json.dumps(stats.to_dict(), indent=2))
    return 1 if stats.num_failed else 0


def cmd_search(args, settings) -> int:
    pipeline = RetrievalPipeline(
        embedding_model=build_embedder(settings),
        vector_store=build_store(settings),
        collection_key=settings.RETRIEVAL_COLLECTION_KEY if args.collection is None else args.collection,
        limit=settings.RETRIEVAL_LIMIT if args.limit is None else args.limit,
        min_score=settings.RETRIEVAL_MIN_SCORE if args.min_score is None else args.min_score,
        agent_logger=LoguruAgentLogger(),
    )

    result = pipeline.search(args.query)
    print(json.dumps(result.model_dump(), indent=2, ensure_ascii=False))
    return 0


def cmd_chat(args, settings) -> int:
    if not settings.ROUTER_TARGETS:
        logger.error("ROUTER_TARGETS is empty; configure at least one chat target")
        return 2

    router = ChatRouter.from_settings(settings, agent_logger=LoguruAgentLogger())
    messages = []
    if args.system:
        messages.append(Message(role="system", content=args.system))
    messages.append(Message(role="user", content=args.prompt))

    reply = asyncio.run(router.chat(messages, context=AgentContext()))
    print(reply)
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Chunking, retrieval and chat routing tools")
    sub = p.add_subparsers(dest="command", required=True)

    p_chunk = sub.add_parser("chunk", help="Print the chunks produced for a file")
    p_chunk.add_argument("file", help="JSON record(s) or plain text file")
    p_chunk.set_defaults(func=cmd_chunk)

    p_ingest = sub.add_parser("ingest", help="Chunk, embed and store a file")
    p_ingest.add_argument("file", help="JSON record(s) or plain text file")
    p_ingest.add_argument("--collection", "-c", help="Collection key (default from settings)")
    p_ingest.add_argument("--mode", choices=("skip", "update"), default="skip")
    p_ingest.add_argument("--create", action="store_true", help="Create the collection first")
    p_ingest.set_defaults(func=cmd_ingest)

    p_search = sub.add_parser("search", help="Search the configured collection")
    p_search.add_argument("query", help="Query string (wrap in quotes)")
    p_search.add_argument("--collection", "-c", help="Collection key (default from settings)")
    p_search.add_argument("--limit", "-n", type=int, help="Maximum number of hits")
    p_search.add_argument("--min-score", type=float, help="Minimum similarity score")
    p_search.set_defaults(func=cmd_search)

    p_chat = sub.add_parser("chat", help="Send one prompt through the chat router")
    p_chat.add_argument("prompt", help="User prompt (wrap in quotes)")
    p_chat.add_argument("--system", help="Optional system prompt")
    p_chat.set_defaults(func=cmd_chat)

    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    # litellm reads provider keys (OPENAI_API_KEY, ...) from os.environ
    load_dotenv()
    settings = get_settings()
    setup_logging(settings)
    settings.validate_keys()

    try:
        return args.func(args, settings)
    except CatalogError as e:
        logger.error("{} failed at stage '{}': {}", args.command, e.stage, e.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
