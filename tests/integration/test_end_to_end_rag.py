"""End-to-end tests: chunk, embed, store, retrieve and answer through the router.

Only the embedding provider and the chat targets are stubbed; chunking,
payload normalization, the in-memory store, retrieval and routing are real.
"""

from __future__ import annotations

import pytest

from models.chat import ChatResponse, Message, RouteTarget
from models.rag import ParsedContent
from rag.chunking import NoChunker, SemanticChunker, XrmChunker
from rag.ingestion import IngestionPipeline, content_hash
from retrieval.filters import StaticFilterSource
from retrieval.memory_store import MemoryVectorStore
from retrieval.retrieval_tool import TOOL_NAME, RetrievalPipeline, RetrievalTool
from utils.llm_router import ChatRouter

pytestmark = pytest.mark.integration

DIMENSION = 16


class LengthBucketEmbedding:
    """One-hot vector whose hot position is ``len(text) % 16``."""

    def embed(self, texts):
        vectors = []
        for text in texts:
            vector = [0.0] * DIMENSION
            vector[len(text) % DIMENSION] = 1.0
            vectors.append(vector)
        return vectors


def build_document(min_chars: int = 3000) -> str:
    paragraphs, sentences, i = [], [], 0
    while sum(len(p) for p in paragraphs) + sum(len(s) for s in sentences) < min_chars:
        i += 1
        sentences.append(f"Sentence {i} explains how the catalog stores and retrieves resources.")
        if len(sentences) == 8:
            paragraphs.append(" ".join(sentences))
            sentences = []
    if sentences:
        paragraphs.append(" ".join(sentences))
    return "\n\n".join(paragraphs)


@pytest.fixture
def document():
    return ParsedContent(text=build_document(), metadata={"content_uuid": "guide-1", "type": "guide"})


@pytest.fixture
def indexed_store(document):
    store = MemoryVectorStore()
    chunkers = [
        XrmChunker(max_length=800, min_length=200, overlap=50),
        SemanticChunker(max_length=800, min_length=200, overlap=50),
        NoChunker(),
    ]
    stats = IngestionPipeline(chunkers, LengthBucketEmbedding(), store, collection_key="guides").ingest([document])
    assert stats.num_failed == 0
    return store


def test_document_is_chunked_within_bounds(document):
    chunks = SemanticChunker(max_length=800, min_length=200, overlap=50).chunk(document)

    assert len(document.text) >= 3000
    assert len(chunks) >= 4
    assert all(len(c.text) <= 800 for c in chunks)
    assert all(c.metadata["content_uuid"] == "guide-1" for c in chunks)


def test_ingested_chunk_is_retrievable_by_its_own_text(document, indexed_store):
    info = indexed_store.get_info("guides")
    assert info.count >= 4

    seed = indexed_store.search("guides", [1.0] + [0.0] * (DIMENSION - 1), limit=50, min_score=None)
    target_text = seed[0].payload["text"]

    pipeline = RetrievalPipeline(
        LengthBucketEmbedding(), indexed_store, collection_key="guides", limit=info.count, min_score=0.0
    )
    result = pipeline.search(target_text)

    assert result.results
    assert result.results[0].score == pytest.approx(1.0)
    texts = [hit.payload["text"] for hit in result.results if hit.score == pytest.approx(1.0)]
    assert target_text in texts
    assert all(hit.payload["hash"] == content_hash(document) for hit in result.results)
    assert result.results[0].payload["type"] == "guide"


def test_reingesting_unchanged_document_is_skipped(document, indexed_store):
    before = indexed_store.get_info("guides").count
    stats = IngestionPipeline(
        [SemanticChunker(max_length=800, min_length=200, overlap=50)],
        LengthBucketEmbedding(),
        indexed_store,
        collection_key="guides",
    ).ingest([document])

    assert stats.num_skipped == 1
    assert indexed_store.get_info("guides").count == before


def test_filtered_retrieval_excludes_other_types(indexed_store):
    def pipeline_for(doc_type):
        return RetrievalPipeline(
            LengthBucketEmbedding(),
            indexed_store,
            collection_key="guides",
            min_score=None,
            filter_sources=[StaticFilterSource({"must": {"type": doc_type}})],
        )

    assert pipeline_for("faq").search("anything").results == []
    assert pipeline_for("guide").search("anything").results


class ToolCallingModel:
    """Chat target that asks for one retrieval call, then answers from the result."""

    def __init__(self, tool):
        self.tool = tool

    async def send(self, messages, tools=None):
        last = messages[-1]
        if last.role == "user":
            return ChatResponse(
                tool_calls=[
                    {
                        "id": "call-1",
                        "type": "function",
                        "function": {"name": TOOL_NAME, "arguments": {"query": last.content}},
                    }
                ]
            )
        hits = last.content
        return ChatResponse(content=f"found {hits}")

    async def stream(self, messages, tools, on_token, on_meta=None):
        raise NotImplementedError

    def get_options(self):
        return {}

    def set_options(self, options):
        pass


@pytest.mark.asyncio
async def test_router_drives_retrieval_tool_loop(indexed_store, context):
    tool = RetrievalTool(
        RetrievalPipeline(LengthBucketEmbedding(), indexed_store, collection_key="guides", min_score=None)
    )
    router = ChatRouter([RouteTarget(id="agent", handle=ToolCallingModel(tool))])
    definitions = tool.get_tool_definitions()

    messages = [Message(role="user", content="How are resources stored?")]
    first = await router.send(messages, tools=definitions, context=context)
    call = first.tool_calls[0]

    result = tool.call_tool(call["function"]["name"], call["function"]["arguments"])
    messages.append(Message(role="assistant", tool_calls=first.tool_calls))
    messages.append(Message(role="tool", tool_call_id=call["id"], content=str(len(result["results"]))))

    second = await router.send(messages, tools=definitions, context=context)
    assert second.content == "found 3"
    assert context.get_var("routingchatmodel.sticky.router") == 0
