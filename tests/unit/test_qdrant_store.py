import json

import httpx
import pytest

from models.rag import EmbeddingChunk, FilterSpec
from rag.normalizer import CollectionSchema, PayloadNormalizer
from retrieval.qdrant_store import QdrantVectorStore, build_qdrant_filter
from services.exceptions import InputValidationError, StoreProtocolError, StoreUnavailableError

BASE_URL = "http://qdrant.test"


def make_store(handler):
    normalizer = PayloadNormalizer(
        [CollectionSchema(collection_key="docs", backend_name="prod_docs", vector_size=3, distance="Cosine")]
    )
    return QdrantVectorStore(BASE_URL, normalizer, api_key="secret", transport=httpx.MockTransport(handler))


def recording_handler(responses):
    """Answer requests from ``responses`` keyed by (method, path) and record them."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        seen.append((request.method, request.url.path, body))
        status, payload = responses[(request.method, request.url.path)]
        return httpx.Response(status, json=payload)

    return handler, seen


@pytest.mark.unit
def test_build_qdrant_filter_translates_groups():
    qfilter = build_qdrant_filter(
        FilterSpec(must={"status": "open"}, any={"tag": ["a", "b"]}, must_not={"archived": True})
    )
    assert qfilter == {
        "must": [{"key": "status", "match": {"value": "open"}}],
        "should": [{"key": "tag", "match": {"any": ["a", "b"]}}],
        "must_not": [{"key": "archived", "match": {"value": True}}],
    }
    assert build_qdrant_filter({"hash": "h"}) == {"must": [{"key": "hash", "match": {"value": "h"}}]}
    assert build_qdrant_filter(None) is None
    assert build_qdrant_filter(FilterSpec()) is None


@pytest.mark.unit
def test_upsert_sends_normalized_payload():
    handler, seen = recording_handler({("PUT", "/collections/prod_docs/points"): (200, {"result": {}})})
    store = make_store(handler)

    point_id = store.upsert(
        EmbeddingChunk(
            collection_key="docs",
            chunk_index=1,
            text="hello",
            hash="abc",
            metadata={"status": "open"},
            vector=[0.1, 0.2, 0.3],
        )
    )

    method, path, body = seen[0]
    point = body["points"][0]
    assert point["id"] == point_id
    assert point["vector"] == [0.1, 0.2, 0.3]
    assert point["payload"]["chunktoken"] == "abc-1"
    assert point["payload"]["status"] == "open"


@pytest.mark.unit
def test_search_parses_hits_and_forwards_filter():
    handler, seen = recording_handler(
        {
            ("POST", "/collections/prod_docs/points/search"): (
                200,
                {"result": [{"id": "p1", "score": 0.9, "payload": {"hash": "abc"}}, {"id": 2, "score": 0.8}]},
            )
        }
    )
    store = make_store(handler)

    hits = store.search("docs", [1, 0, 0], limit=5, min_score=0.5, filter_spec={"status": "open"})

    assert [(h.id, h.score) for h in hits] == [("p1", 0.9), ("2", 0.8)]
    assert hits[0].payload == {"hash": "abc"}
    assert hits[1].payload == {}
    body = seen[0][2]
    assert body["score_threshold"] == 0.5
    assert body["limit"] == 5
    assert body["filter"] == {"must": [{"key": "status", "match": {"value": "open"}}]}


@pytest.mark.unit
def test_search_empty_result_is_not_an_error():
    handler, _ = recording_handler({("POST", "/collections/prod_docs/points/search"): (200, {"result": []})})
    assert make_store(handler).search("docs", [1, 0, 0]) == []


@pytest.mark.unit
def test_exists_by_hash_uses_scroll():
    handler, seen = recording_handler(
        {("POST", "/collections/prod_docs/points/scroll"): (200, {"result": {"points": [{"id": "p1"}]}})}
    )
    assert make_store(handler).exists_by_hash("docs", "abc")
    assert seen[0][2]["filter"] == {"must": [{"key": "hash", "match": {"value": "abc"}}]}


@pytest.mark.unit
def test_delete_by_filter_counts_then_deletes():
    handler, seen = recording_handler(
        {
            ("POST", "/collections/prod_docs/points/count"): (200, {"result": {"count": 2}}),
            ("POST", "/collections/prod_docs/points/delete"): (200, {"result": {"status": "completed"}}),
        }
    )
    assert make_store(handler).delete_by_filter("docs", {"status": "a"}) == 2
    assert [s[1] for s in seen] == ["/collections/prod_docs/points/count", "/collections/prod_docs/points/delete"]


@pytest.mark.unit
def test_delete_by_filter_rejects_empty_filter():
    handler, _ = recording_handler({})
    with pytest.raises(InputValidationError):
        make_store(handler).delete_by_filter("docs", {})


@pytest.mark.unit
def test_collection_lifecycle_uses_normalizer_schema():
    handler, seen = recording_handler(
        {
            ("PUT", "/collections/prod_docs"): (200, {"result": True}),
            ("GET", "/collections/prod_docs"): (200, {"result": {"status": "green", "points_count": 7}}),
            ("DELETE", "/collections/prod_docs"): (200, {"result": True}),
        }
    )
    store = make_store(handler)

    store.create_collection("docs")
    info = store.get_info("docs")
    store.delete_collection("docs")

    assert seen[0][2] == {"vectors": {"size": 3, "distance": "Cosine"}}
    assert info.count == 7
    assert info.collection == "prod_docs"
    assert info.details["status"] == "green"
    assert seen[2][0] == "DELETE"


@pytest.mark.unit
@pytest.mark.parametrize("status", [400, 404, 422])
def test_client_error_raises_protocol_error(status):
    handler, _ = recording_handler({("POST", "/collections/prod_docs/points/search"): (status, {"status": "bad"})})
    with pytest.raises(StoreProtocolError) as exc_info:
        make_store(handler).search("docs", [1, 0, 0])
    assert exc_info.value.status_code == status


@pytest.mark.unit
@pytest.mark.parametrize("status", [500, 502, 503])
def test_server_error_raises_store_unavailable(status):
    handler, _ = recording_handler({("POST", "/collections/prod_docs/points/search"): (status, {"status": "down"})})
    with pytest.raises(StoreUnavailableError) as exc_info:
        make_store(handler).search("docs", [1, 0, 0])
    assert exc_info.value.status_code == status


@pytest.mark.unit
@pytest.mark.parametrize("limit", [0, -3])
def test_search_rejects_invalid_limit_before_any_request(limit):
    handler, seen = recording_handler({})
    with pytest.raises(InputValidationError):
        make_store(handler).search("docs", [1, 0, 0], limit=limit)
    assert seen == []


@pytest.mark.unit
def test_malformed_response_raises_protocol_error():
    handler, _ = recording_handler({("POST", "/collections/prod_docs/points/search"): (200, {"unexpected": 1})})
    with pytest.raises(StoreProtocolError):
        make_store(handler).search("docs", [1, 0, 0])


@pytest.mark.unit
def test_transport_failure_raises_store_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(StoreUnavailableError):
        make_store(handler).exists_by_hash("docs", "abc")


@pytest.mark.unit
def test_api_key_header_is_sent():
    captured = {}

    def handler(request):
        captured["api-key"] = request.headers.get("api-key")
        return httpx.Response(200, json={"result": []})

    store = QdrantVectorStore(
        BASE_URL, PayloadNormalizer(strict=False), api_key="secret", transport=httpx.MockTransport(handler)
    )
    store.search("docs", [1.0])
    assert captured["api-key"] == "secret"
