import pytest

from models.rag import EmbeddingChunk
from rag.normalizer import CollectionSchema, PayloadNormalizer, build_chunk_token
from services.exceptions import InputValidationError


def make_chunk(**overrides):
    values = dict(
        collection_key="docs",
        chunk_index=0,
        text=" hello ",
        hash="abc",
        metadata={},
        vector=[0.1, 0.2],
    )
    values.update(overrides)
    return EmbeddingChunk(**values)


@pytest.fixture
def normalizer():
    return PayloadNormalizer(
        [
            CollectionSchema(
                collection_key="docs",
                backend_name="prod_docs",
                vector_size=384,
                distance="Dot",
                required_fields=("content_uuid",),
            )
        ]
    )


@pytest.mark.unit
def test_schema_lookup(normalizer):
    assert normalizer.get_collection_keys() == ["docs"]
    assert normalizer.get_backend_collection_name("DOCS") == "prod_docs"
    assert normalizer.get_vector_size("docs") == 384
    assert normalizer.get_distance("docs") == "Dot"
    assert "hash" in normalizer.get_schema("docs")


@pytest.mark.unit
def test_strict_normalizer_rejects_unknown_key(normalizer):
    with pytest.raises(InputValidationError):
        normalizer.get_backend_collection_name("other")


@pytest.mark.unit
def test_lenient_normalizer_creates_generic_schema():
    normalizer = PayloadNormalizer(strict=False, default_vector_size=8)
    assert normalizer.get_backend_collection_name("Notes") == "notes"
    assert normalizer.get_vector_size("notes") == 8
    assert normalizer.get_distance("notes") == "Cosine"


@pytest.mark.unit
def test_build_payload_flattens_metadata_and_drops_control_keys(normalizer):
    chunk = make_chunk(
        chunk_index=2,
        metadata={"content_uuid": "u-1", "status": "open", "job_id": 5, "hash": "spoofed", "lang": "de"},
    )
    payload = normalizer.build_payload(chunk)

    assert payload == {
        "text": "hello",
        "hash": "abc",
        "collection_key": "docs",
        "chunktoken": "abc-2",
        "chunk_index": 2,
        "content_uuid": "u-1",
        "lang": "de",
        "status": "open",
    }


@pytest.mark.unit
@pytest.mark.parametrize(
    "overrides",
    [
        {"chunk_index": -1},
        {"text": "  "},
        {"hash": ""},
        {"metadata": {}},
        {"collection_key": ""},
    ],
)
def test_validate_rejects_bad_chunks(normalizer, overrides):
    values = {"metadata": {"content_uuid": "u-1"}, **overrides}
    with pytest.raises(InputValidationError):
        normalizer.validate(make_chunk(**values))


@pytest.mark.unit
def test_chunk_token():
    assert build_chunk_token("h", 0) == "h"
    assert build_chunk_token("h", 3) == "h-3"
    with pytest.raises(InputValidationError):
        build_chunk_token(" ", 1)
