import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest

import main
from config.config import Settings
from rag.embeddings import HashEmbeddingModel, LiteLLMEmbeddingModel
from retrieval.memory_store import MemoryVectorStore
from retrieval.qdrant_store import QdrantVectorStore


@pytest.fixture
def settings(monkeypatch):
    for name in ("QDRANT_URL", "EMBEDDING_MODEL", "ROUTER_TARGETS"):
        monkeypatch.delenv(name, raising=False)
    return Settings(_env_file=None, EMBEDDING_DIMENSION=32)


@pytest.mark.unit
def test_load_items_reads_json_records_and_text(tmp_path):
    records = tmp_path / "accounts.json"
    records.write_text(json.dumps([{"id": 1, "data": {"name": "Acme"}}, "loose note"]), encoding="utf-8")
    notes = tmp_path / "notes.txt"
    notes.write_text("Plain text body.", encoding="utf-8")

    first, second = main.load_items(records)
    assert first.structured == {"id": 1, "data": {"name": "Acme"}}
    assert second.text == "loose note"
    assert first.metadata == {"filename": "accounts.json"}

    (text_item,) = main.load_items(notes)
    assert text_item.text == "Plain text body."


@pytest.mark.unit
def test_backends_fall_back_to_offline_defaults(settings):
    assert isinstance(main.build_embedder(settings), HashEmbeddingModel)
    assert isinstance(main.build_store(settings), MemoryVectorStore)


@pytest.mark.unit
def test_backends_use_configured_services(settings):
    settings.EMBEDDING_MODEL = "text-embedding-3-small"
    settings.QDRANT_URL = "http://qdrant.test"

    assert isinstance(main.build_embedder(settings), LiteLLMEmbeddingModel)
    store = main.build_store(settings)
    assert isinstance(store, QdrantVectorStore)
    store.close()


@pytest.mark.unit
def test_cmd_chunk_prints_chunks(tmp_path, settings, capsys):
    path = tmp_path / "record.json"
    path.write_text(json.dumps({"id": 7, "data": {"name": "Globex", "notes": "Renewal due"}}), encoding="utf-8")

    assert main.cmd_chunk(SimpleNamespace(file=str(path)), settings) == 0

    out = capsys.readouterr().out
    assert "--- chunk 0 (XrmChunker" in out
    assert "Globex" in out


@pytest.mark.unit
def test_cmd_ingest_reports_stats(tmp_path, settings, capsys):
    path = tmp_path / "doc.txt"
    path.write_text("The catalog indexes resources. It also retrieves them.", encoding="utf-8")
    args = SimpleNamespace(file=str(path), collection="docs", mode="skip", create=True)

    assert main.cmd_ingest(args, settings) == 0

    stats = json.loads(capsys.readouterr().out)
    assert stats["num_items"] == 1
    assert stats["num_indexed"] == 1


@pytest.mark.unit
def test_cmd_chat_requires_targets(settings):
    assert main.cmd_chat(SimpleNamespace(prompt="hi", system=None), settings) == 2


@pytest.mark.unit
def test_main_reports_catalog_errors(settings):
    with patch.object(main, "setup_logging"), patch.object(main, "get_settings", return_value=settings):
        assert main.main(["search", "   "]) == 1


@pytest.mark.unit
@pytest.mark.parametrize("argv", [["search", "hello", "--limit", "0"], ["search", "hello", "--collection", "  "]])
def test_search_arguments_are_validated_like_the_pipeline(settings, argv):
    with patch.object(main, "setup_logging"), patch.object(main, "get_settings", return_value=settings):
        assert main.main(argv) == 1


@pytest.mark.unit
def test_cmd_search_applies_overrides(settings, capsys):
    args = SimpleNamespace(query="catalog", collection="guides", limit=2, min_score=None)

    assert main.cmd_search(args, settings) == 0

    result = json.loads(capsys.readouterr().out)
    assert result["collection_key"] == "guides"
    assert result["results"] == []
