"""
Pytest configuration and shared fixtures.

Loguru does not write to the stdlib logging tree, so ``caplog`` is overridden
to add a loguru sink that forwards into pytest's capture handler.
"""

import pytest
from _pytest.logging import LogCaptureFixture
from loguru import logger

from config.config import get_settings
from rag.normalizer import PayloadNormalizer
from retrieval.memory_store import MemoryVectorStore
from utils.context import AgentContext


@pytest.fixture
def caplog(caplog: LogCaptureFixture):
    handler_id = logger.add(
        caplog.handler,
        format="{message}",
        level=0,
        filter=lambda record: record["level"].no >= caplog.handler.level,
        enqueue=False,
    )
    yield caplog
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def memory_store():
    return MemoryVectorStore(PayloadNormalizer(strict=False, default_vector_size=4))


@pytest.fixture
def context():
    return AgentContext()


class StaticEmbedding:
    """Embedding stub returning a preset vector per text, or a default one."""

    def __init__(self, vectors=None, default=None):
        self.vectors = dict(vectors or {})
        self.default = default if default is not None else [1.0, 0.0, 0.0, 0.0]
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        return [list(self.vectors.get(t, self.default)) for t in texts]


@pytest.fixture
def static_embedding():
    return StaticEmbedding
