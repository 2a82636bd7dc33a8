"""Shared test configuration and fixtures."""

import copy
import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from text_vector_embeddings.config import BotSettings
from text_vector_embeddings.handlers.context import PluginContext
from text_vector_embeddings.queue.embedding_queue import EmbeddingQueue
from text_vector_embeddings.store.document_store import DocumentStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"
DIMENSION = 3


@pytest.fixture
def fixtures_dir():
    return FIXTURES_DIR


@pytest.fixture
def load_payload():
    """Fresh copy of a JSON webhook payload from fixtures/."""
    cache: dict[str, dict] = {}

    def _load(name: str) -> dict:
        if name not in cache:
            cache[name] = json.loads((FIXTURES_DIR / name).read_text(encoding="utf-8"))
        return copy.deepcopy(cache[name])

    return _load


@pytest.fixture
def make_settings():
    def _make(**overrides) -> BotSettings:
        values = {
            "embedding_dimension": DIMENSION,
            "embedding_mode": "sync",
            "bot_name": "tve-bot",
            "backfill_delay_ms": 0,
        }
        values.update(overrides)
        return BotSettings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def store():
    store = DocumentStore(db_path=":memory:", embedding_dimension=DIMENSION)
    yield store
    store.close()


@pytest.fixture
def queue():
    queue = EmbeddingQueue(db_path=":memory:")
    yield queue
    queue.close()


@pytest.fixture
def embedder():
    embedder = AsyncMock()
    embedder.embed.return_value = [1.0, 0.0, 0.0]
    return embedder


@pytest.fixture
def github():
    return AsyncMock()


@pytest.fixture
def context(settings, store, queue, embedder, github):
    return PluginContext(settings=settings, store=store, queue=queue, embedder=embedder, github=github)
