import asyncio
import os
from datetime import timedelta

os.environ.setdefault("EMBEDDING_PROVIDER", "none")
os.environ.setdefault("RECALL_DATABASE_URL", "sqlite:///:memory:")

import pytest

from recall.config import DEFAULT_MEMORY_TYPES, EngineConfig
from recall.db import DB, dispose_db, init_db
from recall.errors import EmbeddingProviderError, StoreUnavailableError
from recall.models import (
    MemoryContent,
    MemoryMetadata,
    MemoryRecord,
    MemoryRetention,
    MemoryType,
    MemoryWeights,
    utcnow,
)
from recall.services.content_analysis import ContentAnalyzer
from recall.services.document_stores import InMemoryDocumentStore, SqlDocumentStore
from recall.services.memory_embeddings import EmbeddingProvider
from recall.services.memory_service import MemoryService
from recall.services.record_store import RecordStore


class FlakyDocumentStore(InMemoryDocumentStore):
    """Durable stand-in that raises while ``failing`` is set."""

    name = "flaky"

    def __init__(self, failing: bool = True):
        super().__init__()
        self.failing = failing

    def _check(self):
        if self.failing:
            raise StoreUnavailableError("durable store offline")

    async def get(self, document_id):
        self._check()
        return await super().get(document_id)

    async def put(self, document):
        self._check()
        await super().put(document)

    async def query(self, owner_id, limit, cursor=None):
        self._check()
        return await super().query(owner_id, limit, cursor)

    async def update(self, document_id, partial):
        self._check()
        return await super().update(document_id, partial)

    async def delete(self, document_id):
        self._check()
        return await super().delete(document_id)

    async def scan(self, limit, cursor=None):
        self._check()
        return await super().scan(limit, cursor)

    async def ping(self):
        self._check()
        return True


class FailingEmbeddingProvider(EmbeddingProvider):
    name = "failing"

    def __init__(self):
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        raise EmbeddingProviderError("embedding provider unavailable")


class SlowEmbeddingProvider(EmbeddingProvider):
    name = "slow"

    async def embed(self, text):
        await asyncio.sleep(1.0)
        return [1.0, 0.0]


class KeywordEmbeddingProvider(EmbeddingProvider):
    """One axis per vocabulary word, plus a small bias term."""

    name = "keyword"
    AXES = ("database", "performance", "strength", "workout")

    def __init__(self):
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        lowered = text.lower()
        return [1.0 if axis in lowered else 0.0 for axis in self.AXES] + [0.01]


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def session_factory(tmp_path):
    init_db(f"sqlite:///{tmp_path / 'recall.db'}")
    yield DB.SessionLocal
    dispose_db()


@pytest.fixture
def sql_store(session_factory):
    return SqlDocumentStore(session_factory, timeout_seconds=5.0)


@pytest.fixture
def record_store(sql_store):
    return RecordStore(sql_store)


@pytest.fixture
def service(session_factory, engine_config):
    return MemoryService.from_config(engine_config, session_factory=session_factory)


@pytest.fixture
def fallback_service(engine_config):
    return MemoryService(RecordStore(None), engine_config)


@pytest.fixture
def record_factory():
    analyzer = ContentAnalyzer()

    def make(
        text="Heavy squats and deadlifts build leg strength over time",
        owner_id="user-1",
        session_id=None,
        memory_type=MemoryType.short_term,
        composite=0.5,
        age=timedelta(0),
        since_access=None,
        access_count=0,
        archived=False,
        response_quality=0.5,
        is_query=False,
        concepts=None,
        compressed=None,
        token_count=None,
    ):
        now = utcnow()
        created_at = now - age
        last_accessed = now - since_access if since_access is not None else created_at
        analysis = analyzer.analyze(text, is_query)
        return MemoryRecord(
            owner_id=owner_id,
            session_id=session_id,
            memory_type=memory_type,
            content=MemoryContent(
                original=text,
                compressed=compressed if compressed is not None else analysis.compressed,
                keywords=analysis.keywords,
                concepts=list(concepts) if concepts is not None else analysis.concepts,
                sentiment=analysis.sentiment,
                importance=composite,
            ),
            metadata=MemoryMetadata(
                created_timestamp=created_at,
                topic=analysis.topic,
                inferred_intent=analysis.inferred_intent,
                response_quality=response_quality,
                token_count=token_count if token_count is not None else analysis.token_count,
                compressed_token_count=analysis.compressed_token_count,
                is_query=is_query,
                complexity=analysis.complexity,
            ),
            weights=MemoryWeights(importance=composite, composite=composite),
            retention=MemoryRetention(
                last_accessed=last_accessed,
                access_count=access_count,
                decay_rate=DEFAULT_MEMORY_TYPES[memory_type.value].decay_rate,
                is_archived=archived,
            ),
            created_at=created_at,
            updated_at=created_at,
        )

    return make


@pytest.fixture
def flaky_store():
    return FlakyDocumentStore(failing=True)


@pytest.fixture
def failing_provider():
    return FailingEmbeddingProvider()


@pytest.fixture
def slow_provider():
    return SlowEmbeddingProvider()


@pytest.fixture
def keyword_provider():
    return KeywordEmbeddingProvider()
