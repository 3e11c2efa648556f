import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")
os.environ.setdefault("EMBEDDING_PROVIDER", "none")
os.environ.setdefault("EMBEDDING_BACKFILL_ENABLED", "false")
os.environ.setdefault("SESSION_CLEANUP_INTERVAL_SECONDS", "0")

from datetime import timedelta

import pytest
from sqlalchemy import create_engine

from core.access import hash_session_token
from core.context import ACTOR_OPERATOR, AccessGrant
from core.db import DB, bind_engine
from core.models import AgentInstance, Base, OperatorSession, utcnow
from core.services.memory_embeddings import (
    DisabledEmbeddingProvider,
    EmbeddingProvider,
    EmbeddingResult,
    set_embedding_provider,
)
from core.services.text_extraction import set_text_extractor


class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Counts calls and embeds text as keyword occurrence counts, so cosine
    similarity follows shared vocabulary.
    """

    name = "fake"

    def __init__(self, vocabulary=("apple", "banana", "cherry"), available=True):
        self.vocabulary = tuple(vocabulary)
        self.is_available = available
        self.calls = 0

    def _result(self, text: str) -> EmbeddingResult:
        self.calls += 1
        if not self.is_available:
            return EmbeddingResult.unavailable("fake provider offline")
        lowered = text.lower()
        return EmbeddingResult.ok([float(lowered.count(word)) for word in self.vocabulary], model="fake")

    async def embed(self, text: str) -> EmbeddingResult:
        return self._result(text)

    def embed_sync(self, text: str) -> EmbeddingResult:
        return self._result(text)


@pytest.fixture
def server_db(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'memory.sqlite'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    bind_engine(engine)
    set_embedding_provider(DisabledEmbeddingProvider())
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        set_embedding_provider(None)
        set_text_extractor(None)
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def instance_id(db_session):
    instance = AgentInstance(owner_id="operator-1", name="Test agent")
    db_session.add(instance)
    db_session.commit()
    return instance.id


@pytest.fixture
def operator_grant(instance_id):
    return AccessGrant(instance_id=instance_id, actor_type=ACTOR_OPERATOR, actor_id="operator-1")


@pytest.fixture
def operator_session(db_session):
    """Live session token for operator-1."""
    token = "session-token-operator-1"
    db_session.add(
        OperatorSession(
            token_hash=hash_session_token(token),
            operator_id="operator-1",
            expires_at=utcnow() + timedelta(hours=1),
        )
    )
    db_session.commit()
    return token


@pytest.fixture
def client(server_db):
    from fastapi.testclient import TestClient

    from app.main import app

    # no context manager: lifespan would rebind the database from the environment
    return TestClient(app)
