import asyncio
import os
import threading

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

import core.config as config
from core.errors import ValidationIssue
from core.services import memory
from core.services import memory_search as search_module
from core.services.memory_embeddings import EmbeddingProvider
from core.services.memory_search import clamp_top_k, lexical_score, query_terms


def _doc(instance_id: str, content: str, filename: str = "doc.txt", provider=None) -> str:
    return memory.ingest_document(
        instance_id,
        filename=filename,
        mime_type="text/plain",
        content=content,
        size_bytes=len(content.encode("utf-8")),
        provider=provider,
    )["id"]


class ExplodingProvider(EmbeddingProvider):
    name = "exploding"

    def __init__(self):
        self.calls = 0

    async def embed(self, text):
        self.calls += 1
        raise RuntimeError("provider blew up")

    def embed_sync(self, text):
        raise RuntimeError("provider blew up")


class SlowProvider(EmbeddingProvider):
    name = "slow"

    async def embed(self, text):
        await asyncio.sleep(5)
        raise AssertionError("embedding should have timed out")

    def embed_sync(self, text):
        raise AssertionError("not used")


def test_lexical_fallback_without_embeddings(server_db):
    match = _doc("inst-1", "Quarterly revenue grew on strong subscription renewals.", "q3.txt")
    _doc("inst-1", "The office plants need watering on Fridays.", "plants.txt")

    result = asyncio.run(memory.memory_search("inst-1", "subscription revenue"))

    assert result["document_search_mode"] == "lexical"
    documents = result["results"]["documents"]
    assert [hit["id"] for hit in documents] == [match]
    assert documents[0]["match_mode"] == "lexical"
    assert "revenue" in documents[0]["snippet"]


def test_provider_errors_never_fail_search(server_db):
    _doc("inst-1", "Postgres backups run nightly.")
    provider = ExplodingProvider()

    result = asyncio.run(memory.memory_search("inst-1", "backups", provider=provider))

    assert provider.calls == 1
    assert result["document_search_mode"] == "lexical"
    assert len(result["results"]["documents"]) == 1


def test_unavailable_provider_uses_lexical(server_db, fake_provider):
    _doc("inst-1", "apple pie recipe")
    provider = fake_provider
    provider.is_available = False

    result = asyncio.run(memory.memory_search("inst-1", "apple", provider=provider))

    assert provider.calls == 1
    assert result["document_search_mode"] == "lexical"


def test_vector_mode_ranks_by_similarity(server_db, fake_provider):
    provider = fake_provider
    apples = _doc("inst-1", "apple apple apple orchard notes", provider=provider)
    cherries = _doc("inst-1", "cherry cherry season schedule", provider=provider)

    result = asyncio.run(memory.memory_search("inst-1", "apple", top_k=1, provider=provider))

    assert result["document_search_mode"] == "vector"
    documents = result["results"]["documents"]
    assert [hit["id"] for hit in documents] == [apples]
    assert documents[0]["similarity"] == pytest.approx(1.0)

    both = asyncio.run(memory.memory_search("inst-1", "cherry", top_k=5, provider=provider))
    assert [hit["id"] for hit in both["results"]["documents"]] == [cherries, apples]


def test_include_docs_false_skips_provider(server_db, fake_provider):
    _doc("inst-1", "apple notes")
    provider = fake_provider

    result = asyncio.run(
        memory.memory_search("inst-1", "apple", include_docs=False, provider=provider)
    )

    assert provider.calls == 0
    assert result["document_search_mode"] == "skipped"
    assert result["results"]["documents"] == []


def test_disabled_categories_are_empty_not_missing(server_db):
    memory.store_decision("inst-1", context="c", decision="d", reasoning=["r"])
    memory.store_episode("inst-1", summary="met the team")
    memory.upsert_profile("inst-1", "default", {"name": "Ana"})

    result = asyncio.run(
        memory.memory_search(
            "inst-1",
            "anything",
            include_decisions=False,
            include_episodes=False,
            include_profile=False,
        )
    )

    assert result["results"]["decisions"] == []
    assert result["results"]["episodes"] == []
    assert result["results"]["profile"] is None

    full = asyncio.run(memory.memory_search("inst-1", "anything"))
    assert len(full["results"]["decisions"]) == 1
    assert len(full["results"]["episodes"]) == 1
    assert full["results"]["profile"]["name"] == "Ana"


def test_episode_sender_filter(server_db):
    memory.store_episode("inst-1", summary="with ana", sender_id="ana")
    memory.store_episode("inst-1", summary="with bo", sender_id="bo")

    default_view = asyncio.run(memory.memory_search("inst-1", "team"))
    assert len(default_view["results"]["episodes"]) == 2

    ana_view = asyncio.run(memory.memory_search("inst-1", "team", sender_id="ana"))
    assert [e["summary"] for e in ana_view["results"]["episodes"]] == ["with ana"]


def test_search_is_scoped_to_instance(server_db):
    _doc("inst-2", "secret apple plans")
    result = asyncio.run(memory.memory_search("inst-1", "apple"))
    assert result["results"]["documents"] == []


def test_empty_query_rejected(server_db):
    with pytest.raises(ValidationIssue):
        asyncio.run(memory.memory_search("inst-1", "   "))


@pytest.mark.parametrize(
    "value,expected",
    [(None, 5), ("junk", 5), (0, 1), (-3, 1), (7, 7), (500, 20), ("3", 3), (True, 5)],
)
def test_top_k_clamped(value, expected):
    assert clamp_top_k(value) == expected


def test_query_terms_drop_stopwords_and_short_tokens():
    assert query_terms("What is the plan for a Q3 launch?") == ["plan", "q3", "launch"]


def test_phrase_match_scores_higher():
    terms = ["launch", "plan"]
    phrase = "launch plan"
    together = lexical_score("the launch plan is ready", terms, phrase)
    apart = lexical_score("plan the launch", terms, phrase)
    assert together > apart > 0


def test_lexical_matches_non_ascii_case_insensitively(server_db):
    match = _doc("inst-1", "Über die Straße und Ärger im Büro")
    _doc("inst-1", "Nothing relevant here")

    result = asyncio.run(memory.memory_search("inst-1", "über ärger"))

    assert result["document_search_mode"] == "lexical"
    assert [hit["id"] for hit in result["results"]["documents"]] == [match]


def test_lexical_casefold_matches_sharp_s(server_db):
    match = _doc("inst-1", "Die STRASSE ist gesperrt")
    result = asyncio.run(memory.memory_search("inst-1", "straße"))
    assert [hit["id"] for hit in result["results"]["documents"]] == [match]


def test_lexical_ranks_older_best_match_over_newer_partial_matches(server_db):
    best = _doc("inst-1", "Quarterly revenue forecast for the board", "forecast.txt")
    for index in range(3):
        _doc("inst-1", f"Newer note {index} that mentions revenue once", f"note-{index}.txt")

    result = asyncio.run(
        memory.memory_search("inst-1", "quarterly revenue forecast", top_k=1)
    )

    assert [hit["id"] for hit in result["results"]["documents"]] == [best]


def test_chunk_text_windows_overlap():
    words = [f"w{i}" for i in range(1100)]
    chunks = memory.chunk_text(" ".join(words), max_words=500, overlap=50)

    assert len(chunks) == 3
    assert chunks[0].split()[-1] == "w499"
    assert chunks[1].split()[0] == "w450"
    assert chunks[2].split()[0] == "w900"
    assert chunks[2].split()[-1] == "w1099"


def test_chunk_text_short_text_is_one_chunk():
    assert memory.chunk_text("  hello \n world  ") == ["hello world"]


def test_vector_search_finds_late_passage_by_chunk(server_db, fake_provider):
    content = "filler " * 1200 + "cherry orchard harvest"
    stored = memory.ingest_document(
        "inst-1",
        filename="long.txt",
        mime_type="text/plain",
        content=content,
        size_bytes=len(content),
        provider=fake_provider,
    )
    assert stored["document"]["chunk_count"] == 3
    assert stored["document"]["status"] == "ready"

    result = asyncio.run(memory.memory_search("inst-1", "cherry", provider=fake_provider))

    assert result["document_search_mode"] == "vector"
    hits = result["results"]["documents"]
    assert [hit["id"] for hit in hits] == [stored["id"]]
    assert hits[0]["chunk_index"] == 2
    assert hits[0]["similarity"] == pytest.approx(1.0)


def test_lexical_hit_reports_matching_chunk(server_db):
    content = "filler " * 1200 + "cherry orchard harvest"
    _doc("inst-1", content)

    result = asyncio.run(memory.memory_search("inst-1", "cherry orchard"))

    hit = result["results"]["documents"][0]
    assert hit["chunk_index"] == 2
    assert hit["match_mode"] == "lexical"


def test_embedding_timeout_falls_back_to_lexical(server_db, monkeypatch):
    monkeypatch.setattr(config, "EMBEDDING_TIMEOUT_SECONDS", 0.05)
    match = _doc("inst-1", "Postgres backups run nightly.")

    result = asyncio.run(memory.memory_search("inst-1", "backups", provider=SlowProvider()))

    assert result["document_search_mode"] == "lexical"
    assert [hit["id"] for hit in result["results"]["documents"]] == [match]


def test_enabled_categories_are_fetched_concurrently(server_db, monkeypatch):
    # each read blocks until all four are in flight; a sequential fan-out breaks the barrier
    barrier = threading.Barrier(4)

    def rendezvous(value):
        def read(*args):
            barrier.wait(timeout=5)
            return value

        return read

    monkeypatch.setattr(search_module, "lexical_document_search", rendezvous([]))
    monkeypatch.setattr(search_module, "recent_decisions", rendezvous([]))
    monkeypatch.setattr(search_module, "recent_episodes", rendezvous([]))
    monkeypatch.setattr(search_module, "load_profile", rendezvous(None))

    result = asyncio.run(memory.memory_search("inst-1", "anything"))

    assert result["document_search_mode"] == "lexical"
    assert result["results"]["documents"] == []
    assert result["results"]["profile"] is None
