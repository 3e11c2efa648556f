import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

from core.errors import ValidationIssue
from core.services import memory


def test_happened_at_defaults_and_orders(server_db):
    older = memory.store_episode(
        "inst-1",
        summary="Talked about the launch",
        happened_at="2026-01-01T10:00:00Z",
        sender_id="ana",
    )
    recent = memory.store_episode("inst-1", summary="Planned the retro", sender_id="bo")

    assert older["episode"]["happened_at"].startswith("2026-01-01T10:00:00")
    assert recent["episode"]["happened_at"] is not None

    listed = memory.list_episodes("inst-1")
    assert [e["id"] for e in listed["episodes"]] == [recent["id"], older["id"]]

    only_ana = memory.list_episodes("inst-1", sender_id="ana")
    assert [e["id"] for e in only_ana["episodes"]] == [older["id"]]

    since = memory.list_episodes("inst-1", since="2026-06-01T00:00:00Z")
    assert [e["id"] for e in since["episodes"]] == [recent["id"]]


def test_summary_required(server_db):
    with pytest.raises(ValidationIssue):
        memory.store_episode("inst-1", summary="   ")


def test_unparsable_happened_at_rejected(server_db):
    with pytest.raises(ValidationIssue) as exc:
        memory.store_episode("inst-1", summary="ok", happened_at="last tuesday")
    assert exc.value.field == "happened_at"


def test_tags_are_deduplicated(server_db):
    stored = memory.store_episode("inst-1", summary="tagged", tags=["a", " a ", "b", ""])
    assert stored["episode"]["tags"] == ["a", "b"]
