import os

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

from core.errors import NotFound, ValidationIssue
from core.services import memory


def test_reasoning_round_trips_in_order(server_db):
    reasoning = ["cheapest option", "already in the stack", "team knows it"]
    stored = memory.store_decision(
        "inst-1",
        context="Picking a queue",
        decision="Use Postgres LISTEN/NOTIFY",
        reasoning=reasoning,
        alternatives_considered=["RabbitMQ", "SQS"],
        tags=["infra", "queue"],
    )

    fetched = memory.get_decision("inst-1", stored["id"])["decision"]
    assert fetched["reasoning"] == reasoning
    assert fetched["alternatives_considered"] == ["RabbitMQ", "SQS"]
    assert fetched["outcome"] is None
    assert fetched["outcome_at"] is None


@pytest.mark.parametrize("reasoning", [None, [], ["   "], "one reason"])
def test_missing_reasoning_is_rejected(server_db, reasoning):
    with pytest.raises(ValidationIssue) as exc:
        memory.store_decision(
            "inst-1",
            context="ctx",
            decision="do it",
            reasoning=reasoning,
        )
    assert exc.value.field == "reasoning"
    assert memory.list_decisions("inst-1")["count"] == 0


def test_context_and_decision_required(server_db):
    with pytest.raises(ValidationIssue):
        memory.store_decision("inst-1", context="", decision="x", reasoning=["r"])
    with pytest.raises(ValidationIssue):
        memory.store_decision("inst-1", context="c", decision="  ", reasoning=["r"])


def test_store_list_get_outcome_scenario(server_db):
    first = memory.store_decision(
        "inst-1", context="movies", decision="recommend Alien", reasoning=["likes sci-fi"], tags=["movies"]
    )
    second = memory.store_decision(
        "inst-1", context="food", decision="suggest ramen", reasoning=["cold day"], tags=["food"]
    )

    listed = memory.list_decisions("inst-1")
    assert [d["id"] for d in listed["decisions"]] == [second["id"], first["id"]]

    by_tag = memory.list_decisions("inst-1", tags=["movies"])
    assert [d["id"] for d in by_tag["decisions"]] == [first["id"]]

    closed = memory.update_decision_outcome("inst-1", first["id"], "they loved it")
    assert closed["decision"]["outcome"] == "they loved it"
    assert closed["decision"]["outcome_at"] is not None

    replaced = memory.update_decision_outcome("inst-1", first["id"], "they hated the sequel")
    assert replaced["decision"]["outcome"] == "they hated the sequel"


def test_decisions_are_scoped_to_instance(server_db):
    stored = memory.store_decision("inst-1", context="c", decision="d", reasoning=["r"])

    with pytest.raises(NotFound):
        memory.get_decision("inst-2", stored["id"])
    with pytest.raises(NotFound):
        memory.update_decision_outcome("inst-2", stored["id"], "nope")
    assert memory.list_decisions("inst-2")["count"] == 0


def test_empty_outcome_rejected(server_db):
    stored = memory.store_decision("inst-1", context="c", decision="d", reasoning=["r"])
    with pytest.raises(ValidationIssue):
        memory.update_decision_outcome("inst-1", stored["id"], "   ")


def test_list_limit_is_clamped(server_db):
    for index in range(3):
        memory.store_decision("inst-1", context=f"c{index}", decision="d", reasoning=["r"])

    assert memory.list_decisions("inst-1", limit=10_000)["limit"] == 200
    assert memory.list_decisions("inst-1", limit=0)["limit"] == 1
    assert memory.list_decisions("inst-1", limit="junk")["limit"] == 50
    paged = memory.list_decisions("inst-1", limit=2, offset=2)
    assert paged["count"] == 1
    assert memory.list_decisions("inst-1", offset=-5)["offset"] == 0
