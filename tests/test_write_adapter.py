import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

import pytest

from core.services import memory


@pytest.fixture
def key(db_session, instance_id):
    return memory.get_or_create_memory_config(db_session, instance_id).memory_api_key


def _write(client, instance_id, key, **params):
    return client.get(f"/api/memory/{instance_id}/write", params={"key": key, **params})


def test_episode_with_comma_tags(client, instance_id, key):
    response = _write(
        client, instance_id, key, type="episode", summary="Watched a film", tags="movies, weekend,", senderId="ana"
    )
    assert response.status_code == 200
    assert response.json()["type"] == "episode"

    episodes = memory.list_episodes(instance_id)["episodes"]
    assert episodes[0]["tags"] == ["movies", "weekend"]
    assert episodes[0]["sender_id"] == "ana"


def test_decision_with_pipe_lists_then_outcome(client, instance_id, key):
    response = _write(
        client,
        instance_id,
        key,
        type="decision",
        context="Needed a dinner idea",
        decision="Suggest ramen",
        reasoning="cold outside|quick to make",
        alternatives="pizza|salad",
        tags="food",
    )
    assert response.status_code == 200
    decision_id = response.json()["id"]

    stored = memory.get_decision(instance_id, decision_id)["decision"]
    assert stored["reasoning"] == ["cold outside", "quick to make"]
    assert stored["alternatives_considered"] == ["pizza", "salad"]

    outcome = _write(client, instance_id, key, type="outcome", id=decision_id, outcome="It was great")
    assert outcome.status_code == 200
    assert memory.get_decision(instance_id, decision_id)["decision"]["outcome"] == "It was great"


def test_decision_without_reasoning_rejected(client, instance_id, key):
    response = _write(client, instance_id, key, type="decision", context="c", decision="d")
    assert response.status_code == 400


def test_profile_params_merge(client, instance_id, key):
    _write(client, instance_id, key, type="profile", name="Ana", preferences="short answers,examples")
    response = _write(client, instance_id, key, type="profile", style="direct", focus="launch")
    assert response.status_code == 200
    assert response.json()["created"] is False

    profile = memory.get_profile(instance_id)["profile"]
    assert profile["name"] == "Ana"
    assert profile["communication_style"] == "direct"
    assert profile["current_focus"] == "launch"
    assert profile["preferences"] == ["short answers", "examples"]


def test_outcome_requires_id(client, instance_id, key):
    response = _write(client, instance_id, key, type="outcome", outcome="done")
    assert response.status_code == 400
    assert response.json()["field"] == "id"


def test_unknown_type_rejected(client, instance_id, key):
    response = _write(client, instance_id, key, type="poem")
    assert response.status_code == 400
    assert response.json()["field"] == "type"


def test_wrong_key_rejected(client, instance_id, key):
    response = _write(client, instance_id, "not-the-key", type="episode", summary="nope")
    assert response.status_code == 401
    assert memory.list_episodes(instance_id)["count"] == 0
