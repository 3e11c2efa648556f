import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

import pytest

from core.services import memory
from core.services.text_extraction import set_text_extractor


@pytest.fixture
def key(db_session, instance_id):
    return memory.get_or_create_memory_config(db_session, instance_id).memory_api_key


@pytest.fixture
def auth(key):
    return {"Authorization": f"Bearer {key}"}


def _base(instance_id: str) -> str:
    return f"/api/memory/{instance_id}"


def test_missing_credentials_is_401(client, instance_id):
    response = client.get(f"{_base(instance_id)}/decisions")
    assert response.status_code == 401
    assert response.json() == {
        "status": "error",
        "error_type": "unauthorized",
        "message": "Unauthorized",
    }


def test_decision_lifecycle_over_http(client, instance_id, auth):
    base = _base(instance_id)
    created = client.post(
        f"{base}/decisions",
        json={
            "context": "User asked for a movie",
            "decision": "Recommend Arrival",
            "reasoning": ["likes slow sci-fi", "hasn't seen it"],
            "alternativesConsidered": ["Interstellar"],
            "tags": ["movies"],
            "senderId": "ana",
        },
        headers=auth,
    )
    assert created.status_code == 201
    decision_id = created.json()["id"]

    listed = client.get(f"{base}/decisions", params={"tags": "movies,books"}, headers=auth)
    assert listed.status_code == 200
    assert [d["id"] for d in listed.json()["decisions"]] == [decision_id]

    patched = client.patch(
        f"{base}/decisions/{decision_id}",
        json={"outcome": "They loved it"},
        headers=auth,
    )
    assert patched.status_code == 200
    assert patched.json()["decision"]["outcome"] == "They loved it"

    fetched = client.get(f"{base}/decisions/{decision_id}", headers=auth)
    assert fetched.json()["decision"]["alternatives_considered"] == ["Interstellar"]


def test_missing_reasoning_is_400(client, instance_id, auth):
    response = client.post(
        f"{_base(instance_id)}/decisions",
        json={"context": "c", "decision": "d", "reasoning": []},
        headers=auth,
    )
    assert response.status_code == 400
    assert response.json()["field"] == "reasoning"


def test_unknown_decision_is_404(client, instance_id, auth):
    response = client.get(f"{_base(instance_id)}/decisions/does-not-exist", headers=auth)
    assert response.status_code == 404


def test_profile_patch_merges(client, instance_id, auth):
    base = _base(instance_id)
    client.patch(f"{base}/profiles/ana", json={"name": "Ana"}, headers=auth)
    response = client.patch(
        f"{base}/profiles/ana",
        json={"role": "admin", "communicationStyle": "terse"},
        headers=auth,
    )
    profile = response.json()["profile"]
    assert profile["name"] == "Ana"
    assert profile["role"] == "admin"
    assert profile["communication_style"] == "terse"

    rejected = client.patch(f"{base}/profiles/ana", json={"shoeSize": 42}, headers=auth)
    assert rejected.status_code == 400


def test_document_upload_quota_and_empty_content(client, instance_id, auth, operator_session):
    base = _base(instance_id)
    session_headers = {"X-Operator-Session": operator_session}
    quota = client.put(f"{base}/quota", json={"maxDocumentsMB": 1}, headers=session_headers)
    assert quota.status_code == 200

    ok = client.post(
        f"{base}/documents",
        files={"file": ("notes.txt", b"launch checklist and owners", "text/plain")},
        headers=auth,
    )
    assert ok.status_code == 201
    document_id = ok.json()["id"]

    too_big = client.post(
        f"{base}/documents",
        files={"file": ("big.txt", b"x" * (1024 * 1024), "text/plain")},
        headers=auth,
    )
    assert too_big.status_code == 429
    assert too_big.json()["error_type"] == "quota_exceeded"

    empty = client.post(
        f"{base}/documents",
        files={"file": ("blank.txt", b"   ", "text/plain")},
        headers=auth,
    )
    assert empty.status_code == 422

    usage = client.get(f"{base}/documents/usage", headers=auth).json()
    assert usage["used_bytes"] == len(b"launch checklist and owners")

    listed = client.get(f"{base}/documents", params={"includeContent": "true"}, headers=auth).json()
    assert listed["documents"][0]["content"] == "launch checklist and owners"

    deleted = client.delete(f"{base}/documents/{document_id}", headers=auth)
    assert deleted.status_code == 200
    assert client.get(f"{base}/documents/{document_id}", headers=auth).status_code == 404


def test_upload_uses_configured_extractor(client, instance_id, auth):
    set_text_extractor(lambda data, mime_type, filename: "")
    response = client.post(
        f"{_base(instance_id)}/documents",
        files={"file": ("scan.pdf", b"%PDF-1.4 not really", "application/pdf")},
        headers=auth,
    )
    assert response.status_code == 422
    assert response.json()["error_type"] == "empty_content"


def test_search_get_and_post(client, instance_id, auth):
    base = _base(instance_id)
    client.post(
        f"{base}/documents",
        files={"file": ("q3.txt", b"Quarterly revenue grew", "text/plain")},
        headers=auth,
    )

    via_get = client.get(
        f"{base}/search",
        params={"q": "revenue", "topK": "3", "includeEpisodes": "false"},
        headers=auth,
    )
    assert via_get.status_code == 200
    body = via_get.json()
    assert body["top_k"] == 3
    assert body["document_search_mode"] == "lexical"
    assert len(body["results"]["documents"]) == 1
    assert body["results"]["episodes"] == []

    via_post = client.post(
        f"{base}/search",
        json={"query": "revenue", "includeDocs": False},
        headers=auth,
    )
    assert via_post.json()["document_search_mode"] == "skipped"

    empty = client.get(f"{base}/search", params={"q": " "}, headers=auth)
    assert empty.status_code == 400


def test_stats_include_key_only_for_operators(client, instance_id, auth, key, operator_session):
    base = _base(instance_id)
    agent_view = client.get(f"{base}/stats", headers=auth).json()
    assert "memory_api_key" not in agent_view["config"]

    operator_view = client.get(f"{base}/stats", headers={"X-Operator-Session": operator_session}).json()
    assert operator_view["config"]["memory_api_key"] == key


def test_operator_only_routes_reject_memory_key(client, instance_id, auth):
    base = _base(instance_id)
    assert client.post(f"{base}/key/rotate", headers=auth).status_code == 401
    assert client.put(f"{base}/quota", json={"maxDocumentsMB": 5}, headers=auth).status_code == 401
    assert client.get(f"{base}/audit", headers=auth).status_code == 401


def test_rotation_over_http_invalidates_old_key(client, instance_id, auth, operator_session):
    base = _base(instance_id)
    rotated = client.post(f"{base}/key/rotate", headers={"X-Operator-Session": operator_session})
    assert rotated.status_code == 200
    new_key = rotated.json()["config"]["memory_api_key"]

    assert client.get(f"{base}/stats", headers=auth).status_code == 401
    assert client.get(f"{base}/stats", headers={"Authorization": f"Bearer {new_key}"}).status_code == 200


def test_request_id_header(client):
    response = client.get("/", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.json()["service"] == "instance-memory"
