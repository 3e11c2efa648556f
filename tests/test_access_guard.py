import os
from datetime import timedelta

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

from core.access import Credentials, access_guard, hash_session_token, purge_expired_sessions, require_operator
from core.errors import Unauthorized
from core.models import AgentInstance, MemoryConfig, OperatorSession, utcnow
from core.services import memory


def _memory_key(db_session, instance_id: str) -> str:
    return memory.get_or_create_memory_config(db_session, instance_id).memory_api_key


def _denial_message(instance_id: str, credentials: Credentials) -> str:
    with pytest.raises(Unauthorized) as exc:
        access_guard.authorize(instance_id, credentials)
    return str(exc.value)


def test_owner_session_is_operator(instance_id, operator_session):
    grant = access_guard.authorize(instance_id, Credentials(session_token=operator_session))
    assert grant.is_operator
    assert grant.actor_id == "operator-1"
    assert require_operator(grant) is grant


def test_memory_key_grants_agent_access(db_session, instance_id):
    key = _memory_key(db_session, instance_id)
    grant = access_guard.authorize(instance_id, Credentials(bearer_token=key, method="POST"))
    assert grant.actor_type == "agent"
    with pytest.raises(Unauthorized):
        require_operator(grant)


def test_query_key_only_accepted_on_get(db_session, instance_id):
    key = _memory_key(db_session, instance_id)
    assert access_guard.authorize(instance_id, Credentials(query_key=key, method="GET"))
    with pytest.raises(Unauthorized):
        access_guard.authorize(instance_id, Credentials(query_key=key, method="POST"))


def test_denials_are_indistinguishable(db_session, instance_id, operator_session):
    key = _memory_key(db_session, instance_id)
    db_session.add(AgentInstance(id="someone-elses", owner_id="operator-2"))
    db_session.add(
        OperatorSession(
            token_hash=hash_session_token("expired-token"),
            operator_id="operator-1",
            expires_at=utcnow() - timedelta(minutes=1),
        )
    )
    db_session.commit()

    messages = {
        _denial_message(instance_id, Credentials()),
        _denial_message(instance_id, Credentials(bearer_token="wrong-key")),
        _denial_message(instance_id, Credentials(session_token="unknown-token")),
        _denial_message(instance_id, Credentials(session_token="expired-token")),
        _denial_message("someone-elses", Credentials(session_token=operator_session)),
        _denial_message("someone-elses", Credentials(bearer_token=key)),
        _denial_message("", Credentials(bearer_token=key)),
    }
    assert messages == {"Unauthorized"}


def test_guard_never_creates_memory_config(db_session, instance_id):
    with pytest.raises(Unauthorized):
        access_guard.authorize(instance_id, Credentials(bearer_token="guess"))
    assert db_session.query(MemoryConfig).count() == 0


def test_rotation_invalidates_old_key(db_session, instance_id, operator_grant):
    old_key = _memory_key(db_session, instance_id)
    rotated = memory.rotate_memory_api_key(instance_id, grant=operator_grant)
    new_key = rotated["config"]["memory_api_key"]

    assert new_key != old_key
    with pytest.raises(Unauthorized):
        access_guard.authorize(instance_id, Credentials(bearer_token=old_key))
    assert access_guard.authorize(instance_id, Credentials(bearer_token=new_key))


def test_purge_expired_sessions(db_session):
    db_session.add(
        OperatorSession(
            token_hash=hash_session_token("stale"),
            operator_id="operator-1",
            expires_at=utcnow() - timedelta(seconds=1),
        )
    )
    db_session.commit()
    assert purge_expired_sessions() == 1
