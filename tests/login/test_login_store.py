import json

import pytest

from fakes import InMemoryRedis

from webllm.login.state import LoginMethod, LoginState
from webllm.login.store import LoginSessionStore, LoginStatusStore


@pytest.mark.asyncio
async def test_session_round_trips_through_redis():
    redis = InMemoryRedis()
    store = LoginSessionStore(redis, ttl_seconds=120)

    assert await store.get("deepseek", "alice", "login-1") is None
    session = await store.get_or_create("deepseek", "alice", "login-1")
    session.state = LoginState.WAITING_ACCOUNT
    session.method = LoginMethod.ACCOUNT_PASSWORD
    await store.save(session)

    key = LoginSessionStore.key("deepseek", "alice", "login-1")
    assert key == "webllm:login:deepseek:alice:login-1"
    assert redis.expirations[key] == 120
    assert json.loads(redis._data[key])["state"] == "WAITING_ACCOUNT"

    loaded = await store.get("deepseek", "alice", "login-1")
    assert loaded.state is LoginState.WAITING_ACCOUNT
    assert loaded.method is LoginMethod.ACCOUNT_PASSWORD
    assert loaded.is_active


@pytest.mark.asyncio
async def test_sessions_are_scoped_per_account():
    store = LoginSessionStore(InMemoryRedis())
    alice = await store.get_or_create("deepseek", "alice", "login-1")
    alice.state = LoginState.WAITING_PASSWORD
    await store.save(alice)

    bob = await store.get_or_create("deepseek", "bob", "login-1")
    assert bob.state is LoginState.NOT_STARTED


@pytest.mark.asyncio
async def test_malformed_session_is_discarded():
    redis = InMemoryRedis()
    store = LoginSessionStore(redis)
    key = LoginSessionStore.key("deepseek", "alice", "login-1")
    await redis.set(key, json.dumps({"state": "NOT_A_STATE"}))

    assert await store.get("deepseek", "alice", "login-1") is None

    await store.delete("deepseek", "alice", "login-1")
    assert await redis.get(key) is None


@pytest.mark.asyncio
async def test_status_store_records_last_check():
    store = LoginStatusStore(InMemoryRedis())
    assert await store.get("openai", "default") is None

    await store.record("openai", "default", False)
    status = await store.get("openai", "default")

    assert status["logged_in"] is False
    assert isinstance(status["checked_at"], float)


def test_key_parts_are_escaped():
    assert LoginSessionStore.key("deepseek", "a:b", "c") != LoginSessionStore.key("deepseek", "a", "b:c")
    assert LoginStatusStore.key("openai", "team:1") == "webllm:login-status:openai:team%3A1"


@pytest.mark.asyncio
async def test_session_credentials_survive_storage():
    store = LoginSessionStore(InMemoryRedis())
    session = await store.get_or_create("deepseek", "alice", "login-1")
    session.state = LoginState.LOGGING_IN
    session.account = "alice@example.com"
    session.password = "s3cret"
    await store.save(session)

    loaded = await store.get("deepseek", "alice", "login-1")
    assert (loaded.account, loaded.password) == ("alice@example.com", "s3cret")
