"""Background sweep of expired refresh records."""

import asyncio
from datetime import timedelta

from fastapi.testclient import TestClient

import authcycle.app as app_module
from authcycle.service.runtime import get_runtime, reset_runtime_for_tests
from authcycle.storage.errors import StoreUnavailable
from authcycle.storage.models import Token, utcnow


class _FlakyStore:
    def __init__(self):
        self.calls = 0

    async def purge_expired_tokens(self):
        self.calls += 1
        if self.calls == 1:
            raise StoreUnavailable("connection refused")
        return 0


async def _wait_for(condition):
    for _ in range(200):
        if condition():
            return True
        await asyncio.sleep(0.005)
    return False


async def test_sweep_removes_expired_records(memory_store, alice):
    live = Token.new(alice.id, 5)
    stale = Token.new(alice.id, 5)
    stale.expires_at = utcnow() - timedelta(minutes=1)
    await memory_store.create_token(live)
    memory_store.tokens[stale.id] = stale

    task = asyncio.create_task(app_module._run_token_purge(memory_store, 3600))
    purged = await _wait_for(lambda: stale.id not in memory_store.tokens)
    task.cancel()
    await task

    assert purged
    assert list(memory_store.tokens) == [live.id]


async def test_sweep_keeps_running_after_a_failure():
    store = _FlakyStore()

    task = asyncio.create_task(app_module._run_token_purge(store, 0.001))
    retried = await _wait_for(lambda: store.calls >= 2)
    task.cancel()
    await task

    assert retried


def test_lifespan_sweeps_memory_store():
    store = get_runtime().token_store
    user = asyncio.run(store.create_user("alice", "hash"))
    stale = Token.new(user.id, 5)
    stale.expires_at = utcnow() - timedelta(minutes=1)
    store.tokens[stale.id] = stale

    with TestClient(app_module.app) as client:
        assert client.get("/healthz").status_code == 200
        assert asyncio.run(_wait_for(lambda: stale.id not in store.tokens))


def test_lifespan_skips_sweep_when_disabled(monkeypatch):
    monkeypatch.setenv("TOKEN_PURGE_INTERVAL_SECONDS", "0")
    store = reset_runtime_for_tests().token_store
    user = asyncio.run(store.create_user("alice", "hash"))
    stale = Token.new(user.id, 5)
    stale.expires_at = utcnow() - timedelta(minutes=1)
    store.tokens[stale.id] = stale

    with TestClient(app_module.app) as client:
        assert client.get("/healthz").status_code == 200

    assert stale.id in store.tokens
