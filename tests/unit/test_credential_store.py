from __future__ import annotations

import pytest

from api_session.credentials.backends import InMemoryBackend
from api_session.credentials.store import CredentialStore

from conftest import T0, FakeClock


class BrokenBackend(InMemoryBackend):
    async def get(self, key):
        raise OSError("storage unavailable")

    async def set_many(self, values):
        raise OSError("disk full")

    async def remove_many(self, keys):
        raise OSError("read-only")


@pytest.mark.asyncio
async def test_store_tokens_computes_absolute_expiry(store, backend, clock) -> None:
    assert await store.store_tokens("at", "rt", 3600) is True

    assert await store.get_access_token() == "at"
    assert await store.get_refresh_token() == "rt"
    assert await store.get_expires_at() == T0 + 3_600_000
    assert backend.snapshot()[store.expires_at_key] == str(T0 + 3_600_000)


@pytest.mark.asyncio
async def test_is_expired_flips_after_lifetime(store, clock) -> None:
    await store.store_tokens("at", "rt", 3600)
    assert await store.is_expired() is False

    clock.advance(3601)
    assert await store.is_expired() is True


@pytest.mark.asyncio
async def test_negative_or_missing_expiry_is_clamped_to_now(store) -> None:
    await store.store_tokens("at", "rt", -50)
    assert await store.get_expires_at() == T0
    assert await store.is_expired() is True

    await store.store_tokens("at", "rt", None)
    assert await store.get_expires_at() == T0


@pytest.mark.asyncio
async def test_no_expiry_counts_as_expired(store) -> None:
    assert await store.is_expired() is True
    assert await store.should_proactively_refresh() is True


@pytest.mark.asyncio
async def test_should_proactively_refresh_uses_margin(store, clock) -> None:
    await store.store_tokens("at", "rt", 600)
    assert await store.should_proactively_refresh() is False

    clock.advance(539)
    assert await store.should_proactively_refresh() is False

    clock.advance(1)
    assert await store.should_proactively_refresh() is True
    assert await store.is_expired() is False


@pytest.mark.asyncio
async def test_custom_margin() -> None:
    clock = FakeClock()
    store = CredentialStore(InMemoryBackend(), clock=clock, refresh_margin_ms=5_000)
    await store.store_tokens("at", "rt", 60)
    clock.advance(54)
    assert await store.should_proactively_refresh() is False
    clock.advance(1)
    assert await store.should_proactively_refresh() is True


@pytest.mark.asyncio
async def test_clear_tokens_removes_all_three_keys(store, backend) -> None:
    await store.store_tokens("at", "rt", 3600)
    await store.set_user({"_id": "u1"})

    await store.clear_tokens()

    assert await store.get_access_token() is None
    assert await store.get_refresh_token() is None
    assert await store.get_expires_at() is None
    # user profile survives a token clear; only logout drops it
    assert await store.get_user_id() == "u1"


@pytest.mark.asyncio
async def test_clear_session_also_drops_user(store, backend) -> None:
    await store.store_tokens("at", "rt", 3600)
    await store.set_user({"id": 7, "name": "Ada"})
    assert await store.get_user_id() == "7"

    await store.clear_session()

    assert backend.snapshot() == {}
    assert await store.get_user() is None


@pytest.mark.asyncio
async def test_broken_backend_never_raises(clock) -> None:
    store = CredentialStore(BrokenBackend(), clock=clock)

    assert await store.get_access_token() is None
    assert await store.get_refresh_token() is None
    assert await store.is_expired() is True
    assert await store.should_proactively_refresh() is False
    assert await store.store_tokens("at", "rt", 60) is False
    await store.clear_tokens()
    await store.set_user({"id": 1})
    assert await store.get_user() is None


@pytest.mark.asyncio
async def test_garbage_expiry_reads_as_absent(backend, store) -> None:
    await backend.set(store.expires_at_key, "soon")
    assert await store.get_expires_at() is None
    assert await store.is_expired() is True
    assert await store.should_proactively_refresh() is True


@pytest.mark.asyncio
async def test_empty_string_token_reads_as_absent(backend, store) -> None:
    await backend.set(store.refresh_token_key, "")
    assert await store.get_refresh_token() is None


def test_key_prefix() -> None:
    store = CredentialStore(InMemoryBackend(), key_prefix="@app_")
    assert store.token_keys == ("@app_access_token", "@app_refresh_token", "@app_access_expires_at")
