"""Tests for the SQLAlchemy-backed store (in-memory SQLite)."""
import asyncio

import pytest

from openid_flow.sql_store import SQLStore, StoreEntry, create_store_engine


@pytest.fixture
def engine():
    return create_store_engine("sqlite:///:memory:")


@pytest.fixture
def store(engine, clock):
    return SQLStore(engine=engine, clock=clock)


def test_requires_url_or_engine():
    with pytest.raises(ValueError):
        SQLStore()


@pytest.mark.asyncio
async def test_set_get_delete_json_values(store):
    record = {"provider_id": "idp", "code_verifier": "v" * 43, "redirect_uri": "https://a/cb", "info": {"n": [1, 2]}}
    await store.set("state-1", record)
    assert await store.get("state-1") == record
    await store.delete("state-1")
    assert await store.get("state-1") is None


@pytest.mark.asyncio
async def test_overwrite(store):
    await store.set("k", 1)
    await store.set("k", 2)
    assert await store.get("k") == 2


@pytest.mark.asyncio
async def test_ttl_expiry(store, clock):
    await store.set("k", "v", 2.0)
    clock.advance(1.9)
    assert await store.get("k") == "v"
    clock.advance(0.2)
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_expired_rows_swept_by_other_operations(store, engine, clock):
    await store.set("a", "v", 1.0)
    clock.advance(5.0)
    await store.set("b", "v")
    with store._sessions() as db:
        keys = [row.key for row in db.query(StoreEntry).all()]
    assert keys == [store._row_key("b")]


@pytest.mark.asyncio
async def test_tuple_keys_are_positional(store):
    await store.set(("a", "b"), "ab")
    await store.set(("b", "a"), "ba")
    assert await store.get(("a", "b")) == "ab"
    assert await store.get(("b", "a")) == "ba"


@pytest.mark.asyncio
async def test_prefixes_are_isolated(engine, clock):
    first = SQLStore(engine=engine, prefix="one", clock=clock)
    second = SQLStore(engine=engine, prefix="two", clock=clock)
    await first.set("k", "from-one")
    assert await second.get("k") is None
    assert await second.is_empty()
    assert not await first.is_empty()


@pytest.mark.asyncio
async def test_is_empty_ignores_expired_rows(store, clock):
    await store.set("k", "v", 1.0)
    assert not await store.is_empty()
    clock.advance(1.0)
    assert await store.is_empty()


@pytest.mark.asyncio
async def test_delete_observer_receives_previous_value(engine, clock):
    deleted = []
    store = SQLStore(engine=engine, clock=clock, on_delete=lambda key, previous: deleted.append((key, previous)))
    await store.set("k", {"x": 1})
    await store.delete("k")
    await store.delete("k")
    assert deleted == [("k", {"x": 1}), ("k", None)]


@pytest.mark.asyncio
async def test_take_returns_value_once(store):
    await store.set("state-1", {"provider_id": "idp"}, 60.0)
    assert await store.take("state-1") == {"provider_id": "idp"}
    assert await store.take("state-1") is None
    assert await store.is_empty()


@pytest.mark.asyncio
async def test_take_expired_row(store, clock):
    await store.set("k", "v", 1.0)
    clock.advance(1.0)
    assert await store.take("k") is None


@pytest.mark.asyncio
async def test_take_across_engines_on_one_database(tmp_path, clock):
    url = f"sqlite:///{tmp_path / 'store.db'}"
    engines = [create_store_engine(url), create_store_engine(url)]
    first, second = (SQLStore(engine=e, clock=clock) for e in engines)
    await first.set("k", "v", 60.0)
    results = await asyncio.gather(first.take("k"), second.take("k"), second.take("k"))
    assert sorted(results, key=lambda r: r is None) == ["v", None, None]
    for e in engines:
        e.dispose()
