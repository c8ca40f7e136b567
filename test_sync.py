import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from bakeledger.services import catalog, rates
from bakeledger.services.identity import Identity
from bakeledger.services.mirror import EVENT_HISTORY, EXCHANGE_RATES, INGREDIENTS


async def history_count(ws):
    await ws.drain()
    return len(await ws.history())


@pytest.mark.asyncio
async def test_same_value_rate_update_writes_once(remote_ws, docstore, baker):
    await remote_ws.ready()
    assert await rates.update_daily_rate(remote_ws, 36.5, "2024-03-01") is True
    await remote_ws.drain()
    assert await rates.update_daily_rate(remote_ws, "36.50", "2024-03-01") is True
    await remote_ws.drain()

    assert len(remote_ws.items(EXCHANGE_RATES)) == 1
    assert remote_ws.sync_state.committed == 1
    assert await history_count(remote_ws) == 1
    assert docstore.collection(baker.id, EXCHANGE_RATES).get("2024-03-01")["rate"] == 36.5


@pytest.mark.asyncio
async def test_failed_commit_restores_exact_prior_value(remote_ws, fail_commits):
    await remote_ws.ready()
    ing = await catalog.add_ingredient(remote_ws, {"name": "Butter", "unit": "g", "cost": 10, "presentationSize": 500, "currentStock": 5})
    await remote_ws.drain()
    assert remote_ws.sync_error is None

    fail_commits()
    assert await catalog.set_stock(remote_ws, ing["id"], 7) is True
    # optimistic value is visible before the commit settles
    assert remote_ws.get(INGREDIENTS, ing["id"])["currentStock"] == 7

    await remote_ws.drain()
    assert remote_ws.get(INGREDIENTS, ing["id"])["currentStock"] == 5
    assert remote_ws.sync_error == "Could not save the ingredient on the server."
    assert remote_ws.failures[-1].label == f"ingredient:edit:{ing['id']}"
    # rollback is persisted to the mirror too
    stored = remote_ws.mirror_store.get(remote_ws.collections[INGREDIENTS].key)
    assert stored[0]["currentStock"] == 5


@pytest.mark.asyncio
async def test_failed_create_is_removed_again(remote_ws, fail_commits, docstore, baker):
    await remote_ws.ready()
    fail_commits()
    ing = await catalog.add_ingredient(remote_ws, {"name": "Eggs", "unit": "u", "cost": 3, "presentationSize": 30})
    assert ing is not None
    assert remote_ws.get(INGREDIENTS, ing["id"]) is not None
    await remote_ws.drain()
    assert remote_ws.get(INGREDIENTS, ing["id"]) is None
    # nothing half-written remotely, history included
    assert docstore.collection(baker.id, EVENT_HISTORY).get_all() == []


@pytest.mark.asyncio
async def test_commit_success_clears_sync_error(remote_ws, fail_commits, monkeypatch):
    await remote_ws.ready()
    fail_commits()
    await rates.update_daily_rate(remote_ws, 40, "2024-01-10")
    await remote_ws.drain()
    assert remote_ws.sync_error
    assert remote_ws.get(EXCHANGE_RATES, "2024-01-10") is None

    monkeypatch.undo()
    await rates.update_daily_rate(remote_ws, 40, "2024-01-10")
    await remote_ws.drain()
    assert remote_ws.sync_error is None
    assert remote_ws.get(EXCHANGE_RATES, "2024-01-10")["rate"] == 40


@pytest.mark.asyncio
async def test_local_mode_never_rolls_back(local_ws, fail_commits):
    await local_ws.ready()
    fail_commits()
    ing = await catalog.add_ingredient(local_ws, {"name": "Salt", "unit": "g", "cost": 1, "presentationSize": 1000})
    assert ing["id"].startswith("local_")
    await local_ws.drain()
    assert local_ws.get(INGREDIENTS, ing["id"]) is not None
    assert local_ws.sync_error is None
    entries = await local_ws.history()
    assert entries[0]["eventType"] == "INGREDIENT_CREATED"


@pytest.mark.asyncio
async def test_reload_reads_remote_state(remote_ws, docstore, baker):
    await remote_ws.ready()
    docstore.collection(baker.id, EXCHANGE_RATES).set("2024-02-01", {"date": "2024-02-01", "rate": 38.0})
    docstore.collection(baker.id, EXCHANGE_RATES).set("2024-02-03", {"date": "2024-02-03", "rate": 38.4})
    assert await remote_ws.reload() is True
    assert [r["date"] for r in remote_ws.items(EXCHANGE_RATES)] == ["2024-02-03", "2024-02-01"]
    assert remote_ws.current_daily_rate["rate"] == 38.4


@pytest.mark.asyncio
async def test_overlapping_reload_of_same_scope_is_skipped(remote_ws):
    await remote_ws.ready()
    first = asyncio.create_task(remote_ws.reload())
    await asyncio.sleep(0)
    assert remote_ws.loading
    assert await remote_ws.reload() is False
    assert await first is True
    assert not remote_ws.loading


@pytest.mark.asyncio
async def test_account_switch_during_reload_loads_new_account(remote_ws, docstore):
    other = Identity(id="u-other", email="other@example.com")
    docstore.collection(other.id, EXCHANGE_RATES).set("2024-02-01", {"date": "2024-02-01", "rate": 38.0})

    first = asyncio.create_task(remote_ws.reload())
    await asyncio.sleep(0)
    remote_ws.identity.resolve(other)
    # the stale result for the previous account is dropped
    assert await first is False
    await remote_ws.ready()
    assert remote_ws.scope == other.id
    assert [r["rate"] for r in remote_ws.items(EXCHANGE_RATES)] == [38.0]
    assert not remote_ws.loading


@pytest.mark.asyncio
async def test_offline_reload_keeps_cached_data(remote_ws, monkeypatch):
    await remote_ws.ready()
    await rates.update_daily_rate(remote_ws, 36, "2024-01-02")
    await remote_ws.drain()

    async def unreachable():
        raise OperationalError("SELECT", {}, Exception("unable to open database file"))
    monkeypatch.setattr(remote_ws.backend, "load", unreachable)
    assert await remote_ws.reload() is True
    assert remote_ws.offline is True
    assert remote_ws.error is None
    assert remote_ws.sync_error is None
    assert [r["rate"] for r in remote_ws.items(EXCHANGE_RATES)] == [36.0]

    monkeypatch.undo()
    assert await remote_ws.reload() is True
    assert remote_ws.offline is False


@pytest.mark.asyncio
async def test_audit_staging_failure_rolls_back(remote_ws, docstore, baker, monkeypatch):
    await remote_ws.ready()
    ing = await catalog.add_ingredient(remote_ws, {"name": "Butter", "unit": "g", "cost": 10, "presentationSize": 500, "currentStock": 5})
    await remote_ws.drain()

    async def broken(event, batch=None):
        raise ValueError("event could not be serialized")
    monkeypatch.setattr(remote_ws.audit, "record", broken)
    assert await catalog.set_stock(remote_ws, ing["id"], 9) is True
    assert remote_ws.get(INGREDIENTS, ing["id"])["currentStock"] == 9

    await remote_ws.drain()
    assert remote_ws.get(INGREDIENTS, ing["id"])["currentStock"] == 5
    assert remote_ws.sync_error == "Could not save the ingredient on the server."
    assert docstore.collection(baker.id, INGREDIENTS).get(ing["id"])["currentStock"] == 5


@pytest.mark.asyncio
async def test_identity_change_switches_scope_and_backend(local_ws, baker):
    await local_ws.ready()
    await rates.update_daily_rate(local_ws, 35, "2024-01-01")
    assert not local_ws.remote

    local_ws.identity.resolve(baker)
    await local_ws.ready()
    assert local_ws.remote
    assert local_ws.scope == baker.id
    assert local_ws.items(EXCHANGE_RATES) == []

    local_ws.identity.sign_out()
    await local_ws.ready()
    assert local_ws.scope == "local"
    assert [r["rate"] for r in local_ws.items(EXCHANGE_RATES)] == [35.0]


@pytest.mark.asyncio
async def test_switching_accounts_keeps_data_apart(remote_ws):
    await remote_ws.ready()
    await rates.update_daily_rate(remote_ws, 36, "2024-01-02")
    await remote_ws.drain()
    remote_ws.identity.resolve(Identity(id="u-other", email="other@example.com"))
    await remote_ws.ready()
    assert remote_ws.items(EXCHANGE_RATES) == []
