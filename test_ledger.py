import pytest

from bakeledger.services import ledger, rates
from bakeledger.services.mirror import TRANSACTIONS
from bakeledger.util.money import usd_from_bs


def test_usd_derivation_rounds_half_up():
    assert usd_from_bs(1000, 36.5) == 27.40
    assert usd_from_bs(1, 8) == 0.13  # 0.125
    assert usd_from_bs(250, 25) == 10.0


@pytest.mark.asyncio
async def test_add_transaction_derives_usd(local_ws):
    await local_ws.ready()
    tx = await ledger.add_transaction(local_ws, {
        "type": "income", "date": "2024-01-05", "description": "Cake sale", "amountBs": 1000, "exchangeRate": 36.5,
    })
    assert tx["amountUsd"] == 27.40
    assert tx["category"] == "General"
    assert local_ws.items(TRANSACTIONS)[0]["id"] == tx["id"]
    entry = (await local_ws.history())[0]
    assert entry["eventType"] == "TRANSACTION_CREATED"
    assert entry["entityType"] == "Income"
    assert entry["entityName"] == "Cake sale"


@pytest.mark.asyncio
async def test_rate_is_resolved_from_table_when_missing(local_ws):
    await local_ws.ready()
    await rates.update_daily_rate(local_ws, 35.0, "2024-01-01")
    tx = await ledger.add_transaction(local_ws, {
        "type": "expense", "date": "2024-01-05", "description": "Flour", "amountBs": 70,
    })
    assert tx["exchangeRate"] == 35.0
    assert tx["amountUsd"] == 2.0


@pytest.mark.asyncio
@pytest.mark.parametrize("data,message", [
    ({"type": "income", "date": "2024-01-05", "description": "x"}, "Missing required fields for the transaction."),
    ({"type": "income", "date": "2024-01-05", "description": "x", "amountBs": -5, "exchangeRate": 30}, "Amount in Bs. must be positive."),
    ({"type": "income", "date": "2024-01-05", "description": "x", "amountBs": 5}, "No exchange rate on file for 2024-01-05."),
])
async def test_invalid_transactions_touch_nothing(local_ws, data, message):
    await local_ws.ready()
    assert await ledger.add_transaction(local_ws, data) is None
    assert local_ws.error == message
    assert local_ws.items(TRANSACTIONS) == []
    assert await local_ws.history() == []


@pytest.mark.asyncio
async def test_edit_recomputes_usd_and_logs_changes(remote_ws):
    await remote_ws.ready()
    tx = await ledger.add_transaction(remote_ws, {
        "type": "income", "date": "2024-01-05", "description": "Cake sale", "amountBs": 1000, "exchangeRate": 36.5,
    })
    assert await ledger.save_transaction(remote_ws, tx["id"], {"amountBs": 2000}) is True
    saved = remote_ws.get(TRANSACTIONS, tx["id"])
    assert saved["amountUsd"] == 54.79
    await remote_ws.drain()
    edited = [e for e in await remote_ws.history() if e["eventType"] == "TRANSACTION_EDITED"]
    assert {c["field"] for c in edited[0]["changes"]} == {"amountBs", "amountUsd"}


@pytest.mark.asyncio
async def test_edit_without_changes_is_silent(local_ws):
    await local_ws.ready()
    tx = await ledger.add_transaction(local_ws, {
        "type": "income", "date": "2024-01-05", "description": "Cake sale", "amountBs": 1000, "exchangeRate": 36.5,
    })
    assert await ledger.save_transaction(local_ws, tx["id"], {"amountBs": 1000.0}) is True
    assert len(await local_ws.history()) == 1


@pytest.mark.asyncio
async def test_missing_ids_are_not_found(local_ws):
    await local_ws.ready()
    assert await ledger.save_transaction(local_ws, "nope", {"amountBs": 1}) is False
    assert local_ws.error == "Transaction not found."
    assert await ledger.delete_transaction(local_ws, "nope") is False


@pytest.mark.asyncio
async def test_delete_logs_old_values(local_ws):
    await local_ws.ready()
    tx = await ledger.add_transaction(local_ws, {
        "type": "expense", "date": "2024-01-05", "description": "Gas", "amountBs": 100, "exchangeRate": 40,
    })
    assert await ledger.delete_transaction(local_ws, tx["id"]) is True
    assert local_ws.items(TRANSACTIONS) == []
    entry = (await local_ws.history())[0]
    assert entry["eventType"] == "TRANSACTION_DELETED"
    assert all(c["newValue"] is None for c in entry["changes"])


@pytest.mark.asyncio
async def test_filter_and_summary(local_ws):
    await local_ws.ready()
    for day, kind, amount in [("2024-01-01", "income", 400), ("2024-01-02", "expense", 100), ("2024-02-01", "income", 40)]:
        await ledger.add_transaction(local_ws, {
            "type": kind, "date": day, "description": f"{kind} {day}", "amountBs": amount, "exchangeRate": 40,
        })
    january = ledger.filter_transactions(local_ws, start="2024-01-01", end="2024-01-31")
    assert [t["date"] for t in january] == ["2024-01-02", "2024-01-01"]
    summary = ledger.summarize(january)
    assert summary["totalIncomeBs"] == 400.0
    assert summary["totalExpensesBs"] == 100.0
    assert summary["netBalanceUsd"] == 7.5
    assert len(ledger.filter_transactions(local_ws, type="income")) == 2
