"""
Income and expense transactions.

Amounts are entered in bolivars and converted with the exchange rate of the
transaction's day: ``amountUsd = amountBs / exchangeRate``, half-up to 2dp.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from bakeledger.errors import NotFound, ValidationError
from bakeledger.services import rates
from bakeledger.services.changes import diff
from bakeledger.services.mirror import TRANSACTIONS
from bakeledger.services.ops import operation
from bakeledger.services.sync import MutationPlan, Write
from bakeledger.util.money import _money, to_number, usd_from_bs
from bakeledger.util.serialize import now_iso

if TYPE_CHECKING:
    from bakeledger.services.workspace import Workspace

logger = logging.getLogger(__name__)

TYPES = ("income", "expense")
EDITABLE = ("type", "date", "description", "category", "amountBs", "exchangeRate", "notes")


def entity_type(tx: dict) -> str:
    return "Income" if tx.get("type") == "income" else "Expense"


def _rate_for(ws: "Workspace", day: str, given) -> float:
    if given not in (None, ""):
        rate = to_number(given)
        if rate is None or rate <= 0:
            raise ValidationError(f"Invalid or missing exchange rate for {day} ({given}).")
        return rate
    rate = rates.resolve_rate_for_date(ws, day)
    if rate is None:
        raise ValidationError(f"No exchange rate on file for {day}.")
    return float(rate)


def _amount(value) -> float:
    amount = to_number(value)
    if amount is None or amount <= 0:
        raise ValidationError("Amount in Bs. must be positive.")
    return amount


@operation(failed=None)
async def add_transaction(ws: "Workspace", data: dict) -> dict:
    if not data.get("date") or not data.get("description") or not data.get("amountBs") or not data.get("type"):
        raise ValidationError("Missing required fields for the transaction.")
    if data["type"] not in TYPES:
        raise ValidationError(f"Transaction type must be one of {', '.join(TYPES)}.")
    day = rates.parse_day(data["date"])
    amount_bs = _amount(data["amountBs"])
    rate = _rate_for(ws, day, data.get("exchangeRate"))

    user = ws.identity.current_user
    stamp = now_iso()
    tx = {
        "id": ws.new_id(TRANSACTIONS),
        "type": data["type"],
        "date": day,
        "description": data["description"],
        "category": data.get("category") or "General",
        "amountBs": amount_bs,
        "exchangeRate": rate,
        "amountUsd": usd_from_bs(amount_bs, rate),
        "notes": data.get("notes") or "",
        "createdAt": stamp,
        "updatedAt": stamp,
        "userId": user.id if user else None,
    }
    plan = MutationPlan(label=f"transaction:add:{tx['id']}",
                        failure_message="Could not save the transaction on the server.")
    plan.add(
        Write(TRANSACTIONS, tx["id"], tx, stamp_fields=("createdAt", "updatedAt")),
        {
            "eventType": "TRANSACTION_CREATED",
            "entityType": entity_type(tx),
            "entityId": tx["id"],
            "entityName": tx["description"],
            "changes": diff(None, tx),
        },
    )
    await ws.execute(plan)
    return tx


@operation(failed=False)
async def save_transaction(ws: "Workspace", tx_id: str, data: dict) -> bool:
    original = ws.get(TRANSACTIONS, tx_id)
    if original is None:
        raise NotFound("Transaction not found.")
    merged = {**original, **{k: v for k, v in data.items() if k in EDITABLE}}
    if merged.get("type") not in TYPES:
        raise ValidationError(f"Transaction type must be one of {', '.join(TYPES)}.")
    if not merged.get("description"):
        raise ValidationError("Description is required.")
    merged["date"] = rates.parse_day(merged.get("date"))
    merged["amountBs"] = _amount(merged.get("amountBs"))
    # a new day without an explicit rate re-resolves the rate for that day
    given = data.get("exchangeRate")
    if given in (None, "") and merged["date"] == original.get("date"):
        given = original.get("exchangeRate")
    merged["exchangeRate"] = _rate_for(ws, merged["date"], given)
    merged["amountUsd"] = usd_from_bs(merged["amountBs"], merged["exchangeRate"])

    changes = diff(original, merged)
    if not changes:
        ws.refresh_derived()
        return True
    merged["updatedAt"] = now_iso()

    plan = MutationPlan(label=f"transaction:edit:{tx_id}",
                        failure_message="Could not save the transaction changes on the server.")
    plan.add(
        Write(TRANSACTIONS, tx_id, merged, mode="merge", stamp_fields=("updatedAt",)),
        {
            "eventType": "TRANSACTION_EDITED",
            "entityType": entity_type(merged),
            "entityId": tx_id,
            "entityName": merged["description"],
            "changes": changes,
        },
    )
    await ws.execute(plan)
    return True


@operation(failed=False)
async def delete_transaction(ws: "Workspace", tx_id: str) -> bool:
    original = ws.get(TRANSACTIONS, tx_id)
    if original is None:
        raise NotFound("Transaction not found.")
    plan = MutationPlan(label=f"transaction:delete:{tx_id}",
                        failure_message="Could not delete the transaction on the server.")
    plan.add(
        Write(TRANSACTIONS, tx_id, None),
        {
            "eventType": "TRANSACTION_DELETED",
            "entityType": entity_type(original),
            "entityId": tx_id,
            "entityName": original.get("description"),
            "changes": diff(original, None),
        },
    )
    await ws.execute(plan)
    return True


def filter_transactions(
    ws: "Workspace",
    start: str | None = None,
    end: str | None = None,
    type: str | None = None,
    category: str | None = None,
) -> list[dict]:
    out = []
    for tx in ws.items(TRANSACTIONS):
        if type and type != "all" and tx.get("type") != type:
            continue
        if category and tx.get("category") != category:
            continue
        if start and (tx.get("date") or "") < start:
            continue
        if end and (tx.get("date") or "") > end:
            continue
        out.append(tx)
    return out


def summarize(transactions: list[dict]) -> dict:
    income_bs = expense_bs = income_usd = expense_usd = 0.0
    for tx in transactions:
        bs = to_number(tx.get("amountBs"), 0.0)
        usd = to_number(tx.get("amountUsd"), 0.0)
        if tx.get("type") == "income":
            income_bs += bs
            income_usd += usd
        else:
            expense_bs += bs
            expense_usd += usd
    return {
        "totalIncomeBs": _money(income_bs),
        "totalExpensesBs": _money(expense_bs),
        "netBalanceBs": _money(income_bs - expense_bs),
        "totalIncomeUsd": _money(income_usd),
        "totalExpensesUsd": _money(expense_usd),
        "netBalanceUsd": _money(income_usd - expense_usd),
        "count": len(transactions),
    }
