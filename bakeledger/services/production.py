"""
Production records and the ingredient stock they consume.

A record produces ``batchSize`` batches of a recipe; each batch consumes the
recipe's ingredient quantities. Stock moves are part of the same mutation as
the record, so a failed commit reverts both.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Optional

from bakeledger.errors import InsufficientStockError, NotFound, ValidationError
from bakeledger.services import rates
from bakeledger.services.catalog import price_recipe
from bakeledger.services.changes import change, diff
from bakeledger.services.mirror import INGREDIENTS, PRODUCTION, RECIPES
from bakeledger.services.ops import operation
from bakeledger.services.sync import MutationPlan, Write
from bakeledger.util.money import _money, to_number
from bakeledger.util.serialize import now_iso

if TYPE_CHECKING:
    from bakeledger.services.workspace import Workspace

logger = logging.getLogger(__name__)

RECORD_TYPE = "Production record"
STOCK_TYPE = "Ingredient stock"


def consumption(ws: "Workspace", recipe_id: str | None, batch_size: float) -> "OrderedDict[str, float]":
    """Ingredient id -> quantity used by ``batch_size`` batches of the recipe."""
    used: OrderedDict[str, float] = OrderedDict()
    recipe = ws.get(RECIPES, recipe_id) if recipe_id else None
    if recipe is None or batch_size <= 0:
        return used
    for line in recipe.get("ingredients") or []:
        qty = to_number(line.get("quantity"), 0.0) * batch_size
        if qty:
            used[line["ingredientId"]] = used.get(line["ingredientId"], 0.0) + qty
    return used


def _check_stock(ws: "Workspace", deltas: dict[str, float]) -> None:
    for ing_id, delta in deltas.items():
        if delta >= 0:
            continue
        ing = ws.get(INGREDIENTS, ing_id)
        if ing is None:
            continue
        available = to_number(ing.get("currentStock"), 0.0)
        if available + delta < 0:
            raise InsufficientStockError(ing.get("name") or ing_id, -delta, available, ing.get("unit") or "")


def _stock_writes(
    ws: "Workspace",
    plan: MutationPlan,
    deltas: dict[str, float],
    event_type: str,
    record: dict,
    label: str,
) -> None:
    for ing_id, delta in deltas.items():
        if delta == 0:
            continue
        ing = ws.get(INGREDIENTS, ing_id)
        if ing is None:
            continue
        old = to_number(ing.get("currentStock"), 0.0)
        new = round(old + delta, 6)
        plan.add(
            Write(INGREDIENTS, ing_id, {**ing, "currentStock": new}, mode="update",
                  remote_fields={"currentStock": new}),
            {
                "eventType": event_type,
                "entityType": STOCK_TYPE,
                "entityId": ing_id,
                "entityName": ing.get("name"),
                "relatedEntityId": record["id"],
                "relatedEntityName": record.get("productName"),
                "changes": [change("currentStock", old, new, label)],
            },
        )


def _figures(ws: "Workspace", recipe: dict) -> dict:
    """Revenue and profit from the recipe pricing; independent of batchSize."""
    pricing = price_recipe(ws, recipe)
    items = to_number(recipe.get("itemsPerBatch"), 1.0) or 1.0
    revenue = pricing["calculatedFinalPrice"] * items
    operating = pricing["calculatedRecipeOnlyCost"]
    labor = to_number(recipe.get("laborCostPerBatch"), 0.0)
    return {
        "totalRevenue": _money(revenue),
        "operatingCostRecipeOnly": _money(operating),
        "laborCostForBatch": _money(labor),
        "netProfit": _money(revenue - (operating + labor)),
    }


def _batch_size(value) -> float:
    n = to_number(value)
    if n is None or n <= 0:
        raise ValidationError("Batch size must be greater than zero.")
    return n


@operation(failed=None)
async def add_production(ws: "Workspace", data: dict) -> dict:
    recipe_id = data.get("recipeId")
    recipe = ws.get(RECIPES, recipe_id) if recipe_id else None
    if recipe is None:
        raise ValidationError("Select an existing recipe for the production record.")
    batch_size = _batch_size(data.get("batchSize", 1))
    day = rates.parse_day(data["date"]) if data.get("date") else rates.today()

    used = consumption(ws, recipe_id, batch_size)
    deltas = {ing_id: -qty for ing_id, qty in used.items()}
    # nothing is touched unless every ingredient suffices
    _check_stock(ws, deltas)

    record = {
        "id": ws.new_id(PRODUCTION),
        "recipeId": recipe_id,
        "productName": recipe.get("name") or "Unknown",
        "batchSize": batch_size,
        "date": day,
        **_figures(ws, recipe),
        "isSold": bool(data.get("isSold", False)),
        "createdAt": now_iso(),
    }
    plan = MutationPlan(label=f"production:add:{record['id']}",
                        failure_message="Could not save the production record.")
    plan.add(
        Write(PRODUCTION, record["id"], record, stamp_fields=("createdAt",)),
        {
            "eventType": "PRODUCTION_RECORD_CREATED",
            "entityType": RECORD_TYPE,
            "entityId": record["id"],
            "entityName": record["productName"],
            "changes": diff(None, record),
        },
    )
    _stock_writes(ws, plan, deltas, "STOCK_ADJUST_BY_PRODUCTION_ADD", record,
                  f"Stock used by production: {record['productName']}")
    await ws.execute(plan)
    return record


@operation(failed=False)
async def save_production(ws: "Workspace", record_id: str, data: dict) -> bool:
    original = ws.get(PRODUCTION, record_id)
    if original is None:
        raise NotFound("Production record not found.")
    updated = dict(original)
    if "recipeId" in data and data["recipeId"] != original.get("recipeId"):
        recipe = ws.get(RECIPES, data["recipeId"])
        if recipe is None:
            raise ValidationError("Select an existing recipe for the production record.")
        updated["recipeId"] = data["recipeId"]
        updated["productName"] = recipe.get("name") or "Unknown"
    if "batchSize" in data:
        updated["batchSize"] = _batch_size(data["batchSize"])
    if data.get("date"):
        updated["date"] = rates.parse_day(data["date"])
    if "isSold" in data:
        updated["isSold"] = bool(data["isSold"])

    recipe_or_batch_changed = (
        original.get("recipeId") != updated["recipeId"]
        or to_number(original.get("batchSize"), 0.0) != updated["batchSize"]
    )
    deltas: dict[str, float] = {}
    if recipe_or_batch_changed:
        # net change: give back what the old record used, take what the new one uses
        for ing_id, qty in consumption(ws, original.get("recipeId"), to_number(original.get("batchSize"), 0.0)).items():
            deltas[ing_id] = deltas.get(ing_id, 0.0) + qty
        for ing_id, qty in consumption(ws, updated["recipeId"], updated["batchSize"]).items():
            deltas[ing_id] = deltas.get(ing_id, 0.0) - qty
        _check_stock(ws, deltas)
        recipe = ws.get(RECIPES, updated["recipeId"])
        if recipe is not None:
            updated.update(_figures(ws, recipe))

    changes = diff(original, updated)
    if not changes:
        ws.refresh_derived()
        return True

    plan = MutationPlan(label=f"production:edit:{record_id}",
                        failure_message="Could not save the production record and adjust stock.")
    plan.add(
        Write(PRODUCTION, record_id, updated, mode="merge"),
        {
            "eventType": "PRODUCTION_RECORD_EDITED",
            "entityType": RECORD_TYPE,
            "entityId": record_id,
            "entityName": updated.get("productName"),
            "changes": changes,
        },
    )
    for ing_id, delta in deltas.items():
        if delta:
            sign = "+" if delta > 0 else ""
            _stock_writes(ws, plan, {ing_id: delta}, "STOCK_ADJUST_BY_PRODUCTION_EDIT", updated,
                          f"Stock adjusted by production edit: {updated.get('productName')} (change: {sign}{delta:g})")
    await ws.execute(plan)
    return True


async def mark_sold(ws: "Workspace", record_id: str, sold: bool = True) -> bool:
    return await save_production(ws, record_id, {"isSold": sold})


@operation(failed=None)
async def delete_production(ws: "Workspace", record_id: str) -> Optional[str]:
    """Delete a record and give its ingredients back; returns the product name."""
    original = ws.get(PRODUCTION, record_id)
    if original is None:
        raise NotFound("Production record not found.")
    used = consumption(ws, original.get("recipeId"), to_number(original.get("batchSize"), 0.0))
    plan = MutationPlan(label=f"production:delete:{record_id}",
                        failure_message="Could not delete the production record on the server.")
    plan.add(
        Write(PRODUCTION, record_id, None),
        {
            "eventType": "PRODUCTION_RECORD_DELETED",
            "entityType": RECORD_TYPE,
            "entityId": record_id,
            "entityName": original.get("productName"),
            "changes": diff(original, None),
        },
    )
    _stock_writes(ws, plan, dict(used), "STOCK_ADJUST_BY_PRODUCTION_DELETE", original,
                  f"Stock restored by deleting production: {original.get('productName')}")
    await ws.execute(plan)
    return original.get("productName")


def summarize(records: list[dict]) -> dict:
    revenue = profit = 0.0
    sold = 0
    for rec in records:
        revenue += to_number(rec.get("totalRevenue"), 0.0)
        profit += to_number(rec.get("netProfit"), 0.0)
        sold += 1 if rec.get("isSold") else 0
    return {
        "totalRevenue": _money(revenue),
        "netProfit": _money(profit),
        "count": len(records),
        "sold": sold,
        "unsold": len(records) - sold,
    }
