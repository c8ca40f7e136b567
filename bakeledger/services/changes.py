"""
Change-set calculation for audit entries.

``diff(before, after)`` walks the union of both entities' keys and reports
one change per differing field. Fields with a nested structure can register
their own comparator; the recipe ingredient list does so and is diffed per
ingredient instead of as a whole.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Iterable, Optional

from bakeledger.util.money import to_number
from bakeledger.util.serialize import UNDEFINED, sanitize

DEFAULT_IGNORE = frozenset({"id", "createdAt", "updatedAt", "userId"})

FIELD_LABELS = {
    # transactions / rates
    "type": "Transaction type",
    "date": "Date",
    "description": "Description",
    "category": "Category",
    "amountBs": "Amount (Bs.)",
    "exchangeRate": "Exchange rate (Bs/USD)",
    "amountUsd": "Amount (USD)",
    "notes": "Notes",
    "rate": "Rate (Bs/USD)",
    # ingredients
    "name": "Name",
    "cost": "Presentation cost",
    "presentationSize": "Presentation size",
    "unit": "Unit",
    "currentStock": "Current stock",
    # recipes
    "ingredients": "Ingredients",
    "packagingCostPerBatch": "Packaging cost per batch",
    "laborCostPerBatch": "Labor cost per batch",
    "itemsPerBatch": "Items per batch",
    "profitMarginPercent": "Profit margin %",
    "lossBufferPercent": "Loss buffer %",
    # production
    "productName": "Product name",
    "batchSize": "Batch size",
    "recipeId": "Recipe",
    "totalRevenue": "Total revenue",
    "operatingCostRecipeOnly": "Operating cost (ingredients + packaging)",
    "laborCostForBatch": "Labor cost (batch)",
    "netProfit": "Net profit",
    "isSold": "Sold",
    # ingredient sub-diff
    "ingredient_added": "Ingredient added",
    "ingredient_removed": "Ingredient removed",
    "ingredient_quantity_updated": "Ingredient quantity",
    "ingredient_unit_updated": "Ingredient unit",
}

_CAMEL = re.compile(r"([A-Z])")


def field_label(key: str) -> str:
    if key in FIELD_LABELS:
        return FIELD_LABELS[key]
    words = _CAMEL.sub(r" \1", key).replace("_", " ").strip()
    return words[:1].upper() + words[1:].lower() if words else key


def change(field: str, old_value: Any, new_value: Any, label: str | None = None) -> dict:
    return {
        "field": field,
        "oldValue": old_value,
        "newValue": new_value,
        "label": label if label is not None else field_label(field),
    }


def _canonical(value: Any) -> Any:
    value = sanitize(value)
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, dict):
        return {k: _canonical(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_canonical(v) for v in value]
    return value


def same_value(a: Any, b: Any) -> bool:
    """Deep equality on the serialized form (5 and 5.0 are equal)."""
    dump = lambda v: json.dumps(_canonical(v), sort_keys=True, default=str)
    return dump(a) == dump(b)


def _normalize(value: Any) -> Any:
    return None if value is UNDEFINED else value


def _coarse(value: Any) -> Any:
    if value is None:
        return "empty"
    if isinstance(value, list):
        return f"list of {len(value)} items"
    if isinstance(value, dict):
        return f"object with {len(value)} fields"
    return value


class DiffContext:
    """Lookups a field comparator may need (e.g. ingredient display names)."""

    def __init__(self, ingredient_lookup: Optional[Callable[[str], Optional[dict]]] = None):
        self._ingredient_lookup = ingredient_lookup

    def ingredient(self, ingredient_id: str) -> dict:
        found = self._ingredient_lookup(ingredient_id) if self._ingredient_lookup else None
        if found:
            return {"name": found.get("name") or f"ID:{ingredient_id}", "unit": found.get("unit") or ""}
        return {"name": f"ID:{ingredient_id}", "unit": ""}


FieldDiff = Callable[[str, Any, Any, DiffContext], list]


def _fmt_qty(quantity: Any) -> str:
    n = to_number(quantity)
    return f"{n:g}" if n is not None else str(quantity)


def _describe(name: str, line: dict, default_unit: str) -> str:
    unit = line.get("unit") or default_unit
    amount = f"{_fmt_qty(line.get('quantity'))} {unit}".strip()
    return f"{name} ({amount})"


def diff_recipe_ingredients(field: str, old: Any, new: Any, ctx: DiffContext) -> list[dict]:
    """Per-ingredient changes, keyed by ingredientId."""
    old_map = {i.get("ingredientId"): i for i in (old or []) if isinstance(i, dict)}
    new_map = {i.get("ingredientId"): i for i in (new or []) if isinstance(i, dict)}
    out: list[dict] = []
    for ing_id in list(old_map) + [k for k in new_map if k not in old_map]:
        before, after = old_map.get(ing_id), new_map.get(ing_id)
        info = ctx.ingredient(ing_id)
        name = info["name"]
        if before and not after:
            out.append(change(
                "ingredient_removed",
                _describe(name, before, info["unit"]),
                None,
                f"Ingredient removed: {name}",
            ))
        elif after and not before:
            out.append(change(
                "ingredient_added",
                None,
                _describe(name, after, info["unit"]),
                f"Ingredient added: {name}",
            ))
        else:
            if to_number(before.get("quantity")) != to_number(after.get("quantity")):
                out.append(change(
                    "ingredient_quantity_updated",
                    before.get("quantity"),
                    after.get("quantity"),
                    f"Quantity of {name}",
                ))
            old_unit, new_unit = before.get("unit"), after.get("unit")
            if old_unit != new_unit and (old_unit or new_unit):
                out.append(change(
                    "ingredient_unit_updated",
                    old_unit or f"(global: {info['unit']})",
                    new_unit or f"(global: {info['unit']})",
                    f"Unit of {name} (in recipe)",
                ))
    return out


class ChangeSetCalculator:
    def __init__(self, strategies: dict[str, FieldDiff] | None = None):
        self._strategies: dict[str, FieldDiff] = dict(strategies or {})

    def register(self, field: str, strategy: FieldDiff) -> None:
        self._strategies[field] = strategy

    def diff(
        self,
        before: dict | None,
        after: dict | None,
        ignore_fields: Iterable[str] = (),
        context: DiffContext | None = None,
    ) -> list[dict]:
        ignore = DEFAULT_IGNORE | set(ignore_fields)
        ctx = context or DiffContext()
        before = before or {}
        after = after or {}
        keys = list(before) + [k for k in after if k not in before]

        changes: list[dict] = []
        for key in keys:
            if key in ignore:
                continue
            old = _normalize(before.get(key))
            new = _normalize(after.get(key))
            if same_value(old, new):
                continue
            strategy = self._strategies.get(key)
            if strategy is not None:
                changes.extend(strategy(key, old, new, ctx))
            elif isinstance(old, (list, dict)) or isinstance(new, (list, dict)):
                changes.append(change(key, _coarse(old), _coarse(new)))
            else:
                changes.append(change(key, old, new))
        return changes


calculator = ChangeSetCalculator({"ingredients": diff_recipe_ingredients})


def diff(before: dict | None, after: dict | None, ignore_fields: Iterable[str] = (), context: DiffContext | None = None) -> list[dict]:
    return calculator.diff(before, after, ignore_fields, context)
