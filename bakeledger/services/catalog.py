"""
Ingredients and recipes.

A recipe lists ingredient lines ``{ingredientId, quantity, unit?}`` per
batch. Its pricing is derived from the ingredients' presentation cost and
stored on the recipe as ``calculated*`` fields, which history ignores.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from bakeledger.errors import NotFound, ValidationError
from bakeledger.services.changes import DiffContext, diff
from bakeledger.services.mirror import INGREDIENTS, PRODUCTION, RECIPES
from bakeledger.services.ops import operation
from bakeledger.services.sync import MutationPlan, Write
from bakeledger.util.money import _money, to_number
from bakeledger.util.serialize import now_iso

if TYPE_CHECKING:
    from bakeledger.services.workspace import Workspace

logger = logging.getLogger(__name__)

INGREDIENT_TYPE = "Ingredient"
RECIPE_TYPE = "Recipe"

INGREDIENT_FIELDS = ("name", "cost", "presentationSize", "unit", "currentStock")
RECIPE_NUMBERS = {
    "packagingCostPerBatch": 0.0,
    "laborCostPerBatch": 0.0,
    "itemsPerBatch": 1.0,
    "profitMarginPercent": 0.0,
    "lossBufferPercent": 0.0,
}
CALCULATED = (
    "calculatedIngredientCost",
    "calculatedRecipeOnlyCost",
    "calculatedTotalCost",
    "calculatedCostPerItem",
    "calculatedFinalPrice",
)

LOW_STOCK = 5
MEDIUM_STOCK = 15


def diff_context(ws: "Workspace") -> DiffContext:
    return DiffContext(lambda ing_id: ws.get(INGREDIENTS, ing_id))


def _user_id(ws: "Workspace") -> str | None:
    user = ws.identity.current_user
    return user.id if user else None


# -- ingredients -------------------------------------------------------------

def _clean_ingredient(data: dict, *, creating: bool) -> dict:
    name = (data.get("name") or "").strip()
    unit = (data.get("unit") or "").strip()
    if not name:
        raise ValidationError("Ingredient name is required.")
    if not unit:
        raise ValidationError("Ingredient unit is required.")
    cost = to_number(data.get("cost"))
    if cost is None or cost < 0:
        raise ValidationError("Ingredient cost must be zero or more.")
    size = to_number(data.get("presentationSize"))
    if size is None or size <= 0:
        raise ValidationError("Presentation size must be greater than zero.")
    raw_stock = data.get("currentStock")
    if creating and raw_stock is None:
        raw_stock = data.get("initialStock")
    stock = to_number(raw_stock, 0.0)
    if stock < 0:
        raise ValidationError("Stock cannot be negative.")
    return {"name": name, "cost": cost, "presentationSize": size, "unit": unit, "currentStock": stock}


@operation(failed=None)
async def add_ingredient(ws: "Workspace", data: dict) -> dict:
    clean = _clean_ingredient(data, creating=True)
    ing_id = ws.new_id(INGREDIENTS)
    ing = {"id": ing_id, **clean}
    plan = MutationPlan(label=f"ingredient:add:{ing_id}",
                        failure_message="Could not add the ingredient on the server.")
    plan.add(
        Write(INGREDIENTS, ing_id, ing),
        {
            "eventType": "INGREDIENT_CREATED",
            "entityType": INGREDIENT_TYPE,
            "entityId": ing_id,
            "entityName": ing["name"],
            "changes": diff(None, ing),
        },
    )
    await ws.execute(plan)
    return ing


@operation(failed=False)
async def save_ingredient(ws: "Workspace", ing_id: str, data: dict) -> bool:
    original = ws.get(INGREDIENTS, ing_id)
    if original is None:
        raise NotFound(f"Ingredient {ing_id} not found.")
    merged = {**original, **{k: v for k, v in data.items() if k in INGREDIENT_FIELDS}}
    updated = {**original, **_clean_ingredient(merged, creating=False)}
    changes = diff(original, updated)
    if not changes:
        ws.refresh_derived()
        return True
    plan = MutationPlan(label=f"ingredient:edit:{ing_id}",
                        failure_message="Could not save the ingredient on the server.")
    plan.add(
        Write(INGREDIENTS, ing_id, updated, mode="merge"),
        {
            "eventType": "INGREDIENT_EDITED",
            "entityType": INGREDIENT_TYPE,
            "entityId": ing_id,
            "entityName": updated["name"],
            "changes": changes,
        },
    )
    await ws.execute(plan)
    return True


async def set_stock(ws: "Workspace", ing_id: str, stock) -> bool:
    return await save_ingredient(ws, ing_id, {"currentStock": stock})


def recipes_using(ws: "Workspace", ing_id: str) -> list[dict]:
    return [
        r for r in ws.items(RECIPES)
        if any(line.get("ingredientId") == ing_id for line in (r.get("ingredients") or []))
    ]


@operation(failed=None)
async def delete_ingredient(ws: "Workspace", ing_id: str) -> Optional[str]:
    """Delete an ingredient; returns its name."""
    original = ws.get(INGREDIENTS, ing_id)
    if original is None:
        raise NotFound(f"Ingredient {ing_id} not found.")
    users = recipes_using(ws, ing_id)
    if users:
        names = ", ".join(r.get("name") or r["id"] for r in users)
        raise ValidationError(f"'{original.get('name')}' is used by: {names}.")
    plan = MutationPlan(label=f"ingredient:delete:{ing_id}",
                        failure_message="Could not delete the ingredient on the server.")
    plan.add(
        Write(INGREDIENTS, ing_id, None),
        {
            "eventType": "INGREDIENT_DELETED",
            "entityType": INGREDIENT_TYPE,
            "entityId": ing_id,
            "entityName": original.get("name"),
            "changes": diff(original, None),
        },
    )
    await ws.execute(plan)
    return original.get("name")


def stock_level(stock) -> str:
    n = to_number(stock, 0.0)
    if n <= LOW_STOCK:
        return "low"
    if n <= MEDIUM_STOCK:
        return "medium"
    return "high"


def stock_status(ws: "Workspace") -> list[dict]:
    return [
        {
            "id": ing["id"],
            "name": ing.get("name"),
            "unit": ing.get("unit"),
            "currentStock": ing.get("currentStock", 0),
            "level": stock_level(ing.get("currentStock")),
        }
        for ing in sorted(ws.items(INGREDIENTS), key=lambda i: (i.get("name") or "").lower())
    ]


# -- recipes -----------------------------------------------------------------

def unit_cost(ing: dict) -> float:
    size = to_number(ing.get("presentationSize"))
    if not size:
        return 0.0
    return to_number(ing.get("cost"), 0.0) / size


def price_recipe(ws: "Workspace", recipe: dict) -> dict:
    """The ``calculated*`` pricing fields for ``recipe``."""
    ingredient_cost = 0.0
    for line in recipe.get("ingredients") or []:
        ing = ws.get(INGREDIENTS, line.get("ingredientId"))
        if ing is None:
            continue
        ingredient_cost += to_number(line.get("quantity"), 0.0) * unit_cost(ing)
    packaging = to_number(recipe.get("packagingCostPerBatch"), 0.0)
    labor = to_number(recipe.get("laborCostPerBatch"), 0.0)
    items = to_number(recipe.get("itemsPerBatch"), 1.0) or 1.0
    margin = to_number(recipe.get("profitMarginPercent"), 0.0)
    buffer = to_number(recipe.get("lossBufferPercent"), 0.0)

    recipe_only = ingredient_cost + packaging
    total = recipe_only + labor
    per_item = total * (1 + buffer / 100) / items
    return {
        "calculatedIngredientCost": _money(ingredient_cost),
        "calculatedRecipeOnlyCost": _money(recipe_only),
        "calculatedTotalCost": _money(total),
        "calculatedCostPerItem": _money(per_item),
        "calculatedFinalPrice": _money(per_item * (1 + margin / 100)),
    }


def _clean_lines(ws: "Workspace", lines) -> list[dict]:
    if lines is None:
        return []
    if not isinstance(lines, list):
        raise ValidationError("Recipe ingredients must be a list.")
    out, seen = [], set()
    for line in lines:
        ing_id = line.get("ingredientId") if isinstance(line, dict) else None
        if not ing_id:
            raise ValidationError("Every recipe ingredient needs an ingredientId.")
        if ing_id in seen:
            raise ValidationError(f"Ingredient {ing_id} is listed twice.")
        if ws.get(INGREDIENTS, ing_id) is None:
            raise ValidationError(f"Unknown ingredient {ing_id}.")
        qty = to_number(line.get("quantity"))
        if qty is None or qty <= 0:
            raise ValidationError(f"Quantity for ingredient {ing_id} must be positive.")
        seen.add(ing_id)
        clean = {"ingredientId": ing_id, "quantity": qty}
        if line.get("unit"):
            clean["unit"] = line["unit"]
        out.append(clean)
    return out


def _clean_recipe(ws: "Workspace", data: dict) -> dict:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Recipe name is required.")
    clean = {"name": name, "ingredients": _clean_lines(ws, data.get("ingredients"))}
    for field, default in RECIPE_NUMBERS.items():
        n = to_number(data.get(field), default)
        if n < 0:
            raise ValidationError(f"{field} cannot be negative.")
        clean[field] = n
    if clean["itemsPerBatch"] <= 0:
        raise ValidationError("Items per batch must be greater than zero.")
    return clean


@operation(failed=None)
async def add_recipe(ws: "Workspace", data: dict) -> dict:
    clean = _clean_recipe(ws, data)
    recipe_id = ws.new_id(RECIPES)
    stamp = now_iso()
    recipe = {"id": recipe_id, **clean, "createdAt": stamp, "updatedAt": stamp, "userId": _user_id(ws)}
    recipe.update(price_recipe(ws, recipe))
    plan = MutationPlan(label=f"recipe:add:{recipe_id}",
                        failure_message="Could not add the recipe on the server.")
    plan.add(
        Write(RECIPES, recipe_id, recipe, stamp_fields=("createdAt", "updatedAt")),
        {
            "eventType": "RECIPE_CREATED",
            "entityType": RECIPE_TYPE,
            "entityId": recipe_id,
            "entityName": recipe["name"],
            "changes": diff(None, recipe, CALCULATED, diff_context(ws)),
        },
    )
    await ws.execute(plan)
    return recipe


@operation(failed=False)
async def save_recipe(ws: "Workspace", recipe_id: str, data: dict) -> bool:
    original = ws.get(RECIPES, recipe_id)
    if original is None:
        raise NotFound("Recipe to save was not found.")
    editable = ("name", "ingredients", *RECIPE_NUMBERS)
    merged = {**original, **{k: v for k, v in data.items() if k in editable}}
    updated = {**original, **_clean_recipe(ws, merged)}
    updated.update(price_recipe(ws, updated))

    changes = diff(original, updated, CALCULATED, diff_context(ws))
    if not changes:
        # ingredient costs may have moved; keep pricing current without history
        if any(original.get(k) != updated.get(k) for k in CALCULATED):
            await ws.execute(MutationPlan(label=f"recipe:reprice:{recipe_id}").add(
                Write(RECIPES, recipe_id, updated, mode="merge")))
        else:
            ws.refresh_derived()
        return True
    updated["updatedAt"] = now_iso()
    plan = MutationPlan(label=f"recipe:edit:{recipe_id}",
                        failure_message="Could not save the recipe on the server.")
    plan.add(
        Write(RECIPES, recipe_id, updated, mode="merge", stamp_fields=("updatedAt",)),
        {
            "eventType": "RECIPE_EDITED",
            "entityType": RECIPE_TYPE,
            "entityId": recipe_id,
            "entityName": updated["name"],
            "changes": changes,
        },
    )
    await ws.execute(plan)
    return True


@operation(failed=None)
async def delete_recipe(ws: "Workspace", recipe_id: str) -> Optional[str]:
    """Delete a recipe; returns its name. Production records keep their recipeId."""
    original = ws.get(RECIPES, recipe_id)
    if original is None:
        raise NotFound(f"Recipe {recipe_id} not found.")
    plan = MutationPlan(label=f"recipe:delete:{recipe_id}",
                        failure_message="Could not delete the recipe on the server.")
    plan.add(
        Write(RECIPES, recipe_id, None),
        {
            "eventType": "RECIPE_DELETED",
            "entityType": RECIPE_TYPE,
            "entityId": recipe_id,
            "entityName": original.get("name"),
            "changes": diff(original, None, CALCULATED, diff_context(ws)),
        },
    )
    await ws.execute(plan)
    return original.get("name")


def recipe_pricing(ws: "Workspace", recipe_id: str) -> Optional[dict]:
    recipe = ws.get(RECIPES, recipe_id)
    if recipe is None:
        return None
    lines = []
    for line in recipe.get("ingredients") or []:
        ing = ws.get(INGREDIENTS, line["ingredientId"]) or {}
        qty = to_number(line.get("quantity"), 0.0)
        lines.append({
            "ingredientId": line["ingredientId"],
            "name": ing.get("name") or f"ID:{line['ingredientId']}",
            "quantity": qty,
            "unit": line.get("unit") or ing.get("unit") or "",
            "unitCost": _money(unit_cost(ing)) if ing else 0.0,
            "lineCost": _money(qty * unit_cost(ing)) if ing else 0.0,
        })
    productions = [p for p in ws.items(PRODUCTION) if p.get("recipeId") == recipe_id]
    return {"id": recipe_id, "name": recipe.get("name"), "lines": lines,
            "productionCount": len(productions), **price_recipe(ws, recipe)}
