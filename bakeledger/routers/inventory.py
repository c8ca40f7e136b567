from fastapi import APIRouter, Depends, HTTPException
from bakeledger.deps import get_workspace, rejected
from bakeledger.schemas.common import Deleted
from bakeledger.schemas.inventory import IngredientIn, IngredientUpdate, RecipeIn, RecipeUpdate, StockIn
from bakeledger.services import catalog
from bakeledger.services.mirror import INGREDIENTS, RECIPES
from bakeledger.services.workspace import Workspace

router = APIRouter(prefix="/inventory", tags=["inventory"])

@router.get("/ingredients")
def list_ingredients(ws: Workspace = Depends(get_workspace)):
    return ws.items(INGREDIENTS)

@router.post("/ingredients", status_code=201)
async def add_ingredient(body: IngredientIn, ws: Workspace = Depends(get_workspace)):
    ing = await catalog.add_ingredient(ws, body.model_dump(exclude_none=True))
    if ing is None:
        raise rejected(ws)
    return ing

@router.put("/ingredients/{ing_id}")
async def save_ingredient(ing_id: str, body: IngredientUpdate, ws: Workspace = Depends(get_workspace)):
    if not await catalog.save_ingredient(ws, ing_id, body.model_dump(exclude_unset=True)):
        raise rejected(ws)
    return ws.get(INGREDIENTS, ing_id)

@router.put("/ingredients/{ing_id}/stock")
async def set_stock(ing_id: str, body: StockIn, ws: Workspace = Depends(get_workspace)):
    if not await catalog.set_stock(ws, ing_id, body.currentStock):
        raise rejected(ws)
    return ws.get(INGREDIENTS, ing_id)

@router.delete("/ingredients/{ing_id}", response_model=Deleted)
async def delete_ingredient(ing_id: str, ws: Workspace = Depends(get_workspace)):
    name = await catalog.delete_ingredient(ws, ing_id)
    if name is None:
        raise rejected(ws)
    return {"ok": True, "name": name}

@router.get("/stock_status")
def stock_status(ws: Workspace = Depends(get_workspace)):
    return catalog.stock_status(ws)

@router.get("/recipes")
def list_recipes(ws: Workspace = Depends(get_workspace)):
    return ws.items(RECIPES)

@router.post("/recipes", status_code=201)
async def add_recipe(body: RecipeIn, ws: Workspace = Depends(get_workspace)):
    recipe = await catalog.add_recipe(ws, body.model_dump(exclude_none=True))
    if recipe is None:
        raise rejected(ws)
    return recipe

@router.put("/recipes/{recipe_id}")
async def save_recipe(recipe_id: str, body: RecipeUpdate, ws: Workspace = Depends(get_workspace)):
    if not await catalog.save_recipe(ws, recipe_id, body.model_dump(exclude_unset=True, exclude_none=True)):
        raise rejected(ws)
    return ws.get(RECIPES, recipe_id)

@router.delete("/recipes/{recipe_id}", response_model=Deleted)
async def delete_recipe(recipe_id: str, ws: Workspace = Depends(get_workspace)):
    name = await catalog.delete_recipe(ws, recipe_id)
    if name is None:
        raise rejected(ws)
    return {"ok": True, "name": name}

@router.get("/recipes/{recipe_id}/pricing")
def recipe_pricing(recipe_id: str, ws: Workspace = Depends(get_workspace)):
    out = catalog.recipe_pricing(ws, recipe_id)
    if out is None:
        raise HTTPException(404, "Recipe not found")
    return out
