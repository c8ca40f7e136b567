from fastapi import APIRouter, Depends
from bakeledger.deps import get_workspace, rejected
from bakeledger.schemas.common import Deleted
from bakeledger.schemas.production import ProductionIn, ProductionUpdate, SoldIn
from bakeledger.services import production
from bakeledger.services.mirror import PRODUCTION
from bakeledger.services.workspace import Workspace

router = APIRouter(prefix="/production", tags=["production"])

@router.get("/")
def list_production(sold: bool | None = None, ws: Workspace = Depends(get_workspace)):
    records = ws.items(PRODUCTION)
    if sold is not None:
        records = [r for r in records if bool(r.get("isSold")) == sold]
    return records

@router.get("/summary")
def summary(ws: Workspace = Depends(get_workspace)):
    return production.summarize(ws.items(PRODUCTION))

@router.post("/", status_code=201)
async def add_production(body: ProductionIn, ws: Workspace = Depends(get_workspace)):
    rec = await production.add_production(ws, body.model_dump(exclude_none=True))
    if rec is None:
        raise rejected(ws)
    return rec

@router.put("/{record_id}")
async def save_production(record_id: str, body: ProductionUpdate, ws: Workspace = Depends(get_workspace)):
    if not await production.save_production(ws, record_id, body.model_dump(exclude_unset=True, exclude_none=True)):
        raise rejected(ws)
    return ws.get(PRODUCTION, record_id)

@router.post("/{record_id}/sold")
async def mark_sold(record_id: str, body: SoldIn, ws: Workspace = Depends(get_workspace)):
    if not await production.mark_sold(ws, record_id, body.sold):
        raise rejected(ws)
    return ws.get(PRODUCTION, record_id)

@router.delete("/{record_id}", response_model=Deleted)
async def delete_production(record_id: str, ws: Workspace = Depends(get_workspace)):
    name = await production.delete_production(ws, record_id)
    if name is None:
        raise rejected(ws)
    return {"ok": True, "name": name}
