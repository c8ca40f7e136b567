from fastapi import APIRouter, Depends
from bakeledger.deps import get_workspace
from bakeledger.services.workspace import Workspace

router = APIRouter(prefix="/history", tags=["history"])

@router.get("/")
async def list_history(limit: int = 100, entity_id: str | None = None, ws: Workspace = Depends(get_workspace)):
    entries = await ws.history()
    if entity_id:
        entries = [e for e in entries if entity_id in (e.get("entityId"), e.get("relatedEntityId"))]
    return entries[:limit] if limit > 0 else entries
