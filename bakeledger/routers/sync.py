from fastapi import APIRouter, Depends
from bakeledger.deps import get_workspace
from bakeledger.services.workspace import Workspace

router = APIRouter(prefix="/sync", tags=["sync"])

@router.get("/status")
def status(ws: Workspace = Depends(get_workspace)):
    return {**ws.status(), "failures": [{"label": f.label, "message": f.message} for f in ws.failures]}

@router.post("/reload")
async def reload(ws: Workspace = Depends(get_workspace)):
    ran = await ws.reload()
    return {"reloaded": ran, **ws.status()}

@router.post("/drain")
async def drain(ws: Workspace = Depends(get_workspace)):
    """Wait for every in-flight commit of this scope to settle."""
    await ws.drain()
    return ws.status()
