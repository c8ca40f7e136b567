from typing import List
from fastapi import APIRouter, Depends
from bakeledger.deps import get_workspace, rejected
from bakeledger.schemas.ledger import AcquisitionOut, RateIn, RateOut
from bakeledger.services import rates
from bakeledger.services.mirror import EXCHANGE_RATES
from bakeledger.services.workspace import Workspace

router = APIRouter(prefix="/rates", tags=["rates"])

@router.get("/", response_model=List[RateOut])
def list_rates(ws: Workspace = Depends(get_workspace)):
    return rates.sorted_rates(ws)

@router.get("/current")
def current_rate(ws: Workspace = Depends(get_workspace)):
    return {"today": rates.today(), "current": ws.current_daily_rate}

@router.get("/resolve")
def resolve(day: str, exact: bool = False, ws: Workspace = Depends(get_workspace)):
    """Rate for ``day``; with ``exact`` only a rate dated that very day counts."""
    if exact:
        return {"day": day, "rate": rates.resolve_exact_rate(ws, day), "date": day}
    rec = rates.resolve_latest_rate_data_before(ws, day)
    return {"day": day, "rate": rec.get("rate") if rec else None, "date": rec.get("date") if rec else None}

@router.put("/{day}")
async def set_rate(day: str, body: RateIn, ws: Workspace = Depends(get_workspace)):
    if not await rates.update_daily_rate(ws, body.rate, day):
        raise rejected(ws)
    return ws.get(EXCHANGE_RATES, rates.parse_day(day))

@router.post("/acquire/today", response_model=AcquisitionOut)
async def acquire_today(ws: Workspace = Depends(get_workspace)):
    return (await rates.acquire_today_rate(ws)).as_dict()

@router.post("/acquire/{day}", response_model=AcquisitionOut)
async def acquire_for_day(day: str, ws: Workspace = Depends(get_workspace)):
    return (await rates.acquire_rate_for_date(ws, day)).as_dict()
