from fastapi import APIRouter, Depends, HTTPException
from bakeledger.deps import get_workspace, rejected
from bakeledger.schemas.common import Deleted
from bakeledger.schemas.ledger import TransactionIn, TransactionUpdate
from bakeledger.services import ledger
from bakeledger.services.mirror import TRANSACTIONS
from bakeledger.services.workspace import Workspace

router = APIRouter(prefix="/transactions", tags=["transactions"])

@router.get("/")
def list_transactions(
    start: str | None = None,
    end: str | None = None,
    type: str | None = None,
    category: str | None = None,
    ws: Workspace = Depends(get_workspace),
):
    """Newest first; ``start``/``end`` are inclusive YYYY-MM-DD bounds."""
    return ledger.filter_transactions(ws, start, end, type, category)

@router.get("/summary")
def summary(start: str | None = None, end: str | None = None, ws: Workspace = Depends(get_workspace)):
    return ledger.summarize(ledger.filter_transactions(ws, start, end))

@router.get("/{tx_id}")
def get_transaction(tx_id: str, ws: Workspace = Depends(get_workspace)):
    tx = ws.get(TRANSACTIONS, tx_id)
    if tx is None:
        raise HTTPException(404, "Transaction not found")
    return tx

@router.post("/", status_code=201)
async def add_transaction(body: TransactionIn, ws: Workspace = Depends(get_workspace)):
    tx = await ledger.add_transaction(ws, body.model_dump(exclude_none=True))
    if tx is None:
        raise rejected(ws)
    return tx

@router.put("/{tx_id}")
async def save_transaction(tx_id: str, body: TransactionUpdate, ws: Workspace = Depends(get_workspace)):
    if not await ledger.save_transaction(ws, tx_id, body.model_dump(exclude_unset=True)):
        raise rejected(ws)
    return ws.get(TRANSACTIONS, tx_id)

@router.delete("/{tx_id}", response_model=Deleted)
async def delete_transaction(tx_id: str, ws: Workspace = Depends(get_workspace)):
    if not await ledger.delete_transaction(ws, tx_id):
        raise rejected(ws)
    return {"ok": True}
