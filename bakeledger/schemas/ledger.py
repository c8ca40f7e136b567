from pydantic import BaseModel
from typing import Literal, Optional

class TransactionIn(BaseModel):
    type: Literal["income", "expense"]
    date: str
    description: str
    amountBs: float
    category: Optional[str] = None
    exchangeRate: Optional[float] = None
    notes: Optional[str] = None

class TransactionUpdate(BaseModel):
    type: Optional[Literal["income", "expense"]] = None
    date: Optional[str] = None
    description: Optional[str] = None
    amountBs: Optional[float] = None
    category: Optional[str] = None
    exchangeRate: Optional[float] = None
    notes: Optional[str] = None

class RateIn(BaseModel):
    rate: float

class RateOut(BaseModel):
    id: str
    date: str
    rate: float
    timestamp: Optional[str] = None
    userId: Optional[str] = None

class AcquisitionOut(BaseModel):
    rate: Optional[float] = None
    dateFound: Optional[str] = None
    error: Optional[str] = None
