from pydantic import BaseModel
from typing import Optional

class ProductionIn(BaseModel):
    recipeId: str
    batchSize: float = 1
    date: Optional[str] = None
    isSold: bool = False

class ProductionUpdate(BaseModel):
    recipeId: Optional[str] = None
    batchSize: Optional[float] = None
    date: Optional[str] = None
    isSold: Optional[bool] = None

class SoldIn(BaseModel):
    sold: bool = True
