from pydantic import BaseModel, Field
from typing import List, Optional

class IngredientIn(BaseModel):
    name: str
    unit: str
    cost: float = 0.0
    presentationSize: float = 1.0
    currentStock: Optional[float] = None
    initialStock: Optional[float] = None

class IngredientUpdate(BaseModel):
    name: Optional[str] = None
    unit: Optional[str] = None
    cost: Optional[float] = None
    presentationSize: Optional[float] = None
    currentStock: Optional[float] = None

class StockIn(BaseModel):
    currentStock: float

class RecipeLine(BaseModel):
    ingredientId: str
    quantity: float
    unit: Optional[str] = None

class RecipeIn(BaseModel):
    name: str
    ingredients: List[RecipeLine] = Field(default_factory=list)
    packagingCostPerBatch: float = 0.0
    laborCostPerBatch: float = 0.0
    itemsPerBatch: float = 1.0
    profitMarginPercent: float = 0.0
    lossBufferPercent: float = 0.0

class RecipeUpdate(BaseModel):
    name: Optional[str] = None
    ingredients: Optional[List[RecipeLine]] = None
    packagingCostPerBatch: Optional[float] = None
    laborCostPerBatch: Optional[float] = None
    itemsPerBatch: Optional[float] = None
    profitMarginPercent: Optional[float] = None
    lossBufferPercent: Optional[float] = None
