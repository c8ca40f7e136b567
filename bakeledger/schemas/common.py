from pydantic import BaseModel
from typing import Optional

class Deleted(BaseModel):
    ok: bool = True
    name: Optional[str] = None
