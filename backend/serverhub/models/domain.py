# serverhub/models/domain.py
from pydantic import BaseModel
from typing import Optional


class Domain(BaseModel):
    id: Optional[int] = None
    domain: str
    seodomain: Optional[str] = None
    customers_id: Optional[int] = None
    providers_id: Optional[int] = None
    status: Optional[str] = None
