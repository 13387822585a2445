from pydantic import BaseModel
from typing import List
from datetime import datetime


class MetalPriceResponse(BaseModel):
    metal_symbol: str
    price: float
    last_updated: datetime

    class Config:
        from_attributes = True


class MetalPriceListResponse(BaseModel):
    success: bool
    prices: List[MetalPriceResponse]
