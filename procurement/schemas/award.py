from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class AwardResponse(BaseModel):
    id: str
    rfq_id: str
    quote_id: str
    supplier_id: str
    final_price_cents: int
    reason: Optional[str] = None
    status: str
    awarded_at: str
    updated_at: str
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[str] = None

    model_config = {"from_attributes": True}


class OutOfStockRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    rfq_item_id: Optional[str] = None


class AwardItemRequest(BaseModel):
    rfq_item_id: str
    quote_item_id: str
    reason: Optional[str] = Field(None, max_length=2000)


class CancelAwardRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class RecreateRfqRequest(BaseModel):
    deadline: Optional[datetime] = None
