from typing import List, Optional

from pydantic import BaseModel, Field


class QuoteItemInput(BaseModel):
    rfq_item_id: str = Field(..., min_length=1)
    # Positivity is checked by the service so the error keeps the domain envelope
    price_cents: int
    delivery_days: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None


class QuoteCreate(BaseModel):
    rfq_id: str = Field(..., min_length=1)
    price_cents: int = Field(..., ge=0)
    delivery_days: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None
    items: Optional[List[QuoteItemInput]] = None


class QuoteAwardRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class QuoteItemResponse(BaseModel):
    id: str
    rfq_item_id: str
    product_name: str
    quantity: int
    price_cents: int
    delivery_days: Optional[int] = None
    notes: Optional[str] = None
    item_status: str

    model_config = {"from_attributes": True}


class QuoteResponse(BaseModel):
    id: str
    rfq_id: str
    supplier_id: str
    price_cents: int
    delivery_days: Optional[int] = None
    notes: Optional[str] = None
    status: str
    items: List[QuoteItemResponse] = []
    submitted_at: str
    updated_at: str

    model_config = {"from_attributes": True}
