from typing import List, Optional
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from procurement.models.status import RfqType


class RfqItemCreate(BaseModel):
    product_name: str = Field(..., min_length=1, max_length=300)
    quantity: int = Field(..., ge=1)
    unit: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    max_price_cents: Optional[int] = Field(None, ge=1)
    instant_price_cents: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def check_instant_below_max(self):
        if (
            self.max_price_cents is not None
            and self.instant_price_cents is not None
            and self.instant_price_cents > self.max_price_cents
        ):
            raise ValueError("instant_price_cents must not exceed max_price_cents")
        return self


class RfqCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    type: RfqType = RfqType.NORMAL
    deadline: datetime
    store_id: Optional[str] = None
    items: List[RfqItemCreate] = Field(..., min_length=1)


class RfqItemPriceUpdate(BaseModel):
    max_price_cents: Optional[int] = Field(None, ge=1)
    instant_price_cents: Optional[int] = Field(None, ge=1)


class RfqItemResponse(BaseModel):
    id: str
    rfq_id: str
    product_name: str
    quantity: int
    unit: Optional[str] = None
    description: Optional[str] = None
    max_price_cents: Optional[int] = None
    instant_price_cents: Optional[int] = None
    item_status: str
    awarded_quote_item_id: Optional[str] = None
    exception_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class RfqResponse(BaseModel):
    id: str
    rfq_no: str
    title: str
    description: Optional[str] = None
    type: str
    status: str
    deadline: str
    buyer_id: str
    store_id: Optional[str] = None
    closed_at: Optional[str] = None
    items: List[RfqItemResponse] = []
    created_at: str

    model_config = {"from_attributes": True}
