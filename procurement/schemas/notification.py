from typing import Optional

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    content: str
    link: Optional[str] = None
    is_read: bool = False
    read_at: Optional[str] = None
    created_at: str

    model_config = {"from_attributes": True}


class MarkAllReadResponse(BaseModel):
    updated: int
