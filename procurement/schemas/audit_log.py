from typing import Optional
from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: str
    actor_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    details: Optional[dict] = None
    created_at: str

    model_config = {"from_attributes": True}
