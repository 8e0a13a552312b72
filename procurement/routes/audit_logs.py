from datetime import date, datetime
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.database import get_db
from procurement.middleware.authorization import require_roles
from procurement.models.audit_log import AuditLog
from procurement.models.status import UserRole
from procurement.schemas.audit_log import AuditLogResponse
from procurement.schemas.common import PaginatedResponse, build_pagination, iso

router = APIRouter()


@router.get("", response_model=PaginatedResponse[AuditLogResponse])
async def list_audit_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    actor_id: Optional[uuid.UUID] = Query(None),
    action: Optional[str] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    _auth: None = Depends(require_roles(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    filters = []
    if entity_type:
        filters.append(AuditLog.entity_type == entity_type)
    if entity_id:
        filters.append(AuditLog.entity_id == entity_id)
    if actor_id:
        filters.append(AuditLog.actor_id == actor_id)
    if action:
        filters.append(AuditLog.action == action)
    if from_date:
        filters.append(AuditLog.created_at >= datetime.combine(from_date, datetime.min.time()))
    if to_date:
        filters.append(AuditLog.created_at <= datetime.combine(to_date, datetime.max.time()))

    q = select(AuditLog).where(*filters)
    count_q = select(func.count(AuditLog.id)).where(*filters)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(AuditLog.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )

    items = [
        AuditLogResponse(
            id=str(log.id),
            actor_id=str(log.actor_id) if log.actor_id else None,
            action=log.action,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            details=log.details,
            created_at=iso(log.created_at),
        )
        for log in result.scalars().all()
    ]
    return PaginatedResponse(data=items, pagination=build_pagination(page, limit, total))
