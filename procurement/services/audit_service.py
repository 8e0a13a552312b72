"""Audit logging service: records who changed what."""

from typing import Any, Optional
from datetime import datetime
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.audit_log import AuditLog

logger = structlog.get_logger()


def _to_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        logger.warning("audit_invalid_actor_id", value=str(value))
        return None


async def create_audit_log(
    session: AsyncSession,
    actor_id: Any,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: Optional[dict] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Uses session.flush(); the caller owns the transaction.
    """
    audit = AuditLog(
        actor_id=_to_uuid(actor_id),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details,
        created_at=datetime.utcnow(),
    )
    session.add(audit)
    await session.flush()

    logger.info(
        "audit_log_created",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=str(actor_id) if actor_id else None,
    )
    return audit


async def record_audit_event(
    session: AsyncSession,
    actor_id: Any,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: Optional[dict] = None,
) -> bool:
    """Write and commit an audit entry after the main change is committed.

    Failures are logged and swallowed; the business change stays in place.
    """
    try:
        await create_audit_log(session, actor_id, action, entity_type, entity_id, details)
        await session.commit()
        return True
    except Exception as exc:
        await session.rollback()
        logger.warning(
            "audit_log_failed",
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            error=str(exc),
        )
        return False
