"""
Scheduled jobs triggered by an external scheduler calling API endpoints.

Jobs:
  - close-expired-rfqs: every few minutes
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.config import settings
from procurement.database import get_db
from procurement.services.rfq_service import close_expired_rfqs as close_expired

logger = structlog.get_logger()
router = APIRouter()


async def _require_internal_auth(request: Request):
    """Validate the X-Internal-Secret header against INTERNAL_JOB_SECRET."""
    secret = settings.INTERNAL_JOB_SECRET
    if not secret:
        # In development (DEBUG=True), allow unauthenticated internal calls
        if settings.DEBUG:
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="INTERNAL_JOB_SECRET is not configured",
        )
    provided = request.headers.get("X-Internal-Secret")
    if not provided or provided != secret:
        logger.warning("internal_auth_failed", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )


@router.post("/close-expired-rfqs")
async def close_expired_rfqs(
    db: AsyncSession = Depends(get_db),
    _auth: None = Depends(_require_internal_auth),
):
    """Close every PUBLISHED RFQ whose deadline has passed."""
    closed = await close_expired(db)
    return {"job": "close-expired-rfqs", "closed": closed}
