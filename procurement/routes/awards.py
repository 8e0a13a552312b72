import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.database import get_db
from procurement.errors import PermissionDeniedError
from procurement.middleware.auth import get_current_user
from procurement.middleware.authorization import require_roles
from procurement.models.award import Award
from procurement.models.rfq import Rfq
from procurement.models.status import AwardStatus, UserRole
from procurement.routes.rfqs import rfq_to_response
from procurement.schemas.award import (
    AwardResponse,
    CancelAwardRequest,
    OutOfStockRequest,
    RecreateRfqRequest,
)
from procurement.schemas.common import PaginatedResponse, build_pagination, iso
from procurement.schemas.rfq import RfqResponse
from procurement.services import award_service, rfq_service

router = APIRouter()


def award_to_response(award: Award) -> AwardResponse:
    return AwardResponse(
        id=str(award.id),
        rfq_id=str(award.rfq_id),
        quote_id=str(award.quote_id),
        supplier_id=str(award.supplier_id),
        final_price_cents=award.final_price_cents,
        reason=award.reason,
        status=award.status.value,
        awarded_at=iso(award.awarded_at),
        updated_at=iso(award.updated_at),
        cancellation_reason=award.cancellation_reason,
        cancelled_at=iso(award.cancelled_at) or None,
    )


@router.get("", response_model=PaginatedResponse[AwardResponse])
async def list_awards(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    rfq_id: Optional[uuid.UUID] = Query(None),
    award_status: Optional[AwardStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = select(Award)
    count_q = select(func.count(Award.id))

    filters = []
    role = current_user["role"]
    if role == UserRole.SUPPLIER.value:
        filters.append(Award.supplier_id == uuid.UUID(current_user["user_id"]))
    elif role == UserRole.STORE.value:
        store_id = current_user.get("store_id")
        if not store_id:
            return PaginatedResponse(data=[], pagination=build_pagination(page, limit, 0))
        filters.append(
            Award.rfq_id.in_(select(Rfq.id).where(Rfq.store_id == uuid.UUID(store_id)))
        )
    if rfq_id:
        filters.append(Award.rfq_id == rfq_id)
    if award_status:
        filters.append(Award.status == award_status)
    if filters:
        q = q.where(*filters)
        count_q = count_q.where(*filters)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(Award.awarded_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    data = [award_to_response(a) for a in result.scalars().all()]
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))


@router.get("/{award_id}", response_model=AwardResponse)
async def get_award(
    award_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    award = await award_service.get_award(db, award_id)
    if (
        current_user["role"] == UserRole.SUPPLIER.value
        and str(award.supplier_id) != current_user["user_id"]
    ):
        raise PermissionDeniedError("You can only view your own awards")
    return award_to_response(award)


@router.post("/{award_id}/out-of-stock", response_model=AwardResponse)
async def mark_out_of_stock(
    award_id: uuid.UUID,
    body: OutOfStockRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(UserRole.SUPPLIER)),
    db: AsyncSession = Depends(get_db),
):
    award = await award_service.mark_out_of_stock(
        db,
        award_id,
        supplier_id=current_user["user_id"],
        reason=body.reason,
        rfq_item_id=body.rfq_item_id,
        background_tasks=background_tasks,
    )
    return award_to_response(award)


@router.post("/{award_id}/cancel", response_model=AwardResponse)
async def cancel_award(
    award_id: uuid.UUID,
    body: CancelAwardRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(UserRole.ADMIN, UserRole.BUYER)),
    db: AsyncSession = Depends(get_db),
):
    award = await award_service.cancel_award(
        db,
        award_id,
        actor_id=current_user["user_id"],
        reason=body.reason,
        background_tasks=background_tasks,
    )
    return award_to_response(award)


@router.post(
    "/{award_id}/recreate-rfq",
    response_model=RfqResponse,
    status_code=status.HTTP_201_CREATED,
)
async def recreate_rfq(
    award_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    body: Optional[RecreateRfqRequest] = None,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(UserRole.ADMIN, UserRole.BUYER)),
    db: AsyncSession = Depends(get_db),
):
    """Publish a new RFQ for the items of an out-of-stock award."""
    rfq = await rfq_service.recreate_rfq_from_out_of_stock(
        db,
        award_id,
        current_user,
        deadline=body.deadline if body else None,
        background_tasks=background_tasks,
    )
    items = await rfq_service.load_rfq_items(db, rfq.id)
    return rfq_to_response(rfq, items)
