import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.database import get_db
from procurement.errors import NotFoundError, PermissionDeniedError
from procurement.middleware.auth import get_current_user
from procurement.middleware.authorization import require_roles
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import RfqStatus, UserRole
from procurement.schemas.common import PaginatedResponse, build_pagination, iso
from procurement.schemas.rfq import (
    RfqCreate,
    RfqItemPriceUpdate,
    RfqItemResponse,
    RfqResponse,
)
from procurement.services import rfq_service

logger = structlog.get_logger()
router = APIRouter()

# Suppliers never see drafts or cancelled RFQs
SUPPLIER_VISIBLE_STATUSES = (RfqStatus.PUBLISHED, RfqStatus.CLOSED, RfqStatus.AWARDED)

RFQ_MANAGERS = (UserRole.ADMIN, UserRole.BUYER, UserRole.STORE)


def item_to_response(item: RfqItem) -> RfqItemResponse:
    return RfqItemResponse(
        id=str(item.id),
        rfq_id=str(item.rfq_id),
        product_name=item.product_name,
        quantity=item.quantity,
        unit=item.unit,
        description=item.description,
        max_price_cents=item.max_price_cents,
        instant_price_cents=item.instant_price_cents,
        item_status=item.item_status.value,
        awarded_quote_item_id=(
            str(item.awarded_quote_item_id) if item.awarded_quote_item_id else None
        ),
        exception_reason=item.exception_reason,
    )


def rfq_to_response(rfq: Rfq, items: list[RfqItem]) -> RfqResponse:
    return RfqResponse(
        id=str(rfq.id),
        rfq_no=rfq.rfq_no,
        title=rfq.title,
        description=rfq.description,
        type=rfq.type.value,
        status=rfq.status.value,
        deadline=iso(rfq.deadline),
        buyer_id=str(rfq.buyer_id),
        store_id=str(rfq.store_id) if rfq.store_id else None,
        closed_at=iso(rfq.closed_at) or None,
        items=[item_to_response(item) for item in items],
        created_at=iso(rfq.created_at),
    )


def check_rfq_visible(rfq: Rfq, current_user: dict) -> None:
    role = current_user["role"]
    if role == UserRole.SUPPLIER.value and rfq.status not in SUPPLIER_VISIBLE_STATUSES:
        raise NotFoundError("RFQ not found")
    if role == UserRole.STORE.value and str(rfq.store_id) != str(current_user.get("store_id")):
        raise PermissionDeniedError("You can only access RFQs of your own store")


async def _build_response(db: AsyncSession, rfq: Rfq) -> RfqResponse:
    items = await rfq_service.load_rfq_items(db, rfq.id)
    return rfq_to_response(rfq, items)


@router.get("", response_model=PaginatedResponse[RfqResponse])
async def list_rfqs(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    rfq_status: Optional[RfqStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = select(Rfq)
    count_q = select(func.count(Rfq.id))

    filters = []
    if current_user["role"] == UserRole.SUPPLIER.value:
        filters.append(Rfq.status.in_(SUPPLIER_VISIBLE_STATUSES))
    elif current_user["role"] == UserRole.STORE.value:
        store_id = current_user.get("store_id")
        if not store_id:
            return PaginatedResponse(data=[], pagination=build_pagination(page, limit, 0))
        filters.append(Rfq.store_id == uuid.UUID(store_id))
    if rfq_status:
        filters.append(Rfq.status == rfq_status)
    if filters:
        q = q.where(*filters)
        count_q = count_q.where(*filters)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(Rfq.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    rfqs = result.scalars().all()

    # Batch-load items for the page
    items_map: dict = {}
    rfq_ids = [rfq.id for rfq in rfqs]
    if rfq_ids:
        item_result = await db.execute(
            select(RfqItem)
            .where(RfqItem.rfq_id.in_(rfq_ids))
            .order_by(RfqItem.created_at, RfqItem.product_name)
        )
        for item in item_result.scalars().all():
            items_map.setdefault(item.rfq_id, []).append(item)

    data = [rfq_to_response(rfq, items_map.get(rfq.id, [])) for rfq in rfqs]
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))


@router.get("/{rfq_id}", response_model=RfqResponse)
async def get_rfq(
    rfq_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rfq = await rfq_service.get_rfq(db, rfq_id)
    check_rfq_visible(rfq, current_user)
    return await _build_response(db, rfq)


@router.post("", response_model=RfqResponse, status_code=status.HTTP_201_CREATED)
async def create_rfq(
    body: RfqCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*RFQ_MANAGERS)),
    db: AsyncSession = Depends(get_db),
):
    rfq = await rfq_service.create_rfq(db, current_user, body)
    return await _build_response(db, rfq)


@router.patch("/items/{item_id}/prices", response_model=RfqItemResponse)
async def update_item_prices(
    item_id: uuid.UUID,
    body: RfqItemPriceUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*RFQ_MANAGERS)),
    db: AsyncSession = Depends(get_db),
):
    item = await rfq_service.update_item_prices(
        db, item_id, body, actor_id=current_user["user_id"]
    )
    return item_to_response(item)


@router.patch("/{rfq_id}/publish", response_model=RfqResponse)
async def publish_rfq(
    rfq_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*RFQ_MANAGERS)),
    db: AsyncSession = Depends(get_db),
):
    rfq = await rfq_service.get_rfq(db, rfq_id)
    check_rfq_visible(rfq, current_user)
    rfq = await rfq_service.publish_rfq(
        db, rfq_id, actor_id=current_user["user_id"], background_tasks=background_tasks
    )
    return await _build_response(db, rfq)


@router.patch("/{rfq_id}/close", response_model=RfqResponse)
async def close_rfq(
    rfq_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*RFQ_MANAGERS)),
    db: AsyncSession = Depends(get_db),
):
    rfq = await rfq_service.get_rfq(db, rfq_id)
    check_rfq_visible(rfq, current_user)
    rfq = await rfq_service.close_rfq(
        db, rfq_id, actor_id=current_user["user_id"], background_tasks=background_tasks
    )
    return await _build_response(db, rfq)
