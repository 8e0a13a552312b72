import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.database import get_db
from procurement.errors import PermissionDeniedError
from procurement.middleware.auth import get_current_user
from procurement.middleware.authorization import require_roles
from procurement.models.quote import Quote, QuoteItem
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import UserRole
from procurement.routes.awards import award_to_response
from procurement.schemas.award import AwardItemRequest, AwardResponse
from procurement.schemas.common import PaginatedResponse, build_pagination, iso
from procurement.schemas.quote import (
    QuoteAwardRequest,
    QuoteCreate,
    QuoteItemResponse,
    QuoteResponse,
)
from procurement.services import award_service, quote_service

router = APIRouter()


def _line_to_response(quote_item: QuoteItem, rfq_item: RfqItem) -> QuoteItemResponse:
    return QuoteItemResponse(
        id=str(quote_item.id),
        rfq_item_id=str(quote_item.rfq_item_id),
        product_name=rfq_item.product_name,
        quantity=rfq_item.quantity,
        price_cents=quote_item.price_cents,
        delivery_days=quote_item.delivery_days,
        notes=quote_item.notes,
        item_status=rfq_item.item_status.value,
    )


def quote_to_response(quote: Quote, lines: list) -> QuoteResponse:
    return QuoteResponse(
        id=str(quote.id),
        rfq_id=str(quote.rfq_id),
        supplier_id=str(quote.supplier_id),
        price_cents=quote.price_cents,
        delivery_days=quote.delivery_days,
        notes=quote.notes,
        status=quote.status.value,
        items=[_line_to_response(qi, ri) for qi, ri in lines],
        submitted_at=iso(quote.submitted_at),
        updated_at=iso(quote.updated_at),
    )


@router.post("", response_model=QuoteResponse, status_code=status.HTTP_201_CREATED)
async def submit_quote(
    body: QuoteCreate,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(UserRole.SUPPLIER)),
    db: AsyncSession = Depends(get_db),
):
    """Submit a quote, or update the supplier's existing quote on the RFQ."""
    detail = await quote_service.submit_quote(
        db, current_user["user_id"], body, background_tasks=background_tasks
    )
    return quote_to_response(detail.quote, detail.lines)


@router.get("", response_model=PaginatedResponse[QuoteResponse])
async def list_quotes(
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=50),
    rfq_id: Optional[uuid.UUID] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    q = select(Quote)
    count_q = select(func.count(Quote.id))

    filters = []
    role = current_user["role"]
    if role == UserRole.SUPPLIER.value:
        filters.append(Quote.supplier_id == uuid.UUID(current_user["user_id"]))
    elif role == UserRole.STORE.value:
        store_id = current_user.get("store_id")
        if not store_id:
            return PaginatedResponse(data=[], pagination=build_pagination(page, limit, 0))
        filters.append(
            Quote.rfq_id.in_(select(Rfq.id).where(Rfq.store_id == uuid.UUID(store_id)))
        )
    if rfq_id:
        filters.append(Quote.rfq_id == rfq_id)
    if filters:
        q = q.where(*filters)
        count_q = count_q.where(*filters)

    total = (await db.execute(count_q)).scalar() or 0
    result = await db.execute(
        q.order_by(Quote.submitted_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    quotes = result.scalars().all()

    # Batch-load lines for the page
    lines_map: dict = {}
    quote_ids = [quote.id for quote in quotes]
    if quote_ids:
        line_result = await db.execute(
            select(QuoteItem, RfqItem)
            .join(RfqItem, QuoteItem.rfq_item_id == RfqItem.id)
            .where(QuoteItem.quote_id.in_(quote_ids))
            .order_by(RfqItem.created_at, RfqItem.product_name)
        )
        for quote_item, rfq_item in line_result.all():
            lines_map.setdefault(quote_item.quote_id, []).append((quote_item, rfq_item))

    data = [quote_to_response(quote, lines_map.get(quote.id, [])) for quote in quotes]
    return PaginatedResponse(data=data, pagination=build_pagination(page, limit, total))


@router.get("/{quote_id}", response_model=QuoteResponse)
async def get_quote(
    quote_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    detail = await quote_service.load_quote_detail(db, quote_id)
    if (
        current_user["role"] == UserRole.SUPPLIER.value
        and str(detail.quote.supplier_id) != current_user["user_id"]
    ):
        raise PermissionDeniedError("You can only view your own quotes")
    return quote_to_response(detail.quote, detail.lines)


@router.patch("/{rfq_id}/award/{quote_id}", response_model=AwardResponse)
async def award_quote(
    rfq_id: uuid.UUID,
    quote_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    body: Optional[QuoteAwardRequest] = None,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(UserRole.ADMIN, UserRole.BUYER)),
    db: AsyncSession = Depends(get_db),
):
    """Award the whole quote on a CLOSED RFQ."""
    award = await award_service.award_quote(
        db,
        rfq_id,
        quote_id,
        actor_id=current_user["user_id"],
        reason=body.reason if body else None,
        background_tasks=background_tasks,
    )
    return award_to_response(award)


@router.patch("/{rfq_id}/award-item", response_model=AwardResponse)
async def award_item(
    rfq_id: uuid.UUID,
    body: AwardItemRequest,
    background_tasks: BackgroundTasks,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(UserRole.ADMIN, UserRole.BUYER)),
    db: AsyncSession = Depends(get_db),
):
    """Award one RFQ item to one quote line on a CLOSED RFQ."""
    award = await award_service.award_item(
        db,
        rfq_id,
        body.rfq_item_id,
        body.quote_item_id,
        actor_id=current_user["user_id"],
        reason=body.reason,
        background_tasks=background_tasks,
    )
    return award_to_response(award)
