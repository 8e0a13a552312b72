"""
Quote service: supplier quote submission and incremental update.

Flow:
  1. Validate the request against the RFQ and its items (fail fast)
  2. Create the quote, or merge into the supplier's existing one; revised
     lines that hold awarded items reprice the award in the same transaction
  3. Commit, then best-effort audit + notifications
  4. Run the instant-price cascade when item lines were supplied
"""

from dataclasses import dataclass, field
from typing import Optional
import uuid

from fastapi import BackgroundTasks
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.errors import (
    InternalError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from procurement.ids import parse_uuid
from procurement.models.quote import Quote, QuoteItem
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import (
    QUOTE_CLOSED_RFQ_STATUSES,
    QUOTE_TRANSITIONS,
    NotificationType,
    QuoteStatus,
    RfqItemStatus,
    ensure_transition,
)
from procurement.models.user import User
from procurement.schemas.quote import QuoteCreate, QuoteItemInput
from procurement.services.audit_service import record_audit_event
from procurement.services.award_service import recompute_award
from procurement.services.instant_award_service import check_instant_price_award
from procurement.services.notification_service import (
    format_amount,
    notify_users,
    quote_submission_recipients,
)

logger = structlog.get_logger()


@dataclass
class QuoteDetail:
    quote: Quote
    lines: list[tuple[QuoteItem, RfqItem]] = field(default_factory=list)


async def load_quote_detail(session: AsyncSession, quote_id: uuid.UUID) -> QuoteDetail:
    """Fetch a quote and its lines fresh from storage."""
    quote = (
        await session.execute(
            select(Quote)
            .where(Quote.id == quote_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if quote is None:
        raise NotFoundError("Quote not found")
    rows = await session.execute(
        select(QuoteItem, RfqItem)
        .join(RfqItem, QuoteItem.rfq_item_id == RfqItem.id)
        .where(QuoteItem.quote_id == quote_id)
        .order_by(RfqItem.created_at, RfqItem.product_name)
        .execution_options(populate_existing=True)
    )
    return QuoteDetail(quote=quote, lines=[(qi, ri) for qi, ri in rows.all()])


def _validate_items(
    submitted: list[QuoteItemInput], rfq_items: dict[uuid.UUID, RfqItem]
) -> list[tuple[uuid.UUID, QuoteItemInput]]:
    parsed: list[tuple[uuid.UUID, QuoteItemInput]] = []
    for entry in submitted:
        try:
            item_id = uuid.UUID(str(entry.rfq_item_id))
        except (ValueError, TypeError):
            item_id = None
        if item_id not in rfq_items:
            raise InvalidInputError("Some quoted items do not belong to this RFQ")
        parsed.append((item_id, entry))

    if len({item_id for item_id, _ in parsed}) != len(parsed):
        raise InvalidInputError("Each RFQ item can be quoted only once per submission")

    if any(entry.price_cents <= 0 for _, entry in parsed):
        raise InvalidInputError("All quoted items must have a price greater than zero")

    for item_id, entry in parsed:
        rfq_item = rfq_items[item_id]
        ceiling = rfq_item.max_price_cents
        if ceiling is not None and entry.price_cents > ceiling:
            raise InvalidInputError(
                f'Quoted price {format_amount(entry.price_cents)} for "{rfq_item.product_name}" '
                f"exceeds the maximum price {format_amount(ceiling)}"
            )
    return parsed


async def submit_quote(
    session: AsyncSession,
    supplier_id,
    body: QuoteCreate,
    background_tasks: Optional[BackgroundTasks] = None,
) -> QuoteDetail:
    """Create or update the supplier's quote on an RFQ."""
    rfq_uuid = parse_uuid(body.rfq_id, "rfq_id")
    supplier_uuid = parse_uuid(supplier_id, "supplier_id")

    rfq = (
        await session.execute(
            select(Rfq)
            .where(Rfq.id == rfq_uuid)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if rfq is None:
        raise NotFoundError(f"RFQ not found: {rfq_uuid}")
    if rfq.status in QUOTE_CLOSED_RFQ_STATUSES:
        raise InvalidStateError(
            f"RFQ closed or awarded, cannot quote (current status: {rfq.status.value})"
        )

    item_result = await session.execute(
        select(RfqItem)
        .where(RfqItem.rfq_id == rfq.id)
        .execution_options(populate_existing=True)
    )
    rfq_items = {item.id: item for item in item_result.scalars().all()}
    parsed = _validate_items(body.items or [], rfq_items)

    rfq_no = rfq.rfq_no
    buyer_id = rfq.buyer_id
    store_id = rfq.store_id

    try:
        quote = (
            await session.execute(
                select(Quote)
                .where(Quote.rfq_id == rfq_uuid, Quote.supplier_id == supplier_uuid)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        is_update = quote is not None

        if quote is None:
            quote = Quote(
                rfq_id=rfq_uuid,
                supplier_id=supplier_uuid,
                price_cents=body.price_cents,
                delivery_days=body.delivery_days or 0,
                notes=body.notes,
                status=QuoteStatus.SUBMITTED,
            )
            session.add(quote)
            await session.flush()
            existing_lines: dict[uuid.UUID, QuoteItem] = {}
        else:
            ensure_transition(
                QUOTE_TRANSITIONS, quote.status, QuoteStatus.SUBMITTED, "Quote"
            )
            quote.price_cents = body.price_cents
            quote.delivery_days = body.delivery_days or 0
            quote.notes = body.notes
            quote.status = QuoteStatus.SUBMITTED
            line_result = await session.execute(
                select(QuoteItem)
                .where(QuoteItem.quote_id == quote.id)
                .execution_options(populate_existing=True)
            )
            existing_lines = {
                line.rfq_item_id: line for line in line_result.scalars().all()
            }

        repriced: list[uuid.UUID] = []
        # Lines not in this submission are left untouched
        for item_id, entry in parsed:
            line = existing_lines.get(item_id)
            if line is None:
                session.add(
                    QuoteItem(
                        quote_id=quote.id,
                        rfq_item_id=item_id,
                        price_cents=entry.price_cents,
                        delivery_days=entry.delivery_days or 0,
                        notes=entry.notes,
                    )
                )
            else:
                line.price_cents = entry.price_cents
                line.delivery_days = entry.delivery_days or 0
                line.notes = entry.notes
                repriced.append(line.id)

        if parsed:
            await session.execute(
                update(RfqItem)
                .where(
                    RfqItem.id.in_([item_id for item_id, _ in parsed]),
                    RfqItem.item_status == RfqItemStatus.PENDING,
                )
                .values(item_status=RfqItemStatus.QUOTED)
                .execution_options(synchronize_session=False)
            )

        if repriced:
            await _reprice_held_items(session, rfq_uuid, quote, supplier_uuid, repriced)

        quote_id = quote.id
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        logger.warning(
            "quote_submit_conflict",
            rfq_id=str(rfq_uuid),
            supplier_id=str(supplier_uuid),
            error=str(exc),
        )
        raise InvalidInputError(
            "Quote could not be saved: it duplicates an existing quote "
            "or references missing data"
        )
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error(
            "quote_submit_failed",
            rfq_id=str(rfq_uuid),
            supplier_id=str(supplier_uuid),
            error=str(exc),
        )
        raise InternalError(details={"error": str(exc)})

    logger.info(
        "quote_submitted",
        quote_id=str(quote_id),
        rfq_id=str(rfq_uuid),
        supplier_id=str(supplier_uuid),
        items_count=len(parsed),
        updated=is_update,
    )

    await record_audit_event(
        session,
        supplier_uuid,
        "quote.update" if is_update else "quote.submit",
        "Quote",
        quote_id,
        {
            "rfq_id": str(rfq_uuid),
            "price_cents": body.price_cents,
            "items_count": len(parsed),
        },
    )

    await _notify_quote_submitted(
        session,
        supplier_uuid=supplier_uuid,
        rfq_uuid=rfq_uuid,
        rfq_no=rfq_no,
        buyer_id=buyer_id,
        store_id=store_id,
        product_names=[rfq_items[item_id].product_name for item_id, _ in parsed],
        price_cents=body.price_cents,
        is_update=is_update,
        background_tasks=background_tasks,
    )

    if parsed:
        await check_instant_price_award(
            session,
            quote_id,
            rfq_uuid,
            [(item_id, entry.price_cents) for item_id, entry in parsed],
            background_tasks=background_tasks,
        )

    return await load_quote_detail(session, quote_id)


async def _reprice_held_items(
    session: AsyncSession,
    rfq_uuid: uuid.UUID,
    quote: Quote,
    supplier_uuid: uuid.UUID,
    line_ids: list[uuid.UUID],
) -> None:
    """Reprice the supplier's award when a revised line still holds an awarded item."""
    held = await session.execute(
        select(RfqItem.id)
        .where(
            RfqItem.awarded_quote_item_id.in_(line_ids),
            RfqItem.item_status == RfqItemStatus.AWARDED,
        )
        .limit(1)
    )
    if held.first() is None:
        return
    await recompute_award(session, rfq_uuid, quote.id, supplier_uuid)
    quote.status = QuoteStatus.AWARDED


async def _notify_quote_submitted(
    session: AsyncSession,
    supplier_uuid: uuid.UUID,
    rfq_uuid: uuid.UUID,
    rfq_no: str,
    buyer_id: uuid.UUID,
    store_id: Optional[uuid.UUID],
    product_names: list[str],
    price_cents: int,
    is_update: bool,
    background_tasks: Optional[BackgroundTasks],
) -> None:
    try:
        supplier_name = (
            await session.execute(
                select(User.username).where(User.id == supplier_uuid)
            )
        ).scalar_one_or_none() or "Unknown supplier"
        recipients = await quote_submission_recipients(session, buyer_id, store_id)
    except Exception as exc:
        await session.rollback()
        logger.warning(
            "quote_notification_failed", rfq_id=str(rfq_uuid), error=str(exc)
        )
        return

    verb = "updated a quote" if is_update else "submitted a quote"
    names = ", ".join(product_names) or "the whole RFQ"
    await notify_users(
        session,
        recipients,
        NotificationType.QUOTE_SUBMITTED,
        title="Quote updated" if is_update else "New quote received",
        content=(
            f"Supplier {supplier_name} {verb} for RFQ {rfq_no} covering "
            f"{len(product_names)} item(s): {names}, total {format_amount(price_cents)}"
        ),
        link=f"/rfqs/{rfq_uuid}",
        background_tasks=background_tasks,
    )
