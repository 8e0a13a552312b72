"""
Award service: the per-(RFQ, supplier) Award aggregate.

Line-backed awards (instant-price wins and per-item manual awards) keep the
aggregate in step with the items a supplier holds: every write recomputes
the final price and the reason from the AWARDED items, so repeated runs
converge on the same values.
"""

from dataclasses import dataclass
from datetime import datetime
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
    PermissionDeniedError,
)
from procurement.ids import parse_uuid
from procurement.models.award import Award
from procurement.models.quote import Quote, QuoteItem
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import (
    AWARD_TRANSITIONS,
    QUOTE_TRANSITIONS,
    RFQ_ITEM_TRANSITIONS,
    RFQ_TRANSITIONS,
    TERMINAL_ITEM_STATUSES,
    AwardStatus,
    NotificationType,
    QuoteStatus,
    RfqItemStatus,
    RfqStatus,
    ensure_transition,
)
from procurement.services.audit_service import record_audit_event
from procurement.services.notification_service import format_amount, notify_users

logger = structlog.get_logger()

MANUAL_AWARD_REASON = "Manual award"


@dataclass
class AwardedLine:
    product_name: str
    price_cents: int
    quantity: int
    instant_price_cents: Optional[int]

    @property
    def subtotal_cents(self) -> int:
        return self.price_cents * self.quantity


def award_note(line: AwardedLine) -> str:
    """One line of an award's reason."""
    if line.instant_price_cents is not None and line.price_cents <= line.instant_price_cents:
        return (
            f"Instant-price award: {line.product_name} "
            f"(quoted {format_amount(line.price_cents)} <= instant "
            f"{format_amount(line.instant_price_cents)})"
        )
    return f"Manual award: {line.product_name} (quoted {format_amount(line.price_cents)})"


async def awarded_lines(
    session: AsyncSession, rfq_id: uuid.UUID, supplier_id: uuid.UUID
) -> list[AwardedLine]:
    """Quote lines of this supplier that currently hold an AWARDED item on the RFQ."""
    result = await session.execute(
        select(
            RfqItem.product_name,
            QuoteItem.price_cents,
            RfqItem.quantity,
            RfqItem.instant_price_cents,
        )
        .join(RfqItem, RfqItem.awarded_quote_item_id == QuoteItem.id)
        .join(Quote, Quote.id == QuoteItem.quote_id)
        .where(
            Quote.rfq_id == rfq_id,
            Quote.supplier_id == supplier_id,
            RfqItem.item_status == RfqItemStatus.AWARDED,
        )
        .order_by(RfqItem.created_at, RfqItem.product_name)
    )
    return [
        AwardedLine(
            product_name=row.product_name,
            price_cents=row.price_cents,
            quantity=row.quantity or 1,
            instant_price_cents=row.instant_price_cents,
        )
        for row in result.all()
    ]


async def recompute_award(
    session: AsyncSession,
    rfq_id: uuid.UUID,
    quote_id: uuid.UUID,
    supplier_id: uuid.UUID,
) -> Optional[Award]:
    """
    Create or recompute the supplier's line-backed Award from the items it holds.

    Runs inside the caller's transaction and flushes; the caller commits.
    An OUT_OF_STOCK award that holds items again goes back to ACTIVE. When
    nothing is held any more the price drops to zero and the last reason
    stays as history. A CANCELLED award is never written to.
    """
    lines = await awarded_lines(session, rfq_id, supplier_id)
    final_price_cents = sum(line.subtotal_cents for line in lines)
    reason = "; ".join(award_note(line) for line in lines)

    result = await session.execute(
        select(Award)
        .where(Award.rfq_id == rfq_id, Award.supplier_id == supplier_id)
        .execution_options(populate_existing=True)
    )
    award = result.scalar_one_or_none()

    if award is None:
        if not lines:
            return None
        award = Award(
            rfq_id=rfq_id,
            quote_id=quote_id,
            supplier_id=supplier_id,
            final_price_cents=final_price_cents,
            reason=reason,
            status=AwardStatus.ACTIVE,
        )
        session.add(award)
    else:
        if award.status == AwardStatus.CANCELLED:
            raise InvalidStateError(
                "The award for this supplier on this RFQ was cancelled"
            )
        award.final_price_cents = final_price_cents
        if lines:
            award.reason = reason
            if award.status == AwardStatus.OUT_OF_STOCK:
                ensure_transition(
                    AWARD_TRANSITIONS, award.status, AwardStatus.ACTIVE, "Award"
                )
                award.status = AwardStatus.ACTIVE

    await session.flush()
    logger.info(
        "award_recomputed",
        award_id=str(award.id),
        rfq_id=str(rfq_id),
        supplier_id=str(supplier_id),
        final_price_cents=final_price_cents,
        award_status=award.status.value,
        items=len(lines),
    )
    return award


async def complete_rfq_if_all_items_terminal(
    session: AsyncSession, rfq_id: uuid.UUID
) -> bool:
    """Move the RFQ to AWARDED once every item is terminal."""
    try:
        statuses = (
            await session.execute(
                select(RfqItem.item_status).where(RfqItem.rfq_id == rfq_id)
            )
        ).scalars().all()
        if not statuses or any(s not in TERMINAL_ITEM_STATUSES for s in statuses):
            return False

        result = await session.execute(
            update(Rfq)
            .where(
                Rfq.id == rfq_id,
                Rfq.status.in_([RfqStatus.PUBLISHED, RfqStatus.CLOSED]),
            )
            .values(status=RfqStatus.AWARDED)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except Exception as exc:
        await session.rollback()
        logger.error("rfq_auto_complete_failed", rfq_id=str(rfq_id), error=str(exc))
        return False

    if result.rowcount == 1:
        logger.info("rfq_auto_awarded", rfq_id=str(rfq_id))
        return True
    return False


async def get_award(session: AsyncSession, award_id) -> Award:
    result = await session.execute(
        select(Award)
        .where(Award.id == parse_uuid(award_id, "award_id"))
        .execution_options(populate_existing=True)
    )
    award = result.scalar_one_or_none()
    if award is None:
        raise NotFoundError("Award not found")
    return award


async def _load_rfq(session: AsyncSession, rfq_uuid: uuid.UUID) -> Rfq:
    rfq = (
        await session.execute(
            select(Rfq).where(Rfq.id == rfq_uuid).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if rfq is None:
        raise NotFoundError(f"RFQ not found: {rfq_uuid}")
    return rfq


async def _is_line_backed(session: AsyncSession, award: Award) -> bool:
    """True when some RFQ item was won through one of the award's quote lines."""
    won = await session.execute(
        select(RfqItem.id)
        .where(
            RfqItem.awarded_quote_item_id.in_(
                select(QuoteItem.id).where(QuoteItem.quote_id == award.quote_id)
            )
        )
        .limit(1)
    )
    return won.first() is not None


# ---------------------------------------------------------------------------
# Manual award
# ---------------------------------------------------------------------------

async def award_quote(
    session: AsyncSession,
    rfq_id,
    quote_id,
    actor_id=None,
    reason: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Award:
    """Award a whole quote on a CLOSED RFQ and reject every other quote."""
    rfq_uuid = parse_uuid(rfq_id, "rfq_id")
    quote_uuid = parse_uuid(quote_id, "quote_id")

    quote = (
        await session.execute(
            select(Quote)
            .where(Quote.id == quote_uuid)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if quote is None:
        raise NotFoundError(f"Quote not found: {quote_uuid}")
    if quote.rfq_id != rfq_uuid:
        raise InvalidInputError("Quote does not belong to this RFQ")

    rfq = await _load_rfq(session, rfq_uuid)
    if rfq.status != RfqStatus.CLOSED:
        raise InvalidStateError(
            f"RFQ must be CLOSED before awarding (current status: {rfq.status.value})"
        )

    existing = (
        await session.execute(
            select(Award.id).where(
                Award.rfq_id == rfq.id, Award.supplier_id == quote.supplier_id
            )
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise InvalidStateError("This supplier already holds an award on this RFQ")

    ensure_transition(RFQ_TRANSITIONS, rfq.status, RfqStatus.AWARDED, "RFQ")
    ensure_transition(QUOTE_TRANSITIONS, quote.status, QuoteStatus.AWARDED, "Quote")

    supplier_id = quote.supplier_id
    rfq_no = rfq.rfq_no
    try:
        award = Award(
            rfq_id=rfq.id,
            quote_id=quote.id,
            supplier_id=supplier_id,
            final_price_cents=quote.price_cents,
            reason=reason or MANUAL_AWARD_REASON,
            status=AwardStatus.ACTIVE,
        )
        session.add(award)
        rfq.status = RfqStatus.AWARDED
        quote.status = QuoteStatus.AWARDED
        await session.execute(
            update(Quote)
            .where(
                Quote.rfq_id == rfq.id,
                Quote.id != quote.id,
                Quote.status.in_([QuoteStatus.SUBMITTED, QuoteStatus.AWARDED]),
            )
            .values(status=QuoteStatus.REJECTED)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        logger.warning("award_quote_conflict", rfq_id=str(rfq_uuid), error=str(exc))
        raise InvalidStateError("This supplier already holds an award on this RFQ")
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("award_quote_failed", rfq_id=str(rfq_uuid), error=str(exc))
        raise InternalError(details={"error": str(exc)})

    award_uuid = award.id
    final_price_cents = award.final_price_cents
    award_reason = award.reason
    logger.info(
        "quote_awarded",
        rfq_id=str(rfq_uuid),
        quote_id=str(quote_uuid),
        supplier_id=str(supplier_id),
        final_price_cents=final_price_cents,
    )

    await record_audit_event(
        session,
        actor_id,
        "quote.award",
        "Quote",
        quote_uuid,
        {"rfq_id": str(rfq_uuid), "award_id": str(award_uuid), "reason": award_reason},
    )
    await notify_users(
        session,
        [supplier_id],
        NotificationType.QUOTE_AWARDED,
        title="Your quote won",
        content=(
            f"Your quote for RFQ {rfq_no} was awarded, "
            f"total {format_amount(final_price_cents)}"
        ),
        link=f"/rfqs/{rfq_uuid}",
        background_tasks=background_tasks,
    )
    return await get_award(session, award_uuid)


async def award_item(
    session: AsyncSession,
    rfq_id,
    rfq_item_id,
    quote_item_id,
    actor_id=None,
    reason: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Award:
    """Award one RFQ item to one quote line after the RFQ has closed.

    The supplier's Award is recomputed from every item it holds, and the
    RFQ moves to AWARDED once no open item is left.
    """
    rfq_uuid = parse_uuid(rfq_id, "rfq_id")
    item_uuid = parse_uuid(rfq_item_id, "rfq_item_id")
    line_uuid = parse_uuid(quote_item_id, "quote_item_id")

    rfq = await _load_rfq(session, rfq_uuid)
    if rfq.status not in (RfqStatus.CLOSED, RfqStatus.AWARDED):
        raise InvalidStateError(
            f"RFQ must be CLOSED before awarding items (current status: {rfq.status.value})"
        )

    item = (
        await session.execute(
            select(RfqItem)
            .where(RfqItem.id == item_uuid)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if item is None:
        raise NotFoundError(f"RFQ item not found: {item_uuid}")
    if item.rfq_id != rfq_uuid:
        raise InvalidInputError("Item does not belong to this RFQ")

    line = (
        await session.execute(select(QuoteItem).where(QuoteItem.id == line_uuid))
    ).scalar_one_or_none()
    if line is None:
        raise NotFoundError(f"Quote item not found: {line_uuid}")
    if line.rfq_item_id != item_uuid:
        raise InvalidInputError("Quote item does not price this RFQ item")

    quote = (
        await session.execute(
            select(Quote)
            .where(Quote.id == line.quote_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    if quote.rfq_id != rfq_uuid:
        raise InvalidInputError("Quote does not belong to this RFQ")

    ensure_transition(RFQ_ITEM_TRANSITIONS, item.item_status, RfqItemStatus.AWARDED, "RFQ item")
    ensure_transition(QUOTE_TRANSITIONS, quote.status, QuoteStatus.AWARDED, "Quote")

    existing = (
        await session.execute(
            select(Award)
            .where(Award.rfq_id == rfq_uuid, Award.supplier_id == quote.supplier_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if existing is not None:
        if existing.status == AwardStatus.CANCELLED:
            raise InvalidStateError(
                "The award for this supplier on this RFQ was cancelled"
            )
        if not await _is_line_backed(session, existing):
            raise InvalidStateError(
                "This supplier already holds a whole-quote award on this RFQ"
            )

    supplier_id = quote.supplier_id
    quote_uuid = quote.id
    rfq_no = rfq.rfq_no
    product_name = item.product_name
    try:
        claim = await session.execute(
            update(RfqItem)
            .where(
                RfqItem.id == item_uuid,
                RfqItem.item_status.notin_(list(TERMINAL_ITEM_STATUSES)),
            )
            .values(item_status=RfqItemStatus.AWARDED, awarded_quote_item_id=line_uuid)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount != 1:
            await session.rollback()
            raise InvalidStateError("Item was awarded or closed in the meantime")
        award = await recompute_award(session, rfq_uuid, quote_uuid, supplier_id)
        quote.status = QuoteStatus.AWARDED
        await session.commit()
    except InvalidStateError:
        await session.rollback()
        raise
    except IntegrityError as exc:
        await session.rollback()
        logger.warning("award_item_conflict", rfq_item_id=str(item_uuid), error=str(exc))
        raise InvalidStateError("The award changed concurrently, please retry")
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("award_item_failed", rfq_item_id=str(item_uuid), error=str(exc))
        raise InternalError(details={"error": str(exc)})

    award_uuid = award.id
    final_price_cents = award.final_price_cents
    logger.info(
        "rfq_item_awarded",
        rfq_id=str(rfq_uuid),
        rfq_item_id=str(item_uuid),
        quote_item_id=str(line_uuid),
        supplier_id=str(supplier_id),
        final_price_cents=final_price_cents,
    )

    await complete_rfq_if_all_items_terminal(session, rfq_uuid)
    await record_audit_event(
        session,
        actor_id,
        "rfq_item.award",
        "RfqItem",
        item_uuid,
        {
            "rfq_id": str(rfq_uuid),
            "quote_item_id": str(line_uuid),
            "award_id": str(award_uuid),
            "reason": reason or MANUAL_AWARD_REASON,
        },
    )
    await notify_users(
        session,
        [supplier_id],
        NotificationType.QUOTE_AWARDED,
        title="Item awarded",
        content=(
            f"Your quote on RFQ {rfq_no} won {product_name}, "
            f"award total {format_amount(final_price_cents)}"
        ),
        link=f"/rfqs/{rfq_uuid}",
        background_tasks=background_tasks,
    )
    return await get_award(session, award_uuid)


# ---------------------------------------------------------------------------
# Out of stock and cancellation
# ---------------------------------------------------------------------------

async def award_items(session: AsyncSession, award: Award) -> list[RfqItem]:
    """RFQ items an award covers.

    Items won through the award's quote lines; for a whole-quote award, the
    items its quote priced, or every RFQ item when the quote had no lines.
    Items another supplier won line by line are never covered by a
    whole-quote award.
    """
    line_result = await session.execute(
        select(QuoteItem.id, QuoteItem.rfq_item_id).where(
            QuoteItem.quote_id == award.quote_id
        )
    )
    lines = line_result.all()
    line_ids = [row.id for row in lines]

    if line_ids:
        won = (
            await session.execute(
                select(RfqItem)
                .where(RfqItem.awarded_quote_item_id.in_(line_ids))
                .order_by(RfqItem.created_at)
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        if won:
            return list(won)
        q = select(RfqItem).where(RfqItem.id.in_([row.rfq_item_id for row in lines]))
    else:
        q = select(RfqItem).where(RfqItem.rfq_id == award.rfq_id)
    result = await session.execute(
        q.where(RfqItem.awarded_quote_item_id.is_(None))
        .order_by(RfqItem.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def mark_out_of_stock(
    session: AsyncSession,
    award_id,
    supplier_id,
    reason: str,
    rfq_item_id=None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Award:
    """Supplier reports one awarded item (or everything it won) as out of stock.

    A line-backed award is repriced over the items it still holds in the
    same transaction; a whole-quote award keeps its quoted total.
    """
    if not reason or not reason.strip():
        raise InvalidInputError("A reason is required")
    award = await get_award(session, award_id)
    supplier_uuid = parse_uuid(supplier_id, "supplier_id")
    if award.supplier_id != supplier_uuid:
        raise PermissionDeniedError("You can only update your own awards")
    if award.status != AwardStatus.ACTIVE:
        raise InvalidStateError(
            f"Award is {award.status.value}, only ACTIVE awards can be updated"
        )

    covered = await award_items(session, award)
    if rfq_item_id is not None:
        item_uuid = parse_uuid(rfq_item_id, "rfq_item_id")
        targets = [item for item in covered if item.id == item_uuid]
        if not targets:
            raise InvalidInputError("Item is not part of this award")
        ensure_transition(
            RFQ_ITEM_TRANSITIONS,
            targets[0].item_status,
            RfqItemStatus.OUT_OF_STOCK,
            "RFQ item",
        )
    else:
        targets = [
            item
            for item in covered
            if RfqItemStatus.OUT_OF_STOCK in RFQ_ITEM_TRANSITIONS[item.item_status]
        ]
        if not targets:
            raise InvalidStateError("No items left to mark out of stock")

    now = datetime.utcnow()
    award_uuid = award.id
    rfq_uuid = award.rfq_id
    quote_uuid = award.quote_id
    line_backed = any(item.awarded_quote_item_id is not None for item in covered)
    target_ids = [item.id for item in targets]
    product_names = [item.product_name for item in targets]
    buyer_id = (
        await session.execute(select(Rfq.buyer_id).where(Rfq.id == rfq_uuid))
    ).scalar_one_or_none()
    try:
        for item in targets:
            item.item_status = RfqItemStatus.OUT_OF_STOCK
            item.exception_reason = reason
            item.exception_at = now
        if line_backed:
            await session.flush()
            await recompute_award(session, rfq_uuid, quote_uuid, supplier_uuid)
        still_in_stock = [
            item
            for item in covered
            if item.item_status not in (RfqItemStatus.OUT_OF_STOCK, RfqItemStatus.CANCELLED)
        ]
        if not still_in_stock:
            ensure_transition(
                AWARD_TRANSITIONS, award.status, AwardStatus.OUT_OF_STOCK, "Award"
            )
            award.status = AwardStatus.OUT_OF_STOCK
        award_status = award.status
        final_price_cents = award.final_price_cents
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("mark_out_of_stock_failed", award_id=str(award_uuid), error=str(exc))
        raise InternalError(details={"error": str(exc)})

    logger.info(
        "award_items_out_of_stock",
        award_id=str(award_uuid),
        items=[str(i) for i in target_ids],
        award_status=award_status.value,
        final_price_cents=final_price_cents,
    )

    await record_audit_event(
        session,
        supplier_uuid,
        "award.out_of_stock",
        "Award",
        award_uuid,
        {"rfq_item_ids": [str(i) for i in target_ids], "reason": reason},
    )
    await notify_users(
        session,
        [buyer_id],
        NotificationType.AWARD_OUT_OF_STOCK,
        title="Awarded items out of stock",
        content=f"Supplier reported out of stock: {', '.join(product_names)}. Reason: {reason}",
        link=f"/awards/{award_uuid}",
        background_tasks=background_tasks,
    )
    return await get_award(session, award_uuid)


async def cancel_award(
    session: AsyncSession,
    award_id,
    actor_id,
    reason: str,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Award:
    """Withdraw an award; awarded or out-of-stock items it covers are cancelled."""
    if not reason or not reason.strip():
        raise InvalidInputError("A cancellation reason is required")
    award = await get_award(session, award_id)
    ensure_transition(AWARD_TRANSITIONS, award.status, AwardStatus.CANCELLED, "Award")

    covered = await award_items(session, award)
    targets = [
        item
        for item in covered
        if item.item_status in (RfqItemStatus.AWARDED, RfqItemStatus.OUT_OF_STOCK)
    ]

    now = datetime.utcnow()
    actor_uuid = parse_uuid(actor_id, "actor_id") if actor_id is not None else None
    award_uuid = award.id
    supplier_id = award.supplier_id
    target_ids = [item.id for item in targets]
    rfq_no = (
        await session.execute(select(Rfq.rfq_no).where(Rfq.id == award.rfq_id))
    ).scalar_one_or_none()
    try:
        for item in targets:
            item.item_status = RfqItemStatus.CANCELLED
            item.exception_reason = reason
            item.exception_at = now
        award.status = AwardStatus.CANCELLED
        award.cancellation_reason = reason
        award.cancelled_at = now
        award.cancelled_by = actor_uuid
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("cancel_award_failed", award_id=str(award_uuid), error=str(exc))
        raise InternalError(details={"error": str(exc)})

    logger.info(
        "award_cancelled",
        award_id=str(award_uuid),
        items=[str(i) for i in target_ids],
    )

    await record_audit_event(
        session,
        actor_uuid,
        "award.cancel",
        "Award",
        award_uuid,
        {"rfq_item_ids": [str(i) for i in target_ids], "reason": reason},
    )
    await notify_users(
        session,
        [supplier_id],
        NotificationType.AWARD_CANCELLED,
        title="Award cancelled",
        content=f"Your award on RFQ {rfq_no} was cancelled. Reason: {reason}",
        link=f"/awards/{award_uuid}",
        background_tasks=background_tasks,
    )
    return await get_award(session, award_uuid)
