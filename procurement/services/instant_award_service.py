"""
Instant-price auto-award cascade.

After a supplier quotes item lines on a PUBLISHED RFQ, every line priced at
or below its item's instant price wins that item immediately. Each item is
claimed with a conditional UPDATE on its status, so when two cascades race
for the same item exactly one claim succeeds; the loser logs and skips.
Every claim runs in its own transaction. Nothing here raises to the caller.
"""

from dataclasses import dataclass
from typing import Iterable, Optional
import uuid

from fastapi import BackgroundTasks
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.quote import Quote, QuoteItem
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import (
    QUOTE_TRANSITIONS,
    TERMINAL_ITEM_STATUSES,
    NotificationType,
    QuoteStatus,
    RfqItemStatus,
    RfqStatus,
    ensure_transition,
)
from procurement.services.award_service import (
    complete_rfq_if_all_items_terminal,
    recompute_award,
)
from procurement.services.notification_service import format_amount, notify_users

logger = structlog.get_logger()

# A claim that loses the Award insert race is retried once against the
# award the other cascade created.
CLAIM_ATTEMPTS = 2


@dataclass(frozen=True)
class InstantAwardCandidate:
    rfq_item_id: uuid.UUID
    quote_item_id: uuid.UUID
    product_name: str
    price_cents: int
    instant_price_cents: int


def qualifies_for_instant_award(price_cents: int, rfq_item: RfqItem) -> bool:
    if rfq_item.item_status in TERMINAL_ITEM_STATUSES:
        return False
    if rfq_item.instant_price_cents is None:
        return False
    return price_cents <= rfq_item.instant_price_cents


async def check_instant_price_award(
    session: AsyncSession,
    quote_id: uuid.UUID,
    rfq_id: uuid.UUID,
    submitted_items: Optional[Iterable] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> list[InstantAwardCandidate]:
    """Run the cascade for one quote. Returns the candidates actually awarded."""
    try:
        return await _run_cascade(
            session, quote_id, rfq_id, submitted_items, background_tasks
        )
    except Exception as exc:
        await session.rollback()
        logger.error(
            "instant_award_check_failed",
            quote_id=str(quote_id),
            rfq_id=str(rfq_id),
            error=str(exc),
        )
        return []


async def _run_cascade(
    session: AsyncSession,
    quote_id: uuid.UUID,
    rfq_id: uuid.UUID,
    submitted_items: Optional[Iterable],
    background_tasks: Optional[BackgroundTasks],
) -> list[InstantAwardCandidate]:
    quote = (
        await session.execute(
            select(Quote)
            .where(Quote.id == quote_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if quote is None or quote.rfq_id != rfq_id:
        logger.warning("instant_award_quote_missing", quote_id=str(quote_id))
        return []

    rfq = (
        await session.execute(
            select(Rfq).where(Rfq.id == rfq_id).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if rfq is None or rfq.status != RfqStatus.PUBLISHED:
        logger.info(
            "instant_award_skipped",
            rfq_id=str(rfq_id),
            rfq_status=rfq.status.value if rfq else None,
        )
        return []

    supplier_id = quote.supplier_id
    rfq_no = rfq.rfq_no

    rows = await session.execute(
        select(QuoteItem, RfqItem)
        .join(RfqItem, QuoteItem.rfq_item_id == RfqItem.id)
        .where(QuoteItem.quote_id == quote_id)
        .order_by(RfqItem.created_at)
        .execution_options(populate_existing=True)
    )
    candidates = [
        InstantAwardCandidate(
            rfq_item_id=rfq_item.id,
            quote_item_id=quote_item.id,
            product_name=rfq_item.product_name,
            price_cents=quote_item.price_cents,
            instant_price_cents=rfq_item.instant_price_cents,
        )
        for quote_item, rfq_item in rows.all()
        if qualifies_for_instant_award(quote_item.price_cents, rfq_item)
    ]
    if not candidates:
        return []

    logger.info(
        "instant_award_candidates_found",
        rfq_id=str(rfq_id),
        quote_id=str(quote_id),
        candidates=len(candidates),
        submitted=len(list(submitted_items or [])),
    )

    awarded = []
    for candidate in candidates:
        if await award_candidate(session, rfq_id, candidate):
            awarded.append(candidate)

    await complete_rfq_if_all_items_terminal(session, rfq_id)

    if awarded:
        names = ", ".join(
            f"{c.product_name} ({format_amount(c.price_cents)})" for c in awarded
        )
        await notify_users(
            session,
            [supplier_id],
            NotificationType.QUOTE_AWARDED,
            title="Items awarded at instant price",
            content=f"Your quote on RFQ {rfq_no} met the instant price for: {names}",
            link=f"/rfqs/{rfq_id}",
            background_tasks=background_tasks,
        )
    return awarded


async def award_candidate(
    session: AsyncSession, rfq_id: uuid.UUID, candidate: InstantAwardCandidate
) -> bool:
    for attempt in range(1, CLAIM_ATTEMPTS + 1):
        try:
            return await _claim_and_award(session, rfq_id, candidate)
        except IntegrityError as exc:
            await session.rollback()
            if attempt < CLAIM_ATTEMPTS:
                logger.info(
                    "instant_award_conflict_retrying",
                    rfq_item_id=str(candidate.rfq_item_id),
                )
                continue
            logger.error(
                "instant_award_item_failed",
                rfq_item_id=str(candidate.rfq_item_id),
                error=str(exc),
            )
        except Exception as exc:
            await session.rollback()
            logger.error(
                "instant_award_item_failed",
                rfq_item_id=str(candidate.rfq_item_id),
                error=str(exc),
            )
            return False
    return False


async def _claim_and_award(
    session: AsyncSession, rfq_id: uuid.UUID, candidate: InstantAwardCandidate
) -> bool:
    claim = await session.execute(
        update(RfqItem)
        .where(
            RfqItem.id == candidate.rfq_item_id,
            RfqItem.item_status.notin_(list(TERMINAL_ITEM_STATUSES)),
        )
        .values(
            item_status=RfqItemStatus.AWARDED,
            awarded_quote_item_id=candidate.quote_item_id,
        )
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        await session.rollback()
        logger.info(
            "instant_award_item_already_claimed",
            rfq_item_id=str(candidate.rfq_item_id),
            quote_item_id=str(candidate.quote_item_id),
        )
        return False

    quote = (
        await session.execute(
            select(Quote)
            .join(QuoteItem, QuoteItem.quote_id == Quote.id)
            .where(QuoteItem.id == candidate.quote_item_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()

    await recompute_award(session, rfq_id, quote.id, quote.supplier_id)
    ensure_transition(QUOTE_TRANSITIONS, quote.status, QuoteStatus.AWARDED, "Quote")
    quote.status = QuoteStatus.AWARDED
    await session.commit()

    logger.info(
        "instant_award_item_awarded",
        rfq_id=str(rfq_id),
        quote_id=str(quote.id),
        rfq_item_id=str(candidate.rfq_item_id),
        product_name=candidate.product_name,
        price_cents=candidate.price_cents,
        instant_price_cents=candidate.instant_price_cents,
    )
    return True
