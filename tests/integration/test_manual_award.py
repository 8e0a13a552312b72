"""
Integration tests for award_quote and award_item in procurement/services/award_service.py

Runs against an in-memory SQLite database (aiosqlite).
Tests: CLOSED precondition, ownership checks, one award per supplier and
       RFQ, losing quotes rejected, audit + winner notification, per-item
       awards across suppliers.
"""

import uuid

import pytest
from sqlalchemy import func, select

from procurement.errors import InvalidInputError, InvalidStateError, NotFoundError
from procurement.models.audit_log import AuditLog
from procurement.models.award import Award
from procurement.models.notification import AppNotification
from procurement.models.quote import Quote
from procurement.models.rfq import Rfq
from procurement.models.status import (
    AwardStatus,
    NotificationType,
    QuoteStatus,
    RfqStatus,
)
from procurement.schemas.quote import QuoteCreate, QuoteItemInput
from procurement.services.award_service import MANUAL_AWARD_REASON, award_item, award_quote
from procurement.services.quote_service import submit_quote
from procurement.services.rfq_service import close_rfq

GADGET = {"product_name": "Gadget", "quantity": 10, "max_price_cents": 3_000}
WIDGET = {"product_name": "Widget", "quantity": 2, "max_price_cents": 15_000,
          "instant_price_cents": 10_000}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _body(rfq_id, price_cents: int, items=None) -> QuoteCreate:
    return QuoteCreate(
        rfq_id=str(rfq_id),
        price_cents=price_cents,
        items=[QuoteItemInput(rfq_item_id=str(i), price_cents=p) for i, p in items or []],
    )


async def _quote_statuses(db, rfq_id) -> dict:
    rows = await db.execute(
        select(Quote.supplier_id, Quote.status).where(Quote.rfq_id == rfq_id)
    )
    return dict(rows.all())


async def _closed_rfq_with_two_quotes(db, world, make_rfq):
    rfq = await make_rfq([GADGET])
    gadget_id = rfq.item_ids[0]
    quote_a = await submit_quote(db, world.supplier_a, _body(rfq.id, 25_000, [(gadget_id, 2_500)]))
    quote_b = await submit_quote(db, world.supplier_b, _body(rfq.id, 27_000, [(gadget_id, 2_700)]))
    quote_a_id, quote_b_id = quote_a.quote.id, quote_b.quote.id
    await close_rfq(db, rfq.id)
    return rfq, quote_a_id, quote_b_id


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_award_whole_quote(db, world, make_rfq):
    rfq, quote_a_id, _ = await _closed_rfq_with_two_quotes(db, world, make_rfq)

    award = await award_quote(
        db, rfq.id, quote_a_id, actor_id=world.buyer, reason="Best delivery terms"
    )

    assert award.supplier_id == world.supplier_a
    assert award.quote_id == quote_a_id
    assert award.final_price_cents == 25_000
    assert award.reason == "Best delivery terms"
    assert award.status == AwardStatus.ACTIVE

    rfq_status = (await db.execute(select(Rfq.status).where(Rfq.id == rfq.id))).scalar_one()
    assert rfq_status == RfqStatus.AWARDED
    assert await _quote_statuses(db, rfq.id) == {
        world.supplier_a: QuoteStatus.AWARDED,
        world.supplier_b: QuoteStatus.REJECTED,
    }


@pytest.mark.asyncio
async def test_award_default_reason_audit_and_notification(db, world, make_rfq):
    rfq, quote_a_id, _ = await _closed_rfq_with_two_quotes(db, world, make_rfq)

    award = await award_quote(db, rfq.id, quote_a_id, actor_id=world.admin)
    award_id = award.id

    assert award.reason == MANUAL_AWARD_REASON
    audit = (
        await db.execute(
            select(AuditLog).where(AuditLog.action == "quote.award")
        )
    ).scalar_one()
    assert audit.actor_id == world.admin
    assert audit.entity_id == str(quote_a_id)
    assert audit.details["award_id"] == str(award_id)

    recipients = (
        await db.execute(
            select(AppNotification.user_id).where(
                AppNotification.type == NotificationType.QUOTE_AWARDED
            )
        )
    ).scalars().all()
    assert recipients == [world.supplier_a]


# ---------------------------------------------------------------------------
# Preconditions
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [RfqStatus.PUBLISHED, RfqStatus.DRAFT])
async def test_rfq_must_be_closed(db, world, make_rfq, status):
    rfq = await make_rfq([GADGET], status=status)
    detail = await submit_quote(db, world.supplier_a, _body(rfq.id, 25_000))
    quote_id = detail.quote.id

    with pytest.raises(InvalidStateError, match="must be CLOSED"):
        await award_quote(db, rfq.id, quote_id)

    assert (await db.execute(select(Award.id))).first() is None


@pytest.mark.asyncio
async def test_unknown_quote(db, world, make_rfq):
    rfq = await make_rfq([GADGET], status=RfqStatus.CLOSED)
    with pytest.raises(NotFoundError):
        await award_quote(db, rfq.id, uuid.uuid4())


@pytest.mark.asyncio
async def test_quote_from_another_rfq(db, world, make_rfq):
    rfq, quote_a_id, _ = await _closed_rfq_with_two_quotes(db, world, make_rfq)
    other = await make_rfq([GADGET], status=RfqStatus.CLOSED)

    with pytest.raises(InvalidInputError, match="does not belong"):
        await award_quote(db, other.id, quote_a_id)


@pytest.mark.asyncio
async def test_second_award_rejected_once_rfq_awarded(db, world, make_rfq):
    rfq, quote_a_id, quote_b_id = await _closed_rfq_with_two_quotes(db, world, make_rfq)
    await award_quote(db, rfq.id, quote_a_id)

    with pytest.raises(InvalidStateError):
        await award_quote(db, rfq.id, quote_b_id)

    awards = (await db.execute(select(Award.supplier_id))).scalars().all()
    assert awards == [world.supplier_a]


@pytest.mark.asyncio
async def test_supplier_with_instant_award_cannot_be_awarded_again(db, world, make_rfq):
    rfq = await make_rfq([WIDGET, GADGET])
    widget_id, gadget_id = rfq.item_ids
    instant = await submit_quote(
        db, world.supplier_a, _body(rfq.id, 43_000, [(widget_id, 9_000), (gadget_id, 2_500)])
    )
    instant_quote_id = instant.quote.id
    await close_rfq(db, rfq.id)

    with pytest.raises(InvalidStateError, match="already holds an award"):
        await award_quote(db, rfq.id, instant_quote_id)

    [(final_price, reason)] = [
        tuple(row)
        for row in (await db.execute(select(Award.final_price_cents, Award.reason))).all()
    ]
    assert final_price == 18_000
    assert reason.startswith("Instant-price award: Widget")


# ---------------------------------------------------------------------------
# Per-item award
# ---------------------------------------------------------------------------


async def _closed_rfq_split_between_suppliers(db, world, make_rfq):
    """Widget and Gadget quoted by both suppliers above any instant price."""
    rfq = await make_rfq([WIDGET, GADGET])
    widget_id, gadget_id = rfq.item_ids
    quote_a = await submit_quote(
        db, world.supplier_a, _body(rfq.id, 49_000, [(widget_id, 12_000), (gadget_id, 2_500)])
    )
    quote_b = await submit_quote(
        db, world.supplier_b, _body(rfq.id, 50_000, [(widget_id, 11_000), (gadget_id, 2_800)])
    )
    lines_a = {ri.product_name: qi.id for qi, ri in quote_a.lines}
    lines_b = {ri.product_name: qi.id for qi, ri in quote_b.lines}
    await close_rfq(db, rfq.id)
    return rfq, lines_a, lines_b


@pytest.mark.asyncio
async def test_award_items_to_different_suppliers(db, world, make_rfq):
    rfq, lines_a, lines_b = await _closed_rfq_split_between_suppliers(db, world, make_rfq)
    widget_id, gadget_id = rfq.item_ids

    award_b = await award_item(
        db, rfq.id, widget_id, lines_b["Widget"], actor_id=world.buyer, reason="Cheapest"
    )
    assert award_b.supplier_id == world.supplier_b
    assert award_b.final_price_cents == 22_000
    assert award_b.reason == "Manual award: Widget (quoted 110.00)"
    assert (await db.execute(select(Rfq.status).where(Rfq.id == rfq.id))).scalar_one() == (
        RfqStatus.CLOSED
    )

    award_a = await award_item(db, rfq.id, gadget_id, lines_a["Gadget"], actor_id=world.buyer)
    assert award_a.supplier_id == world.supplier_a
    assert award_a.final_price_cents == 25_000

    assert (await db.execute(select(Rfq.status).where(Rfq.id == rfq.id))).scalar_one() == (
        RfqStatus.AWARDED
    )
    assert await _quote_statuses(db, rfq.id) == {
        world.supplier_a: QuoteStatus.AWARDED,
        world.supplier_b: QuoteStatus.AWARDED,
    }
    audit = (
        await db.execute(
            select(AuditLog).where(
                AuditLog.action == "rfq_item.award", AuditLog.entity_id == str(widget_id)
            )
        )
    ).scalar_one()
    assert audit.details["reason"] == "Cheapest"


@pytest.mark.asyncio
async def test_second_item_adds_to_the_same_award(db, world, make_rfq):
    rfq, lines_a, _ = await _closed_rfq_split_between_suppliers(db, world, make_rfq)
    widget_id, gadget_id = rfq.item_ids

    first = await award_item(db, rfq.id, widget_id, lines_a["Widget"])
    second = await award_item(db, rfq.id, gadget_id, lines_a["Gadget"])

    assert second.id == first.id
    assert second.final_price_cents == 24_000 + 25_000
    assert (await db.execute(select(func.count(Award.id)))).scalar() == 1


@pytest.mark.asyncio
async def test_award_item_needs_closed_rfq(db, world, make_rfq):
    rfq = await make_rfq([GADGET])
    detail = await submit_quote(db, world.supplier_a, _body(rfq.id, 25_000, [(rfq.item_ids[0], 2_500)]))
    line_id = detail.lines[0][0].id

    with pytest.raises(InvalidStateError, match="CLOSED"):
        await award_item(db, rfq.id, rfq.item_ids[0], line_id)


@pytest.mark.asyncio
async def test_award_item_already_awarded(db, world, make_rfq):
    rfq, lines_a, lines_b = await _closed_rfq_split_between_suppliers(db, world, make_rfq)
    widget_id, _ = rfq.item_ids
    await award_item(db, rfq.id, widget_id, lines_a["Widget"])

    with pytest.raises(InvalidStateError, match="AWARDED"):
        await award_item(db, rfq.id, widget_id, lines_b["Widget"])


@pytest.mark.asyncio
async def test_award_item_line_must_price_the_item(db, world, make_rfq):
    rfq, lines_a, _ = await _closed_rfq_split_between_suppliers(db, world, make_rfq)
    widget_id, _ = rfq.item_ids

    with pytest.raises(InvalidInputError, match="does not price"):
        await award_item(db, rfq.id, widget_id, lines_a["Gadget"])
    with pytest.raises(NotFoundError):
        await award_item(db, rfq.id, widget_id, uuid.uuid4())


@pytest.mark.asyncio
async def test_award_item_from_another_rfq(db, world, make_rfq):
    rfq, lines_a, _ = await _closed_rfq_split_between_suppliers(db, world, make_rfq)
    other = await make_rfq([GADGET], status=RfqStatus.CLOSED)

    with pytest.raises(InvalidInputError, match="does not belong"):
        await award_item(db, other.id, rfq.item_ids[0], lines_a["Widget"])


@pytest.mark.asyncio
async def test_award_item_after_whole_quote_award_rejected(db, world, make_rfq):
    rfq, lines_a, _ = await _closed_rfq_split_between_suppliers(db, world, make_rfq)
    quote_a_id = (
        await db.execute(
            select(Quote.id).where(Quote.rfq_id == rfq.id, Quote.supplier_id == world.supplier_a)
        )
    ).scalar_one()
    await award_quote(db, rfq.id, quote_a_id)

    with pytest.raises(InvalidStateError, match="whole-quote"):
        await award_item(db, rfq.id, rfq.item_ids[0], lines_a["Widget"])
