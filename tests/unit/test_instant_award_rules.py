"""
Unit tests for the pure parts of the instant-price award path.

Tests: qualifies_for_instant_award, AwardedLine.subtotal_cents,
       award_note.
"""

from typing import Optional
from unittest.mock import MagicMock

import pytest

from procurement.models.status import RfqItemStatus
from procurement.services.award_service import AwardedLine, award_note
from procurement.services.instant_award_service import qualifies_for_instant_award


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_item(
    instant_price_cents: Optional[int] = 10_000,
    item_status: RfqItemStatus = RfqItemStatus.QUOTED,
):
    item = MagicMock()
    item.instant_price_cents = instant_price_cents
    item.item_status = item_status
    return item


# ---------------------------------------------------------------------------
# qualifies_for_instant_award
# ---------------------------------------------------------------------------


def test_price_equal_to_instant_price_qualifies():
    assert qualifies_for_instant_award(10_000, _make_item(10_000)) is True


def test_price_below_instant_price_qualifies():
    assert qualifies_for_instant_award(9_000, _make_item(10_000)) is True


def test_one_cent_above_instant_price_does_not_qualify():
    assert qualifies_for_instant_award(10_001, _make_item(10_000)) is False


def test_item_without_instant_price_never_qualifies():
    assert qualifies_for_instant_award(1, _make_item(None)) is False


@pytest.mark.parametrize(
    "status",
    [RfqItemStatus.AWARDED, RfqItemStatus.CANCELLED, RfqItemStatus.OUT_OF_STOCK],
)
def test_terminal_items_never_qualify(status):
    assert qualifies_for_instant_award(1, _make_item(10_000, status)) is False


def test_pending_item_qualifies():
    assert qualifies_for_instant_award(5_000, _make_item(10_000, RfqItemStatus.PENDING))


# ---------------------------------------------------------------------------
# AwardedLine / award_note
# ---------------------------------------------------------------------------


def test_subtotal_is_price_times_quantity():
    line = AwardedLine("Widget", price_cents=9_000, quantity=2, instant_price_cents=10_000)
    assert line.subtotal_cents == 18_000


def test_note_shows_quoted_and_instant_price():
    line = AwardedLine("Widget", price_cents=9_000, quantity=2, instant_price_cents=10_000)
    assert award_note(line) == (
        "Instant-price award: Widget (quoted 90.00 <= instant 100.00)"
    )


def test_note_without_instant_price_is_a_manual_award():
    line = AwardedLine("Widget", price_cents=9_000, quantity=1, instant_price_cents=None)
    assert award_note(line) == "Manual award: Widget (quoted 90.00)"


def test_note_above_instant_price_is_a_manual_award():
    line = AwardedLine("Widget", price_cents=12_000, quantity=1, instant_price_cents=10_000)
    assert award_note(line) == "Manual award: Widget (quoted 120.00)"
