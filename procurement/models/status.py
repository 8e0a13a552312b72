"""Closed status enums and their transition tables."""

import enum

from procurement.errors import InvalidStateError


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    BUYER = "BUYER"
    STORE = "STORE"
    SUPPLIER = "SUPPLIER"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class RfqType(str, enum.Enum):
    AUCTION = "AUCTION"
    FIXED_PRICE = "FIXED_PRICE"
    NORMAL = "NORMAL"


class RfqStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"
    AWARDED = "AWARDED"
    CANCELLED = "CANCELLED"


class RfqItemStatus(str, enum.Enum):
    PENDING = "PENDING"
    QUOTED = "QUOTED"
    AWARDED = "AWARDED"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    CANCELLED = "CANCELLED"


class QuoteStatus(str, enum.Enum):
    SUBMITTED = "SUBMITTED"
    AWARDED = "AWARDED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class AwardStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    CANCELLED = "CANCELLED"


class NotificationType(str, enum.Enum):
    QUOTE_SUBMITTED = "QUOTE_SUBMITTED"
    QUOTE_AWARDED = "QUOTE_AWARDED"
    RFQ_PUBLISHED = "RFQ_PUBLISHED"
    AWARD_OUT_OF_STOCK = "AWARD_OUT_OF_STOCK"
    AWARD_CANCELLED = "AWARD_CANCELLED"
    RFQ_UNQUOTED_ITEMS = "RFQ_UNQUOTED_ITEMS"


# Valid transitions: from_status -> allowed to_statuses
RFQ_TRANSITIONS: dict[RfqStatus, frozenset[RfqStatus]] = {
    RfqStatus.DRAFT: frozenset({RfqStatus.PUBLISHED, RfqStatus.CANCELLED}),
    RfqStatus.PUBLISHED: frozenset(
        {RfqStatus.CLOSED, RfqStatus.AWARDED, RfqStatus.CANCELLED}
    ),
    RfqStatus.CLOSED: frozenset({RfqStatus.AWARDED, RfqStatus.CANCELLED}),
    RfqStatus.AWARDED: frozenset(),
    RfqStatus.CANCELLED: frozenset(),
}

RFQ_ITEM_TRANSITIONS: dict[RfqItemStatus, frozenset[RfqItemStatus]] = {
    RfqItemStatus.PENDING: frozenset(
        {
            RfqItemStatus.QUOTED,
            RfqItemStatus.AWARDED,
            RfqItemStatus.OUT_OF_STOCK,
            RfqItemStatus.CANCELLED,
        }
    ),
    RfqItemStatus.QUOTED: frozenset(
        {RfqItemStatus.AWARDED, RfqItemStatus.OUT_OF_STOCK, RfqItemStatus.CANCELLED}
    ),
    RfqItemStatus.AWARDED: frozenset(
        {RfqItemStatus.OUT_OF_STOCK, RfqItemStatus.CANCELLED}
    ),
    RfqItemStatus.OUT_OF_STOCK: frozenset({RfqItemStatus.CANCELLED}),
    RfqItemStatus.CANCELLED: frozenset(),
}

QUOTE_TRANSITIONS: dict[QuoteStatus, frozenset[QuoteStatus]] = {
    QuoteStatus.SUBMITTED: frozenset(
        {
            QuoteStatus.SUBMITTED,
            QuoteStatus.AWARDED,
            QuoteStatus.REJECTED,
            QuoteStatus.WITHDRAWN,
        }
    ),
    QuoteStatus.AWARDED: frozenset(
        {QuoteStatus.SUBMITTED, QuoteStatus.AWARDED, QuoteStatus.REJECTED}
    ),
    QuoteStatus.REJECTED: frozenset({QuoteStatus.SUBMITTED, QuoteStatus.AWARDED}),
    QuoteStatus.WITHDRAWN: frozenset({QuoteStatus.SUBMITTED}),
}

AWARD_TRANSITIONS: dict[AwardStatus, frozenset[AwardStatus]] = {
    AwardStatus.ACTIVE: frozenset({AwardStatus.OUT_OF_STOCK, AwardStatus.CANCELLED}),
    # A fresh win on the same RFQ reopens an award whose items all ran out
    AwardStatus.OUT_OF_STOCK: frozenset({AwardStatus.ACTIVE, AwardStatus.CANCELLED}),
    AwardStatus.CANCELLED: frozenset(),
}

# No further quoting or awarding applies to an item in one of these
TERMINAL_ITEM_STATUSES: frozenset[RfqItemStatus] = frozenset(
    {RfqItemStatus.AWARDED, RfqItemStatus.CANCELLED, RfqItemStatus.OUT_OF_STOCK}
)

# RFQ statuses that no longer accept new or revised quotes
QUOTE_CLOSED_RFQ_STATUSES: frozenset[RfqStatus] = frozenset(
    {RfqStatus.CLOSED, RfqStatus.AWARDED, RfqStatus.CANCELLED}
)


def can_transition(table: dict, current, target) -> bool:
    return target in table.get(current, frozenset())


def ensure_transition(table: dict, current, target, entity: str) -> None:
    """Raise InvalidStateError when ``current -> target`` is not in ``table``."""
    if not can_transition(table, current, target):
        raise InvalidStateError(
            f"{entity} cannot move from {current.value} to {target.value}"
        )
