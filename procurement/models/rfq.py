import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    DateTime,
    Enum,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base
from procurement.models.status import RfqItemStatus, RfqStatus, RfqType


class Rfq(Base):
    __tablename__ = "rfqs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    rfq_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[RfqType] = mapped_column(
        Enum(RfqType, native_enum=False, length=20), default=RfqType.NORMAL
    )
    status: Mapped[RfqStatus] = mapped_column(
        Enum(RfqStatus, native_enum=False, length=20), default=RfqStatus.DRAFT
    )
    deadline: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    store_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("stores.id")
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_rfqs_status", "status"),
        Index("idx_rfqs_store", "store_id"),
        Index("idx_rfqs_deadline", "deadline"),
    )


class RfqItem(Base):
    __tablename__ = "rfq_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    rfq_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rfqs.id", ondelete="CASCADE"),
        nullable=False,
    )
    product_name: Mapped[str] = mapped_column(String(300), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    description: Mapped[Optional[str]] = mapped_column(Text)
    max_price_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    instant_price_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    item_status: Mapped[RfqItemStatus] = mapped_column(
        Enum(RfqItemStatus, native_enum=False, length=20),
        default=RfqItemStatus.PENDING,
    )
    # The quote line that won this item; no FK because quote_items references rfq_items
    awarded_quote_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    exception_reason: Mapped[Optional[str]] = mapped_column(Text)
    exception_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_rfq_item_qty"),
        CheckConstraint(
            "max_price_cents IS NULL OR max_price_cents > 0",
            name="chk_rfq_item_max_price",
        ),
        CheckConstraint(
            "instant_price_cents IS NULL OR instant_price_cents > 0",
            name="chk_rfq_item_instant_price",
        ),
        Index("idx_rfq_items_rfq", "rfq_id"),
    )
