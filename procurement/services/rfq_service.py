"""RFQ lifecycle: create (DRAFT), publish, close, item price edits, re-quoting
out-of-stock awards and the deadline sweep run by the internal job."""

from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

from fastapi import BackgroundTasks
from sqlalchemy import select, update, func
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
from procurement.models.quote import Quote, QuoteItem
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import (
    RFQ_TRANSITIONS,
    AwardStatus,
    NotificationType,
    QuoteStatus,
    RfqItemStatus,
    RfqStatus,
    UserRole,
    ensure_transition,
)
from procurement.models.user import Store, User
from procurement.schemas.rfq import RfqCreate, RfqItemPriceUpdate
from procurement.services.audit_service import record_audit_event
from procurement.services.award_service import award_items, get_award
from procurement.services.notification_service import active_user_ids, notify_users

logger = structlog.get_logger()

RFQ_PREFIX = "RFQ"

# Numbers taken by a concurrent insert are retried with the next one
RFQ_NO_ATTEMPTS = 3

REQUOTE_DEADLINE_DAYS = 7

# Item prices can still be edited while the RFQ is in one of these
PRICE_EDITABLE_STATUSES = (RfqStatus.DRAFT, RfqStatus.PUBLISHED)

RFQ_ITEM_FIELDS = (
    "product_name",
    "quantity",
    "unit",
    "description",
    "max_price_cents",
    "instant_price_cents",
)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


async def generate_rfq_no(session: AsyncSession, offset: int = 0) -> str:
    result = await session.execute(select(func.count(Rfq.id)))
    count = (result.scalar() or 0) + 1 + offset
    return f"{RFQ_PREFIX}-{count:06d}"


async def get_rfq(session: AsyncSession, rfq_id) -> Rfq:
    result = await session.execute(
        select(Rfq)
        .where(Rfq.id == parse_uuid(rfq_id, "rfq_id"))
        .execution_options(populate_existing=True)
    )
    rfq = result.scalar_one_or_none()
    if rfq is None:
        raise NotFoundError("RFQ not found")
    return rfq


async def load_rfq_items(session: AsyncSession, rfq_id: uuid.UUID) -> list[RfqItem]:
    result = await session.execute(
        select(RfqItem)
        .where(RfqItem.rfq_id == rfq_id)
        .order_by(RfqItem.created_at, RfqItem.product_name)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _resolve_store_id(
    session: AsyncSession, current_user: dict, requested: Optional[str]
) -> Optional[uuid.UUID]:
    store_id = parse_uuid(requested, "store_id") if requested else None

    if current_user["role"] == UserRole.STORE.value:
        own_store = current_user.get("store_id")
        if not own_store:
            raise InvalidInputError("Store user is not linked to a store")
        own_uuid = parse_uuid(own_store, "store_id")
        if store_id is not None and store_id != own_uuid:
            raise PermissionDeniedError("Store users can only create RFQs for their own store")
        store_id = own_uuid

    if store_id is not None:
        exists = (
            await session.execute(select(Store.id).where(Store.id == store_id))
        ).scalar_one_or_none()
        if exists is None:
            raise NotFoundError("Store not found")
    return store_id


async def _insert_rfq(
    session: AsyncSession, fields: dict, items: list[dict]
) -> tuple[uuid.UUID, str]:
    """Insert an RFQ and its PENDING items under the next free number and commit."""
    for attempt in range(RFQ_NO_ATTEMPTS):
        try:
            rfq = Rfq(rfq_no=await generate_rfq_no(session, offset=attempt), **fields)
            session.add(rfq)
            await session.flush()
            for item in items:
                session.add(
                    RfqItem(rfq_id=rfq.id, item_status=RfqItemStatus.PENDING, **item)
                )
            rfq_id = rfq.id
            rfq_no = rfq.rfq_no
            await session.commit()
            return rfq_id, rfq_no
        except IntegrityError as exc:
            await session.rollback()
            logger.warning("rfq_create_conflict", attempt=attempt + 1, error=str(exc))
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("rfq_create_failed", error=str(exc))
            raise InternalError(details={"error": str(exc)})
    raise InvalidInputError("RFQ could not be created, please retry")


async def create_rfq(session: AsyncSession, current_user: dict, body: RfqCreate) -> Rfq:
    deadline = _to_naive_utc(body.deadline)
    if deadline <= datetime.utcnow():
        raise InvalidInputError("Deadline must be in the future")

    store_id = await _resolve_store_id(session, current_user, body.store_id)
    buyer_id = parse_uuid(current_user["user_id"], "user_id")

    rfq_id, rfq_no = await _insert_rfq(
        session,
        {
            "title": body.title,
            "description": body.description,
            "type": body.type,
            "status": RfqStatus.DRAFT,
            "deadline": deadline,
            "buyer_id": buyer_id,
            "store_id": store_id,
        },
        [item.model_dump() for item in body.items],
    )

    logger.info("rfq_created", rfq_id=str(rfq_id), rfq_no=rfq_no, items=len(body.items))
    await record_audit_event(
        session, buyer_id, "rfq.create", "Rfq", rfq_id, {"rfq_no": rfq_no}
    )
    return await get_rfq(session, rfq_id)


async def _notify_rfq_published(
    session: AsyncSession,
    rfq_uuid: uuid.UUID,
    rfq_no: str,
    title: str,
    item_count: int,
    deadline: datetime,
    background_tasks: Optional[BackgroundTasks],
) -> None:
    try:
        recipients = await active_user_ids(session, UserRole.SUPPLIER, UserRole.ADMIN)
    except Exception as exc:
        await session.rollback()
        logger.warning("rfq_publish_notification_failed", rfq_id=str(rfq_uuid), error=str(exc))
        return
    if recipients:
        await notify_users(
            session,
            recipients,
            NotificationType.RFQ_PUBLISHED,
            title=f"New RFQ: {title}",
            content=(
                f"RFQ {rfq_no} ({item_count} item(s)) is open for quotes until "
                f"{deadline:%Y-%m-%d %H:%M} UTC"
            ),
            link=f"/rfqs/{rfq_uuid}",
            background_tasks=background_tasks,
        )


async def publish_rfq(
    session: AsyncSession,
    rfq_id,
    actor_id=None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Rfq:
    rfq = await get_rfq(session, rfq_id)
    ensure_transition(RFQ_TRANSITIONS, rfq.status, RfqStatus.PUBLISHED, "RFQ")

    items = await load_rfq_items(session, rfq.id)
    if not items:
        raise InvalidStateError("RFQ has no items to publish")
    missing = [item.product_name for item in items if item.max_price_cents is None]
    if missing:
        raise InvalidInputError(
            f"Every item needs a maximum price before publishing: {', '.join(missing)}"
        )

    rfq_uuid = rfq.id
    rfq_no = rfq.rfq_no
    title = rfq.title
    deadline = rfq.deadline
    rfq.status = RfqStatus.PUBLISHED
    await session.commit()

    logger.info("rfq_published", rfq_id=str(rfq_uuid), rfq_no=rfq_no)
    await record_audit_event(session, actor_id, "rfq.publish", "Rfq", rfq_uuid)
    await _notify_rfq_published(
        session, rfq_uuid, rfq_no, title, len(items), deadline, background_tasks
    )
    return await get_rfq(session, rfq_uuid)


async def unquoted_items(session: AsyncSession, rfq_id: uuid.UUID) -> list[RfqItem]:
    """Items no live quote has a line for."""
    quoted = (
        select(QuoteItem.id)
        .join(Quote, Quote.id == QuoteItem.quote_id)
        .where(
            QuoteItem.rfq_item_id == RfqItem.id,
            Quote.status.notin_([QuoteStatus.REJECTED, QuoteStatus.WITHDRAWN]),
        )
        .exists()
    )
    result = await session.execute(
        select(RfqItem)
        .where(RfqItem.rfq_id == rfq_id, ~quoted)
        .order_by(RfqItem.created_at, RfqItem.product_name)
    )
    return list(result.scalars().all())


def _describe_item(item: RfqItem) -> str:
    unit = f" {item.unit}" if item.unit else ""
    return f"{item.product_name} x {item.quantity}{unit}"


async def notify_unquoted_items(
    session: AsyncSession,
    rfq_id: uuid.UUID,
    background_tasks: Optional[BackgroundTasks] = None,
) -> int:
    """Tell the buyer which items of a closed RFQ got no quote.

    An RFQ raised by an admin goes to every active buyer instead. Best
    effort: returns the number of notifications written.
    """
    try:
        row = (
            await session.execute(
                select(Rfq.rfq_no, Rfq.buyer_id, User.role)
                .join(User, User.id == Rfq.buyer_id)
                .where(Rfq.id == rfq_id)
            )
        ).first()
        if row is None:
            return 0
        items = await unquoted_items(session, rfq_id)
        if not items:
            return 0
        recipients = [row.buyer_id]
        if row.role == UserRole.ADMIN:
            recipients = await active_user_ids(session, UserRole.BUYER) or recipients
        names = ", ".join(_describe_item(item) for item in items)
    except Exception as exc:
        await session.rollback()
        logger.warning("rfq_unquoted_notification_failed", rfq_id=str(rfq_id), error=str(exc))
        return 0

    logger.info("rfq_unquoted_items", rfq_id=str(rfq_id), items=len(items))
    return await notify_users(
        session,
        recipients,
        NotificationType.RFQ_UNQUOTED_ITEMS,
        title=f"Unquoted items on RFQ {row.rfq_no}",
        content=f"RFQ {row.rfq_no} closed with {len(items)} item(s) nobody quoted: {names}",
        link=f"/rfqs/{rfq_id}",
        background_tasks=background_tasks,
    )


async def close_rfq(
    session: AsyncSession,
    rfq_id,
    actor_id=None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Rfq:
    rfq = await get_rfq(session, rfq_id)
    ensure_transition(RFQ_TRANSITIONS, rfq.status, RfqStatus.CLOSED, "RFQ")
    rfq_uuid = rfq.id
    rfq.status = RfqStatus.CLOSED
    rfq.closed_at = datetime.utcnow()
    await session.commit()

    logger.info("rfq_closed", rfq_id=str(rfq_uuid))
    await record_audit_event(session, actor_id, "rfq.close", "Rfq", rfq_uuid)
    await notify_unquoted_items(session, rfq_uuid, background_tasks)
    return await get_rfq(session, rfq_uuid)


async def update_item_prices(
    session: AsyncSession, item_id, body: RfqItemPriceUpdate, actor_id=None
) -> RfqItem:
    """Set the max and/or instant price of an item on a DRAFT or PUBLISHED RFQ."""
    if body.max_price_cents is None and body.instant_price_cents is None:
        raise InvalidInputError("Provide max_price_cents and/or instant_price_cents")

    item_uuid = parse_uuid(item_id, "item_id")
    item = (
        await session.execute(
            select(RfqItem)
            .where(RfqItem.id == item_uuid)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if item is None:
        raise NotFoundError("RFQ item not found")

    rfq_status = (
        await session.execute(select(Rfq.status).where(Rfq.id == item.rfq_id))
    ).scalar_one()
    if rfq_status not in PRICE_EDITABLE_STATUSES:
        raise InvalidStateError(
            f"Item prices cannot change once the RFQ is {rfq_status.value}"
        )

    max_price = (
        body.max_price_cents if body.max_price_cents is not None else item.max_price_cents
    )
    instant_price = (
        body.instant_price_cents
        if body.instant_price_cents is not None
        else item.instant_price_cents
    )
    if max_price is not None and instant_price is not None and instant_price > max_price:
        raise InvalidInputError("Instant price cannot exceed the maximum price")

    before = {
        "max_price_cents": item.max_price_cents,
        "instant_price_cents": item.instant_price_cents,
    }
    item.max_price_cents = max_price
    item.instant_price_cents = instant_price
    await session.commit()

    logger.info(
        "rfq_item_prices_updated",
        rfq_item_id=str(item_uuid),
        max_price_cents=max_price,
        instant_price_cents=instant_price,
    )
    await record_audit_event(
        session,
        actor_id,
        "rfq_item.update_prices",
        "RfqItem",
        item_uuid,
        {
            "before": before,
            "after": {"max_price_cents": max_price, "instant_price_cents": instant_price},
        },
    )
    return (
        await session.execute(
            select(RfqItem)
            .where(RfqItem.id == item_uuid)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()


async def recreate_rfq_from_out_of_stock(
    session: AsyncSession,
    award_id,
    current_user: dict,
    deadline: Optional[datetime] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> Rfq:
    """Publish a new RFQ for the items a supplier could not deliver."""
    award = await get_award(session, award_id)
    if award.status != AwardStatus.OUT_OF_STOCK:
        raise InvalidStateError(
            f"Only OUT_OF_STOCK awards can be re-quoted (current status: {award.status.value})"
        )
    items = [
        item
        for item in await award_items(session, award)
        if item.item_status == RfqItemStatus.OUT_OF_STOCK
    ]
    if not items:
        raise InvalidStateError("Award has no out-of-stock items to re-quote")

    now = datetime.utcnow()
    if deadline is None:
        deadline = now + timedelta(days=REQUOTE_DEADLINE_DAYS)
    else:
        deadline = _to_naive_utc(deadline)
        if deadline <= now:
            raise InvalidInputError("Deadline must be in the future")

    original = await get_rfq(session, award.rfq_id)
    award_uuid = award.id
    original_uuid = original.id
    title = f"Re-quote: {original.title}"[:300]
    buyer_id = parse_uuid(current_user["user_id"], "user_id")

    rfq_id, rfq_no = await _insert_rfq(
        session,
        {
            "title": title,
            "description": f"Out-of-stock items from {original.rfq_no}",
            "type": original.type,
            "status": RfqStatus.PUBLISHED,
            "deadline": deadline,
            "buyer_id": buyer_id,
            "store_id": original.store_id,
        },
        [{field: getattr(item, field) for field in RFQ_ITEM_FIELDS} for item in items],
    )

    logger.info(
        "rfq_recreated",
        rfq_id=str(rfq_id),
        rfq_no=rfq_no,
        original_rfq_id=str(original_uuid),
        award_id=str(award_uuid),
        items=len(items),
    )
    await record_audit_event(
        session,
        buyer_id,
        "rfq.recreate",
        "Rfq",
        rfq_id,
        {
            "rfq_no": rfq_no,
            "original_rfq_id": str(original_uuid),
            "original_award_id": str(award_uuid),
        },
    )
    await _notify_rfq_published(
        session, rfq_id, rfq_no, title, len(items), deadline, background_tasks
    )
    return await get_rfq(session, rfq_id)


async def close_expired_rfqs(session: AsyncSession, now: Optional[datetime] = None) -> int:
    """Close every PUBLISHED RFQ whose deadline has passed. Returns the count."""
    now = now or datetime.utcnow()
    expired = (
        await session.execute(
            select(Rfq.id).where(Rfq.status == RfqStatus.PUBLISHED, Rfq.deadline <= now)
        )
    ).scalars().all()

    closed = 0
    for rfq_id in expired:
        result = await session.execute(
            update(Rfq)
            .where(Rfq.id == rfq_id, Rfq.status == RfqStatus.PUBLISHED)
            .values(status=RfqStatus.CLOSED, closed_at=now)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        if result.rowcount != 1:
            continue
        closed += 1
        await notify_unquoted_items(session, rfq_id)

    logger.info("expired_rfqs_closed", count=closed)
    return closed
