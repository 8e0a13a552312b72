import os
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

# Settings are read once at import time, so the test environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["INTERNAL_JOB_SECRET"] = "test-job-secret"
os.environ.pop("CHAT_WEBHOOK_URL", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from procurement.database import Base, get_db
from procurement.main import app
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import RfqItemStatus, RfqStatus, UserRole, UserStatus
from procurement.models.user import Store, User
from procurement.services.auth_service import create_access_token


@pytest_asyncio.fixture
async def engine():
    # One shared in-memory database per test
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def world(session_factory):
    """Seed one store per side plus a user for every role; returns their ids."""
    ids = SimpleNamespace(
        store=uuid.uuid4(),
        other_store=uuid.uuid4(),
        admin=uuid.uuid4(),
        buyer=uuid.uuid4(),
        store_user=uuid.uuid4(),
        other_store_user=uuid.uuid4(),
        supplier_a=uuid.uuid4(),
        supplier_b=uuid.uuid4(),
        inactive_admin=uuid.uuid4(),
    )
    async with session_factory() as session:
        session.add_all([
            Store(id=ids.store, name="Central Store", code="CENTRAL"),
            Store(id=ids.other_store, name="Harbour Store", code="HARBOUR"),
        ])
        await session.flush()
        session.add_all([
            User(id=ids.admin, username="admin", role=UserRole.ADMIN),
            User(id=ids.buyer, username="buyer", role=UserRole.BUYER),
            User(id=ids.store_user, username="central.store", role=UserRole.STORE,
                 store_id=ids.store),
            User(id=ids.other_store_user, username="harbour.store", role=UserRole.STORE,
                 store_id=ids.other_store),
            User(id=ids.supplier_a, username="supplier.alpha", role=UserRole.SUPPLIER),
            User(id=ids.supplier_b, username="supplier.beta", role=UserRole.SUPPLIER),
            User(id=ids.inactive_admin, username="old.admin", role=UserRole.ADMIN,
                 status=UserStatus.INACTIVE),
        ])
        await session.commit()
    return ids


@pytest.fixture
def make_rfq(session_factory, world):
    """Factory: insert an RFQ with items, returning its id and item ids in order."""

    async def _make(
        items,
        status: RfqStatus = RfqStatus.PUBLISHED,
        store_id=None,
        deadline=None,
        title: str = "Weekly restock",
        rfq_no=None,
    ):
        async with session_factory() as session:
            rfq = Rfq(
                rfq_no=rfq_no or f"RFQ-{uuid.uuid4().hex[:8].upper()}",
                title=title,
                status=status,
                deadline=deadline or datetime.utcnow() + timedelta(days=3),
                buyer_id=world.buyer,
                store_id=store_id or world.store,
            )
            session.add(rfq)
            await session.flush()
            item_ids = []
            for spec in items:
                item = RfqItem(rfq_id=rfq.id, item_status=RfqItemStatus.PENDING, **spec)
                session.add(item)
                await session.flush()
                item_ids.append(item.id)
            rfq_id = rfq.id
            await session.commit()
        return SimpleNamespace(id=rfq_id, item_ids=item_ids)

    return _make


@pytest.fixture
def headers_for(world):
    """Build a Bearer header for one of the seeded users."""
    users = {
        "admin": (world.admin, UserRole.ADMIN, None),
        "buyer": (world.buyer, UserRole.BUYER, None),
        "store": (world.store_user, UserRole.STORE, world.store),
        "other_store": (world.other_store_user, UserRole.STORE, world.other_store),
        "supplier_a": (world.supplier_a, UserRole.SUPPLIER, None),
        "supplier_b": (world.supplier_b, UserRole.SUPPLIER, None),
    }

    def _headers(who: str) -> dict:
        user_id, role, store_id = users[who]
        token = create_access_token(
            user_id=str(user_id),
            role=role.value,
            username=who,
            store_id=str(store_id) if store_id else None,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture
async def client(session_factory):
    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
