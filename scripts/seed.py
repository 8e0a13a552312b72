"""
Seed script: creates one store and a user per role, plus a sample DRAFT RFQ.
Run from the project root: python -m scripts.seed
"""
import asyncio
import sys
import os
import uuid
from datetime import datetime, timedelta

# Ensure the project root is on sys.path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from procurement.database import AsyncSessionLocal, engine
from procurement.models.rfq import Rfq, RfqItem
from procurement.models.status import RfqStatus, UserRole
from procurement.models.user import Store, User
from procurement.services.auth_service import hash_password

# ---------- Fixed UUIDs ----------

STORE_CENTRAL_ID = uuid.UUID("50000000-0000-0000-0000-000000000001")

USER_ADMIN_ID = uuid.UUID("a0000000-0000-0000-0000-000000000001")
USER_BUYER_ID = uuid.UUID("a0000000-0000-0000-0000-000000000002")
USER_STORE_ID = uuid.UUID("a0000000-0000-0000-0000-000000000003")
USER_SUPPLIER_A_ID = uuid.UUID("a0000000-0000-0000-0000-000000000004")
USER_SUPPLIER_B_ID = uuid.UUID("a0000000-0000-0000-0000-000000000005")

RFQ_SAMPLE_ID = uuid.UUID("f0000000-0000-0000-0000-000000000001")

DEFAULT_PASSWORD = "Procure123!"


async def seed():
    async with AsyncSessionLocal() as db:
        result = await db.execute(select(Store).where(Store.id == STORE_CENTRAL_ID))
        if result.scalar_one_or_none():
            print("Seed data already exists. Skipping.")
            return

        hashed_pw = hash_password(DEFAULT_PASSWORD)

        db.add(Store(id=STORE_CENTRAL_ID, name="Central Store", code="CENTRAL"))
        await db.flush()

        db.add_all([
            User(id=USER_ADMIN_ID, username="admin", email="admin@example.com",
                 password_hash=hashed_pw, role=UserRole.ADMIN),
            User(id=USER_BUYER_ID, username="buyer", email="buyer@example.com",
                 password_hash=hashed_pw, role=UserRole.BUYER),
            User(id=USER_STORE_ID, username="central.store", email="store@example.com",
                 password_hash=hashed_pw, role=UserRole.STORE, store_id=STORE_CENTRAL_ID),
            User(id=USER_SUPPLIER_A_ID, username="supplier.alpha", email="alpha@example.com",
                 password_hash=hashed_pw, role=UserRole.SUPPLIER),
            User(id=USER_SUPPLIER_B_ID, username="supplier.beta", email="beta@example.com",
                 password_hash=hashed_pw, role=UserRole.SUPPLIER),
        ])
        await db.flush()

        db.add(Rfq(
            id=RFQ_SAMPLE_ID,
            rfq_no="RFQ-000001",
            title="Weekly restock",
            status=RfqStatus.DRAFT,
            deadline=datetime.utcnow() + timedelta(days=7),
            buyer_id=USER_BUYER_ID,
            store_id=STORE_CENTRAL_ID,
        ))
        await db.flush()
        db.add_all([
            RfqItem(rfq_id=RFQ_SAMPLE_ID, product_name="Widget", quantity=2, unit="pcs",
                    max_price_cents=100_00, instant_price_cents=90_00),
            RfqItem(rfq_id=RFQ_SAMPLE_ID, product_name="Gadget", quantity=10, unit="pcs",
                    max_price_cents=25_00),
        ])

        await db.commit()
        print("Seeded: 1 store, 5 users, 1 draft RFQ")
        print(f"All users share the password: {DEFAULT_PASSWORD}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
