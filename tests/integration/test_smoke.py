import uuid
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from procurement.models.status import RfqStatus, UserRole
from procurement.models.user import User
from procurement.services.auth_service import hash_password

PASSWORD = "Procure123!"


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"]["db"] == "ok"
    assert "version" in data
    assert response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"


@pytest.mark.asyncio
async def test_login_flow(client: AsyncClient, session_factory, world):
    async with session_factory() as session:
        session.add(User(
            username="login.buyer",
            email="login.buyer@example.com",
            password_hash=hash_password(PASSWORD),
            role=UserRole.BUYER,
        ))
        await session.commit()

    response = await client.post(
        "/auth/login", json={"username": "login.buyer", "password": PASSWORD}
    )
    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert "refresh_token" in data

    me_response = await client.get(
        "/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"}
    )
    assert me_response.status_code == 200
    me_data = me_response.json()
    assert me_data["username"] == "login.buyer"
    assert me_data["role"] == "BUYER"

    refreshed = await client.post(
        "/auth/refresh", json={"refresh_token": data["refresh_token"]}
    )
    assert refreshed.status_code == 200
    assert refreshed.json()["access_token"]


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, world):
    response = await client.post(
        "/auth/login", json={"username": "buyer", "password": "wrong"}
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_refresh_with_access_token_rejected(client: AsyncClient, headers_for):
    access = headers_for("buyer")["Authorization"].split(" ", 1)[1]
    response = await client.post("/auth/refresh", json={"refresh_token": access})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_REFRESH_INVALID"


@pytest.mark.asyncio
async def test_missing_token(client: AsyncClient):
    response = await client.get("/api/v1/rfqs")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_TOKEN_MISSING"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_invalid_token(client: AsyncClient):
    response = await client.get(
        "/api/v1/rfqs", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_role_guard_uses_error_envelope(client: AsyncClient, headers_for, make_rfq):
    rfq = await make_rfq([{"product_name": "Gadget", "quantity": 1, "max_price_cents": 100}])
    response = await client.post(
        "/api/v1/quotes",
        json={"rfq_id": str(rfq.id), "price_cents": 100},
        headers=headers_for("buyer"),
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"


@pytest.mark.asyncio
async def test_validation_error_envelope(client: AsyncClient, headers_for, world):
    response = await client.post(
        "/api/v1/quotes", json={"rfq_id": str(uuid.uuid4())}, headers=headers_for("supplier_a")
    )
    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert any("price_cents" in d["loc"] for d in error["details"])


@pytest.mark.asyncio
async def test_domain_error_envelope(client: AsyncClient, headers_for, world):
    response = await client.post(
        "/api/v1/quotes",
        json={"rfq_id": str(uuid.uuid4()), "price_cents": 100},
        headers=headers_for("supplier_a"),
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


# ---------------------------------------------------------------------------
# Internal jobs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_close_expired_job_requires_secret(client: AsyncClient, world):
    response = await client.post("/internal/jobs/close-expired-rfqs")
    assert response.status_code == 403

    response = await client.post(
        "/internal/jobs/close-expired-rfqs", headers={"X-Internal-Secret": "wrong"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_close_expired_job(client: AsyncClient, make_rfq, headers_for):
    rfq = await make_rfq(
        [{"product_name": "Gadget", "quantity": 1, "max_price_cents": 100}],
        deadline=datetime.utcnow() - timedelta(minutes=5),
    )

    response = await client.post(
        "/internal/jobs/close-expired-rfqs", headers={"X-Internal-Secret": "test-job-secret"}
    )
    assert response.status_code == 200
    assert response.json() == {"job": "close-expired-rfqs", "closed": 1}

    detail = await client.get(f"/api/v1/rfqs/{rfq.id}", headers=headers_for("buyer"))
    assert detail.json()["status"] == RfqStatus.CLOSED.value
