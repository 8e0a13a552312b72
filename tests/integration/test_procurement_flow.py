"""
End-to-end HTTP flow: create RFQ → publish → quote → award → out of stock,
plus per-item awards, cancellation and re-quoting.

Drives the FastAPI app through httpx with the session dependency pointed at
an in-memory SQLite database.
"""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from procurement.models.status import RfqStatus

WIDGET = {"product_name": "Widget", "quantity": 2, "unit": "pcs",
          "max_price_cents": 15_000, "instant_price_cents": 10_000}
GADGET = {"product_name": "Gadget", "quantity": 10, "unit": "pcs", "max_price_cents": 3_000}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_and_publish(client: AsyncClient, headers_for, world, items) -> dict:
    created = await client.post(
        "/api/v1/rfqs",
        json={
            "title": "Weekly restock",
            "deadline": (datetime.utcnow() + timedelta(days=2)).isoformat(),
            "store_id": str(world.store),
            "items": items,
        },
        headers=headers_for("buyer"),
    )
    assert created.status_code == 201, created.text
    rfq = created.json()
    assert rfq["status"] == "DRAFT"

    published = await client.patch(
        f"/api/v1/rfqs/{rfq['id']}/publish", headers=headers_for("buyer")
    )
    assert published.status_code == 200, published.text
    assert published.json()["status"] == "PUBLISHED"
    return published.json()


def _items_by_name(rfq: dict) -> dict:
    return {item["product_name"]: item["id"] for item in rfq["items"]}


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_instant_price_flow(client: AsyncClient, headers_for, world):
    rfq = await _create_and_publish(client, headers_for, world, [WIDGET])
    widget_id = _items_by_name(rfq)["Widget"]

    response = await client.post(
        "/api/v1/quotes",
        json={
            "rfq_id": rfq["id"],
            "price_cents": 18_000,
            "delivery_days": 3,
            "items": [{"rfq_item_id": widget_id, "price_cents": 9_000}],
        },
        headers=headers_for("supplier_a"),
    )
    assert response.status_code == 201, response.text
    quote = response.json()
    assert quote["status"] == "AWARDED"
    assert quote["items"][0]["item_status"] == "AWARDED"

    awards = await client.get("/api/v1/awards", headers=headers_for("supplier_a"))
    assert awards.status_code == 200
    [award] = awards.json()["data"]
    assert award["final_price_cents"] == 18_000
    assert award["quote_id"] == quote["id"]

    detail = await client.get(f"/api/v1/rfqs/{rfq['id']}", headers=headers_for("buyer"))
    assert detail.json()["status"] == "AWARDED"

    # Supplier B sees no awards of its own
    other = await client.get("/api/v1/awards", headers=headers_for("supplier_b"))
    assert other.json()["data"] == []
    forbidden = await client.get(f"/api/v1/awards/{award['id']}", headers=headers_for("supplier_b"))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_manual_award_flow(client: AsyncClient, headers_for, world):
    rfq = await _create_and_publish(client, headers_for, world, [GADGET])
    gadget_id = _items_by_name(rfq)["Gadget"]

    quotes = {}
    for who, price in (("supplier_a", 2_500), ("supplier_b", 2_400)):
        response = await client.post(
            "/api/v1/quotes",
            json={
                "rfq_id": rfq["id"],
                "price_cents": price * 10,
                "items": [{"rfq_item_id": gadget_id, "price_cents": price}],
            },
            headers=headers_for(who),
        )
        assert response.status_code == 201, response.text
        quotes[who] = response.json()

    # Awarding needs a CLOSED RFQ
    early = await client.patch(
        f"/api/v1/quotes/{rfq['id']}/award/{quotes['supplier_b']['id']}",
        headers=headers_for("buyer"),
    )
    assert early.status_code == 400
    assert early.json()["error"]["code"] == "INVALID_STATE"

    closed = await client.patch(f"/api/v1/rfqs/{rfq['id']}/close", headers=headers_for("buyer"))
    assert closed.json()["status"] == "CLOSED"

    late_quote = await client.post(
        "/api/v1/quotes",
        json={"rfq_id": rfq["id"], "price_cents": 100},
        headers=headers_for("supplier_a"),
    )
    assert late_quote.status_code == 400
    assert late_quote.json()["error"]["code"] == "INVALID_STATE"

    as_supplier = await client.patch(
        f"/api/v1/quotes/{rfq['id']}/award/{quotes['supplier_b']['id']}",
        headers=headers_for("supplier_b"),
    )
    assert as_supplier.status_code == 403

    awarded = await client.patch(
        f"/api/v1/quotes/{rfq['id']}/award/{quotes['supplier_b']['id']}",
        json={"reason": "Lowest price"},
        headers=headers_for("buyer"),
    )
    assert awarded.status_code == 200, awarded.text
    award = awarded.json()
    assert award["final_price_cents"] == 24_000
    assert award["reason"] == "Lowest price"

    listed = await client.get(
        f"/api/v1/quotes?rfq_id={rfq['id']}", headers=headers_for("buyer")
    )
    statuses = {q["supplier_id"]: q["status"] for q in listed.json()["data"]}
    assert statuses == {
        str(world.supplier_a): "REJECTED",
        str(world.supplier_b): "AWARDED",
    }

    flagged = await client.post(
        f"/api/v1/awards/{award['id']}/out-of-stock",
        json={"reason": "Factory recall"},
        headers=headers_for("supplier_b"),
    )
    assert flagged.status_code == 200, flagged.text
    assert flagged.json()["status"] == "OUT_OF_STOCK"


@pytest.mark.asyncio
async def test_per_item_award_cancel_and_requote_flow(client: AsyncClient, headers_for, world):
    rfq = await _create_and_publish(client, headers_for, world, [GADGET])
    gadget_id = _items_by_name(rfq)["Gadget"]
    quoted = await client.post(
        "/api/v1/quotes",
        json={
            "rfq_id": rfq["id"],
            "price_cents": 25_000,
            "items": [{"rfq_item_id": gadget_id, "price_cents": 2_500}],
        },
        headers=headers_for("supplier_a"),
    )
    line_id = quoted.json()["items"][0]["id"]
    await client.patch(f"/api/v1/rfqs/{rfq['id']}/close", headers=headers_for("buyer"))

    awarded = await client.patch(
        f"/api/v1/quotes/{rfq['id']}/award-item",
        json={"rfq_item_id": gadget_id, "quote_item_id": line_id},
        headers=headers_for("buyer"),
    )
    assert awarded.status_code == 200, awarded.text
    award = awarded.json()
    assert award["final_price_cents"] == 25_000

    flagged = await client.post(
        f"/api/v1/awards/{award['id']}/out-of-stock",
        json={"reason": "Factory recall"},
        headers=headers_for("supplier_a"),
    )
    assert flagged.json()["status"] == "OUT_OF_STOCK"

    as_supplier = await client.post(
        f"/api/v1/awards/{award['id']}/recreate-rfq", headers=headers_for("supplier_a")
    )
    assert as_supplier.status_code == 403

    requoted = await client.post(
        f"/api/v1/awards/{award['id']}/recreate-rfq", headers=headers_for("buyer")
    )
    assert requoted.status_code == 201, requoted.text
    new_rfq = requoted.json()
    assert new_rfq["status"] == "PUBLISHED"
    assert [item["product_name"] for item in new_rfq["items"]] == ["Gadget"]

    cancelled = await client.post(
        f"/api/v1/awards/{award['id']}/cancel",
        json={"reason": "Re-quoted"},
        headers=headers_for("buyer"),
    )
    assert cancelled.status_code == 200, cancelled.text
    assert cancelled.json()["status"] == "CANCELLED"
    assert cancelled.json()["cancellation_reason"] == "Re-quoted"

    missing_reason = await client.post(
        f"/api/v1/awards/{award['id']}/cancel", json={}, headers=headers_for("buyer")
    )
    assert missing_reason.status_code == 422


@pytest.mark.asyncio
async def test_quote_over_ceiling_rejected(client: AsyncClient, headers_for, world):
    rfq = await _create_and_publish(client, headers_for, world, [WIDGET])
    widget_id = _items_by_name(rfq)["Widget"]

    response = await client.post(
        "/api/v1/quotes",
        json={
            "rfq_id": rfq["id"],
            "price_cents": 40_000,
            "items": [{"rfq_item_id": widget_id, "price_cents": 20_000}],
        },
        headers=headers_for("supplier_a"),
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_INPUT"
    assert "Widget" in error["message"]

    listed = await client.get("/api/v1/quotes", headers=headers_for("supplier_a"))
    assert listed.json()["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_update_item_prices_route(client: AsyncClient, headers_for, world):
    rfq = await _create_and_publish(client, headers_for, world, [GADGET])
    gadget_id = _items_by_name(rfq)["Gadget"]

    response = await client.patch(
        f"/api/v1/rfqs/items/{gadget_id}/prices",
        json={"instant_price_cents": 2_000},
        headers=headers_for("store"),
    )

    assert response.status_code == 200, response.text
    assert response.json()["instant_price_cents"] == 2_000

    denied = await client.patch(
        f"/api/v1/rfqs/items/{gadget_id}/prices",
        json={"instant_price_cents": 1_000},
        headers=headers_for("supplier_a"),
    )
    assert denied.status_code == 403


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rfq_visibility_by_role(client: AsyncClient, headers_for, make_rfq):
    draft = await make_rfq([GADGET], status=RfqStatus.DRAFT)
    published = await make_rfq([GADGET])

    hidden = await client.get(f"/api/v1/rfqs/{draft.id}", headers=headers_for("supplier_a"))
    assert hidden.status_code == 404

    listed = await client.get("/api/v1/rfqs", headers=headers_for("supplier_a"))
    assert [r["id"] for r in listed.json()["data"]] == [str(published.id)]

    other_store = await client.get(
        f"/api/v1/rfqs/{published.id}", headers=headers_for("other_store")
    )
    assert other_store.status_code == 403

    own_store = await client.get("/api/v1/rfqs?status=DRAFT", headers=headers_for("store"))
    assert [r["id"] for r in own_store.json()["data"]] == [str(draft.id)]


# ---------------------------------------------------------------------------
# Notifications and audit log
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_notification_inbox(client: AsyncClient, headers_for, world):
    rfq = await _create_and_publish(client, headers_for, world, [GADGET])
    await client.post(
        "/api/v1/quotes",
        json={"rfq_id": rfq["id"], "price_cents": 25_000},
        headers=headers_for("supplier_a"),
    )

    inbox = await client.get("/api/v1/notifications", headers=headers_for("buyer"))
    assert inbox.status_code == 200
    [note] = inbox.json()
    assert note["type"] == "QUOTE_SUBMITTED"
    assert note["is_read"] is False

    read = await client.patch(
        f"/api/v1/notifications/{note['id']}/read", headers=headers_for("buyer")
    )
    assert read.json()["is_read"] is True

    # The supplier got the RFQ_PUBLISHED notification
    supplier_inbox = await client.get(
        "/api/v1/notifications?is_read=false", headers=headers_for("supplier_a")
    )
    assert [n["type"] for n in supplier_inbox.json()] == ["RFQ_PUBLISHED"]

    cleared = await client.patch("/api/v1/notifications/read-all", headers=headers_for("supplier_a"))
    assert cleared.json() == {"updated": 1}
    empty = await client.get(
        "/api/v1/notifications?is_read=false", headers=headers_for("supplier_a")
    )
    assert empty.json() == []


@pytest.mark.asyncio
async def test_audit_log_listing_admin_only(client: AsyncClient, headers_for, world):
    rfq = await _create_and_publish(client, headers_for, world, [GADGET])

    response = await client.get(
        f"/api/v1/audit-logs?entity_type=Rfq&entity_id={rfq['id']}",
        headers=headers_for("admin"),
    )
    assert response.status_code == 200
    actions = sorted(entry["action"] for entry in response.json()["data"])
    assert actions == ["rfq.create", "rfq.publish"]

    denied = await client.get("/api/v1/audit-logs", headers=headers_for("buyer"))
    assert denied.status_code == 403
