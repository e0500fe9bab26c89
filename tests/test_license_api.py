"""HTTP tests for the store-facing endpoints: reserve, release, sync, status."""
from __future__ import annotations

import json
import time

from sqlalchemy import select

from licensegate.db.models import Event

KEY_HASH = "a1" * 32


# -----------------------------------------------------------------------------
# reserve
# -----------------------------------------------------------------------------

async def test_reserve_allowed(client, db_session, solo_store, sign):
    body, headers = sign(solo_store, {"license_key_hash": KEY_HASH, "product_id": 42})

    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["allowed"] is True
    assert data["data"] == {"count": 1, "limit": 500, "remaining": 499, "plan": "solo"}
    [event] = (await db_session.execute(select(Event))).scalars().all()
    assert event.product_id == "42"
    assert event.ip_address == "127.0.0.1"


async def test_reserve_records_forwarded_address(client, db_session, solo_store, sign):
    body, headers = sign(solo_store, {"license_key_hash": KEY_HASH, "product_id": "42"})
    headers["X-Forwarded-For"] = "198.51.100.23, 10.0.0.1"

    await client.post("/api/v1/license/reserve", content=body, headers=headers)

    [event] = (await db_session.execute(select(Event))).scalars().all()
    assert event.ip_address == "198.51.100.23"


async def test_reserve_invalid_first_forwarded_entry_uses_peer(client, db_session, solo_store, sign):
    body, headers = sign(solo_store, {"license_key_hash": KEY_HASH, "product_id": "42"})
    headers["X-Forwarded-For"] = "not-an-ip, 198.51.100.23, 10.0.0.1"

    await client.post("/api/v1/license/reserve", content=body, headers=headers)

    [event] = (await db_session.execute(select(Event))).scalars().all()
    assert event.ip_address == "127.0.0.1"


async def test_reserve_at_limit_forbidden(client, make_store, sign):
    store = await make_store(count=500, limit=500)
    body, headers = sign(store, {"license_key_hash": KEY_HASH, "product_id": "42"})

    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)

    assert response.status_code == 403
    data = response.json()
    assert data["success"] is False
    assert data["allowed"] is False
    assert data["error"] == "license_limit_reached"
    assert data["data"]["remaining"] == 0
    assert data["data"]["count"] == 500
    assert data["data"]["upgrade_url"]


async def test_reserve_disconnected_forbidden(client, make_store, sign):
    store = await make_store(connected=False)
    body, headers = sign(store, {"license_key_hash": KEY_HASH, "product_id": "42"})

    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)

    assert response.status_code == 403
    assert response.json()["error"] == "store_disconnected"
    assert response.json()["data"]["upgrade_url"] is None


async def test_reserve_unknown_store_not_found(client, db_session, solo_store, sign):
    body = json.dumps({"store_token": "f" * 64, "license_key_hash": KEY_HASH, "product_id": "1"}).encode()
    _, headers = sign(solo_store, {})

    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)

    assert response.status_code == 404
    assert response.json()["error"] == "store_not_found"


async def test_missing_signature_headers(client, solo_store):
    body = json.dumps({"store_token": solo_store.token, "license_key_hash": KEY_HASH}).encode()

    response = await client.post(
        "/api/v1/license/reserve",
        content=body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 401
    assert response.json() == {
        "success": False,
        "error": "missing_auth_headers",
        "message": "Missing required authentication headers.",
    }


async def test_stale_timestamp_rejected(client, solo_store, sign):
    body, headers = sign(
        solo_store,
        {"license_key_hash": KEY_HASH, "product_id": "1"},
        timestamp=int(time.time()) - 301,
    )

    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)

    assert response.status_code == 401
    assert response.json()["error"] == "timestamp_expired"


async def test_wrong_key_rejected(client, solo_store, sign):
    body, headers = sign(solo_store, {"license_key_hash": KEY_HASH}, signing_key="0" * 64)

    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_signature"


async def test_tampered_body_rejected(client, db_session, solo_store, sign):
    body, headers = sign(solo_store, {"license_key_hash": KEY_HASH, "product_id": "1"})
    tampered = body.replace(b'"1"', b'"2"')

    response = await client.post("/api/v1/license/reserve", content=tampered, headers=headers)

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_signature"
    assert (await db_session.execute(select(Event))).scalars().all() == []


async def test_error_payload_never_contains_signing_material(client, solo_store, sign):
    body, headers = sign(solo_store, {"license_key_hash": KEY_HASH}, signing_key="0" * 64)
    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)
    assert solo_store.credentials.signing_key not in response.text


async def test_missing_store_token_in_body(client, solo_store, sign):
    body = json.dumps({"license_key_hash": KEY_HASH}).encode()
    _, headers = sign(solo_store, {})

    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == "missing_store_token"


async def test_missing_license_key_hash_is_validation_error(client, solo_store, sign):
    body, headers = sign(solo_store, {"product_id": "1"})
    response = await client.post("/api/v1/license/reserve", content=body, headers=headers)
    assert response.status_code == 422


# -----------------------------------------------------------------------------
# release
# -----------------------------------------------------------------------------

async def test_release(client, make_store, sign):
    store = await make_store(count=4)
    body, headers = sign(store, {"license_key_hash": KEY_HASH})

    response = await client.post("/api/v1/license/release", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "data": {"count": 3, "limit": 500, "remaining": 497},
    }


async def test_release_at_zero_succeeds(client, solo_store, sign):
    body, headers = sign(solo_store, {"license_key_hash": KEY_HASH})

    response = await client.post("/api/v1/license/release", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["count"] == 0


async def test_reserve_then_release_round_trip(client, make_store, sign):
    store = await make_store(count=10)
    body, headers = sign(store, {"license_key_hash": KEY_HASH, "product_id": "1"})
    await client.post("/api/v1/license/reserve", content=body, headers=headers)

    body, headers = sign(store, {"license_key_hash": KEY_HASH})
    response = await client.post("/api/v1/license/release", content=body, headers=headers)

    assert response.json()["data"]["count"] == 10


# -----------------------------------------------------------------------------
# sync
# -----------------------------------------------------------------------------

async def test_sync_is_server_authoritative(client, db_session, make_store, sign):
    store = await make_store(count=8)
    body, headers = sign(store, {"reported_count": 11})

    response = await client.post("/api/v1/sync", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["data"] == {
        "server_count": 8,
        "reported_count": 11,
        "difference": 3,
        "action": "server_authoritative",
        "limit": 500,
    }
    await db_session.refresh(store.store)
    assert store.store.license_count == 8


async def test_sync_rejects_negative_count(client, solo_store, sign):
    body, headers = sign(solo_store, {"reported_count": -1})
    response = await client.post("/api/v1/sync", content=body, headers=headers)
    assert response.status_code == 422


# -----------------------------------------------------------------------------
# status
# -----------------------------------------------------------------------------

async def test_status(client, make_store):
    store = await make_store(count=250)

    response = await client.get("/api/v1/status", params={"store_token": store.token})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "data": {
            "connected": True,
            "plan": "solo",
            "count": 250,
            "limit": 500,
            "remaining": 250,
            "usage_percent": 50.0,
            "is_unlimited": False,
            "upgrade_available": True,
            "next_plan": "studio",
        },
    }


async def test_status_unlimited(client, make_store):
    store = await make_store(plan="agency", limit=None, count=9000)

    data = (await client.get("/api/v1/status", params={"store_token": store.token})).json()["data"]

    assert data["usage_percent"] == 0
    assert data["is_unlimited"] is True
    assert data["limit"] is None
    assert data["remaining"] is None


async def test_status_requires_token(client):
    response = await client.get("/api/v1/status")
    assert response.status_code == 400
    assert response.json()["error"] == "missing_store_token"


async def test_status_unknown_store(client, db_session):
    response = await client.get("/api/v1/status", params={"store_token": "f" * 64})
    assert response.status_code == 404
    assert response.json()["error"] == "store_not_found"


async def test_status_needs_no_signature(client, solo_store):
    response = await client.get("/api/v1/status", params={"store_token": solo_store.token})
    assert response.status_code == 200


# -----------------------------------------------------------------------------
# rate limiting
# -----------------------------------------------------------------------------

async def test_sixty_first_request_rate_limited(client, solo_store):
    for _ in range(60):
        response = await client.get("/api/v1/status", params={"store_token": solo_store.token})
        assert response.status_code == 200

    response = await client.get("/api/v1/status", params={"store_token": solo_store.token})

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "60"
    assert response.json()["error"] == "rate_limited"
    assert response.json()["retry_after"] == 60


async def test_rate_limit_is_per_store(client, make_store):
    busy = await make_store("BUSY-KEY", license_id=1)
    quiet = await make_store("QUIET-KEY", license_id=2)
    for _ in range(60):
        await client.get("/api/v1/status", params={"store_token": busy.token})

    assert (await client.get("/api/v1/status", params={"store_token": busy.token})).status_code == 429
    assert (await client.get("/api/v1/status", params={"store_token": quiet.token})).status_code == 200


async def test_signed_and_status_calls_share_budget(client, solo_store, sign, monkeypatch):
    from licensegate.config import settings
    monkeypatch.setattr(settings, "rate_limit_requests", 2)

    body, headers = sign(solo_store, {"reported_count": 0})
    assert (await client.post("/api/v1/sync", content=body, headers=headers)).status_code == 200
    assert (await client.get("/api/v1/status", params={"store_token": solo_store.token})).status_code == 200

    body, headers = sign(solo_store, {"reported_count": 0})
    assert (await client.post("/api/v1/sync", content=body, headers=headers)).status_code == 429
