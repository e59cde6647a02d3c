from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from economy_engine.domains.economy.api import get_economy_service
from economy_engine.domains.economy.service import EconomyService
from economy_engine.main import app
from economy_engine.shared.utils.security import create_access_token

BASE = "/api/economy"


def auth(sub: str, is_admin: bool = False, roles=None):
    token = create_access_token({"sub": sub, "is_admin": is_admin, "roles": roles or []})
    return {"Authorization": f"Bearer {token}"}


USER = auth("u1")
ADMIN = auth("admin-1", is_admin=True)
SERVICE = auth("activity-module", roles=["service"])


@pytest.fixture
async def client(service):
    app.dependency_overrides[get_economy_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def test_requires_bearer_token(client):
    response = await client.get(f"{BASE}/wallet/summary")
    assert response.status_code == 401

    response = await client.get(
        f"{BASE}/wallet/summary", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


async def test_grant_requires_service_role(client):
    payload = {"userId": "u1", "actionType": "watchAd"}

    response = await client.post(f"{BASE}/rewards/grant", json=payload, headers=USER)
    assert response.status_code == 403

    response = await client.post(f"{BASE}/rewards/grant", json=payload, headers=SERVICE)
    assert response.status_code == 201
    body = response.json()
    assert body["userId"] == "u1"
    assert body["finalPoints"] == 20
    assert body["source"] == "ads"


async def test_daily_cap_maps_to_429(client):
    payload = {"userId": "u1", "actionType": "dailySpin"}
    await client.post(f"{BASE}/rewards/grant", json=payload, headers=SERVICE)

    response = await client.post(f"{BASE}/rewards/grant", json=payload, headers=SERVICE)

    assert response.status_code == 429
    assert response.json()["error"]["code"] == "daily_limit_exceeded"


async def test_unknown_action_maps_to_404(client):
    response = await client.post(
        f"{BASE}/rewards/grant",
        json={"userId": "u1", "actionType": "mineBitcoin"},
        headers=SERVICE,
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "unknown_action_type"


async def test_wallet_summary_and_history(client):
    await client.post(
        f"{BASE}/rewards/grant", json={"userId": "u1", "actionType": "readNews"}, headers=SERVICE
    )

    summary = (await client.get(f"{BASE}/wallet/summary", headers=USER)).json()
    history = (await client.get(f"{BASE}/wallet/history", headers=USER)).json()

    assert summary["balance"] == 50
    assert summary["bySource"]["news"] == 50
    assert len(history) == 1
    assert history[0]["actionType"] == "readNews"


async def test_check_in(client):
    response = await client.post(f"{BASE}/check-in", headers=USER)

    assert response.status_code == 200
    assert response.json() == {"userId": "u1", "dailyStreak": 1, "extended": True}


async def test_quote(client, make_user):
    await make_user("u1", points=10000, country="IN")

    response = await client.get(f"{BASE}/withdrawals/quote", params={"points": 123457}, headers=USER)

    assert response.status_code == 200
    body = response.json()
    assert body["country"] == "IN"
    assert Decimal(str(body["amountUSD"])) == Decimal("3.09")


async def test_withdrawal_flow(client, make_user, dispatcher):
    await make_user("u1", points=10000)

    response = await client.post(
        f"{BASE}/withdrawals",
        json={"amount": 2500, "method": "paypal", "paypalEmail": "user@example.com"},
        headers=USER,
    )
    assert response.status_code == 201
    withdrawal_id = response.json()["withdrawalId"]

    mine = (await client.get(f"{BASE}/withdrawals", headers=USER)).json()
    assert [w["id"] for w in mine] == [withdrawal_id]
    assert Decimal(str(mine[0]["amountUSD"])) == Decimal("0.25")
    assert mine[0]["method"]["paypalEmail"] == "user@example.com"

    queue = await client.get(
        f"{BASE}/admin/withdrawals", params={"status": "pending"}, headers=ADMIN
    )
    assert [w["id"] for w in queue.json()] == [withdrawal_id]

    approved = await client.post(
        f"{BASE}/admin/withdrawals/{withdrawal_id}/action",
        json={"action": "approve", "adminNote": "ok"},
        headers=ADMIN,
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "processing"
    assert approved.json()["processedBy"] == "admin-1"
    assert dispatcher.dispatched == [withdrawal_id]

    again = await client.post(
        f"{BASE}/admin/withdrawals/{withdrawal_id}/action",
        json={"action": "approve"},
        headers=ADMIN,
    )
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "already_processed"


async def test_insufficient_balance_maps_to_409(client, make_user):
    await make_user("u1", points=2000)

    response = await client.post(
        f"{BASE}/withdrawals",
        json={"amount": 2500, "method": "paypal", "paypalEmail": "user@example.com"},
        headers=USER,
    )

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "insufficient_balance"
    assert "message" in error


async def test_malformed_method_fields_map_to_400(client, make_user):
    await make_user("u1", points=10000)

    response = await client.post(
        f"{BASE}/withdrawals",
        json={"amount": 2500, "method": "bank_transfer", "bankCode": "058"},
        headers=USER,
    )

    assert response.status_code == 400
    assert "accountNumber" in response.json()["error"]["details"]["fields"]


async def test_reject_needs_reason(client, make_user):
    await make_user("u1", points=10000)
    created = await client.post(
        f"{BASE}/withdrawals",
        json={"amount": 2500, "method": "paypal", "paypalEmail": "user@example.com"},
        headers=USER,
    )
    withdrawal_id = created.json()["withdrawalId"]
    url = f"{BASE}/admin/withdrawals/{withdrawal_id}/action"

    missing = await client.post(url, json={"action": "reject"}, headers=ADMIN)
    assert missing.status_code == 400
    assert missing.json()["error"]["code"] == "rejection_reason_required"

    rejected = await client.post(
        url, json={"action": "reject", "rejectionReason": "duplicate account"}, headers=ADMIN
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"

    summary = (await client.get(f"{BASE}/wallet/summary", headers=USER)).json()
    assert summary["balance"] == 10000


async def test_admin_routes_reject_regular_users(client):
    response = await client.get(f"{BASE}/admin/withdrawals", headers=USER)
    assert response.status_code == 403


async def test_unknown_withdrawal_maps_to_404(client):
    response = await client.post(
        f"{BASE}/admin/withdrawals/missing/action", json={"action": "approve"}, headers=ADMIN
    )
    assert response.status_code == 404


async def test_config_read_and_write(client, document):
    current = await client.get(f"{BASE}/admin/config", headers=ADMIN)
    assert current.status_code == 200
    assert current.json()["version"] == 1

    document["globalMargin"] = 0
    invalid = await client.put(f"{BASE}/admin/config", json=document, headers=ADMIN)
    assert invalid.status_code == 400
    assert invalid.json()["error"]["code"] == "invalid_config"

    document["globalMargin"] = 0.8
    written = await client.put(f"{BASE}/admin/config", json=document, headers=ADMIN)
    assert written.status_code == 200
    body = written.json()
    assert body["version"] == 2
    assert body["createdBy"] == "admin-1"
    assert body["config"]["globalMargin"] == 0.8


async def test_profile_sync(client, load_user):
    response = await client.put(
        f"{BASE}/profiles/u9",
        json={"country": "ke", "emailVerified": True},
        headers=SERVICE,
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "userId": "u9", "country": "KE"}
    assert (await load_user("u9")).email_verified is True


async def test_missing_config_maps_to_503(
    session_factory, empty_store, dispatcher, clock, test_settings
):
    service = EconomyService(
        session_factory=session_factory,
        config_store=empty_store,
        dispatcher=dispatcher,
        clock=clock,
        app_settings=test_settings,
    )
    app.dependency_overrides[get_economy_service] = lambda: service
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post(
                f"{BASE}/rewards/grant",
                json={"userId": "u1", "actionType": "watchAd"},
                headers=SERVICE,
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "config_unavailable"
