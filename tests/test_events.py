from datetime import datetime

import pytest

from economy_engine.core.event_bus import event_bus
from economy_engine.domains.economy import events
from economy_engine.domains.economy import service as service_module


@pytest.fixture
def wired(service, monkeypatch):
    monkeypatch.setattr(service_module, "economy_service", service)
    events.register_event_handlers()
    received = []

    async def collect(event_data):
        received.append(event_data)

    event_bus.subscribe("economy:points_granted", collect)
    yield received
    event_bus.unsubscribe("economy:points_granted", collect)
    event_bus.unsubscribe("economy:action_completed", events.handle_action_completed)
    event_bus.unsubscribe("user:profile_updated", events.handle_profile_updated)


async def test_registration_is_idempotent(wired):
    events.register_event_handlers()
    assert event_bus.subscriptions["economy:action_completed"].count(
        events.handle_action_completed
    ) == 1


async def test_action_completed_grants_points(wired, load_user):
    await event_bus.publish(
        "economy:action_completed", {"user_id": "u1", "action_type": "readNews"}
    )

    state = await load_user("u1")
    assert state.total_points == 50
    assert len(wired) == 1
    assert wired[0]["event"] == "economy:points_granted"
    assert wired[0]["user_id"] == "u1"
    assert wired[0]["final_points"] == 50


async def test_capped_action_is_not_an_error(wired, load_user):
    for _ in range(2):
        await event_bus.publish(
            "economy:action_completed", {"user_id": "u1", "action_type": "dailySpin"}
        )

    assert (await load_user("u1")).total_points == 50
    assert len(wired) == 1


async def test_profile_update_syncs_risk_inputs(wired, load_user):
    await event_bus.publish(
        "user:profile_updated",
        {
            "user_id": "u2",
            "country": "ng",
            "email_verified": True,
            "phone_verified": False,
            "device_id": "device-1",
            "ip_address": "10.0.0.1",
            "account_created_at": datetime(2026, 1, 1),
        },
    )

    state = await load_user("u2")
    assert state.country == "NG"
    assert state.email_verified is True
    assert state.phone_verified is False
    assert state.device_id == "device-1"
    assert state.account_created_at == datetime(2026, 1, 1)
