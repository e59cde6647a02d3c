from economy_engine.core import event_bus
from economy_engine.domains.economy.errors import EconomyError
from economy_engine.shared.schemas.events import (ActionCompleted,
                                                  UserProfileUpdated)
from economy_engine.shared.utils.logger import get_logger

from . import service

logger = get_logger(__name__)


async def handle_action_completed(event_data: dict):
    event = ActionCompleted(**event_data)
    try:
        await service.economy_service.grant(event.user_id, event.action_type)
    except EconomyError as e:
        # Capped or unknown actions are expected outcomes, not handler failures
        logger.info(f"No points for {event.user_id}/{event.action_type}: {e.code}")


async def handle_profile_updated(event_data: dict):
    event = UserProfileUpdated(**event_data)
    await service.economy_service.sync_profile(
        event.user_id, event.model_dump(exclude={"event", "user_id"})
    )


def register_event_handlers():
    event_bus.event_bus.subscribe("economy:action_completed", handle_action_completed)
    event_bus.event_bus.subscribe("user:profile_updated", handle_profile_updated)
