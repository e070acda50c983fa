# secretchat/core/state.py
from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import Request

from secretchat.core.config import Settings
from secretchat.services.connection_manager import ConnectionManager
from secretchat.services.message_broker import MessageBroker
from secretchat.services.room_reaper import IdleRoomReaper
from secretchat.services.room_registry import RoomRegistry
from secretchat.services.scheduler import TaskScheduler

logger = logging.getLogger(__name__)


class RelayState:
    """
    Process-scoped relay state.

    Built once per application by create_app() and stored on
    `app.state.relay`. Handlers get it through the get_relay() dependency
    instead of importing module-level singletons.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.started_at: datetime = datetime.now(timezone.utc)

        self.registry = RoomRegistry(default_name=settings.DEFAULT_ROOM_NAME)
        self.scheduler = TaskScheduler()
        self.connections = ConnectionManager()
        self.reaper = IdleRoomReaper(self.registry, self.scheduler, delay=settings.ROOM_REAP_DELAY_SECONDS)
        self.broker = MessageBroker(
            registry=self.registry,
            connections=self.connections,
            scheduler=self.scheduler,
            reaper=self.reaper,
            settings=settings,
        )

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.connections.close_all()
        logger.info("Relay state torn down (%d rooms dropped)", len(self.registry))


def get_relay(request: Request) -> RelayState:
    return request.app.state.relay
