# secretchat/services/room_reaper.py

from __future__ import annotations

import logging

from secretchat.services.room_registry import RoomRegistry
from secretchat.services.scheduler import TaskScheduler

logger = logging.getLogger(__name__)


class IdleRoomReaper:
    """
    Deletes a room a fixed delay after its last participant leaves.

    This is the only way rooms are ever removed. On expiry the participant
    count is re-checked under the room lock, so a participant who rejoined
    during the grace window keeps the room alive. Re-arming the timer for a
    room replaces the pending one.
    """

    def __init__(self, registry: RoomRegistry, scheduler: TaskScheduler, delay: float = 300.0) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.delay = delay

    @staticmethod
    def _key(room_id: str):
        return ("reap", room_id)

    def schedule_reap(self, room_id: str) -> None:
        self.scheduler.schedule(self._key(room_id), self.delay, lambda: self._reap(room_id))
        logger.info("Room %s is empty, reaping in %ss unless someone rejoins", room_id, self.delay)

    def cancel(self, room_id: str) -> bool:
        return self.scheduler.cancel(self._key(room_id))

    def pending(self, room_id: str) -> bool:
        return self._key(room_id) in self.scheduler

    def pending_count(self) -> int:
        return self.scheduler.count_prefix(("reap",))

    async def _reap(self, room_id: str) -> None:
        room = self.registry.find_room(room_id)
        if room is None:
            return

        async with room.lock:
            if room.participants:
                logger.info("Room %s regained participants, not reaping", room_id)
                return
            self.registry.delete_room(room_id)

        # Timers still pointing at the deleted room have nothing left to update
        self.scheduler.cancel_prefix(("status", room_id))
        self.scheduler.cancel_prefix(("initial-message", room_id))
        logger.info("Room %s deleted due to inactivity", room_id)
