# secretchat/services/scheduler.py

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, Tuple

logger = logging.getLogger(__name__)

TaskKey = Tuple[Hashable, ...]


class TaskScheduler:
    """
    Keyed, cancellable delayed callbacks on the running event loop.

    Used for the deferred message-status updates, the host's initial message
    and idle-room reaping. Keys are tuples such as ("reap", room_id) or
    ("status", room_id, message_id, "read").

    Scheduling a key that is already pending cancels the previous task,
    so re-arming a timer never stacks a second one.
    """

    def __init__(self) -> None:
        self._tasks: Dict[TaskKey, asyncio.Task] = {}

    def schedule(
        self,
        key: TaskKey,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> asyncio.Task:
        self.cancel(key)
        task = asyncio.create_task(self._run(key, delay, callback))
        self._tasks[key] = task
        return task

    async def _run(
        self,
        key: TaskKey,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            await asyncio.sleep(delay)
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled task %s failed", key)
        finally:
            if self._tasks.get(key) is asyncio.current_task():
                del self._tasks[key]

    def cancel(self, key: TaskKey) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_prefix(self, prefix: TaskKey) -> int:
        """Cancel every pending task whose key starts with `prefix`."""
        keys = [key for key in self._tasks if key[: len(prefix)] == prefix]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def __contains__(self, key: TaskKey) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def count_prefix(self, prefix: TaskKey) -> int:
        return sum(1 for key in self._tasks if key[: len(prefix)] == prefix)

    async def shutdown(self) -> None:
        """Cancel everything still pending (process shutdown)."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped, cancelled %d pending task(s)", len(tasks))
