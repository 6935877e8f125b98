import asyncio
import logging
from functools import lru_cache
from typing import Coroutine

from sitegen.config import get_settings
from sitegen.events import EventBus, EventType
from sitegen.sandbox.manager import SandboxManager
from sitegen.store import RuntimeCacheStore
from sitegen.workflow import CANCELLED_MESSAGE, Services


logger = logging.getLogger("sitegen.api")


class RunRegistry:
    """In-flight run tasks of this process, keyed by run id."""

    def __init__(self) -> None:
        self._runs: dict[str, tuple[asyncio.Task, EventBus]] = {}
        self._claimed: set[str] = set()

    def is_active(self, run_id: str) -> bool:
        return run_id in self._runs

    def claim(self, run_id: str) -> bool:
        """Reserve `run_id` for one stream. False while it is being started or is running."""
        if run_id in self._claimed or run_id in self._runs:
            return False
        self._claimed.add(run_id)
        return True

    def unclaim(self, run_id: str) -> None:
        self._claimed.discard(run_id)

    def start(self, run_id: str, bus: EventBus, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._runs[run_id] = (task, bus)
        self._claimed.discard(run_id)

        def _finish(done: asyncio.Task) -> None:
            self._runs.pop(run_id, None)
            # a task cancelled before it started never reached its own handler
            if not bus.closed:
                if done.cancelled():
                    bus.send(EventType.ERROR, message=CANCELLED_MESSAGE)
                else:
                    bus.send(EventType.ERROR, message="Run ended unexpectedly")

        task.add_done_callback(_finish)
        return task

    def cancel(self, run_id: str) -> bool:
        entry = self._runs.get(run_id)
        if entry is None:
            return False
        task, _ = entry
        if task.done():
            return False
        logger.info("run[%s] cancel requested", run_id)
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = [task for task, _ in self._runs.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._runs.clear()


@lru_cache(maxsize=1)
def get_services() -> Services:
    settings = get_settings()
    return Services(
        store=RuntimeCacheStore(),
        manager=SandboxManager(settings=settings),
        settings=settings,
    )


@lru_cache(maxsize=1)
def get_registry() -> RunRegistry:
    return RunRegistry()
