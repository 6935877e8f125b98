import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator

from pydantic import BaseModel, Field


logger = logging.getLogger("sitegen.events")


SSE_HEADERS: dict[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

NDJSON_HEADERS: dict[str, str] = {
    **SSE_HEADERS,
    "Content-Type": "application/x-ndjson",
}


class EventType(str, Enum):
    STATUS = "status"
    TOOL = "tool"
    FILES = "files"
    STREAM = "stream"
    AUTOFIX = "autofix"
    FRAMEWORK = "framework"
    SANDBOX = "sandbox"
    ERROR = "error"
    COMPLETE = "complete"


TERMINAL_EVENTS = frozenset({EventType.ERROR, EventType.COMPLETE})


class ProgressEvent(BaseModel):
    type: EventType
    message: str | None = None
    data: Any = None
    run_id: str | None = None
    timestamp: str = Field(
        default_factory=lambda: time.strftime("%Y-%m-%dT%H:%M:%S+00:00", time.gmtime())
    )

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def sse_format(event: ProgressEvent) -> str:
    return f"data: {json.dumps(event.to_wire())}\n\n"


def ndjson_format(event: ProgressEvent) -> str:
    return json.dumps(event.to_wire()) + "\n"


class EventBus:
    """Ordered progress stream for one run.

    The bus is Open until the first `complete` or `error` event, which is
    delivered and then closes it. Emits after that are silently dropped.
    """

    def __init__(self, run_id: str | None = None):
        self.run_id = run_id
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._closed = False
        self.history: list[ProgressEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.debug("dropping %s event on closed bus run=%s", event.type.value, self.run_id)
            return
        if self.run_id and event.run_id is None:
            event = event.model_copy(update={"run_id": self.run_id})
        self.history.append(event)
        self._queue.put_nowait(event)
        if event.is_terminal:
            self.close()

    def status(self, message: str) -> None:
        self.emit(ProgressEvent(type=EventType.STATUS, message=message))

    def send(self, event_type: EventType, data: Any = None, message: str | None = None) -> None:
        self.emit(ProgressEvent(type=event_type, data=data, message=message))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
