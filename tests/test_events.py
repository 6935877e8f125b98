import json

from sitegen.events import (
    NDJSON_HEADERS,
    SSE_HEADERS,
    EventBus,
    EventType,
    ProgressEvent,
    ndjson_format,
    sse_format,
)


async def collect(bus: EventBus) -> list[ProgressEvent]:
    return [event async for event in bus.stream()]


async def test_bus_closes_on_first_terminal_event():
    bus = EventBus(run_id="run_1")
    bus.status("Initializing...")
    bus.send(EventType.FILES, data=["app/page.tsx"])
    bus.send(EventType.COMPLETE, data={"url": "https://x"})
    bus.send(EventType.ERROR, message="late failure")
    bus.status("after close")

    events = await collect(bus)
    assert [e.type for e in events] == [EventType.STATUS, EventType.FILES, EventType.COMPLETE]
    assert all(e.run_id == "run_1" for e in events)
    assert bus.closed


async def test_error_is_terminal_too():
    bus = EventBus()
    bus.send(EventType.ERROR, message="Could not start the environment")
    bus.send(EventType.COMPLETE)
    events = await collect(bus)
    assert len(events) == 1 and events[0].type == EventType.ERROR
    assert bus.history == events


async def test_close_without_terminal_ends_stream():
    bus = EventBus()
    bus.status("one")
    bus.close()
    bus.close()
    bus.status("dropped")
    assert [e.message for e in await collect(bus)] == ["one"]


def test_wire_formats():
    event = ProgressEvent(type=EventType.TOOL, message="Running: ls", run_id="r")
    sse = sse_format(event)
    assert sse.startswith("data: ") and sse.endswith("\n\n")
    payload = json.loads(sse[len("data: ") :])
    assert payload["type"] == "tool"
    assert "data" not in payload

    line = ndjson_format(event)
    assert line.endswith("\n") and line.count("\n") == 1
    assert json.loads(line)["message"] == "Running: ls"


def test_stream_headers_disable_caching():
    for headers in (SSE_HEADERS, NDJSON_HEADERS):
        assert headers["Cache-Control"] == "no-cache"
        assert headers["X-Accel-Buffering"] == "no"
    assert NDJSON_HEADERS["Content-Type"] == "application/x-ndjson"
