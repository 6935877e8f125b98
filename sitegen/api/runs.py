import logging
import time
import uuid
from typing import Any, AsyncGenerator, Callable, Coroutine, Literal

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from sitegen.api.deps import RunRegistry, get_registry, get_services
from sitegen.events import NDJSON_HEADERS, SSE_HEADERS, EventBus, ndjson_format, sse_format
from sitegen.workflow import RunRequest, Services, run_generation


logger = logging.getLogger("sitegen.api.runs")


router = APIRouter(prefix="/api", tags=["runs"])

StreamFormat = Literal["sse", "ndjson"]

# replaces a stored payload once its run has started
STARTED_MARKER = "started"


def make_run_id() -> str:
    return f"run_{int(time.time()*1000)}_{uuid.uuid4().hex[:8]}"


def stream_run(
    run_id: str,
    fmt: StreamFormat,
    registry: RunRegistry,
    work: Callable[[EventBus], Coroutine[Any, Any, Any]],
) -> StreamingResponse:
    """Start `work` as a task and relay its bus as a streamed response.

    A client disconnect cancels the task.
    """
    bus = EventBus(run_id)
    task = registry.start(run_id, bus, work(bus))
    framer = ndjson_format if fmt == "ndjson" else sse_format
    headers = NDJSON_HEADERS if fmt == "ndjson" else SSE_HEADERS

    async def event_generator() -> AsyncGenerator[str, None]:
        try:
            async for event in bus.stream():
                yield framer(event)
        finally:
            if not task.done() and not bus.closed:
                logger.info("run_events[%s] stream closed before the run finished, cancelling", run_id)
                task.cancel()

    return StreamingResponse(event_generator(), headers=headers)


@router.post("/runs")
async def create_run(request: RunRequest, services: Services = Depends(get_services)) -> dict[str, Any]:
    """Accept a run and return its id.

    Clients then connect to GET /api/runs/{run_id}/events, which starts it.
    """
    run_id = make_run_id()
    logger.info(
        "create_run[%s] project=%s model=%s mode=%s prompt_len=%d",
        run_id,
        request.project_id,
        request.model,
        request.mode,
        len(request.prompt),
    )
    await services.store.set_run_payload(run_id, request.model_dump(mode="json"))
    return {"run_id": run_id}


@router.get("/runs/{run_id}/events")
async def run_events(
    run_id: str,
    format: StreamFormat = "sse",
    services: Services = Depends(get_services),
    registry: RunRegistry = Depends(get_registry),
):
    """Start a stored run and stream its progress events.

    A stored run starts at most once: the payload is swapped for a marker
    before streaming, so later requests get 410.
    """
    if not registry.claim(run_id):
        raise HTTPException(status_code=409, detail="Run is already streaming")
    try:
        payload = await services.store.get_run_payload(run_id)
        if payload is None:
            raise HTTPException(status_code=404, detail="Run not found")
        if payload.get(STARTED_MARKER):
            raise HTTPException(status_code=410, detail="Run has already been started")
        try:
            request = RunRequest.model_validate(payload)
        except ValidationError as e:
            logger.error("run_events[%s] stored payload is invalid: %s", run_id, e)
            raise HTTPException(status_code=422, detail="Stored run request is invalid")
        await services.store.set_run_payload(run_id, {STARTED_MARKER: True})
    except BaseException:
        registry.unclaim(run_id)
        raise
    return stream_run(
        run_id, format, registry, lambda bus: run_generation(request, bus, services, run_id=run_id)
    )


@router.delete("/runs/{run_id}")
async def cancel_run(
    run_id: str,
    services: Services = Depends(get_services),
    registry: RunRegistry = Depends(get_registry),
) -> dict[str, Any]:
    cancelled = registry.cancel(run_id)
    try:
        await services.store.delete_run_payload(run_id)
    except Exception as e:
        logger.warning("cancel_run[%s] could not drop stored payload: %s", run_id, e)
    return {"run_id": run_id, "cancelled": cancelled}


@router.post("/generate")
async def generate(
    request: RunRequest,
    format: StreamFormat = "sse",
    services: Services = Depends(get_services),
    registry: RunRegistry = Depends(get_registry),
):
    """Run a generation and stream it in this one response."""
    run_id = make_run_id()
    logger.info("generate[%s] project=%s mode=%s", run_id, request.project_id, request.mode)
    return stream_run(
        run_id, format, registry, lambda bus: run_generation(request, bus, services, run_id=run_id)
    )
