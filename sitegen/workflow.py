import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Literal

from pydantic import BaseModel, ConfigDict, Field

from sitegen.agent.context import AgentState
from sitegen.agent.gateway import ModelGateway, OpenAIGateway
from sitegen.agent.loop import AgentLoop
from sitegen.agent.summary import ensure_summary, generate_title_and_response
from sitegen.agent.validation import ClassificationPolicy, Validator, validate_and_fix
from sitegen.config import Settings
from sitegen.errors import SandboxProvisioningError, SetupError, SitegenError
from sitegen.events import EventBus, EventType
from sitegen.frameworks import DEFAULT_FRAMEWORK, Framework, detect_framework, parse_framework
from sitegen.models import DEFAULT_TIER, get_model_configs, parse_tier, resolve_model
from sitegen.prompts import FIX_REQUEST_PROMPT, framework_prompt
from sitegen.sandbox.backend import SandboxHandle
from sitegen.sandbox.manager import SandboxManager
from sitegen.sandbox.utils import ensure_dev_server_running, get_sandbox_url
from sitegen.store import Message, RunArtifact, Store


logger = logging.getLogger("sitegen.workflow")

UNEXPECTED_ERROR_MESSAGE = "Something went wrong while generating your app."
CANCELLED_MESSAGE = "Run cancelled"


class RunRequest(BaseModel):
    """A generation request. Immutable once accepted."""

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    model: str = "auto"
    framework: str | None = None
    mode: Literal["fast", "safe"] = "fast"


@dataclass
class Services:
    """Collaborators shared by every run in the process.

    The gateway is built on first use so a missing credential surfaces as a
    setup error inside the run instead of at startup.
    """

    store: Store
    manager: SandboxManager
    settings: Settings
    gateway: ModelGateway | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def get_gateway(self) -> ModelGateway:
        if self.gateway is None:
            self.gateway = OpenAIGateway(settings=self.settings)
        return self.gateway


async def _persist(run_id: str, what: str, op: Awaitable[Any]) -> None:
    try:
        await op
    except Exception as e:
        logger.warning("run[%s] failed to persist %s: %s", run_id, what, e)


async def run_generation(
    request: RunRequest, bus: EventBus, services: Services, *, run_id: str | None = None
) -> RunArtifact | None:
    """Run one generation end to end, reporting progress on `bus`.

    The bus always receives exactly one terminal event: `complete` with the
    artifact, or `error` for setup, provisioning and unexpected failures.
    Cancellation emits "Run cancelled" and propagates.
    """
    run_id = run_id or bus.run_id or "-"
    return await _guarded(run_id, bus, _generate(request, bus, services, run_id))


async def run_fix(
    project_id: str, bus: EventBus, services: Services, *, run_id: str | None = None
) -> RunArtifact | None:
    """Validate a project's existing sandbox and run the fix agent on its errors.

    Same terminal-event contract as `run_generation`. A sandbox that has
    expired ends the run with the "start a new run" error.
    """
    run_id = run_id or bus.run_id or "-"
    return await _guarded(run_id, bus, _fix(project_id, bus, services, run_id))


async def _guarded(
    run_id: str, bus: EventBus, work: Coroutine[Any, Any, RunArtifact]
) -> RunArtifact | None:
    try:
        return await work
    except asyncio.CancelledError:
        logger.info("run[%s] cancelled", run_id)
        bus.send(EventType.ERROR, message=CANCELLED_MESSAGE)
        raise
    except SitegenError as e:
        logger.error("run[%s] failed: %s", run_id, e)
        bus.send(EventType.ERROR, message=e.user_message, data={"error": str(e)})
    except Exception as e:
        logger.exception("run[%s] unexpected error", run_id)
        bus.send(EventType.ERROR, message=UNEXPECTED_ERROR_MESSAGE, data={"error": str(e)})
    return None


async def _acquire_sandbox(
    services: Services, bus: EventBus, framework: Framework, run_id: str
) -> tuple[SandboxHandle, Framework]:
    try:
        return await services.manager.acquire(framework), framework
    except SandboxProvisioningError as e:
        if framework is DEFAULT_FRAMEWORK:
            raise
        logger.warning(
            "run[%s] %s sandbox failed, falling back to %s: %s",
            run_id,
            framework.value,
            DEFAULT_FRAMEWORK.value,
            e,
        )
        bus.status("Retrying with the default template...")
        return await services.manager.acquire(DEFAULT_FRAMEWORK), DEFAULT_FRAMEWORK


def _complete_payload(artifact: RunArtifact) -> dict[str, Any]:
    return {
        "url": artifact.sandbox_url,
        "title": artifact.title,
        "response": artifact.response,
        "summary": artifact.summary,
        "files": artifact.files,
        "sandbox_id": artifact.sandbox_id,
        "framework": artifact.framework,
        "model": artifact.model,
        "warnings": artifact.warnings,
    }


def make_validator(settings: Settings) -> Validator:
    return Validator(
        policy=ClassificationPolicy.parse(settings.validation_policy),
        lint_timeout_ms=settings.lint_timeout_ms,
        build_timeout_ms=settings.build_timeout_ms,
    )


async def _start_preview(services: Services, sandbox_id: str, framework: Framework, run_id: str) -> str:
    handle = await services.manager.resolve(sandbox_id)
    if not await ensure_dev_server_running(handle, framework, sleep=services.sleep):
        logger.warning("run[%s] dev server did not become ready in %s", run_id, sandbox_id)
    return get_sandbox_url(handle, framework)


async def _generate(
    request: RunRequest, bus: EventBus, services: Services, run_id: str
) -> RunArtifact:
    settings = services.settings
    store = services.store
    bus.status("Initializing...")
    logger.info(
        "run[%s] start project=%s mode=%s model=%s prompt_len=%d",
        run_id,
        request.project_id,
        request.mode,
        request.model,
        len(request.prompt),
    )

    gateway = services.get_gateway()
    project = await store.get_project(request.project_id)
    if project is None:
        raise SetupError(f"Project {request.project_id} not found")

    framework = parse_framework(request.framework) or parse_framework(project.framework)
    if framework is None:
        bus.status("Selecting framework...")
        framework = await detect_framework(gateway, request.prompt)
        await _persist(run_id, "framework", store.set_project_framework(project.id, framework.value))
    bus.send(EventType.FRAMEWORK, data={"framework": framework.value})

    tier = resolve_model(request.model, request.prompt, framework.value)
    config = get_model_configs()[tier]
    logger.info("run[%s] framework=%s tier=%s model=%s", run_id, framework.value, tier.value, config.model)

    bus.status("Creating sandbox...")
    handle, framework = await _acquire_sandbox(services, bus, framework, run_id)
    sandbox_id = handle.sandbox_id
    bus.send(EventType.SANDBOX, data={"sandbox_id": sandbox_id, "framework": framework.value})

    try:
        history = await store.list_messages(project.id, limit=settings.history_messages)
    except Exception as e:
        logger.warning("run[%s] could not load history: %s", run_id, e)
        history = []
    await _persist(
        run_id, "user message", store.append_message(project.id, Message(role="user", content=request.prompt))
    )
    conversation = [{"role": m.role, "content": m.content} for m in history]
    conversation.append({"role": "user", "content": request.prompt})

    system_prompt = framework_prompt(framework)
    agent = AgentLoop(
        gateway,
        services.manager,
        settings,
        model=config.model,
        system_prompt=system_prompt,
        temperature=config.temperature,
        emit=bus.emit,
    )

    async with services.manager.lease(sandbox_id):
        bus.status("Generating code...")
        result = await agent.run(conversation, sandbox_id, AgentState(framework=framework.value))
        state = result.state
        last_text = result.text
        summary = await ensure_summary(
            gateway,
            model=config.model,
            system_prompt=system_prompt,
            state=state,
            final_text=last_text,
            messages=result.messages,
        )
        state = state.with_summary(summary)

        warnings: str | None = None
        if request.mode == "safe" and state.files:
            bus.status("Validating...")
            outcome = await validate_and_fix(
                agent,
                make_validator(settings),
                sandbox_id=sandbox_id,
                state=state,
                prompt=request.prompt,
                last_text=last_text,
                max_attempts=settings.auto_fix_max_attempts,
            )
            state = outcome.state
            warnings = outcome.remaining_errors
            summary = state.summary or summary

        bus.status("Starting preview...")
        url = await _start_preview(services, sandbox_id, framework, run_id)

    bus.status("Finalizing...")
    title, response = await generate_title_and_response(gateway, model=config.model, summary=summary)

    artifact = RunArtifact(
        project_id=project.id,
        run_id=run_id,
        sandbox_id=sandbox_id,
        sandbox_url=url,
        title=title,
        summary=summary,
        response=response,
        files=state.files,
        framework=framework.value,
        model=config.model,
        warnings=warnings,
    )
    await _persist(run_id, "result", store.save_result(artifact))
    await _persist(
        run_id, "assistant message", store.append_message(project.id, Message(role="assistant", content=response))
    )

    logger.info(
        "run[%s] complete files=%d fix_attempts=%d warnings=%s",
        run_id,
        len(state.files),
        state.fix_attempts,
        bool(warnings),
    )
    bus.send(
        EventType.COMPLETE,
        message="Generated with known issues" if warnings else "Done",
        data=_complete_payload(artifact),
    )
    return artifact


async def _fix(project_id: str, bus: EventBus, services: Services, run_id: str) -> RunArtifact:
    settings = services.settings
    store = services.store
    bus.status("Initializing...")
    logger.info("run[%s] fix start project=%s", run_id, project_id)

    gateway = services.get_gateway()
    project = await store.get_project(project_id)
    if project is None:
        raise SetupError(f"Project {project_id} not found")
    previous = await store.get_result(project_id)
    if previous is None:
        raise SetupError(f"Project {project_id} has no generated app to fix")

    framework = parse_framework(previous.framework) or DEFAULT_FRAMEWORK
    bus.send(EventType.FRAMEWORK, data={"framework": framework.value})
    # the original model keeps fixing its own code; unknown ids use the default tier
    config = get_model_configs()[parse_tier(previous.model) or DEFAULT_TIER]

    bus.status("Connecting to sandbox...")
    sandbox_id = previous.sandbox_id
    async with services.manager.lease(sandbox_id):
        bus.send(EventType.SANDBOX, data={"sandbox_id": sandbox_id, "framework": framework.value})
        agent = AgentLoop(
            gateway,
            services.manager,
            settings,
            model=config.model,
            system_prompt=framework_prompt(framework),
            temperature=config.temperature,
            emit=bus.emit,
        )
        bus.status("Validating...")
        outcome = await validate_and_fix(
            agent,
            make_validator(settings),
            sandbox_id=sandbox_id,
            state=AgentState(
                files=dict(previous.files), summary=previous.summary, framework=framework.value
            ),
            prompt=FIX_REQUEST_PROMPT,
            last_text=previous.response,
            max_attempts=settings.auto_fix_max_attempts,
        )

        if outcome.remaining_errors is None and outcome.state.fix_attempts == 0:
            logger.info("run[%s] no errors found in %s", run_id, sandbox_id)
            bus.send(EventType.COMPLETE, message="No errors found", data=_complete_payload(previous))
            return previous

        bus.status("Starting preview...")
        url = await _start_preview(services, sandbox_id, framework, run_id)

    warnings = outcome.remaining_errors
    response = (
        "Some errors remain after the fix attempts." if warnings else "Fixed the detected errors."
    )
    artifact = RunArtifact(
        project_id=project.id,
        run_id=run_id,
        sandbox_id=sandbox_id,
        sandbox_url=url,
        title=previous.title,
        summary=outcome.state.summary or previous.summary,
        response=response,
        files=outcome.state.files,
        framework=framework.value,
        model=config.model,
        warnings=warnings,
    )
    await _persist(run_id, "result", store.save_result(artifact))
    await _persist(
        run_id, "assistant message", store.append_message(project.id, Message(role="assistant", content=response))
    )

    logger.info(
        "run[%s] fix complete fix_attempts=%d warnings=%s", run_id, outcome.state.fix_attempts, bool(warnings)
    )
    bus.send(
        EventType.COMPLETE,
        message="Fixed with known issues" if warnings else "Errors fixed",
        data=_complete_payload(artifact),
    )
    return artifact
