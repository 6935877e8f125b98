"""Shared fakes for the sitegen test suite: sandboxes, providers, gateway and cache."""

import asyncio
from typing import Any, Awaitable, Callable

import pytest

from sitegen.agent.gateway import Generation, ToolCall
from sitegen.config import Settings
from sitegen.events import EventBus
from sitegen.sandbox.backend import CommandResult, Template
from sitegen.sandbox.cache import SandboxCache
from sitegen.sandbox.manager import SandboxManager
from sitegen.store import RuntimeCacheStore
from sitegen.workflow import Services


CommandReply = CommandResult | Exception | Callable[[str], CommandResult]


class FakeSandbox:
    """In-memory SandboxHandle.

    `replies` maps a command substring to the result (or exception) the
    command should produce; unmatched commands exit 0 with no output, and
    curl checks answer 200 so the dev server looks ready.
    `on_command` is awaited before every command runs.
    """

    def __init__(self, sandbox_id: str = "sbx_1", files: dict[str, str] | None = None):
        self.sandbox_id = sandbox_id
        self.files: dict[str, str] = dict(files or {})
        self.commands: list[str] = []
        self.replies: dict[str, CommandReply] = {}
        self.read_delay: float = 0.0
        self.timeouts: list[int] = []
        self.on_command: Callable[[str], Awaitable[None]] | None = None
        self.closed = False
        self.stopped = False

    async def run_command(self, command: str, *, timeout_ms: int = 60_000, cwd: str | None = None) -> CommandResult:
        self.commands.append(command)
        if self.on_command is not None:
            await self.on_command(command)
        for marker, reply in self.replies.items():
            if marker in command:
                if isinstance(reply, Exception):
                    raise reply
                if callable(reply):
                    return reply(command)
                return reply
        if command.startswith("curl"):
            return CommandResult(exit_code=0, stdout="200")
        return CommandResult(exit_code=0)

    async def write_files(self, files: dict[str, str]) -> None:
        self.files.update(files)

    async def read_file(self, path: str) -> str | None:
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        return self.files.get(path)

    async def set_timeout(self, timeout_ms: int) -> None:
        self.timeouts.append(timeout_ms)

    def get_host(self, port: int) -> str:
        return f"{port}-{self.sandbox_id}.preview.test"

    async def stop(self) -> None:
        self.stopped = True

    async def close(self) -> None:
        self.closed = True


class FakeProvider:
    """SandboxProvider whose first `failures` create calls raise."""

    def __init__(self, failures: int = 0, connect_error: Exception | None = None):
        self.failures = failures
        self.connect_error = connect_error
        self.created: list[FakeSandbox] = []
        self.templates: list[Template] = []
        self.connected: list[str] = []
        self.fail_templates: set[str] = set()
        self.replies: dict[str, CommandReply] = {}

    async def create(self, template: Template, timeout_ms: int) -> FakeSandbox:
        self.templates.append(template)
        if template.name in self.fail_templates:
            raise RuntimeError(f"template {template.name} unavailable")
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("sandbox API returned 503")
        sandbox = FakeSandbox(sandbox_id=f"sbx_{len(self.created) + 1}")
        sandbox.replies.update(self.replies)
        self.created.append(sandbox)
        return sandbox

    async def connect(self, sandbox_id: str) -> FakeSandbox:
        self.connected.append(sandbox_id)
        if self.connect_error is not None:
            raise self.connect_error
        for sandbox in self.created:
            if sandbox.sandbox_id == sandbox_id:
                return sandbox
        sandbox = FakeSandbox(sandbox_id=sandbox_id)
        self.created.append(sandbox)
        return sandbox


class FakeGateway:
    """ModelGateway replaying scripted generations.

    `script` entries are Generations, exceptions to raise, or callables
    taking the call kwargs. Once the script runs out every call returns
    `default`.
    """

    def __init__(self, script: list[Any] | None = None, default: Generation | None = None):
        self.script = list(script or [])
        self.default = default or Generation()
        self.calls: list[dict[str, Any]] = []

    async def generate(self, **kwargs: Any) -> Generation:
        self.calls.append(kwargs)
        if not self.script:
            return self.default
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(kwargs)
        return step


class FakeRuntimeCache:
    """Dict-backed stand-in for vercel.cache.AsyncRuntimeCache."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.options: dict[str, dict[str, Any]] = {}

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def set(self, key: str, value: Any, options: dict[str, Any] | None = None) -> None:
        self.data[key] = value
        self.options[key] = dict(options or {})

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


async def no_sleep(_: float) -> None:
    return None


async def close_handle(handle: FakeSandbox) -> None:
    await handle.close()


def tool_call(name: str, arguments: str, call_id: str = "call_1") -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


@pytest.fixture
def settings() -> Settings:
    return Settings(gateway_api_key="test-key", max_agent_iterations=5)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def manager(provider: FakeProvider, settings: Settings, sleeps: list[float]) -> SandboxManager:
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    cache = SandboxCache(ttl=300, on_evict=close_handle)
    return SandboxManager(provider=provider, settings=settings, cache=cache, sleep=_sleep)


@pytest.fixture
def store() -> RuntimeCacheStore:
    return RuntimeCacheStore(cache=FakeRuntimeCache())


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def services(store: RuntimeCacheStore, manager: SandboxManager, settings: Settings, gateway: FakeGateway) -> Services:
    return Services(store=store, manager=manager, settings=settings, gateway=gateway, sleep=no_sleep)


@pytest.fixture
def bus() -> EventBus:
    return EventBus(run_id="run_test")
