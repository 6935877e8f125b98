import asyncio
import time
from types import SimpleNamespace

import pytest

from sitegen.errors import CommandTimeoutError
from sitegen.sandbox.backend import WRITE_CHUNK_SIZE, VercelSandboxHandle


MINUTE_MS = 60_000


class FakeFinished:
    def __init__(self, exit_code: int, out: str = "", err: str = ""):
        self.exit_code = exit_code
        self._out = out
        self._err = err

    async def stdout(self) -> str:
        return self._out

    async def stderr(self) -> str:
        return self._err


class FakeCommand:
    def __init__(self, finished: FakeFinished | None, delay: float = 0.0):
        self.finished = finished
        self.delay = delay
        self.killed = False

    async def wait(self) -> FakeFinished:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.finished

    async def kill(self) -> None:
        self.killed = True


class FakeAsyncSandbox:
    def __init__(self, command: FakeCommand | None = None):
        self.sandbox_id = "sbx_v"
        now_ms = int(time.time() * 1000)
        self.sandbox = SimpleNamespace(
            cwd="/vercel/sandbox", timeout=30 * MINUTE_MS, started_at=now_ms, created_at=now_ms
        )
        self.extended: list[int] = []
        self.stopped = False
        self.command = command or FakeCommand(FakeFinished(0, "ok"))
        self.invocations: list[tuple[str, list[str]]] = []
        self.writes: list[list[dict]] = []

    async def run_command_detached(self, cmd: str, args: list[str]) -> FakeCommand:
        self.invocations.append((cmd, args))
        return self.command

    async def write_files(self, files: list[dict]) -> None:
        self.writes.append(files)

    def domain(self, port: int) -> str:
        return f"https://sb-{port}.vercel.run"

    async def extend_timeout(self, duration: int) -> None:
        self.extended.append(duration)

    async def stop(self) -> None:
        self.stopped = True


async def test_run_command_runs_in_workspace():
    raw = FakeAsyncSandbox(FakeCommand(FakeFinished(2, "out", "err")))
    handle = VercelSandboxHandle(raw)
    result = await handle.run_command("npm test")

    assert raw.invocations == [("bash", ["-lc", "cd /vercel/sandbox && npm test"])]
    assert (result.exit_code, result.stdout, result.stderr) == (2, "out", "err")
    assert result.output == "outerr"


async def test_run_command_timeout_kills_process():
    command = FakeCommand(FakeFinished(0), delay=1.0)
    handle = VercelSandboxHandle(FakeAsyncSandbox(command))
    with pytest.raises(CommandTimeoutError):
        await handle.run_command("npm run build", timeout_ms=10)
    assert command.killed


async def test_write_files_is_chunked():
    raw = FakeAsyncSandbox()
    handle = VercelSandboxHandle(raw)
    files = {f"src/f{i}.ts": "x" for i in range(WRITE_CHUNK_SIZE + 1)}
    await handle.write_files(files)

    assert [len(chunk) for chunk in raw.writes] == [WRITE_CHUNK_SIZE, 1]
    assert raw.writes[0][0] == {"path": "src/f0.ts", "content": b"x"}


async def test_read_file_missing_returns_none():
    handle = VercelSandboxHandle(FakeAsyncSandbox(FakeCommand(FakeFinished(44))))
    assert await handle.read_file("nope.ts") is None
    assert handle.get_host(3000) == "https://sb-3000.vercel.run"


async def test_set_timeout_on_fresh_sandbox_does_not_extend():
    raw = FakeAsyncSandbox()
    await VercelSandboxHandle(raw).set_timeout(30 * MINUTE_MS)
    assert raw.extended == []


async def test_set_timeout_tops_up_only_the_missing_lifetime():
    raw = FakeAsyncSandbox()
    now_ms = int(time.time() * 1000)
    raw.sandbox.started_at = now_ms - 25 * MINUTE_MS
    raw.sandbox.created_at = now_ms - 26 * MINUTE_MS
    handle = VercelSandboxHandle(raw)

    assert abs(handle.remaining_ms() - 5 * MINUTE_MS) < 5_000
    await handle.set_timeout(30 * MINUTE_MS)
    assert len(raw.extended) == 1
    assert abs(raw.extended[0] - 25 * MINUTE_MS) < 5_000


async def test_remaining_falls_back_to_created_at():
    raw = FakeAsyncSandbox()
    raw.sandbox.started_at = None
    raw.sandbox.created_at = int(time.time() * 1000) - 40 * MINUTE_MS
    handle = VercelSandboxHandle(raw)
    assert handle.remaining_ms() == 0
    await handle.set_timeout(30 * MINUTE_MS)
    assert abs(raw.extended[0] - 30 * MINUTE_MS) < 5_000


async def test_stop_stops_remote_sandbox():
    raw = FakeAsyncSandbox()
    await VercelSandboxHandle(raw).stop()
    assert raw.stopped
