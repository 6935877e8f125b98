import asyncio
import logging
import shlex
import time
from typing import Any, Protocol

from pydantic import BaseModel
from vercel.sandbox import AsyncSandbox

from sitegen.errors import CommandTimeoutError


logger = logging.getLogger("sitegen.sandbox.backend")

# Vercel write_files accepts batches; keep chunks small to avoid 500s on large projects
WRITE_CHUNK_SIZE = 64

# lifetime shortfalls below this are not worth an extend_timeout call
TIMEOUT_SLACK_MS = 60_000


class CommandResult(BaseModel):
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


class Template(BaseModel):
    """Sandbox template: base runtime, exposed port and optional git source."""

    name: str
    runtime: str = "node22"
    port: int = 3000
    source_url: str | None = None


class SandboxHandle(Protocol):
    sandbox_id: str

    async def run_command(
        self, command: str, *, timeout_ms: int = 60_000, cwd: str | None = None
    ) -> CommandResult: ...

    async def write_files(self, files: dict[str, str]) -> None: ...

    async def read_file(self, path: str) -> str | None: ...

    async def set_timeout(self, timeout_ms: int) -> None: ...

    def get_host(self, port: int) -> str: ...

    async def stop(self) -> None: ...

    async def close(self) -> None: ...


class SandboxProvider(Protocol):
    async def create(self, template: Template, timeout_ms: int) -> SandboxHandle: ...

    async def connect(self, sandbox_id: str) -> SandboxHandle: ...


class VercelSandboxHandle:
    """SandboxHandle backed by a Vercel Sandbox."""

    def __init__(self, sandbox: AsyncSandbox):
        self.sandbox = sandbox

    @property
    def sandbox_id(self) -> str:
        return self.sandbox.sandbox_id

    @property
    def cwd(self) -> str:
        return self.sandbox.sandbox.cwd

    async def run_command(
        self, command: str, *, timeout_ms: int = 60_000, cwd: str | None = None
    ) -> CommandResult:
        workdir = cwd or self.cwd
        cmd = await self.sandbox.run_command_detached(
            "bash", ["-lc", f"cd {shlex.quote(workdir)} && {command}"]
        )
        try:
            done = await asyncio.wait_for(cmd.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            await self._kill(cmd, command)
            raise CommandTimeoutError(command, timeout_ms)
        except asyncio.CancelledError:
            await self._kill(cmd, command)
            raise
        stdout = await done.stdout()
        stderr = await done.stderr()
        return CommandResult(
            exit_code=done.exit_code if done.exit_code is not None else 0,
            stdout=stdout or "",
            stderr=stderr or "",
        )

    async def _kill(self, cmd: Any, command: str) -> None:
        try:
            await cmd.kill()
        except Exception as e:
            logger.warning("failed to kill sandbox command %r: %s", command, e)

    async def write_files(self, files: dict[str, str]) -> None:
        payload: list[dict[str, Any]] = [
            {"path": path, "content": content.encode("utf-8")}
            for path, content in files.items()
        ]
        for i in range(0, len(payload), WRITE_CHUNK_SIZE):
            await self.sandbox.write_files(payload[i : i + WRITE_CHUNK_SIZE])

    async def read_file(self, path: str) -> str | None:
        result = await self.run_command(
            f"if [ -f {shlex.quote(path)} ]; then cat -- {shlex.quote(path)}; else exit 44; fi",
            timeout_ms=30_000,
        )
        if result.exit_code != 0:
            return None
        return result.stdout

    def remaining_ms(self) -> int:
        """Lifetime left on the remote sandbox, from its start time and timeout."""
        info = self.sandbox.sandbox
        started = info.started_at or info.created_at
        return max(0, started + info.timeout - int(time.time() * 1000))

    async def set_timeout(self, timeout_ms: int) -> None:
        # extend_timeout adds to the current lifetime, so only top up the difference
        missing = timeout_ms - self.remaining_ms()
        if missing > TIMEOUT_SLACK_MS:
            await self.sandbox.extend_timeout(missing)

    def get_host(self, port: int) -> str:
        return self.sandbox.domain(port)

    async def stop(self) -> None:
        await self.sandbox.stop()

    async def close(self) -> None:
        await self.sandbox.client.aclose()


class VercelSandboxProvider:
    async def create(self, template: Template, timeout_ms: int) -> VercelSandboxHandle:
        kwargs: dict[str, Any] = {
            "timeout": timeout_ms,
            "runtime": template.runtime,
            "ports": [template.port],
        }
        if template.source_url:
            kwargs["source"] = {"type": "git", "url": template.source_url}
        sandbox = await AsyncSandbox.create(**kwargs)
        return VercelSandboxHandle(sandbox)

    async def connect(self, sandbox_id: str) -> VercelSandboxHandle:
        sandbox = await AsyncSandbox.get(sandbox_id=sandbox_id)
        return VercelSandboxHandle(sandbox)
