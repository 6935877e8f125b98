import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from sitegen.config import Settings, get_settings, template_source
from sitegen.errors import SandboxProvisioningError, SandboxUnavailableError
from sitegen.frameworks import Framework, Scaffold, port_for, scaffold_for, template_for
from sitegen.retry import with_retry
from sitegen.sandbox.backend import (
    SandboxHandle,
    SandboxProvider,
    Template,
    VercelSandboxProvider,
)
from sitegen.sandbox.cache import SandboxCache


logger = logging.getLogger("sitegen.sandbox")

CREATE_BACKOFF_INITIAL = 1.0
CREATE_BACKOFF_MAX = 10.0
SCAFFOLD_OUTPUT_TAIL = 500


async def _close_handle(handle: SandboxHandle) -> None:
    await handle.close()


async def _discard(handle: SandboxHandle) -> None:
    """Stop a sandbox that never made it into the cache."""
    for step in (handle.stop, handle.close):
        try:
            await step()
        except Exception as e:
            logger.warning("failed to discard sandbox %s: %s", handle.sandbox_id, e)


class SandboxManager:
    """Creates, reconnects and caches sandboxes for generation runs."""

    def __init__(
        self,
        provider: SandboxProvider | None = None,
        settings: Settings | None = None,
        cache: SandboxCache | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.provider = provider or VercelSandboxProvider()
        if cache is None:
            cache = SandboxCache(
                ttl=self.settings.sandbox_cache_ttl_seconds,
                renew_on_access=self.settings.sandbox_cache_renew_on_access,
                on_evict=_close_handle,
            )
        self.cache = cache
        self._sleep = sleep
        self._sweeper: asyncio.Task | None = None

    def template_for(self, framework: Framework | str) -> Template:
        if isinstance(framework, Framework):
            name = template_for(framework)
            return Template(name=name, port=port_for(framework), source_url=template_source(name))
        # raw template names are accepted for fallback provisioning
        return Template(name=str(framework), source_url=template_source(str(framework)))

    async def acquire(self, framework: Framework | str) -> SandboxHandle:
        """Create a fresh sandbox for `framework`, retrying with exponential backoff.

        Templates without a git source are scaffolded in place once the
        sandbox is up. A sandbox that fails setup is stopped before the error
        propagates.
        """
        template = self.template_for(framework)
        attempts = self.settings.sandbox_create_attempts
        timeout_ms = self.settings.sandbox_timeout_ms

        async def _create() -> SandboxHandle:
            logger.info("creating sandbox from template %s", template.name)
            handle = await self.provider.create(template, timeout_ms)
            try:
                await handle.set_timeout(timeout_ms)
            except Exception:
                await _discard(handle)
                raise
            return handle

        try:
            handle = await with_retry(
                _create,
                max_attempts=attempts,
                initial_delay=CREATE_BACKOFF_INITIAL,
                max_delay=CREATE_BACKOFF_MAX,
                sleep=self._sleep,
                label=f"sandbox creation ({template.name})",
            )
        except Exception as e:
            raise SandboxProvisioningError(
                f"Sandbox creation failed for template {template.name!r} after {attempts} attempts: {e}",
                attempts=attempts,
            ) from e

        scaffold = scaffold_for(framework) if isinstance(framework, Framework) else None
        if scaffold is not None and template.source_url is None and self.settings.sandbox_scaffold:
            try:
                await self._scaffold(handle, scaffold)
            except Exception as e:
                await _discard(handle)
                raise SandboxProvisioningError(
                    f"Scaffolding template {template.name!r} failed in sandbox {handle.sandbox_id}: {e}",
                    attempts=1,
                ) from e

        await self.cache.put(handle)
        logger.info("sandbox %s created from template %s", handle.sandbox_id, template.name)
        return handle

    async def _scaffold(self, handle: SandboxHandle, scaffold: Scaffold) -> None:
        for command in scaffold.commands:
            logger.info("sandbox %s scaffold: %s", handle.sandbox_id, command)
            result = await handle.run_command(command, timeout_ms=self.settings.sandbox_scaffold_timeout_ms)
            if result.exit_code != 0:
                raise RuntimeError(
                    f"{command!r} exited with {result.exit_code}: {result.output[-SCAFFOLD_OUTPUT_TAIL:]}"
                )
        if scaffold.files:
            await handle.write_files(scaffold.files)

    async def resolve(self, sandbox_id: str) -> SandboxHandle:
        """Return the cached handle for `sandbox_id`, reconnecting on a miss."""
        cached = await self.cache.get(sandbox_id)
        if cached is not None:
            return cached
        try:
            logger.info("connecting to sandbox %s", sandbox_id)
            handle = await self.provider.connect(sandbox_id)
        except Exception as e:
            logger.error("failed to reconnect to sandbox %s: %s", sandbox_id, e)
            raise SandboxUnavailableError(sandbox_id, str(e)) from e
        try:
            await handle.set_timeout(self.settings.sandbox_timeout_ms)
        except Exception as e:
            logger.error("failed to extend sandbox %s: %s", sandbox_id, e)
            try:
                await handle.close()
            except Exception as close_error:
                logger.warning("failed to close sandbox %s: %s", sandbox_id, close_error)
            raise SandboxUnavailableError(sandbox_id, str(e)) from e
        await self.cache.put(handle)
        return handle

    async def release(self, sandbox_id: str) -> None:
        handle = await self.cache.pop(sandbox_id)
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as e:
            logger.warning("failed to close sandbox %s: %s", sandbox_id, e)

    @asynccontextmanager
    async def lease(self, sandbox_id: str) -> AsyncIterator[SandboxHandle]:
        """Resolve a sandbox and pin its cache entry for the duration of the block."""
        handle = await self.resolve(sandbox_id)
        held = await self.cache.acquire_lease(sandbox_id, handle)
        if not held:
            # evicted between resolve and pin; the reconnect lands in the cache
            handle = await self.resolve(sandbox_id)
            held = await self.cache.acquire_lease(sandbox_id, handle)
        try:
            yield handle
        finally:
            if held:
                await self.cache.release_lease(sandbox_id)

    def start_sweeper(self, interval: float = 60.0) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return

        async def _run() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await self.cache.sweep()
                except Exception as e:
                    logger.warning("sandbox cache sweep failed: %s", e)

        self._sweeper = asyncio.create_task(_run())

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        await self.cache.clear()
