import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable

from sitegen.sandbox.backend import SandboxHandle


logger = logging.getLogger("sitegen.sandbox.cache")


@dataclass
class CacheEntry:
    handle: SandboxHandle
    inserted_at: float
    last_access: float
    leases: int = 0

    def expires_at(self, ttl: float, renew_on_access: bool) -> float:
        return (self.last_access if renew_on_access else self.inserted_at) + ttl


@dataclass
class SandboxCache:
    """Process-wide map of live sandbox handles.

    Entries expire `ttl` seconds after their last access (or after insertion
    when `renew_on_access` is off) but are never evicted while leased. All
    mutations happen under one lock, so a lookup can never race an eviction.
    Evicted handles are passed to `on_evict`, which should close the local
    client only; the remote sandbox keeps its own timeout.
    """

    ttl: float = 300.0
    renew_on_access: bool = True
    max_entries: int = 256
    on_evict: Callable[[SandboxHandle], Awaitable[None]] | None = None
    clock: Callable[[], float] = time.monotonic
    _entries: "OrderedDict[str, CacheEntry]" = field(default_factory=OrderedDict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __contains__(self, sandbox_id: str) -> bool:
        return sandbox_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, sandbox_id: str) -> SandboxHandle | None:
        async with self._lock:
            evicted = self._collect_expired()
            entry = self._entries.get(sandbox_id)
            if entry is not None:
                entry.last_access = self.clock()
                self._entries.move_to_end(sandbox_id)
        await self._dispose(evicted)
        return entry.handle if entry is not None else None

    async def put(self, handle: SandboxHandle) -> None:
        now = self.clock()
        async with self._lock:
            evicted = self._collect_expired()
            existing = self._entries.get(handle.sandbox_id)
            if existing is not None and existing.handle is not handle:
                # keep one live handle per id; the newer connection wins
                evicted.append(existing.handle)
            leases = existing.leases if existing is not None else 0
            self._entries[handle.sandbox_id] = CacheEntry(
                handle=handle, inserted_at=now, last_access=now, leases=leases
            )
            self._entries.move_to_end(handle.sandbox_id)
            evicted.extend(self._collect_overflow())
        await self._dispose(evicted)

    async def pop(self, sandbox_id: str) -> SandboxHandle | None:
        async with self._lock:
            entry = self._entries.pop(sandbox_id, None)
        return entry.handle if entry is not None else None

    async def acquire_lease(self, sandbox_id: str, handle: SandboxHandle | None = None) -> bool:
        """Pin the entry for `sandbox_id`; with `handle`, only if that handle is still the cached one."""
        async with self._lock:
            entry = self._entries.get(sandbox_id)
            if entry is None or (handle is not None and entry.handle is not handle):
                return False
            entry.leases += 1
            entry.last_access = self.clock()
            return True

    async def release_lease(self, sandbox_id: str) -> None:
        async with self._lock:
            entry = self._entries.get(sandbox_id)
            if entry is not None and entry.leases > 0:
                entry.leases -= 1
                entry.last_access = self.clock()

    @asynccontextmanager
    async def leased(self, sandbox_id: str) -> AsyncIterator[bool]:
        held = await self.acquire_lease(sandbox_id)
        try:
            yield held
        finally:
            if held:
                await self.release_lease(sandbox_id)

    async def sweep(self) -> int:
        """Evict every expired, unleased entry; returns how many were dropped."""
        async with self._lock:
            evicted = self._collect_expired()
        await self._dispose(evicted)
        return len(evicted)

    async def clear(self) -> None:
        async with self._lock:
            handles = [entry.handle for entry in self._entries.values()]
            self._entries.clear()
        await self._dispose(handles)

    def _collect_expired(self) -> list[SandboxHandle]:
        now = self.clock()
        expired = [
            sid
            for sid, entry in self._entries.items()
            if entry.leases == 0 and entry.expires_at(self.ttl, self.renew_on_access) <= now
        ]
        return [self._entries.pop(sid).handle for sid in expired]

    def _collect_overflow(self) -> list[SandboxHandle]:
        dropped: list[SandboxHandle] = []
        for sid in list(self._entries.keys()):
            if len(self._entries) <= self.max_entries:
                break
            if self._entries[sid].leases == 0:
                dropped.append(self._entries.pop(sid).handle)
        return dropped

    async def _dispose(self, handles: list[SandboxHandle]) -> None:
        for handle in handles:
            logger.info("evicting sandbox handle %s from cache", handle.sandbox_id)
            if self.on_evict is None:
                continue
            try:
                await self.on_evict(handle)
            except Exception as e:
                logger.warning("failed to close evicted sandbox %s: %s", handle.sandbox_id, e)
