import asyncio
import logging
import re
from typing import Awaitable, Callable

from sitegen.frameworks import Framework, dev_command_for, port_for
from sitegen.sandbox.backend import SandboxHandle


logger = logging.getLogger("sitegen.sandbox.utils")

MAX_PATH_LENGTH = 4096
READ_BATCH_SIZE = 50


def is_valid_file_path(path: str, workspace_root: str) -> bool:
    """Allow-list check for model-supplied paths.

    Accepts relative paths, "./"-prefixed paths and absolute paths under
    `workspace_root`. Rejects any path containing "..", NUL, CR or LF.
    """
    if not path or not isinstance(path, str):
        return False
    normalized = path.strip()
    if not normalized or len(normalized) > MAX_PATH_LENGTH:
        return False
    if ".." in normalized:
        return False
    if "\0" in normalized or "\n" in normalized or "\r" in normalized:
        return False
    root = workspace_root.rstrip("/")
    if normalized.startswith("/"):
        return normalized.startswith(root + "/")
    return True


def to_workspace_relative(path: str, workspace_root: str) -> str:
    """Canonical project-relative form of an already validated path."""
    normalized = path.strip()
    root = workspace_root.rstrip("/")
    if normalized.startswith(root + "/"):
        normalized = normalized[len(root) + 1 :]
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


async def read_file_with_timeout(
    handle: SandboxHandle,
    path: str,
    *,
    workspace_root: str,
    timeout_ms: int = 3_000,
    max_size: int = 10 * 1024 * 1024,
) -> str | None:
    """Read one file, returning None when the path is invalid, slow, too large or unreadable."""
    if not is_valid_file_path(path, workspace_root):
        return None
    try:
        content = await asyncio.wait_for(
            handle.read_file(to_workspace_relative(path, workspace_root)),
            timeout=timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        logger.warning("reading %s timed out after %dms", path, timeout_ms)
        return None
    except Exception as e:
        logger.warning("failed to read %s: %s", path, e)
        return None
    if content is None:
        return None
    size = len(content.encode("utf-8"))
    if size > max_size:
        logger.warning("skipping %s: %d bytes exceeds limit", path, size)
        return None
    return content


async def read_files_in_batches(
    handle: SandboxHandle,
    paths: list[str],
    *,
    workspace_root: str,
    timeout_ms: int = 3_000,
    max_size: int = 10 * 1024 * 1024,
    max_count: int = 500,
    batch_size: int = READ_BATCH_SIZE,
) -> dict[str, str]:
    valid = [p for p in paths if is_valid_file_path(p, workspace_root)][:max_count]
    contents: dict[str, str] = {}
    for i in range(0, len(valid), batch_size):
        batch = valid[i : i + batch_size]
        results = await asyncio.gather(
            *(
                read_file_with_timeout(
                    handle,
                    p,
                    workspace_root=workspace_root,
                    timeout_ms=timeout_ms,
                    max_size=max_size,
                )
                for p in batch
            )
        )
        for p, content in zip(batch, results):
            if content is not None:
                contents[p] = content
    return contents


_STATUS_OK = re.compile(r"^[23]\d{2}$")


async def wait_for_dev_server(
    handle: SandboxHandle,
    port: int,
    *,
    max_wait: float = 120.0,
    interval: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """Poll the dev server with curl until it answers 2xx/3xx or `max_wait` elapses."""
    attempts = max(1, int(max_wait / interval))
    for attempt in range(1, attempts + 1):
        try:
            result = await handle.run_command(
                f'curl -s -o /dev/null -w "%{{http_code}}" http://localhost:{port}',
                timeout_ms=5_000,
            )
            if _STATUS_OK.match(result.stdout.strip()):
                logger.info("dev server on port %d ready after %d attempts", port, attempt)
                return True
        except Exception:
            # expected while the server is still booting
            pass
        await sleep(interval)
    return False


async def ensure_dev_server_running(
    handle: SandboxHandle,
    framework: Framework,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    port = port_for(framework)
    if await wait_for_dev_server(handle, port, max_wait=60.0, sleep=sleep):
        return True
    command = f"nohup {dev_command_for(framework)} > /tmp/dev-server.log 2>&1 &"
    try:
        await handle.run_command(command, timeout_ms=5_000)
    except Exception as e:
        logger.warning("failed to start dev server in %s: %s", handle.sandbox_id, e)
        return False
    return await wait_for_dev_server(handle, port, max_wait=60.0, sleep=sleep)


def get_sandbox_url(handle: SandboxHandle, framework: Framework) -> str:
    port = port_for(framework)
    try:
        host = handle.get_host(port)
    except Exception as e:
        logger.warning("could not resolve preview host for %s: %s", handle.sandbox_id, e)
        host = None
    if host:
        return host if host.startswith("http") else f"https://{host}"
    return f"https://{port}-{handle.sandbox_id}.vercel.run"
