from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Literal, Protocol

from pydantic import BaseModel, Field
from vercel.cache import AsyncRuntimeCache


logger = logging.getLogger("sitegen.store")

# TTL in seconds for cached run payloads
_TTL_SECONDS: int = int(os.getenv("RUN_STORE_TTL_SECONDS", "900"))
# projects, messages and results outlive individual runs
_PROJECT_TTL_SECONDS: int = int(os.getenv("RUN_STORE_PROJECT_TTL_SECONDS", str(7 * 24 * 3600)))
_NAMESPACE = os.getenv("RUN_STORE_NAMESPACE", "sitegen-runs")


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S+00:00", time.gmtime())


class Project(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = "Untitled project"
    framework: str | None = None
    created_at: str = Field(default_factory=_now)


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    created_at: str = Field(default_factory=_now)


class RunArtifact(BaseModel):
    """Result of a finished run, recorded against its project."""

    project_id: str
    run_id: str | None = None
    sandbox_id: str
    sandbox_url: str
    title: str
    summary: str
    response: str
    files: dict[str, str] = Field(default_factory=dict)
    framework: str
    model: str
    warnings: str | None = None
    created_at: str = Field(default_factory=_now)


class ProjectStore(Protocol):
    async def get_project(self, project_id: str) -> Project | None: ...

    async def list_messages(self, project_id: str, limit: int | None = None) -> list[Message]: ...

    async def append_message(self, project_id: str, message: Message) -> None: ...

    async def set_project_framework(self, project_id: str, framework: str) -> None: ...

    async def save_result(self, artifact: RunArtifact) -> None: ...


class RunStore(Protocol):
    async def set_run_payload(self, run_id: str, payload: dict[str, Any]) -> None: ...

    async def get_run_payload(self, run_id: str) -> dict[str, Any] | None: ...

    async def delete_run_payload(self, run_id: str) -> None: ...


class Store(ProjectStore, RunStore, Protocol):
    """Everything the HTTP layer needs from persistence."""

    async def create_project(self, name: str | None = None, framework: str | None = None) -> Project: ...

    async def get_result(self, project_id: str) -> RunArtifact | None: ...


class RuntimeCacheStore:
    """Runs, projects, messages and results kept in Vercel Runtime Cache."""

    def __init__(
        self,
        cache: Any | None = None,
        *,
        run_ttl: int = _TTL_SECONDS,
        project_ttl: int = _PROJECT_TTL_SECONDS,
    ):
        self.cache = cache if cache is not None else AsyncRuntimeCache(namespace=_NAMESPACE)
        self.run_ttl = run_ttl
        self.project_ttl = project_ttl

    async def _set(self, key: str, value: Any, ttl: int, tag: str) -> None:
        await self.cache.set(key, value, {"ttl": ttl, "tags": [tag]})

    # Runs

    async def set_run_payload(self, run_id: str, payload: dict[str, Any]) -> None:
        """Store the request payload for a run id."""
        await self._set(f"run:{run_id}", dict(payload), self.run_ttl, f"run:{run_id}")

    async def get_run_payload(self, run_id: str) -> dict[str, Any] | None:
        val = await self.cache.get(f"run:{run_id}")
        return dict(val) if isinstance(val, dict) else None

    async def delete_run_payload(self, run_id: str) -> None:
        await self.cache.delete(f"run:{run_id}")

    # Projects

    async def create_project(self, name: str | None = None, framework: str | None = None) -> Project:
        project = Project(name=name or "Untitled project", framework=framework)
        await self._save_project(project)
        logger.info("project %s created", project.id)
        return project

    async def _save_project(self, project: Project) -> None:
        await self._set(
            f"project:{project.id}",
            project.model_dump(mode="json"),
            self.project_ttl,
            f"project:{project.id}",
        )

    async def get_project(self, project_id: str) -> Project | None:
        val = await self.cache.get(f"project:{project_id}")
        return Project.model_validate(val) if isinstance(val, dict) else None

    async def set_project_framework(self, project_id: str, framework: str) -> None:
        project = await self.get_project(project_id)
        if project is None:
            return
        await self._save_project(project.model_copy(update={"framework": framework}))

    async def list_messages(self, project_id: str, limit: int | None = None) -> list[Message]:
        """Messages oldest first; `limit` keeps only the most recent ones."""
        val = await self.cache.get(f"messages:{project_id}")
        messages = [Message.model_validate(m) for m in val] if isinstance(val, list) else []
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    async def append_message(self, project_id: str, message: Message) -> None:
        val = await self.cache.get(f"messages:{project_id}")
        messages = list(val) if isinstance(val, list) else []
        messages.append(message.model_dump(mode="json"))
        await self._set(f"messages:{project_id}", messages, self.project_ttl, f"project:{project_id}")

    async def save_result(self, artifact: RunArtifact) -> None:
        await self._set(
            f"result:{artifact.project_id}",
            artifact.model_dump(mode="json"),
            self.project_ttl,
            f"project:{artifact.project_id}",
        )

    async def get_result(self, project_id: str) -> RunArtifact | None:
        val = await self.cache.get(f"result:{project_id}")
        return RunArtifact.model_validate(val) if isinstance(val, dict) else None
