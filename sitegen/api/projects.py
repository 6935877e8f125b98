import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from sitegen.api.deps import RunRegistry, get_registry, get_services
from sitegen.api.runs import StreamFormat, make_run_id, stream_run
from sitegen.frameworks import parse_framework
from sitegen.workflow import Services, run_fix


logger = logging.getLogger("sitegen.api.projects")


router = APIRouter(prefix="/api/projects", tags=["projects"])


class CreateProjectRequest(BaseModel):
    name: str | None = None
    framework: str | None = None


@router.post("")
async def create_project(
    request: CreateProjectRequest, services: Services = Depends(get_services)
) -> dict[str, Any]:
    framework = None
    if request.framework:
        parsed = parse_framework(request.framework)
        if parsed is None:
            raise HTTPException(status_code=422, detail=f"Unsupported framework: {request.framework}")
        framework = parsed.value
    project = await services.store.create_project(name=request.name, framework=framework)
    return project.model_dump(mode="json")


@router.get("/{project_id}")
async def get_project(project_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    """Project record with its recent messages and latest result."""
    project = await services.store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    messages = await services.store.list_messages(project_id)
    result = await services.store.get_result(project_id)
    return {
        "project": project.model_dump(mode="json"),
        "messages": [m.model_dump(mode="json") for m in messages],
        "result": result.model_dump(mode="json") if result else None,
    }


@router.post("/{project_id}/fix")
async def fix_project(
    project_id: str,
    format: StreamFormat = "sse",
    services: Services = Depends(get_services),
    registry: RunRegistry = Depends(get_registry),
):
    """Re-check the project's last sandbox for errors and stream the fix attempts."""
    project = await services.store.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    run_id = make_run_id()
    logger.info("fix_project[%s] project=%s", run_id, project_id)
    return stream_run(run_id, format, registry, lambda bus: run_fix(project_id, bus, services, run_id=run_id))
