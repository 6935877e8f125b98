import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sitegen.api import models, projects, runs
from sitegen.api.deps import get_registry, get_services


# Basic logger for server diagnostics (inherits uvicorn handlers)
logger = logging.getLogger("sitegen.server")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    logging.getLogger("sitegen").setLevel(logging.INFO)

SANDBOX_SWEEP_INTERVAL_SECONDS = 60.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = app.dependency_overrides.get(get_services, get_services)()
    registry = app.dependency_overrides.get(get_registry, get_registry)()
    services.manager.start_sweeper(SANDBOX_SWEEP_INTERVAL_SECONDS)
    logger.info("sandbox cache sweeper started")
    try:
        yield
    finally:
        await registry.shutdown()
        await services.manager.shutdown()
        logger.info("shutdown complete")


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs.router)
app.include_router(projects.router)
app.include_router(models.router)


@app.get("/")
def read_root():
    return {"Hello": "Sitegen"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8081)
