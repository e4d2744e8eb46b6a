"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.observability import setup_observability
from src.api.routers.rebalance import router as rebalance_router
from src.api.routers.rebalance_jobs import router as rebalance_jobs_router
from src.api.routers.rebalance_jobs import shutdown_rebalance_job_service


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    yield
    shutdown_rebalance_job_service()


app = FastAPI(
    title="Layer Advisor API",
    version="0.1.0",
    description=(
        "Deterministic layer rebalancing for monthly saving plans.\n\n"
        "Proposals are advisory: the service never fetches prices or executes trades."
    ),
    openapi_tags=[
        {
            "name": "Layer Rebalancing",
            "description": "Synchronous rebalance simulation, instrument scoring and configuration.",
        },
        {
            "name": "Rebalance Jobs",
            "description": "Asynchronous rebalance jobs with status lookup and cancellation.",
        },
        {
            "name": "Health",
            "description": "Liveness and readiness probes.",
        },
    ],
    lifespan=_app_lifespan,
)

logger = logging.getLogger(__name__)

setup_observability(app)

app.include_router(rebalance_router)
app.include_router(rebalance_jobs_router)


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )


@app.get("/health", tags=["Health"], summary="Health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/live", tags=["Health"], summary="Liveness")
def health_live() -> dict[str, str]:
    return {"status": "live"}


@app.get("/health/ready", tags=["Health"], summary="Readiness")
def health_ready() -> dict[str, str]:
    return {"status": "ready"}
