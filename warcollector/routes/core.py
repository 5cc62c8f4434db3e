"""Core routes: health, metrics, scheduler status."""

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from warcollector import state
from warcollector.security import limiter
from warcollector.telemetry import get_metrics_text

router = APIRouter(tags=["core"])


class HealthResponse(BaseModel):
    status: str
    scheduler_running: bool


@router.get("/health", response_model=HealthResponse)
@limiter.limit("120/minute")
async def health_check(request: Request):
    """Health check endpoint."""
    scheduler = state.collection_scheduler
    return HealthResponse(
        status="ok",
        scheduler_running=bool(scheduler and scheduler.running),
    )


@router.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint.

    Exposes provider requests/errors/latency, scheduler job runs and
    store writes.
    """
    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)


@router.get("/scheduler/status")
async def scheduler_status():
    """Per-stream last run and pending one-shot, plus registered jobs."""
    scheduler = state.collection_scheduler
    if scheduler is None:
        return {"success": True, "configured": False, "running": False}
    return {"success": True, "configured": True, **scheduler.get_status()}
