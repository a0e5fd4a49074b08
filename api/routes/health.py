"""Health check routes."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@router.get("/health/workers")
async def worker_status(request: Request):
    """Check background render workers."""
    service = request.app.state.render_service
    return {
        "running": service.queue.is_running,
        "workers": service.queue.max_workers,
        "active_jobs": service.queue.active,
        "queued_jobs": service.queue.depth,
    }
