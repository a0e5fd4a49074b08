"""Render routes for watercolor rendering."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict, Field, field_validator

from watercolor.render import (
    JobRecord,
    RenderRequest,
    RenderService,
    RenderStyle,
    WatercolorError,
)

from ..auth import get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


def get_render_service(request: Request) -> RenderService:
    """Render service built at app creation."""
    return request.app.state.render_service


class RenderCreate(BaseModel):
    """Render submission parameters."""

    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(alias="imageUrl")
    tier: str = "free"
    room_type: str = Field(alias="roomType")
    style: RenderStyle = RenderStyle.CLASSIC
    atmosphere: Optional[str] = None
    color_tone: Optional[str] = Field(default=None, alias="colorTone")
    project_id: Optional[str] = Field(default=None, alias="projectId")

    @field_validator("image_url")
    @classmethod
    def image_url_must_be_http(cls, v: str) -> str:
        """Validate that the source image is an http(s) URL."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("imageUrl must be an http(s) URL")
        return v

    @field_validator("room_type")
    @classmethod
    def room_type_must_be_valid(cls, v: str) -> str:
        """Validate that room type is non-empty and at most 100 characters."""
        if not v or not v.strip():
            raise ValueError("roomType cannot be empty")
        v = v.strip()
        if len(v) > 100:
            raise ValueError("roomType must be at most 100 characters")
        return v

    @field_validator("tier")
    @classmethod
    def normalize_tier(cls, v: str) -> str:
        return v.strip().lower()

    def to_request(self) -> RenderRequest:
        return RenderRequest(
            image_url=self.image_url,
            room_type=self.room_type,
            style=self.style.value,
            tier=self.tier,
            atmosphere=self.atmosphere or None,
            color_tone=self.color_tone or None,
            project_id=self.project_id or None,
        )


class RenderAccepted(BaseModel):
    """Response for an accepted render."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    render_id: str = Field(alias="renderId")
    message: str
    estimated_time: str = Field(alias="estimatedTime")


class RenderStatusResponse(BaseModel):
    """Render job status."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    output_url: Optional[str] = Field(default=None, alias="outputUrl")
    error: Optional[str] = None
    processing_time: Optional[int] = Field(default=None, alias="processingTime")
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")


def _error_response(e: WatercolorError) -> HTTPException:
    """Convert a service error to an HTTP error."""
    if e.status_code >= 500:
        logger.error(f"Render request failed ({e.error_type}): {e.message}")
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


def _to_status_response(job: JobRecord) -> RenderStatusResponse:
    return RenderStatusResponse(
        id=job.id,
        status=job.status.value,
        output_url=job.output_image_url,
        error=job.error_message,
        processing_time=job.processing_time_ms,
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
    )


@router.post("/", response_model=RenderAccepted, status_code=202)
async def create_render(
    body: RenderCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: RenderService = Depends(get_render_service),
):
    """Submit an image for watercolor rendering.

    The render runs in the background; poll GET /api/render/{id} for the result.
    """
    try:
        result = await service.submit(user_id, body.to_request())
    except WatercolorError as e:
        raise _error_response(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except Exception as e:
        logger.error(f"Render API error: {e}")
        raise HTTPException(
            status_code=500,
            detail={"error": "Internal server error", "message": str(e)},
        ) from e

    logger.info(f"Accepted render {result.render_id} for user {user_id}")
    return RenderAccepted(
        render_id=result.render_id,
        message=result.message,
        estimated_time=result.estimated_time,
    )


@router.get("/tiers")
async def get_quality_tiers(service: RenderService = Depends(get_render_service)):
    """Get available quality tiers."""
    return {"tiers": [tier.to_dict() for tier in service.tier_policy.all()]}


@router.get("/pipeline/status")
async def get_pipeline_status(service: RenderService = Depends(get_render_service)):
    """Check render pipeline availability and status."""
    return {
        "available": service.is_available,
        "provider": "replicate" if service.is_available else None,
        "workers_running": service.queue.is_running,
        "active_jobs": service.queue.active,
        "queued_jobs": service.queue.depth,
    }


@router.get("/", response_model=list[RenderStatusResponse])
async def list_renders(
    project_id: Optional[str] = Query(default=None, alias="projectId"),
    limit: int = Query(default=20, ge=1, le=100),
    user_id: Optional[str] = Depends(get_current_user_id),
    service: RenderService = Depends(get_render_service),
):
    """List the caller's renders, newest first."""
    try:
        jobs = service.list_renders(user_id, project_id=project_id)
    except WatercolorError as e:
        raise _error_response(e) from e

    return [_to_status_response(job) for job in jobs[:limit]]


@router.get("/{render_id}", response_model=RenderStatusResponse)
async def get_render(
    render_id: str,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: RenderService = Depends(get_render_service),
):
    """Get render job status."""
    try:
        job = service.get_status(render_id, user_id)
    except WatercolorError as e:
        raise _error_response(e) from e
    except Exception as e:
        logger.error(f"Status API error: {e}")
        raise HTTPException(
            status_code=500, detail={"error": "Internal server error"}
        ) from e

    return _to_status_response(job)
