"""Data types for the render pipeline."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Optional


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Render job status."""

    PENDING = "pending"  # reserved, the service creates jobs as processing
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class RenderStyle(str, Enum):
    """Watercolor styles offered to users."""

    CLASSIC = "classic"
    LOOSE = "loose"
    ARCHITECTURAL = "architectural"
    MINIMAL = "minimal"


@dataclass
class RenderRequest:
    """A caller's request to render one image."""

    image_url: str
    room_type: str
    style: str = RenderStyle.CLASSIC.value
    tier: str = "free"
    atmosphere: Optional[str] = None
    color_tone: Optional[str] = None
    project_id: Optional[str] = None


class PromptPair(NamedTuple):
    """Positive and negative prompts for a style-transfer stage."""

    prompt: str
    negative_prompt: str


@dataclass
class PipelineResult:
    """Outcome of a successful pipeline run."""

    output_image_url: str
    backend_job_id: str
    stages_run: int = 0


@dataclass
class SubmitResult:
    """Returned to the caller as soon as a render is accepted."""

    render_id: str
    estimated_time: str
    message: str = "Processing started"


@dataclass
class JobUpdate:
    """Terminal patch applied to a job record."""

    status: JobStatus
    output_image_url: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    backend_job_id: Optional[str] = None


@dataclass
class JobRecord:
    """Persistent state of a single render request."""

    user_id: str
    input_image_url: str
    style: str
    settings: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    project_id: Optional[str] = None
    status: JobStatus = JobStatus.PROCESSING
    output_image_url: Optional[str] = None
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    backend_job_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def tier(self) -> str:
        return self.settings.get("tier", "")

    @property
    def is_complete(self) -> bool:
        """Check if job reached a terminal status."""
        return self.status.is_terminal

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "project_id": self.project_id,
            "input_image_url": self.input_image_url,
            "style": self.style,
            "settings": dict(self.settings),
            "status": self.status.value,
            "output_image_url": self.output_image_url,
            "error_message": self.error_message,
            "processing_time_ms": self.processing_time_ms,
            "backend_job_id": self.backend_job_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JobRecord":
        """Create JobRecord from dictionary."""
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        elif created_at is None:
            created_at = utcnow()

        updated_at = data.get("updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at)
        elif updated_at is None:
            updated_at = created_at

        return cls(
            id=data.get("id", str(uuid.uuid4())),
            user_id=data.get("user_id", ""),
            project_id=data.get("project_id"),
            input_image_url=data.get("input_image_url", ""),
            style=data.get("style", RenderStyle.CLASSIC.value),
            settings=dict(data.get("settings") or {}),
            status=JobStatus(data.get("status", JobStatus.PROCESSING.value)),
            output_image_url=data.get("output_image_url"),
            error_message=data.get("error_message"),
            processing_time_ms=data.get("processing_time_ms"),
            backend_job_id=data.get("backend_job_id"),
            created_at=created_at,
            updated_at=updated_at,
        )
