"""Tiered watercolor render pipeline.

This module provides:
- TierPolicy: Quality tiers and their ordered stage lists
- PromptBuilder: Watercolor prompts from room/style hints
- WatercolorPipeline: Runs a tier's stages against the generation backend
- JobStore / JsonFileJobStore: Render job records, scoped by owner
- RenderService: Entitlement checks, job creation and background processing

Example usage:
    from watercolor.render import RenderService, RenderRequest

    service = RenderService(job_store, billing, pipeline)
    await service.start()
    result = await service.submit(user_id, RenderRequest(image_url=url, room_type="kitchen"))

    # Poll for status
    job = service.get_status(result.render_id, user_id)
    print(job.status, job.output_image_url)
"""

from .errors import (
    BackendError,
    BackendUnavailableError,
    InsufficientCreditsError,
    InvalidTransitionError,
    MissingCredentialError,
    ProfileNotFoundError,
    RenderNotFoundError,
    UnauthorizedError,
    UnknownTierError,
    UpgradeRequiredError,
    WatercolorError,
)
from .job_store import JobStore, JsonFileJobStore
from .pipeline import WatercolorPipeline
from .prompt_builder import PromptBuilder
from .queue import RenderQueue
from .service import ESTIMATED_TIMES, RenderService, estimated_time
from .tiers import StageSpec, TierConfig, TierPolicy
from .types import (
    JobRecord,
    JobStatus,
    JobUpdate,
    PipelineResult,
    PromptPair,
    RenderRequest,
    RenderStyle,
    SubmitResult,
)

__all__ = [
    # Types
    "JobRecord",
    "JobStatus",
    "JobUpdate",
    "PipelineResult",
    "PromptPair",
    "RenderRequest",
    "RenderStyle",
    "SubmitResult",
    "StageSpec",
    "TierConfig",
    # Components
    "TierPolicy",
    "PromptBuilder",
    "WatercolorPipeline",
    "JobStore",
    "JsonFileJobStore",
    "RenderQueue",
    "RenderService",
    "ESTIMATED_TIMES",
    "estimated_time",
    # Exceptions
    "WatercolorError",
    "UnauthorizedError",
    "ProfileNotFoundError",
    "UpgradeRequiredError",
    "InsufficientCreditsError",
    "RenderNotFoundError",
    "UnknownTierError",
    "MissingCredentialError",
    "BackendError",
    "BackendUnavailableError",
    "InvalidTransitionError",
]
