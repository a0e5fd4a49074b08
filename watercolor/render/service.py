"""Render service: entitlement checks, job creation and background processing."""

import logging
import time
from datetime import timedelta
from typing import List, Optional

from watercolor.billing.profiles import BillingStore

from .errors import (
    InsufficientCreditsError,
    MissingCredentialError,
    ProfileNotFoundError,
    UnauthorizedError,
    UpgradeRequiredError,
    WatercolorError,
)
from .job_store import JobStore
from .pipeline import WatercolorPipeline
from .prompt_builder import PromptBuilder
from .queue import RenderQueue
from .tiers import TierPolicy
from .types import JobRecord, JobStatus, JobUpdate, RenderRequest, SubmitResult

logger = logging.getLogger(__name__)

ESTIMATED_TIMES = {
    "free": "10-15 seconds",
    "professional": "20-30 seconds",
    "studio": "45-60 seconds",
}
DEFAULT_ESTIMATED_TIME = "30 seconds"


def estimated_time(tier: str) -> str:
    """Human-readable processing estimate for a tier."""
    return ESTIMATED_TIMES.get(tier, DEFAULT_ESTIMATED_TIME)


class RenderService:
    """Accepts render requests and runs them through the pipeline in the background."""

    def __init__(
        self,
        job_store: JobStore,
        billing: BillingStore,
        pipeline: Optional[WatercolorPipeline] = None,
        tier_policy: Optional[TierPolicy] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        max_workers: int = RenderQueue.DEFAULT_MAX_WORKERS,
        stale_after: Optional[timedelta] = None,
        sweep_interval: Optional[float] = None,
    ):
        """
        Initialize the render service.

        Args:
            job_store: Store for job records
            billing: Billing profile store
            pipeline: Watercolor pipeline; None when the backend is not configured
            tier_policy: Tier lookup (default tiers if not provided)
            prompt_builder: Prompt builder (default if not provided)
            max_workers: Maximum concurrent background renders
            stale_after: Fail processing jobs older than this during sweeps
            sweep_interval: Seconds between stale job sweeps
        """
        self.job_store = job_store
        self.billing = billing
        self.pipeline = pipeline
        self.tier_policy = tier_policy or TierPolicy()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.stale_after = stale_after
        self.queue = RenderQueue(
            self.process_render,
            max_workers=max_workers,
            sweep=self.reconcile_stale if stale_after else None,
            sweep_interval=sweep_interval,
        )

    @property
    def is_available(self) -> bool:
        """Check if an image generation backend is configured."""
        return self.pipeline is not None

    async def start(self) -> None:
        """Start background workers, resuming jobs left in processing."""
        recovered = [j.id for j in self.job_store.list_by_status(JobStatus.PROCESSING)]
        if recovered:
            logger.info(f"Resuming {len(recovered)} render jobs left in processing")
        await self.queue.start(recovered)

    async def stop(self) -> None:
        await self.queue.stop()

    async def submit(self, user_id: Optional[str], request: RenderRequest) -> SubmitResult:
        """
        Validate entitlement and queue a render.

        Args:
            user_id: Authenticated user, None if the caller is anonymous
            request: Render request

        Returns:
            SubmitResult with the new render ID and estimated time

        Raises:
            UnauthorizedError: No authenticated user
            ProfileNotFoundError: User has no billing profile
            UpgradeRequiredError: Paid tier requested on a free subscription
            InsufficientCreditsError: Free subscription without credits
            UnknownTierError: Tier is not one of the enumerated tiers
            MissingCredentialError: No image generation backend configured
        """
        if not user_id:
            raise UnauthorizedError()

        profile = self.billing.get_profile(user_id)
        if profile is None:
            raise ProfileNotFoundError()

        if request.tier != "free" and profile.is_free:
            raise UpgradeRequiredError()

        if profile.is_free and profile.credits_remaining <= 0:
            raise InsufficientCreditsError()

        self.tier_policy.resolve(request.tier)
        self.prompt_builder.build(
            request.room_type, request.style, request.atmosphere, request.color_tone
        )

        if not self.is_available:
            raise MissingCredentialError()

        job = self.job_store.create(user_id, request, profile.subscription_tier)
        self.queue.enqueue(job.id)

        return SubmitResult(render_id=job.id, estimated_time=estimated_time(request.tier))

    def get_status(self, job_id: str, owner_id: Optional[str]) -> JobRecord:
        """
        Get a render owned by the caller.

        Raises:
            UnauthorizedError: No authenticated user
            RenderNotFoundError: Job missing or owned by another user
        """
        if not owner_id:
            raise UnauthorizedError()
        return self.job_store.get(job_id, owner_id)

    def list_renders(
        self,
        owner_id: Optional[str],
        project_id: Optional[str] = None,
    ) -> List[JobRecord]:
        """List the caller's renders, newest first."""
        if not owner_id:
            raise UnauthorizedError()
        return self.job_store.list_for_user(owner_id, project_id=project_id)

    async def process_render(self, job_id: str) -> None:
        """
        Run a queued render to a terminal status.

        Never raises: pipeline errors become a failed job record. A credit is
        consumed only after a free-subscription job is marked completed.
        """
        started = time.monotonic()

        try:
            job = self.job_store.claim(job_id)
            if job.is_complete:
                logger.warning(f"Render job {job_id} already {job.status.value}, skipping")
                return

            tier = self.tier_policy.resolve(job.tier)
            settings = job.settings
            prompts = self.prompt_builder.build(
                settings.get("room_type") or "room",
                job.style,
                settings.get("atmosphere"),
                settings.get("color_tone"),
            )

            if self.pipeline is None:
                raise MissingCredentialError()

            logger.info(f"Processing render job {job_id} on {tier.name} tier")
            result = await self.pipeline.run(job.input_image_url, tier, prompts)

            self.job_store.update(
                job_id,
                JobUpdate(
                    status=JobStatus.COMPLETED,
                    output_image_url=result.output_image_url,
                    processing_time_ms=self._elapsed_ms(started),
                    backend_job_id=result.backend_job_id,
                ),
            )

        except Exception as e:
            logger.error(f"Render job {job_id} failed: {e}")
            self._mark_failed(job_id, e, self._elapsed_ms(started))
            return

        if job.tier == "free" and settings.get("subscription_tier") == "free":
            self._consume_credit(job.user_id, job_id)

    def reconcile_stale(self, max_age: Optional[timedelta] = None) -> List[str]:
        """Fail jobs stuck in processing longer than max_age (default stale_after)."""
        max_age = max_age or self.stale_after
        if not max_age:
            return []
        return self.job_store.fail_stale(max_age)

    def _mark_failed(self, job_id: str, error: Exception, elapsed_ms: int) -> None:
        if isinstance(error, WatercolorError):
            message = error.message
        else:
            message = str(error) or "Processing failed"

        try:
            self.job_store.update(
                job_id,
                JobUpdate(
                    status=JobStatus.FAILED,
                    error_message=message,
                    processing_time_ms=elapsed_ms,
                ),
            )
        except Exception:
            # Left in processing; the stale sweep is the only recovery
            logger.exception(f"Could not mark render job {job_id} as failed")

    def _consume_credit(self, user_id: str, job_id: str) -> None:
        try:
            self.billing.decrement_credits(user_id)
        except Exception:
            logger.exception(
                f"Credit deduction failed for user {user_id} after render job {job_id}"
            )

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
