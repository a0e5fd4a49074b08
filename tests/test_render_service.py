"""Tests for the render service and its background processing."""

import asyncio
import json
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from watercolor.billing import BillingProfile, BillingStore
from watercolor.render import (
    BackendError,
    InsufficientCreditsError,
    JobStatus,
    JobStore,
    JsonFileJobStore,
    MissingCredentialError,
    ProfileNotFoundError,
    RenderNotFoundError,
    RenderQueue,
    RenderRequest,
    RenderService,
    UnauthorizedError,
    UnknownTierError,
    UpgradeRequiredError,
    WatercolorPipeline,
    estimated_time,
)
from watercolor.render.types import utcnow
from watercolor.replicate import GenerationResult


MODELS = {"sdxl": "stability-ai/sdxl:v1", "controlnet": "lucataco/controlnet-sdxl:v2"}


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def billing():
    """Billing store with one user per subscription situation."""
    return BillingStore([
        BillingProfile(user_id="free-user", subscription_tier="free", credits_remaining=3),
        BillingProfile(user_id="broke-user", subscription_tier="free", credits_remaining=0),
        BillingProfile(user_id="last-credit", subscription_tier="free", credits_remaining=1),
        BillingProfile(user_id="pro-user", subscription_tier="professional", credits_remaining=0),
        BillingProfile(user_id="studio-user", subscription_tier="studio", credits_remaining=5),
    ])


@pytest.fixture
def mock_client():
    """Image generation client that always succeeds."""
    client = MagicMock()
    client.generate = AsyncMock(
        return_value=GenerationResult(image_url="https://replicate.delivery/out.png", job_id="pred123")
    )
    return client


@pytest.fixture
def failing_client():
    """Client whose second call fails, as in a mid-pipeline backend error."""
    client = MagicMock()
    client.generate = AsyncMock(
        side_effect=[
            GenerationResult(image_url="https://replicate.delivery/edges.png", job_id="pred1"),
            BackendError("Prediction pred2 failed: CUDA out of memory"),
        ]
    )
    return client


@pytest.fixture
def job_store():
    """Empty job store."""
    return JobStore()


@pytest.fixture
def service(job_store, billing, mock_client):
    """Render service over the mock client."""
    return RenderService(job_store, billing, WatercolorPipeline(mock_client, MODELS))


def make_request(tier="free", **kwargs):
    """Build a render request."""
    defaults = dict(
        image_url="https://example.com/room.jpg",
        room_type="living room",
        style="classic",
        tier=tier,
    )
    defaults.update(kwargs)
    return RenderRequest(**defaults)


async def run_to_completion(service, user_id, request):
    """Submit a render and wait for the background worker."""
    await service.start()
    try:
        result = await service.submit(user_id, request)
        await service.queue.join()
    finally:
        await service.stop()
    return result


# ============================================================================
# Entitlement Tests
# ============================================================================


class TestSubmitEntitlement:
    """Tests for synchronous submission checks."""

    @pytest.mark.asyncio
    async def test_anonymous_rejected(self, service):
        """Test submissions need a user."""
        for user_id in [None, ""]:
            with pytest.raises(UnauthorizedError) as exc_info:
                await service.submit(user_id, make_request())
            assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_profile(self, service):
        """Test users without a billing profile are rejected."""
        with pytest.raises(ProfileNotFoundError) as exc_info:
            await service.submit("ghost", make_request())
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_upgrade_required(self, service, job_store):
        """Test free subscriptions cannot use paid tiers."""
        with pytest.raises(UpgradeRequiredError) as exc_info:
            await service.submit("free-user", make_request("professional"))

        assert exc_info.value.status_code == 403
        assert exc_info.value.to_dict()["error"] == "Upgrade required"
        assert job_store.count() == 0

    @pytest.mark.asyncio
    async def test_no_credits(self, service, job_store):
        """Test free subscriptions need credits."""
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await service.submit("broke-user", make_request("free"))

        assert exc_info.value.status_code == 403
        assert exc_info.value.to_dict()["error"] == "No credits remaining"
        assert job_store.count() == 0

    @pytest.mark.asyncio
    async def test_upgrade_checked_before_credits(self, service):
        """Test a broke free user asking for studio sees the upgrade message."""
        with pytest.raises(UpgradeRequiredError):
            await service.submit("broke-user", make_request("studio"))

    @pytest.mark.asyncio
    async def test_paid_subscription_ignores_credits(self, service):
        """Test paid subscriptions render without credits."""
        result = await service.submit("pro-user", make_request("professional"))
        assert result.render_id

    @pytest.mark.asyncio
    async def test_unknown_tier(self, service):
        """Test tiers outside the enumeration are rejected."""
        with pytest.raises(UnknownTierError):
            await service.submit("pro-user", make_request("ultra"))

    @pytest.mark.asyncio
    async def test_unknown_style(self, service):
        """Test styles outside the enumeration are rejected."""
        with pytest.raises(ValueError):
            await service.submit("pro-user", make_request(style="cubist"))

    @pytest.mark.asyncio
    async def test_backend_not_configured(self, job_store, billing):
        """Test submissions fail fast without a backend."""
        service = RenderService(job_store, billing, pipeline=None)

        with pytest.raises(MissingCredentialError) as exc_info:
            await service.submit("free-user", make_request())

        assert exc_info.value.status_code == 503
        assert job_store.count() == 0


class TestSubmitResult:
    """Tests for accepted submissions."""

    @pytest.mark.asyncio
    async def test_estimated_times(self, service):
        """Test estimated time per tier."""
        expected = {
            "free": ("free-user", "10-15 seconds"),
            "professional": ("studio-user", "20-30 seconds"),
            "studio": ("studio-user", "45-60 seconds"),
        }
        for tier, (user_id, estimate) in expected.items():
            result = await service.submit(user_id, make_request(tier))
            assert result.estimated_time == estimate

    def test_estimated_time_fallback(self):
        """Test unrecognized tiers fall back to 30 seconds."""
        assert estimated_time("gold") == "30 seconds"

    @pytest.mark.asyncio
    async def test_creates_processing_record(self, service):
        """Test submission stores a processing job for the caller."""
        result = await service.submit(
            "free-user", make_request(atmosphere="sunny", color_tone="pastel", project_id="p1")
        )

        job = service.get_status(result.render_id, "free-user")
        assert job.status == JobStatus.PROCESSING
        assert job.project_id == "p1"
        assert job.settings["tier"] == "free"
        assert job.settings["subscription_tier"] == "free"
        assert job.settings["color_tone"] == "pastel"

    @pytest.mark.asyncio
    async def test_returns_before_pipeline_runs(self, service, mock_client):
        """Test submission does not wait for the backend."""
        result = await service.submit("free-user", make_request())

        assert result.message == "Processing started"
        mock_client.generate.assert_not_awaited()
        assert service.queue.depth == 1

    @pytest.mark.asyncio
    async def test_credits_not_taken_on_submit(self, service, billing):
        """Test credits are only consumed after completion."""
        await service.submit("free-user", make_request())
        assert billing.get_profile("free-user").credits_remaining == 3


# ============================================================================
# Status Tests
# ============================================================================


class TestGetStatus:
    """Tests for status lookup."""

    @pytest.mark.asyncio
    async def test_foreign_job_not_found(self, service):
        """Test users cannot see each other's renders."""
        result = await service.submit("free-user", make_request())

        with pytest.raises(RenderNotFoundError):
            service.get_status(result.render_id, "studio-user")

    def test_missing_job(self, service):
        """Test unknown IDs."""
        with pytest.raises(RenderNotFoundError):
            service.get_status("nope", "free-user")

    def test_anonymous_status(self, service):
        """Test status lookup needs a user."""
        with pytest.raises(UnauthorizedError):
            service.get_status("anything", None)

    @pytest.mark.asyncio
    async def test_terminal_status_idempotent(self, service):
        """Test repeated lookups of a finished render are identical."""
        result = await run_to_completion(service, "free-user", make_request())

        first = service.get_status(result.render_id, "free-user")
        second = service.get_status(result.render_id, "free-user")
        assert first.status == JobStatus.COMPLETED
        assert first.to_dict() == second.to_dict()

    @pytest.mark.asyncio
    async def test_list_renders(self, service):
        """Test listing the caller's renders."""
        await service.submit("studio-user", make_request("studio", project_id="a"))
        await service.submit("studio-user", make_request("free", project_id="b"))
        await service.submit("free-user", make_request())

        assert len(service.list_renders("studio-user")) == 2
        assert len(service.list_renders("studio-user", project_id="a")) == 1
        with pytest.raises(UnauthorizedError):
            service.list_renders(None)


# ============================================================================
# Background Processing Tests
# ============================================================================


class TestProcessRender:
    """Tests for the background completion handler."""

    @pytest.mark.asyncio
    async def test_free_render_end_to_end(self, service, billing):
        """Test a free render completes and consumes exactly one credit."""
        result = await run_to_completion(
            service, "free-user", make_request("free", room_type="living room", style="classic")
        )

        assert result.estimated_time == "10-15 seconds"
        job = service.get_status(result.render_id, "free-user")
        assert job.status == JobStatus.COMPLETED
        assert job.output_image_url == "https://replicate.delivery/out.png"
        assert job.backend_job_id == "pred123"
        assert job.error_message is None
        assert job.processing_time_ms is not None
        assert job.updated_at >= job.created_at
        assert billing.get_profile("free-user").credits_remaining == 2

    @pytest.mark.asyncio
    async def test_failed_free_render_keeps_credit(self, job_store, billing):
        """Test a failed free render does not consume a credit."""
        client = MagicMock()
        client.generate = AsyncMock(side_effect=BackendError("Prediction failed: NSFW"))
        service = RenderService(job_store, billing, WatercolorPipeline(client, MODELS))

        result = await run_to_completion(service, "free-user", make_request())

        job = service.get_status(result.render_id, "free-user")
        assert job.status == JobStatus.FAILED
        assert "NSFW" in job.error_message
        assert job.output_image_url is None
        assert billing.get_profile("free-user").credits_remaining == 3

    @pytest.mark.asyncio
    async def test_studio_mid_pipeline_failure(self, job_store, billing, failing_client):
        """Test a backend error in the second studio stage fails the job."""
        service = RenderService(job_store, billing, WatercolorPipeline(failing_client, MODELS))

        result = await run_to_completion(service, "studio-user", make_request("studio"))

        job = service.get_status(result.render_id, "studio-user")
        assert job.status == JobStatus.FAILED
        assert job.error_message
        assert "CUDA out of memory" in job.error_message
        assert failing_client.generate.await_count == 2
        assert billing.get_profile("studio-user").credits_remaining == 5

    @pytest.mark.asyncio
    async def test_paid_render_keeps_credits(self, service, billing):
        """Test paid subscriptions never consume credits."""
        result = await run_to_completion(service, "studio-user", make_request("free"))

        assert service.get_status(result.render_id, "studio-user").status == JobStatus.COMPLETED
        assert billing.get_profile("studio-user").credits_remaining == 5

    @pytest.mark.asyncio
    async def test_last_credit(self, service, billing):
        """Test the last credit is consumed and further renders are refused."""
        await run_to_completion(service, "last-credit", make_request())

        assert billing.get_profile("last-credit").credits_remaining == 0
        with pytest.raises(InsufficientCreditsError):
            await service.submit("last-credit", make_request())

    @pytest.mark.asyncio
    async def test_duplicate_submissions_consume_two_credits(self, service, billing):
        """Test identical concurrent submissions are independent."""
        await service.start()
        try:
            a = await service.submit("free-user", make_request())
            b = await service.submit("free-user", make_request())
            await service.queue.join()
        finally:
            await service.stop()

        assert a.render_id != b.render_id
        assert billing.get_profile("free-user").credits_remaining == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_marks_failed(self, service, billing):
        """Test a non-backend exception still terminates the job."""
        with patch.object(service.pipeline, "run", AsyncMock(side_effect=RuntimeError("boom"))):
            result = await run_to_completion(service, "free-user", make_request())

        job = service.get_status(result.render_id, "free-user")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "boom"
        assert billing.get_profile("free-user").credits_remaining == 3

    @pytest.mark.asyncio
    async def test_completion_update_failure_falls_back_to_failed(self, service, job_store, billing):
        """Test the catch-all path records failure when the completed update fails."""
        result = await service.submit("free-user", make_request())
        real_update = job_store.update
        calls = []

        def flaky_update(job_id, patch_):
            calls.append(patch_.status)
            if len(calls) == 1:
                raise ConnectionError("store unavailable")
            return real_update(job_id, patch_)

        with patch.object(job_store, "update", side_effect=flaky_update):
            await service.process_render(result.render_id)

        job = service.get_status(result.render_id, "free-user")
        assert calls == [JobStatus.COMPLETED, JobStatus.FAILED]
        assert job.status == JobStatus.FAILED
        assert job.error_message == "store unavailable"
        assert billing.get_profile("free-user").credits_remaining == 3

    @pytest.mark.asyncio
    async def test_secondary_failure_is_logged(self, service, job_store, caplog):
        """Test a failing failure-update is logged and not raised."""
        result = await service.submit("free-user", make_request())

        with patch.object(job_store, "update", side_effect=ConnectionError("store down")):
            with caplog.at_level(logging.ERROR):
                await service.process_render(result.render_id)

        assert "Could not mark render job" in caplog.text
        assert service.get_status(result.render_id, "free-user").status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_credit_failure_keeps_completion(self, service, billing, caplog):
        """Test the job stays completed if the credit decrement fails."""
        result = await service.submit("free-user", make_request())

        with patch.object(billing, "decrement_credits", side_effect=ConnectionError("billing down")):
            with caplog.at_level(logging.ERROR):
                await service.process_render(result.render_id)

        assert service.get_status(result.render_id, "free-user").status == JobStatus.COMPLETED
        assert "Credit deduction failed" in caplog.text

    @pytest.mark.asyncio
    async def test_terminal_job_not_reprocessed(self, service, mock_client, billing):
        """Test a job already finished is skipped by the worker."""
        result = await run_to_completion(service, "free-user", make_request())
        mock_client.generate.reset_mock()

        await service.process_render(result.render_id)

        mock_client.generate.assert_not_awaited()
        assert billing.get_profile("free-user").credits_remaining == 2

    @pytest.mark.asyncio
    async def test_unknown_job_does_not_raise(self, service):
        """Test processing a missing ID is logged, not raised."""
        await service.process_render("missing")


# ============================================================================
# Durability Tests
# ============================================================================


class TestDurability:
    """Tests for queue recovery and stale job reconciliation."""

    @pytest.mark.asyncio
    async def test_backlog_processed_on_start(self, service):
        """Test jobs submitted before start are run once workers start."""
        result = await service.submit("free-user", make_request())
        assert not service.queue.is_running

        await service.start()
        await service.queue.join()
        await service.stop()

        assert service.get_status(result.render_id, "free-user").status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_restart_resumes_processing_jobs(self, tmp_path, billing, mock_client):
        """Test a new process picks up jobs left in processing."""
        path = tmp_path / "jobs.json"
        first = RenderService(JsonFileJobStore(path), billing, WatercolorPipeline(mock_client, MODELS))
        result = await first.submit("free-user", make_request())
        # Process exits before any worker ran

        second = RenderService(JsonFileJobStore(path), billing, WatercolorPipeline(mock_client, MODELS))
        await second.start()
        await second.queue.join()
        await second.stop()

        job = second.get_status(result.render_id, "free-user")
        assert job.status == JobStatus.COMPLETED
        assert billing.get_profile("free-user").credits_remaining == 2

    @pytest.mark.asyncio
    async def test_reconcile_stale(self, job_store, billing, mock_client):
        """Test stale processing jobs are failed."""
        service = RenderService(
            job_store, billing, WatercolorPipeline(mock_client, MODELS),
            stale_after=timedelta(minutes=15),
        )
        result = await service.submit("free-user", make_request())
        job_store._jobs[result.render_id].updated_at = utcnow() - timedelta(hours=2)

        assert service.reconcile_stale() == [result.render_id]
        job = service.get_status(result.render_id, "free-user")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "Render timed out"

    @pytest.mark.asyncio
    async def test_recovered_old_job_survives_sweep(self, tmp_path, billing):
        """Test a job resumed after long downtime is not timed out mid-run."""
        path = tmp_path / "jobs.json"
        result = await RenderService(
            JsonFileJobStore(path), billing, WatercolorPipeline(MagicMock(), MODELS)
        ).submit("free-user", make_request())

        records = json.loads(path.read_text())
        records[0]["updated_at"] = (utcnow() - timedelta(minutes=20)).isoformat()
        path.write_text(json.dumps(records))

        async def slow_generate(model_id, parameters):
            await asyncio.sleep(0.2)
            return GenerationResult(image_url="https://replicate.delivery/late.png", job_id="pred9")

        client = MagicMock()
        client.generate = AsyncMock(side_effect=slow_generate)
        service = RenderService(
            JsonFileJobStore(path), billing, WatercolorPipeline(client, MODELS),
            stale_after=timedelta(minutes=15),
            sweep_interval=0.05,
        )

        await service.start()
        await service.queue.join()
        await service.stop()

        job = service.get_status(result.render_id, "free-user")
        assert job.status == JobStatus.COMPLETED
        assert job.output_image_url == "https://replicate.delivery/late.png"
        assert billing.get_profile("free-user").credits_remaining == 2

    def test_reconcile_disabled(self, service):
        """Test no sweep without a stale threshold."""
        assert service.reconcile_stale() == []

    @pytest.mark.asyncio
    async def test_reconcile_explicit_max_age(self, service, job_store):
        """Test an explicit age overrides the configured threshold."""
        result = await service.submit("free-user", make_request())
        job_store._jobs[result.render_id].updated_at = utcnow() - timedelta(minutes=5)

        assert service.reconcile_stale(timedelta(hours=1)) == []
        assert service.reconcile_stale(timedelta(minutes=1)) == [result.render_id]


class TestRenderQueue:
    """Tests for the worker pool."""

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        """Test no more than max_workers jobs run at once."""
        running = 0
        peak = 0
        seen = []

        async def handler(job_id):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            seen.append(job_id)
            running -= 1

        queue = RenderQueue(handler, max_workers=2)
        await queue.start()
        for n in range(6):
            queue.enqueue(f"job{n}")
        await queue.join()
        await queue.stop()

        assert peak == 2
        assert sorted(seen) == [f"job{n}" for n in range(6)]

    @pytest.mark.asyncio
    async def test_handler_crash_does_not_stop_worker(self):
        """Test a raising handler does not kill the worker."""
        seen = []

        async def handler(job_id):
            if job_id == "bad":
                raise RuntimeError("crash")
            seen.append(job_id)

        queue = RenderQueue(handler, max_workers=1)
        await queue.start(["bad", "good"])
        await queue.join()
        await queue.stop()

        assert seen == ["good"]

    @pytest.mark.asyncio
    async def test_start_deduplicates(self):
        """Test recovered IDs already in the backlog run once."""
        seen = []

        async def handler(job_id):
            seen.append(job_id)

        queue = RenderQueue(handler, max_workers=1)
        queue.enqueue("a")
        await queue.start(["a", "b"])
        await queue.join()
        await queue.stop()

        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_periodic_sweep(self):
        """Test the sweep callable runs on its interval."""
        sweep = MagicMock()

        async def handler(job_id):
            pass

        queue = RenderQueue(handler, sweep=sweep, sweep_interval=0.01)
        await queue.start()
        await asyncio.sleep(0.05)
        await queue.stop()

        assert sweep.call_count >= 1

    def test_invalid_worker_count(self):
        """Test at least one worker is required."""
        with pytest.raises(ValueError):
            RenderQueue(AsyncMock(), max_workers=0)
