"""Replicate client for image generation predictions."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import replicate
from replicate.exceptions import ReplicateError

from watercolor.render.errors import (
    BackendError,
    BackendUnavailableError,
    MissingCredentialError,
)

from .config import ReplicateConfig

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Output of a finished prediction."""

    image_url: str
    job_id: str


@dataclass
class RemoteStatus:
    """Snapshot of a prediction on the backend."""

    job_id: str
    status: str  # "starting", "processing", "succeeded", "failed", "canceled"
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def from_prediction(cls, prediction: Any) -> "RemoteStatus":
        return cls(
            job_id=prediction.id,
            status=prediction.status,
            output=prediction.output,
            error=str(prediction.error) if prediction.error else None,
        )


class ImageGenerationClient:
    """Wraps the Replicate predictions API."""

    def __init__(self, config: ReplicateConfig, client: Optional[Any] = None):
        """
        Initialize the client.

        Args:
            config: Replicate configuration with API token
            client: Optional pre-built Replicate client (tests pass a fake)

        Raises:
            MissingCredentialError: If no API token is configured
        """
        if not config.is_configured():
            raise MissingCredentialError()

        self.config = config
        self._client = client or replicate.Client(api_token=config.api_token)

    async def generate(self, model_id: str, parameters: dict) -> GenerationResult:
        """
        Run a prediction and wait for its output.

        Args:
            model_id: "owner/name:version" or "owner/name"
            parameters: Model input

        Returns:
            GenerationResult with the output image URL and prediction id

        Raises:
            BackendError: If the prediction does not succeed
            BackendUnavailableError: If Replicate cannot be reached
        """
        logger.info(f"Starting prediction on {model_id.split(':')[0]}")

        try:
            if ":" in model_id:
                version = model_id.split(":", 1)[1]
                prediction = await self._client.predictions.async_create(
                    version=version, input=parameters
                )
            else:
                prediction = await self._client.predictions.async_create(
                    model=model_id, input=parameters
                )
            await prediction.async_wait()
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Replicate unreachable: {e}") from e
        except ReplicateError as e:
            raise BackendError(f"Replicate error: {e}") from e

        if prediction.status != "succeeded":
            raise BackendError(
                f"Prediction {prediction.id} {prediction.status}: "
                f"{prediction.error or 'no error reported'}"
            )

        image_url = self._first_output_url(prediction.output)
        if not image_url:
            raise BackendError(f"Prediction {prediction.id} returned no output")

        logger.info(f"Prediction {prediction.id} succeeded")
        return GenerationResult(image_url=image_url, job_id=prediction.id)

    async def get_status(self, job_id: str) -> RemoteStatus:
        """Get the current state of a prediction."""
        try:
            prediction = await self._client.predictions.async_get(job_id)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Replicate unreachable: {e}") from e
        except ReplicateError as e:
            raise BackendError(f"Replicate error: {e}") from e
        return RemoteStatus.from_prediction(prediction)

    async def cancel(self, job_id: str) -> RemoteStatus:
        """Cancel a running prediction."""
        try:
            prediction = await self._client.predictions.async_cancel(job_id)
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Replicate unreachable: {e}") from e
        except ReplicateError as e:
            raise BackendError(f"Replicate error: {e}") from e
        logger.info(f"Cancelled prediction {job_id}")
        return RemoteStatus.from_prediction(prediction)

    @staticmethod
    def _first_output_url(output: Any) -> Optional[str]:
        """Normalize prediction output to a single URL."""
        if isinstance(output, (list, tuple)):
            if not output:
                return None
            output = output[0]
        if output is None:
            return None
        return getattr(output, "url", None) or str(output)
