"""Tiered watercolor pipeline over the image generation backend."""

import logging
from typing import Dict

from .tiers import (
    DEFAULT_SCHEDULER,
    EDGE_CONDITIONING,
    STYLE_TRANSFER,
    StageSpec,
    TierConfig,
)
from .types import PipelineResult, PromptPair

logger = logging.getLogger(__name__)


class WatercolorPipeline:
    """Runs a tier's stages in order, feeding each output into the next stage."""

    CONTROL_TYPE = "canny"
    SEED = -1  # random seed on every call

    def __init__(self, client, models: Dict[str, str]):
        """
        Initialize the pipeline.

        Args:
            client: ImageGenerationClient (or compatible) used for every stage
            models: Stage model key -> backend model reference
        """
        self.client = client
        self.models = models

    async def run(
        self,
        image_url: str,
        tier: TierConfig,
        prompts: PromptPair,
    ) -> PipelineResult:
        """
        Render an image through the tier's stages.

        Args:
            image_url: Source image URL
            tier: Tier configuration with the ordered stage list
            prompts: Style-transfer prompts

        Returns:
            PipelineResult with the final image URL and the last backend job id

        Raises:
            BackendError: If any stage fails (no retries, no partial result)
            BackendUnavailableError: If the backend cannot be reached
        """
        current_image = image_url
        backend_job_id = ""
        stages_run = 0

        for index, stage in enumerate(tier.active_stages, start=1):
            parameters = self._stage_parameters(stage, tier, prompts, current_image)
            model_id = self._model_for(stage)

            logger.info(
                f"[{tier.name}] stage {index}/{len(tier.active_stages)}: {stage.kind}"
            )
            result = await self.client.generate(model_id, parameters)

            current_image = result.image_url
            backend_job_id = result.job_id
            stages_run += 1

        return PipelineResult(
            output_image_url=current_image,
            backend_job_id=backend_job_id,
            stages_run=stages_run,
        )

    def _model_for(self, stage: StageSpec) -> str:
        try:
            return self.models[stage.model]
        except KeyError:
            raise ValueError(f"No model configured for stage model {stage.model!r}") from None

    def _stage_parameters(
        self,
        stage: StageSpec,
        tier: TierConfig,
        prompts: PromptPair,
        image_url: str,
    ) -> dict:
        """Build backend input for one stage."""
        if stage.kind == EDGE_CONDITIONING:
            return {
                "image": image_url,
                "prompt": stage.prompt,
                "negative_prompt": stage.negative_prompt,
                "num_inference_steps": stage.steps or tier.steps,
                "guidance_scale": stage.guidance_scale or tier.guidance_scale,
                "controlnet_conditioning_scale": tier.canny_weight,
                "control_type": self.CONTROL_TYPE,
                "scheduler": DEFAULT_SCHEDULER,
                "seed": self.SEED,
            }

        if stage.kind == STYLE_TRANSFER:
            return {
                "prompt": prompts.prompt + stage.prompt_suffix,
                "negative_prompt": prompts.negative_prompt,
                "image": image_url,
                "num_inference_steps": stage.steps or tier.steps,
                "guidance_scale": stage.guidance_scale or tier.guidance_scale,
                "scheduler": DEFAULT_SCHEDULER,
                "width": tier.resolution,
                "height": tier.resolution,
                "strength": stage.strength,
                "seed": self.SEED,
            }

        raise ValueError(f"Unsupported stage kind: {stage.kind}")
