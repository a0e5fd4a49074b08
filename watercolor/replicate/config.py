"""Replicate configuration management."""

import os
from dataclasses import dataclass, field
from typing import Dict

DEFAULT_SDXL_MODEL = (
    "stability-ai/sdxl:39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
)
DEFAULT_CONTROLNET_MODEL = (
    "lucataco/controlnet-sdxl:5c10a45d-ec33-42da-b95f-4380ebb96ef8"
)
DEFAULT_UPSCALER_MODEL = (
    "nightmareai/real-esrgan:42fed1c4974146d4e2414e2be2c5277c7fcf05fcc3a73abf41610695738c1d7b"
)


@dataclass
class ReplicateConfig:
    """Replicate service configuration."""

    api_token: str = ""

    # Model references, keyed by the names used in tier stage specs
    models: Dict[str, str] = field(default_factory=lambda: {
        "sdxl": DEFAULT_SDXL_MODEL,
        "controlnet": DEFAULT_CONTROLNET_MODEL,
        "upscaler": DEFAULT_UPSCALER_MODEL,
    })

    @classmethod
    def from_env(cls) -> "ReplicateConfig":
        """Load configuration from environment variables."""
        return cls(
            api_token=os.getenv("REPLICATE_API_TOKEN", ""),
            models={
                "sdxl": os.getenv("REPLICATE_SDXL_MODEL", DEFAULT_SDXL_MODEL),
                "controlnet": os.getenv("REPLICATE_CONTROLNET_MODEL", DEFAULT_CONTROLNET_MODEL),
                "upscaler": os.getenv("REPLICATE_UPSCALER_MODEL", DEFAULT_UPSCALER_MODEL),
            },
        )

    def is_configured(self) -> bool:
        """Check if a Replicate API token is set."""
        return bool(self.api_token)
