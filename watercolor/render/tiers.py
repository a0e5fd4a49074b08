"""Quality tiers and the pipeline stages each one runs."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .errors import UnknownTierError

# Stage kinds
EDGE_CONDITIONING = "edge_conditioning"
STYLE_TRANSFER = "style_transfer"
UPSCALE = "upscale"

# Shared SDXL sampling settings
DEFAULT_GUIDANCE_SCALE = 7.5
DEFAULT_SCHEDULER = "K_EULER_ANCESTRAL"


@dataclass(frozen=True)
class StageSpec:
    """One call into the image generation backend."""

    kind: str
    model: str  # key into ReplicateConfig.models
    strength: Optional[float] = None
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    prompt_suffix: str = ""
    steps: Optional[int] = None
    guidance_scale: Optional[float] = None
    enabled: bool = True


@dataclass(frozen=True)
class TierConfig:
    """Immutable generation parameters for a quality tier."""

    name: str
    display_name: str
    description: str
    resolution: int
    steps: int
    canny_weight: float
    cost_per_render: float
    processing_time: str
    stages: Tuple[StageSpec, ...]
    guidance_scale: float = DEFAULT_GUIDANCE_SCALE
    mlsd_weight: Optional[float] = None
    features: Tuple[str, ...] = ()

    @property
    def stage_count(self) -> int:
        """Number of declared stages, including reserved ones."""
        return len(self.stages)

    @property
    def active_stages(self) -> Tuple[StageSpec, ...]:
        return tuple(s for s in self.stages if s.enabled)

    @property
    def strengths(self) -> List[float]:
        """Style-transfer strengths in pipeline order."""
        return [
            s.strength
            for s in self.stages
            if s.kind == STYLE_TRANSFER and s.strength is not None
        ]

    def to_dict(self) -> dict:
        """Convert to dictionary for the tier catalog."""
        return {
            "id": self.name,
            "name": self.display_name,
            "description": self.description,
            "resolution": self.resolution,
            "steps": self.steps,
            "processing_time": self.processing_time,
            "cost_per_render": self.cost_per_render,
            "stages": [s.kind for s in self.stages if s.enabled],
            "features": list(self.features),
        }


FREE = TierConfig(
    name="free",
    display_name="Free",
    description="Basic watercolor effect",
    resolution=1024,
    steps=20,
    canny_weight=0.5,
    cost_per_render=0.01,
    processing_time="10-15 seconds",
    stages=(
        StageSpec(kind=STYLE_TRANSFER, model="sdxl", strength=0.8),
    ),
    features=("Single pass", "Basic watercolor effect", "1024x1024 resolution"),
)

PROFESSIONAL = TierConfig(
    name="professional",
    display_name="Professional",
    description="Balanced quality for most projects",
    resolution=2048,
    steps=35,
    canny_weight=0.4,
    mlsd_weight=0.3,
    cost_per_render=0.03,
    processing_time="20-30 seconds",
    stages=(
        StageSpec(
            kind=EDGE_CONDITIONING,
            model="controlnet",
            prompt="architectural lines, clean edges, structural elements",
            negative_prompt="blurry, soft",
            steps=20,
            guidance_scale=5,
        ),
        StageSpec(kind=STYLE_TRANSFER, model="sdxl", strength=0.7),
    ),
    features=(
        "Multi-pass rendering",
        "Refined edges",
        "Better color blending",
        "2048x2048 resolution",
    ),
)

STUDIO = TierConfig(
    name="studio",
    display_name="Studio",
    description="Maximum quality for professional presentations",
    resolution=4096,
    steps=50,
    canny_weight=0.35,
    mlsd_weight=0.25,
    cost_per_render=0.08,
    processing_time="45-60 seconds",
    stages=(
        StageSpec(
            kind=EDGE_CONDITIONING,
            model="controlnet",
            prompt="architectural lines, precise edges, interior structure",
            negative_prompt="blurry, soft, fuzzy",
            steps=25,
            guidance_scale=5,
        ),
        StageSpec(
            kind=STYLE_TRANSFER,
            model="sdxl",
            strength=0.65,
            prompt_suffix=", masterpiece, best quality, ultra-detailed, professional artwork",
        ),
        # Final upscale pass, not run yet
        StageSpec(kind=UPSCALE, model="upscaler", enabled=False),
    ),
    features=(
        "Multiple refinement passes",
        "Custom paper textures",
        "Advanced color grading",
        "4096x4096 resolution",
        "Priority processing",
    ),
)


class TierPolicy:
    """Looks up tier configuration by name."""

    def __init__(self, tiers: Optional[List[TierConfig]] = None):
        tiers = tiers if tiers is not None else [FREE, PROFESSIONAL, STUDIO]
        self._tiers: Dict[str, TierConfig] = {t.name: t for t in tiers}

    def resolve(self, tier_name: str) -> TierConfig:
        """
        Get the configuration for a tier.

        Args:
            tier_name: One of the enumerated tier names

        Returns:
            TierConfig for the tier

        Raises:
            UnknownTierError: If the name is not a known tier
        """
        try:
            return self._tiers[tier_name]
        except (KeyError, TypeError):
            raise UnknownTierError(tier_name) from None

    def names(self) -> List[str]:
        return list(self._tiers)

    def all(self) -> List[TierConfig]:
        return list(self._tiers.values())
