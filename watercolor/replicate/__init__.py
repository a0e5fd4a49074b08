"""Replicate integration for watercolor rendering."""

from .client import GenerationResult, ImageGenerationClient, RemoteStatus
from .config import ReplicateConfig

__all__ = ["ReplicateConfig", "ImageGenerationClient", "GenerationResult", "RemoteStatus"]
