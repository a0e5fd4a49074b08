"""API routes."""

from . import health, render

__all__ = ["health", "render"]
