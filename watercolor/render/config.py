"""Render service configuration."""

import os
from dataclasses import dataclass
from typing import Optional


def _optional_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    value = float(value)
    return value if value > 0 else None


@dataclass
class ServiceConfig:
    """Worker pool, persistence and reconciliation settings."""

    max_workers: int = 2
    jobs_file: Optional[str] = None  # in-memory store if unset
    profiles_file: Optional[str] = None
    stale_after_seconds: Optional[float] = 900.0
    sweep_interval_seconds: Optional[float] = 60.0

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Load configuration from environment variables."""
        return cls(
            max_workers=int(os.getenv("RENDER_WORKERS", "2")),
            jobs_file=os.getenv("RENDER_JOBS_FILE") or None,
            profiles_file=os.getenv("BILLING_PROFILES_FILE") or None,
            stale_after_seconds=_optional_float("RENDER_STALE_AFTER_SECONDS", 900.0),
            sweep_interval_seconds=_optional_float("RENDER_SWEEP_INTERVAL_SECONDS", 60.0),
        )

    def is_persistent(self) -> bool:
        """Check if jobs survive a restart."""
        return bool(self.jobs_file)

    def is_reconciling(self) -> bool:
        """Check if stale processing jobs are swept."""
        return bool(self.stale_after_seconds and self.sweep_interval_seconds)
