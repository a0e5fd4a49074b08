"""Billing profiles: subscription tier and free-tier credits per user."""

import json
import logging
import threading
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

logger = logging.getLogger(__name__)

SUBSCRIPTION_TIERS = ("free", "professional", "studio", "enterprise")
DEFAULT_FREE_CREDITS = 3


@dataclass
class BillingProfile:
    """A user's subscription and remaining credits."""

    user_id: str
    subscription_tier: str = "free"
    credits_remaining: int = DEFAULT_FREE_CREDITS

    def __post_init__(self):
        if self.subscription_tier not in SUBSCRIPTION_TIERS:
            raise ValueError(f"Unknown subscription tier: {self.subscription_tier}")

    @property
    def is_free(self) -> bool:
        return self.subscription_tier == "free"

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "subscription_tier": self.subscription_tier,
            "credits_remaining": self.credits_remaining,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BillingProfile":
        """Create BillingProfile from dictionary."""
        return cls(
            user_id=data["user_id"],
            subscription_tier=data.get("subscription_tier", "free"),
            credits_remaining=int(data.get("credits_remaining", DEFAULT_FREE_CREDITS)),
        )


class BillingStore:
    """In-memory billing profile store with atomic credit decrement."""

    def __init__(self, profiles: Optional[Iterable[BillingProfile]] = None):
        self._profiles: Dict[str, BillingProfile] = {}
        self._lock = threading.Lock()
        for profile in profiles or []:
            self._profiles[profile.user_id] = profile

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "BillingStore":
        """Seed the store from a JSON list of profiles."""
        data = json.loads(Path(path).read_text())
        profiles = [BillingProfile.from_dict(p) for p in data]
        logger.info(f"Loaded {len(profiles)} billing profiles from {path}")
        return cls(profiles)

    def get_profile(self, user_id: str) -> Optional[BillingProfile]:
        """
        Get a user's billing profile.

        Args:
            user_id: User to look up

        Returns:
            Copy of the BillingProfile if found, None otherwise
        """
        with self._lock:
            profile = self._profiles.get(user_id)
            return replace(profile) if profile else None

    def save_profile(self, profile: BillingProfile) -> None:
        with self._lock:
            self._profiles[profile.user_id] = replace(profile)

    def decrement_credits(self, user_id: str) -> int:
        """
        Consume one credit, never going below zero.

        Args:
            user_id: User whose credit is consumed

        Returns:
            Remaining credits after the decrement

        Raises:
            KeyError: If the user has no profile
        """
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                raise KeyError(f"No billing profile for user {user_id}")

            profile.credits_remaining = max(profile.credits_remaining - 1, 0)
            remaining = profile.credits_remaining

        logger.info(f"User {user_id} has {remaining} credits remaining")
        return remaining
