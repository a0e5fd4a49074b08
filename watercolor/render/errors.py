"""Exceptions raised by the render pipeline and service."""


class WatercolorError(Exception):
    """Base exception for render service errors."""

    error_type = "unknown"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        """Convert to an error payload."""
        return {"error": self.default_message, "message": self.message}


# Entitlement errors, surfaced synchronously to the caller


class UnauthorizedError(WatercolorError):
    """No authenticated user on the request."""

    error_type = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class ProfileNotFoundError(WatercolorError):
    """The user's billing profile could not be loaded."""

    error_type = "profile_not_found"
    status_code = 404
    default_message = "Profile not found"


class UpgradeRequiredError(WatercolorError):
    """Requested tier is not available on the user's subscription."""

    error_type = "upgrade_required"
    status_code = 403
    default_message = "Upgrade required"

    def __init__(self, message: str = ""):
        super().__init__(
            message or "Please upgrade your subscription to access this quality tier"
        )


class InsufficientCreditsError(WatercolorError):
    """Free subscription with no credits left."""

    error_type = "insufficient_credits"
    status_code = 403
    default_message = "No credits remaining"

    def __init__(self, message: str = ""):
        super().__init__(message or "You have used all your free credits this month")


class RenderNotFoundError(WatercolorError):
    """Render job does not exist or belongs to another user."""

    error_type = "not_found"
    status_code = 404
    default_message = "Render not found"


# Configuration errors


class UnknownTierError(WatercolorError):
    """Tier name is not one of the enumerated tiers."""

    error_type = "unknown_tier"
    status_code = 400
    default_message = "Unknown tier"

    def __init__(self, tier_name: str):
        super().__init__(f"Unknown quality tier: {tier_name!r}")
        self.tier_name = tier_name


class MissingCredentialError(WatercolorError):
    """Image generation backend has no API credential configured."""

    error_type = "missing_credential"
    status_code = 503
    default_message = "Rendering unavailable"

    def __init__(self, message: str = ""):
        super().__init__(
            message or "Rendering requires Replicate. Set REPLICATE_API_TOKEN."
        )


# Backend errors, only ever recorded on the failed job


class BackendError(WatercolorError):
    """The image generation backend reported a non-success outcome."""

    error_type = "backend_error"
    status_code = 502
    default_message = "Image generation failed"


class BackendUnavailableError(BackendError):
    """The image generation backend could not be reached."""

    error_type = "backend_unavailable"
    status_code = 503
    default_message = "Image generation service unavailable"


class InvalidTransitionError(WatercolorError):
    """Attempted to move a job record out of a terminal status."""

    error_type = "invalid_transition"
    status_code = 409
    default_message = "Invalid status transition"
