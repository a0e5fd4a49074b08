"""Caller identity supplied by the upstream auth gateway."""

from typing import Optional

from fastapi import Header


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None),
) -> Optional[str]:
    """Return the authenticated user ID, or None for anonymous callers.

    The gateway in front of this API authenticates the session and forwards
    the user's ID in the X-User-Id header. Rejecting anonymous callers is left
    to the render service so it can report it in order with other checks.
    """
    if x_user_id is None or not x_user_id.strip():
        return None
    return x_user_id.strip()
