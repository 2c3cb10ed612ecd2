"""Exception taxonomy for the leaderboard pipeline.

Upstream 404s and transient points-service failures are *not* errors here:
they degrade to zero points and are picked up later by the zero-point repair
step.
"""

from typing import Optional


class ValidationError(ValueError):
    """Bad caller input. Raised before any upstream call or state mutation."""


class MarketplaceError(Exception):
    """Marketplace pagination failed before a single item was collected."""

    def __init__(self, status_code: int, detail: str = "", slug: Optional[str] = None):
        self.status_code = int(status_code)
        self.detail = detail
        self.slug = slug
        super().__init__(f"Marketplace API error: {self.status_code}")


class RefreshConflictError(Exception):
    """A non-stale refresh run is already marked as running."""

    def __init__(self, started_at=None):
        self.started_at = started_at
        super().__init__("Refresh already running")


class RefreshStepError(Exception):
    """A refresh step failed after the job status was flipped to ``error``."""
