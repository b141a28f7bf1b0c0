"""Tracker adapters for cardsync.

TrackerAdapter is the interface the reconciliation engine consumes.
GhTracker implements it with the gh CLI.

Conventions:
- Every call raises TransportError on failure; nothing is retried here.
- Body getters return "" for an empty body, never None.
"""

from cardsync.tracker.base import (
    TrackerAdapter,
    TransportError,
)
from cardsync.tracker.github import (
    GhTracker,
    check_gh_available,
)

__all__ = [
    "TrackerAdapter",
    "TransportError",
    "GhTracker",
    "check_gh_available",
]
