"""Tracker adapter interface.

The engine only ever talks to the tracker through these operations. Every
call may raise TransportError; the engine never retries on its own.
"""

from typing import Protocol


class TransportError(Exception):
    """A tracker call failed."""

    def __init__(self, operation: str, target: str, message: str):
        self.operation = operation
        self.target = target
        self.message = message
        super().__init__(f"{operation} {target} failed: {message}")


class TrackerAdapter(Protocol):
    """Read/write access to tracker issues and pull requests."""

    def get_issue_body(self, number: int) -> str:
        ...

    def set_issue_body(self, number: int, text: str) -> None:
        ...

    def get_pr_body(self, number: int) -> str:
        ...

    def set_pr_body(self, number: int, text: str) -> None:
        ...

    def list_open_prs_for_id(self, card_id: str) -> list[int]:
        ...

    def get_issue_state(self, number: int) -> str:
        """Return "open" or "closed"."""
        ...

    def find_issue_by_tag(self, tag: str) -> int | None:
        """Number of the issue filed for a card tag, if any."""
        ...

    def get_issue_status(self, number: int) -> str | None:
        """Lifecycle status recorded on the issue, or None if unset."""
        ...

    def set_issue_status(self, number: int, status: str) -> None:
        ...
