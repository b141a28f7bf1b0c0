"""
Shared exceptions for cardsync.

Lives here rather than in the modules that re-export them so the section
scanner and the card store can raise them without circular imports.
"""


class MalformedDocument(Exception):
    """Card or body text cannot be parsed. Never auto-corrected."""

    def __init__(self, message: str, key: str | None = None):
        self.key = key
        super().__init__(message + (f" (key: {key})" if key else ""))


class ConcurrentEdit(Exception):
    """Something changed a card or tracker body since the pass read it."""

    def __init__(self, target: str):
        self.target = target
        super().__init__(f"{target} was modified during the pass; re-run to pick up the change")
