"""Card status transitions, drift detection and drift resolution.

Thin layer over the FSM in fsm.py that works on WorkItemDocument values:
- CardStatus enum for type safety
- advance() moves a card exactly one step forward
- check_drift()/resolve_drift() compare the card with the tracker

Usage:
    from cardsync.workflow.state_machine import advance, CardStatus

    doc = advance(doc, CardStatus.BRANCHED)
"""

import logging
from dataclasses import replace
from enum import Enum

from transitions import MachineError

from cardsync.lib.document import WorkItemDocument
from cardsync.workflow.fsm import CardFSM, STATES, TRIGGER_FOR

logger = logging.getLogger(__name__)


class CardStatus(Enum):
    """All lifecycle states, in order. Values match FSM state strings."""
    DRAFT = "Draft"
    TICKETED = "Ticketed"
    BRANCHED = "Branched"
    PR_OPEN = "PR Open"
    IN_REVIEW = "In Review"
    MERGED = "Merged"
    ARCHIVED = "Archived"


class Authority(Enum):
    """Which side wins when card and tracker disagree for one run."""
    DOCUMENT = "document"
    TRACKER = "tracker"


class InvalidTransition(Exception):
    """Raised when a status change is not exactly one step forward."""

    def __init__(self, card_id: str, current: str, attempted: str, allowed: CardStatus | None):
        self.card_id = card_id
        self.current = current
        self.attempted = attempted
        self.allowed = allowed
        allowed_str = f"'{allowed.value}'" if allowed else "none (terminal state)"
        super().__init__(
            f"Invalid transition for {card_id}: {current} -> {attempted}. "
            f"Allowed next status: {allowed_str}"
        )


class StatusDrift(Exception):
    """Card and tracker report different statuses."""

    def __init__(self, card_id: str, document_status: str, tracker_status: str):
        self.card_id = card_id
        self.document_status = document_status
        self.tracker_status = tracker_status
        super().__init__(
            f"Status drift for {card_id}: card says '{document_status}', "
            f"tracker says '{tracker_status}'. Re-run naming an authority "
            f"(document or tracker)."
        )


def parse_status(status_str: str | None) -> CardStatus | None:
    """Parse a status string into CardStatus.

    Returns None if status is unknown.
    """
    if status_str is None:
        return None
    for state in CardStatus:
        if state.value == status_str:
            return state
    return None


def next_status(status: CardStatus | str) -> CardStatus | None:
    """The only status reachable from `status`, or None at the end."""
    value = status.value if isinstance(status, CardStatus) else status
    for (source, dest) in TRIGGER_FOR:
        if source == value:
            return parse_status(dest)
    return None


def advance(doc: WorkItemDocument, target: CardStatus | str) -> WorkItemDocument:
    """Return `doc` moved one step forward to `target`.

    Raises:
        InvalidTransition: if `target` is not the next status after
            doc.status (skip-ahead, skip-back and no-op all fail)
    """
    target_value = target.value if isinstance(target, CardStatus) else target
    allowed = next_status(doc.status)

    trigger = TRIGGER_FOR.get((doc.status, target_value))
    if trigger is None or doc.status not in STATES:
        raise InvalidTransition(doc.id, doc.status, target_value, allowed)

    fsm = CardFSM(doc.id, doc.status)
    if not fsm.can(trigger):
        raise InvalidTransition(doc.id, doc.status, target_value, allowed)
    try:
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(doc.id, doc.status, target_value, allowed) from e

    logger.info(f"[STATE] {doc.id}: {doc.status} -> {fsm.state}")
    return replace(doc, status=fsm.state)


def check_drift(doc: WorkItemDocument, observed: str | None) -> None:
    """Raise StatusDrift if the tracker's status differs from the card's.

    An unknown tracker status (None) is not drift.
    """
    if observed is None:
        logger.debug(f"[STATE] {doc.id}: tracker has no status, skipping drift check")
        return
    if observed != doc.status:
        raise StatusDrift(doc.id, doc.status, observed)


def resolve_drift(
    doc: WorkItemDocument,
    observed: str | None,
    authority: Authority | None,
) -> WorkItemDocument:
    """Settle a drift according to `authority`.

    With Authority.DOCUMENT the card is returned unchanged (the caller
    writes the card's status to the tracker). With Authority.TRACKER the
    card takes the tracker's status. Without an authority a drift raises.

    Raises:
        StatusDrift: if the sides disagree and no authority was given, or
            the tracker's status is not a lifecycle state
    """
    try:
        check_drift(doc, observed)
        return doc
    except StatusDrift:
        if authority is None:
            raise

    if authority is Authority.DOCUMENT:
        logger.warning(
            f"[STATE] {doc.id}: drift resolved in favour of card ('{doc.status}' over '{observed}')"
        )
        return doc

    if parse_status(observed) is None:
        raise StatusDrift(doc.id, doc.status, observed)

    logger.warning(
        f"[STATE] {doc.id}: drift resolved in favour of tracker ('{observed}' over '{doc.status}')"
    )
    return replace(doc, status=observed)
