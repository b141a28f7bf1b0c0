"""Card lifecycle state machine using transitions library.

The lifecycle is a straight line:

    Draft -> Ticketed -> Branched -> PR Open -> In Review -> Merged -> Archived

Each edge has its own named trigger, so the machine only ever moves one
step forward. There are no backward edges and no auto transitions.

Usage:
    from cardsync.workflow.fsm import CardFSM

    fsm = CardFSM("ARCH-123", "Branched")
    fsm.open_pr()  # Branched -> PR Open
"""

import logging

from transitions import Machine

from cardsync.lib.constants import STATUSES

logger = logging.getLogger(__name__)


STATES = list(STATUSES)

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    {"trigger": "ticket", "source": "Draft", "dest": "Ticketed"},
    {"trigger": "branch", "source": "Ticketed", "dest": "Branched"},
    {"trigger": "open_pr", "source": "Branched", "dest": "PR Open"},
    {"trigger": "start_review", "source": "PR Open", "dest": "In Review"},
    {"trigger": "merge", "source": "In Review", "dest": "Merged"},
    {"trigger": "archive", "source": "Merged", "dest": "Archived"},
]

INITIAL_STATE = STATES[0]
TERMINAL_STATE = STATES[-1]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    return {(t["source"], t["dest"]): t["trigger"] for t in TRANSITIONS}


TRIGGER_FOR = _build_trigger_lookup()


class CardFSM:
    """State machine for one card's status.

    Holds the status in memory; callers persist it by writing the card.
    """

    def __init__(self, card_id: str, status: str = INITIAL_STATE):
        """Initialize FSM for a card.

        Args:
            card_id: Card ID, used in log lines
            status: Current status of the card

        Raises:
            ValueError: if status is not a lifecycle state
        """
        if status not in STATES:
            raise ValueError(f"Unknown status '{status}' for {card_id}")

        self.card_id = card_id

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=status,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,  # Pass EventData to callbacks
            after_state_change="on_state_change",  # Callback after any transition
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition."""
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.card_id}: {from_state} -> {to_state} ({trigger})")

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

