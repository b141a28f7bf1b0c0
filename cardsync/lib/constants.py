"""Shared constants for cardsync."""

import re

# Card ID validation, e.g. ARCH-123 or U-bridge-intro
CARD_ID_PATTERN = re.compile(r'^[A-Z]+-[a-z0-9-]+$')

# Lifecycle order; workflow/fsm.py builds its machine from this list
STATUSES = [
    "Draft",
    "Ticketed",
    "Branched",
    "PR Open",
    "In Review",
    "Merged",
    "Archived",
]

DEFAULT_LANES = ["A", "B", "C", "D"]

# ID prefix -> card type
DEFAULT_TYPE_PREFIXES = {
    "U": "unit",
    "C": "composition",
    "B": "bug",
    "ARCH": "architecture",
    "PB": "playbook",
}

# Rendered in place of "#<number>" for a child not yet filed on the tracker
PENDING_MARKER = "(pending)"

# Tracker issues carry their lifecycle status as a label
STATUS_LABEL_PREFIX = "status:"

# CLI exit codes
EXIT_OK = 0
EXIT_STEP_FAILED = 1
EXIT_VALIDATION = 2
EXIT_TRANSPORT = 3
EXIT_DRIFT = 4
EXIT_LOCKED = 5
