"""Shared fixtures: an in-memory tracker and a card directory."""

from pathlib import Path

import pytest

from cardsync.lib.config import ProjectConfig
from cardsync.lib.constants import STATUS_LABEL_PREFIX
from cardsync.lib.store import CardStore
from cardsync.tracker.base import TransportError
from cardsync.workflow.engine import Reconciler


SAMPLE_CARD = """---
ID: ARCH-123
lane: C
status: PR Open
Issue: #42
---

# ARCH-123: Card sync engine

## Purpose

Keep cards and tracker issues in step.

## Problem

Cards drift from their issues.

## Proposal

Reconcile both sides in one pass.

## Acceptance Checklist

- [ ] Sections merge idempotently
- [x] Drift is detected

## Sub-Issues

- [ ] #123 U-merge - Section merger
- [ ] #124 U-drift - Drift detection
"""


class FakeTracker:
    """In-memory TrackerAdapter.

    `writes` records every mutating call in order. Set `fail_on[method]` to
    an exception to make that method raise it.
    """

    def __init__(self):
        self.issues: dict[int, dict] = {}
        self.prs: dict[int, dict] = {}
        self.writes: list[tuple] = []
        self.fail_on: dict[str, Exception] = {}

    def add_issue(self, number, body="", state="open", status=None, tag=None):
        labels = [f"{STATUS_LABEL_PREFIX}{status}"] if status else []
        self.issues[number] = {"body": body, "state": state, "labels": labels, "tag": tag}

    def add_pr(self, number, card_id, body=""):
        self.prs[number] = {"body": body, "card": card_id}

    def _check(self, method):
        if method in self.fail_on:
            raise self.fail_on[method]

    def get_issue_body(self, number):
        self._check("get_issue_body")
        return self.issues[number]["body"]

    def set_issue_body(self, number, text):
        self._check("set_issue_body")
        self.issues[number]["body"] = text
        self.writes.append(("set_issue_body", number))

    def get_pr_body(self, number):
        self._check("get_pr_body")
        return self.prs[number]["body"]

    def set_pr_body(self, number, text):
        self._check("set_pr_body")
        self.prs[number]["body"] = text
        self.writes.append(("set_pr_body", number))

    def list_open_prs_for_id(self, card_id):
        self._check("list_open_prs_for_id")
        return sorted(n for n, pr in self.prs.items() if pr["card"] == card_id)

    def get_issue_state(self, number):
        self._check("get_issue_state")
        return self.issues[number]["state"]

    def find_issue_by_tag(self, tag):
        self._check("find_issue_by_tag")
        for number, issue in self.issues.items():
            if issue["tag"] == tag:
                return number
        return None

    def get_issue_status(self, number):
        self._check("get_issue_status")
        for label in self.issues[number]["labels"]:
            if label.startswith(STATUS_LABEL_PREFIX):
                return label[len(STATUS_LABEL_PREFIX):]
        return None

    def set_issue_status(self, number, status):
        self._check("set_issue_status")
        labels = [l for l in self.issues[number]["labels"] if not l.startswith(STATUS_LABEL_PREFIX)]
        self.issues[number]["labels"] = labels + [f"{STATUS_LABEL_PREFIX}{status}"]
        self.writes.append(("set_issue_status", number, status))


@pytest.fixture
def tracker():
    return FakeTracker()


@pytest.fixture
def project_config(tmp_path) -> ProjectConfig:
    cards_dir = tmp_path / "ideas"
    cards_dir.mkdir()
    return ProjectConfig(
        root=tmp_path,
        repo=None,
        cards_dir=cards_dir,
        archive_dir=tmp_path / "ideas" / "_archive",
        lock_dir=tmp_path / ".cardsync" / "locks",
        lock_timeout=1,
        gh_timeout=30,
    )


@pytest.fixture
def store(project_config) -> CardStore:
    return CardStore(project_config.cards_dir, project_config.archive_dir)


@pytest.fixture
def reconciler(tracker, store, project_config) -> Reconciler:
    return Reconciler(tracker, store, project_config.lock_dir, lock_timeout=0)


@pytest.fixture
def write_card(project_config):
    """Write card text to <cards_dir>/<ID>.md and return the path."""

    def _write(text: str = SAMPLE_CARD, card_id: str = "ARCH-123") -> Path:
        path = project_config.cards_dir / f"{card_id}.md"
        path.write_text(text)
        return path

    return _write


@pytest.fixture
def sample_card() -> str:
    return SAMPLE_CARD


@pytest.fixture
def transport_error():
    """Factory for the error a failing tracker call raises."""

    def _make(operation: str = "set-pr-body", target: str = "PR #7") -> TransportError:
        return TransportError(operation, target, "HTTP 502")

    return _make
