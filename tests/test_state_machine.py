"""Tests for cardsync.workflow.state_machine module."""

import pytest

from cardsync.lib.document import WorkItemDocument
from cardsync.workflow.state_machine import (
    Authority,
    CardStatus,
    InvalidTransition,
    StatusDrift,
    advance,
    check_drift,
    next_status,
    parse_status,
    resolve_drift,
)


def make_doc(status: str) -> WorkItemDocument:
    return WorkItemDocument(id="ARCH-1", type="architecture", lane="A", status=status, body="")


class TestParseStatus:
    """Tests for parse_status() and next_status()."""

    def test_known(self):
        assert parse_status("PR Open") == CardStatus.PR_OPEN

    def test_unknown(self):
        assert parse_status("pr open") is None
        assert parse_status(None) is None

    def test_next_status(self):
        assert next_status(CardStatus.DRAFT) == CardStatus.TICKETED
        assert next_status("PR Open") == CardStatus.IN_REVIEW
        assert next_status("Archived") is None


class TestAdvance:
    """Tests for advance()."""

    def test_one_step(self):
        doc = advance(make_doc("Draft"), CardStatus.TICKETED)
        assert doc.status == "Ticketed"

    def test_accepts_string_target(self):
        assert advance(make_doc("Merged"), "Archived").status == "Archived"

    def test_original_untouched(self):
        doc = make_doc("Branched")
        advance(doc, "PR Open")
        assert doc.status == "Branched"

    def test_draft_to_merged_fails(self):
        with pytest.raises(InvalidTransition) as exc:
            advance(make_doc("Draft"), CardStatus.MERGED)
        assert exc.value.attempted == "Merged"
        assert exc.value.allowed == CardStatus.TICKETED

    def test_pr_open_to_merged_names_in_review(self):
        with pytest.raises(InvalidTransition) as exc:
            advance(make_doc("PR Open"), "Merged")
        assert exc.value.allowed == CardStatus.IN_REVIEW
        assert "'In Review'" in str(exc.value)
        assert "Merged" in str(exc.value)

    def test_skip_back_fails(self):
        with pytest.raises(InvalidTransition):
            advance(make_doc("In Review"), "PR Open")

    def test_no_op_fails(self):
        with pytest.raises(InvalidTransition):
            advance(make_doc("Branched"), "Branched")

    def test_terminal_state(self):
        with pytest.raises(InvalidTransition) as exc:
            advance(make_doc("Archived"), "Draft")
        assert exc.value.allowed is None
        assert "terminal" in str(exc.value)

    def test_unknown_target(self):
        with pytest.raises(InvalidTransition):
            advance(make_doc("Draft"), "Done")

    def test_never_moves_more_than_one_step(self):
        statuses = [s.value for s in CardStatus]
        for i, current in enumerate(statuses):
            for j, target in enumerate(statuses):
                if j == i + 1:
                    assert advance(make_doc(current), target).status == target
                else:
                    with pytest.raises(InvalidTransition):
                        advance(make_doc(current), target)


class TestDrift:
    """Tests for check_drift() and resolve_drift()."""

    def test_same_status_no_drift(self):
        check_drift(make_doc("PR Open"), "PR Open")

    def test_no_tracker_status_no_drift(self):
        check_drift(make_doc("PR Open"), None)

    def test_mismatch_raises(self):
        with pytest.raises(StatusDrift) as exc:
            check_drift(make_doc("PR Open"), "In Review")
        assert exc.value.document_status == "PR Open"
        assert exc.value.tracker_status == "In Review"

    def test_resolve_without_authority_blocks(self):
        with pytest.raises(StatusDrift):
            resolve_drift(make_doc("PR Open"), "In Review", None)

    def test_resolve_document_wins(self):
        doc = make_doc("PR Open")
        assert resolve_drift(doc, "In Review", Authority.DOCUMENT) is doc

    def test_resolve_tracker_wins(self):
        doc = resolve_drift(make_doc("PR Open"), "In Review", Authority.TRACKER)
        assert doc.status == "In Review"

    def test_tracker_authority_needs_known_status(self):
        with pytest.raises(StatusDrift):
            resolve_drift(make_doc("PR Open"), "Shipped", Authority.TRACKER)

    def test_no_drift_returns_doc(self):
        doc = make_doc("Merged")
        assert resolve_drift(doc, "Merged", None) is doc
