"""Tests for the cardsync CLI and its commands."""

import argparse
import json
from unittest.mock import patch

import pytest

from cardsync.cli import build_parser, main
from cardsync.commands.reconcile import parse_child_signal
from cardsync.lib.constants import (
    EXIT_DRIFT,
    EXIT_LOCKED,
    EXIT_OK,
    EXIT_STEP_FAILED,
    EXIT_TRANSPORT,
    EXIT_VALIDATION,
)
from cardsync.runner.locking import card_lock
from cardsync.workflow.engine import ChildSignal


@pytest.fixture
def populated(tracker, write_card):
    path = write_card()
    tracker.add_issue(42, body="Tracking issue.\n", status="PR Open", tag="ARCH-123")
    tracker.add_issue(123, state="closed", tag="U-merge")
    tracker.add_issue(124, state="open", tag="U-drift")
    tracker.add_pr(7, "ARCH-123")
    return path


def run(tmp_path, tracker, *argv, module="reconcile"):
    with patch(f"cardsync.commands.{module}.GhTracker", return_value=tracker):
        return main(["--root", str(tmp_path), *argv])


class TestParseChildSignal:
    """--child argument parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("12", ChildSignal(12, True)),
        ("#12", ChildSignal(12, True)),
        ("12:done", ChildSignal(12, True)),
        ("12:Closed", ChildSignal(12, True)),
        ("12:open", ChildSignal(12, False)),
        ("12:reopened", ChildSignal(12, False)),
    ])
    def test_valid(self, value, expected):
        assert parse_child_signal(value) == expected

    @pytest.mark.parametrize("value", ["abc", "12:maybe", ""])
    def test_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_child_signal(value)


class TestParser:
    """Argument parsing."""

    def test_reconcile_defaults(self):
        args = build_parser().parse_args(["reconcile", "ARCH-123"])
        assert args.execute is False
        assert args.to is None
        assert args.child is None

    def test_to_must_be_a_status(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["reconcile", "ARCH-123", "--to", "Done"])

    def test_repeated_child(self):
        args = build_parser().parse_args(["reconcile", "ARCH-123", "--child", "123", "--child", "124:open"])
        assert args.child == [ChildSignal(123, True), ChildSignal(124, False)]


class TestReconcileCommand:
    """cardsync reconcile exit codes and output."""

    def test_dry_run(self, tmp_path, tracker, populated, capsys):
        assert run(tmp_path, tracker, "reconcile", "ARCH-123") == EXIT_OK
        out = capsys.readouterr().out
        assert "Dry run plan for ARCH-123" in out
        assert tracker.writes == []

    def test_execute_then_nothing_to_do(self, tmp_path, tracker, populated, capsys):
        assert run(tmp_path, tracker, "reconcile", "ARCH-123", "--execute") == EXIT_OK
        capsys.readouterr()
        assert run(tmp_path, tracker, "reconcile", "ARCH-123", "--execute") == EXIT_OK
        assert "nothing to do" in capsys.readouterr().out

    def test_json_output(self, tmp_path, tracker, populated, capsys):
        assert run(tmp_path, tracker, "reconcile", "ARCH-123", "--json") == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["card_id"] == "ARCH-123"
        assert data["executed"] is False
        assert data["issue"] == 42
        assert data["pr"] == 7

    def test_advance_reports_status_change(self, tmp_path, tracker, populated, capsys):
        assert run(tmp_path, tracker, "reconcile", "ARCH-123", "--to", "In Review") == EXIT_OK
        assert "Status: PR Open -> In Review" in capsys.readouterr().out

    def test_missing_card(self, tmp_path, tracker, populated):
        assert run(tmp_path, tracker, "reconcile", "ARCH-999") == EXIT_VALIDATION

    def test_skip_ahead(self, tmp_path, tracker, populated):
        assert run(tmp_path, tracker, "reconcile", "ARCH-123", "--to", "Merged") == EXIT_VALIDATION

    def test_drift(self, tmp_path, tracker, populated, capsys):
        tracker.issues[42]["labels"] = ["status:Merged"]
        assert run(tmp_path, tracker, "reconcile", "ARCH-123") == EXIT_DRIFT
        assert "--authority" in capsys.readouterr().out

    def test_transport_error_on_read(self, tmp_path, tracker, populated, transport_error):
        tracker.fail_on["get_issue_body"] = transport_error("get-issue-body", "issue #42")
        assert run(tmp_path, tracker, "reconcile", "ARCH-123") == EXIT_TRANSPORT

    def test_transport_error_on_write(self, tmp_path, tracker, populated, transport_error, capsys):
        tracker.fail_on["set_pr_body"] = transport_error()
        assert run(tmp_path, tracker, "reconcile", "ARCH-123", "--execute") == EXIT_TRANSPORT
        assert "Re-running is safe" in capsys.readouterr().out

    def test_other_step_failure(self, tmp_path, tracker, populated):
        tracker.fail_on["set_pr_body"] = OSError("disk full")
        assert run(tmp_path, tracker, "reconcile", "ARCH-123", "--execute") == EXIT_STEP_FAILED

    def test_locked(self, tmp_path, tracker, populated):
        (tmp_path / "cardsync.env").write_text("LOCK_TIMEOUT=0\n")
        with card_lock(tmp_path / ".cardsync" / "locks", "ARCH-123", timeout=0):
            assert run(tmp_path, tracker, "reconcile", "ARCH-123") == EXIT_LOCKED

    def test_invalid_project_config(self, tmp_path, tracker, populated):
        (tmp_path / "cardsync.env").write_text("MERGE_MODE=local\n")
        with pytest.raises(SystemExit) as exc:
            run(tmp_path, tracker, "reconcile", "ARCH-123")
        assert exc.value.code == EXIT_VALIDATION


class TestCheckCommand:
    """cardsync check."""

    def test_reports_structure(self, tmp_path, populated, capsys):
        assert main(["--root", str(tmp_path), "check", "ARCH-123"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "Card sync engine" in out
        assert "Acceptance Checklist: 1/2" in out
        assert "Sub-Issues: 2 (0 not yet filed)" in out

    def test_malformed_card(self, tmp_path, write_card):
        write_card("no frontmatter here\n")
        assert main(["--root", str(tmp_path), "check", "ARCH-123"]) == EXIT_VALIDATION

    @patch("cardsync.commands.check.check_gh_available", return_value=(True, ""))
    def test_pr_body_without_link(self, _gh, tmp_path, tracker, populated, capsys):
        tracker.prs[7]["body"] = "## Purpose\n\nSomething\n"
        assert run(tmp_path, tracker, "check", "ARCH-123", "--pr", module="check") == EXIT_VALIDATION
        assert "issue link MISSING" in capsys.readouterr().out

    @patch("cardsync.commands.check.check_gh_available", return_value=(False, "GitHub CLI (gh) not found"))
    def test_pr_check_needs_gh(self, _gh, tmp_path, populated):
        assert main(["--root", str(tmp_path), "check", "ARCH-123", "--pr"]) == EXIT_TRANSPORT


class TestStatusCommand:
    """cardsync status."""

    def test_in_sync(self, tmp_path, tracker, populated, capsys):
        assert run(tmp_path, tracker, "status", "ARCH-123", module="status") == EXIT_OK
        out = capsys.readouterr().out
        assert "Next status:    In Review" in out
        assert "#7" in out

    def test_drift(self, tmp_path, tracker, populated, capsys):
        tracker.issues[42]["labels"] = ["status:Merged"]
        assert run(tmp_path, tracker, "status", "ARCH-123", module="status") == EXIT_DRIFT
        assert "DRIFT" in capsys.readouterr().out
