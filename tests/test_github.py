"""Tests for cardsync.tracker.github module."""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cardsync.tracker import GhTracker, TransportError, check_gh_available
from cardsync.tracker.github import GH_TIMEOUT_SECONDS


def gh_ok(payload=None, stdout=None):
    if stdout is None:
        stdout = json.dumps(payload) if payload is not None else ""
    return MagicMock(returncode=0, stdout=stdout, stderr="")


class TestCheckGhAvailable:
    """Test check_gh_available function."""

    @patch("cardsync.tracker.github.subprocess.run")
    def test_returns_ok_when_authenticated(self, mock_run):
        mock_run.side_effect = [
            MagicMock(returncode=0),  # gh --version
            MagicMock(returncode=0),  # gh auth status
        ]
        assert check_gh_available() == (True, "")

    @patch("cardsync.tracker.github.subprocess.run")
    def test_returns_error_when_not_authenticated(self, mock_run):
        mock_run.side_effect = [MagicMock(returncode=0), MagicMock(returncode=1)]
        ok, msg = check_gh_available()
        assert ok is False
        assert "not authenticated" in msg

    @patch("cardsync.tracker.github.subprocess.run")
    def test_returns_error_on_file_not_found(self, mock_run):
        mock_run.side_effect = FileNotFoundError("gh")
        ok, msg = check_gh_available()
        assert ok is False
        assert "not found" in msg


class TestGhTrackerTransport:
    """Command construction and error mapping."""

    @patch("cardsync.tracker.github.subprocess.run")
    def test_repo_flag_and_timeout(self, mock_run):
        mock_run.return_value = gh_ok({"body": "hi"})
        GhTracker(repo="acme/cards", timeout=12).get_issue_body(42)

        cmd = mock_run.call_args[0][0]
        assert cmd == ["gh", "issue", "view", "42", "--json", "body", "--repo", "acme/cards"]
        assert mock_run.call_args[1]["timeout"] == 12

    @patch("cardsync.tracker.github.subprocess.run")
    def test_no_repo_flag_by_default(self, mock_run):
        mock_run.return_value = gh_ok({"body": "hi"})
        tracker = GhTracker()
        tracker.get_issue_body(42)
        assert "--repo" not in mock_run.call_args[0][0]
        assert tracker.timeout == GH_TIMEOUT_SECONDS

    @patch("cardsync.tracker.github.subprocess.run")
    def test_nonzero_exit_raises(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="HTTP 404: Not Found")
        with pytest.raises(TransportError) as exc:
            GhTracker().get_issue_body(42)
        assert exc.value.operation == "get-issue-body"
        assert exc.value.target == "issue #42"
        assert "HTTP 404" in str(exc.value)

    @patch("cardsync.tracker.github.subprocess.run")
    def test_timeout_raises(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="gh", timeout=30)
        with pytest.raises(TransportError, match="timeout"):
            GhTracker().get_pr_body(7)

    @patch("cardsync.tracker.github.subprocess.run")
    def test_missing_gh_raises(self, mock_run):
        mock_run.side_effect = FileNotFoundError("gh")
        with pytest.raises(TransportError, match="not found"):
            GhTracker().get_pr_body(7)

    @patch("cardsync.tracker.github.subprocess.run")
    def test_bad_json_raises(self, mock_run):
        mock_run.return_value = gh_ok(stdout="not json")
        with pytest.raises(TransportError, match="Invalid JSON"):
            GhTracker().get_issue_state(1)


class TestGhTrackerBodies:
    """Body reads and writes."""

    @patch("cardsync.tracker.github.subprocess.run")
    def test_null_body_is_empty(self, mock_run):
        mock_run.return_value = gh_ok({"body": None})
        assert GhTracker().get_pr_body(7) == ""

    @patch("cardsync.tracker.github.subprocess.run")
    def test_set_issue_body_uses_stdin(self, mock_run):
        mock_run.return_value = gh_ok()
        GhTracker().set_issue_body(42, "new body")

        assert mock_run.call_args[0][0] == ["gh", "issue", "edit", "42", "--body-file", "-"]
        assert mock_run.call_args[1]["input"] == "new body"

    @patch("cardsync.tracker.github.subprocess.run")
    def test_set_pr_body(self, mock_run):
        mock_run.return_value = gh_ok()
        GhTracker().set_pr_body(7, "pr body")
        assert mock_run.call_args[0][0][:3] == ["gh", "pr", "edit"]

    @patch("cardsync.tracker.github.subprocess.run")
    def test_issue_state_lowercased(self, mock_run):
        mock_run.return_value = gh_ok({"state": "CLOSED"})
        assert GhTracker().get_issue_state(123) == "closed"


class TestGhTrackerLookups:
    """PR listing, issue search and status labels."""

    @patch("cardsync.tracker.github.subprocess.run")
    def test_open_prs_filtered_to_card(self, mock_run):
        mock_run.return_value = gh_ok([
            {"number": 9, "title": "[ARCH-123] Sync engine", "headRefName": "main-fix"},
            {"number": 3, "title": "Unrelated", "headRefName": "feat/ARCH-123"},
            {"number": 5, "title": "Mentions ARCH-1234", "headRefName": "feat/ARCH-1234"},
            {"number": 4, "title": "ARCH-123: follow-up", "headRefName": "x"},
        ])
        assert GhTracker().list_open_prs_for_id("ARCH-123") == [3, 4, 9]

    @patch("cardsync.tracker.github.subprocess.run")
    def test_find_issue_by_tag(self, mock_run):
        mock_run.return_value = gh_ok([
            {"number": 11, "title": "Something about U-a-b"},
            {"number": 12, "title": "[U-a] First child"},
        ])
        assert GhTracker().find_issue_by_tag("U-a") == 12

    @patch("cardsync.tracker.github.subprocess.run")
    def test_find_issue_by_tag_none(self, mock_run):
        mock_run.return_value = gh_ok([])
        assert GhTracker().find_issue_by_tag("U-a") is None

    @patch("cardsync.tracker.github.subprocess.run")
    def test_issue_status_from_label(self, mock_run):
        mock_run.return_value = gh_ok({"labels": [{"name": "bug"}, {"name": "status:In Review"}]})
        assert GhTracker().get_issue_status(42) == "In Review"

    @patch("cardsync.tracker.github.subprocess.run")
    def test_issue_status_unset(self, mock_run):
        mock_run.return_value = gh_ok({"labels": [{"name": "bug"}]})
        assert GhTracker().get_issue_status(42) is None

    @patch("cardsync.tracker.github.subprocess.run")
    def test_set_status_swaps_labels(self, mock_run):
        mock_run.side_effect = [
            gh_ok({"labels": [{"name": "status:PR Open"}, {"name": "bug"}]}),
            gh_ok(),
        ]
        GhTracker().set_issue_status(42, "In Review")

        edit = mock_run.call_args_list[1][0][0]
        assert edit == [
            "gh", "issue", "edit", "42",
            "--add-label", "status:In Review",
            "--remove-label", "status:PR Open",
        ]
