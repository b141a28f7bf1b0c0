"""
GitHub tracker adapter.

Implements TrackerAdapter on top of the gh CLI. Lifecycle status is kept
as a `status:<Status>` label on the card's issue.
"""

import json
import logging
import subprocess

from cardsync.lib.constants import STATUS_LABEL_PREFIX
from cardsync.tracker.base import TransportError

logger = logging.getLogger(__name__)


# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30


def check_gh_available() -> tuple[bool, str]:
    """Check gh CLI is installed and authenticated.

    Returns: (ok, error_message)
    """
    try:
        result = subprocess.run(
            ["gh", "--version"],
            capture_output=True,
            timeout=5,
        )
        if result.returncode != 0:
            return False, "GitHub CLI (gh) not installed\n  Install: https://cli.github.com/"

        result = subprocess.run(
            ["gh", "auth", "status"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            return False, "GitHub CLI not authenticated\n  Run: gh auth login"

        return True, ""

    except FileNotFoundError:
        return False, "GitHub CLI (gh) not found\n  Install: https://cli.github.com/"
    except subprocess.TimeoutExpired:
        return False, "GitHub CLI timed out"


def _matches_card(card_id: str, title: str, branch: str) -> bool:
    """True if a PR title or head branch names the card."""
    if f"[{card_id}]" in title or title.startswith(f"{card_id}:"):
        return True
    return branch == card_id or branch.endswith(f"/{card_id}")


class GhTracker:
    """TrackerAdapter backed by the gh CLI."""

    def __init__(self, repo: str | None = None, timeout: int = GH_TIMEOUT_SECONDS):
        self.repo = repo
        self.timeout = timeout

    def _run(self, operation: str, target: str, args: list[str], stdin: str | None = None) -> str:
        cmd = ["gh", *args]
        if self.repo:
            cmd += ["--repo", self.repo]

        logger.debug(f"[GH] {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise TransportError(operation, target, "GitHub API timeout") from None
        except FileNotFoundError:
            raise TransportError(operation, target, "GitHub CLI (gh) not found") from None
        except subprocess.SubprocessError as e:
            raise TransportError(operation, target, str(e)) from None

        if result.returncode != 0:
            raise TransportError(operation, target, result.stderr.strip() or f"exit {result.returncode}")
        return result.stdout

    def _run_json(self, operation: str, target: str, args: list[str]):
        stdout = self._run(operation, target, args)
        try:
            return json.loads(stdout)
        except json.JSONDecodeError:
            raise TransportError(operation, target, "Invalid JSON from gh") from None

    def get_issue_body(self, number: int) -> str:
        data = self._run_json("get-issue-body", f"issue #{number}",
                              ["issue", "view", str(number), "--json", "body"])
        return data.get("body") or ""

    def set_issue_body(self, number: int, text: str) -> None:
        self._run("set-issue-body", f"issue #{number}",
                  ["issue", "edit", str(number), "--body-file", "-"], stdin=text)

    def get_pr_body(self, number: int) -> str:
        data = self._run_json("get-pr-body", f"PR #{number}",
                              ["pr", "view", str(number), "--json", "body"])
        return data.get("body") or ""

    def set_pr_body(self, number: int, text: str) -> None:
        self._run("set-pr-body", f"PR #{number}",
                  ["pr", "edit", str(number), "--body-file", "-"], stdin=text)

    def list_open_prs_for_id(self, card_id: str) -> list[int]:
        prs = self._run_json("list-open-prs", card_id, [
            "pr", "list", "--state", "open", "--search", card_id,
            "--json", "number,title,headRefName", "--limit", "20",
        ])
        return sorted(
            pr["number"] for pr in prs
            if _matches_card(card_id, pr.get("title", ""), pr.get("headRefName", ""))
        )

    def get_issue_state(self, number: int) -> str:
        data = self._run_json("get-issue-state", f"issue #{number}",
                              ["issue", "view", str(number), "--json", "state"])
        return (data.get("state") or "").lower()

    def find_issue_by_tag(self, tag: str) -> int | None:
        issues = self._run_json("find-issue", tag, [
            "issue", "list", "--state", "all", "--search", tag,
            "--json", "number,title", "--limit", "10",
        ])
        for issue in issues:
            title = issue.get("title", "")
            if f"[{tag}]" in title or title.startswith(f"{tag}:"):
                return issue["number"]
        return None

    def _status_labels(self, number: int) -> list[str]:
        data = self._run_json("get-issue-labels", f"issue #{number}",
                              ["issue", "view", str(number), "--json", "labels"])
        names = [label.get("name", "") for label in data.get("labels") or []]
        return [n for n in names if n.startswith(STATUS_LABEL_PREFIX)]

    def get_issue_status(self, number: int) -> str | None:
        labels = self._status_labels(number)
        if not labels:
            return None
        if len(labels) > 1:
            logger.warning(f"[GH] issue #{number} has several status labels: {labels}; using {labels[0]}")
        return labels[0][len(STATUS_LABEL_PREFIX):]

    def set_issue_status(self, number: int, status: str) -> None:
        wanted = f"{STATUS_LABEL_PREFIX}{status}"
        args = ["issue", "edit", str(number), "--add-label", wanted]
        for label in self._status_labels(number):
            if label != wanted:
                args += ["--remove-label", label]
        self._run("set-issue-status", f"issue #{number}", args)
