"""Reconciliation engine.

One pass for one card, under that card's lock:

1. Load the card, its tracker issue and its open PR
2. Resolve the sub-issue hierarchy and merge the Sub-Issues section
3. Propagate completed-child signals; refresh the PR's progress block
   and acceptance checklist
4. Settle drift and apply at most one status transition
5. Build the plan; execute it only when asked

Nothing is written before step 5. Every write re-reads its target first
and fails with ConcurrentEdit if someone else changed it during the pass.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import NamedTuple

from cardsync.lib.checklist import ReferenceNotFound, propagate, render_checklist
from cardsync.lib.document import WorkItemDocument, content_revision, serialize_document, stamp
from cardsync.lib.errors import ConcurrentEdit
from cardsync.lib.hierarchy import (
    SubIssue,
    SubIssueRelation,
    dropped_lines,
    parse_sub_issues,
    render_progress,
    render_sub_issues,
    resolve_relations,
    states_from_section,
    with_numbers,
)
from cardsync.lib.prbody import render_pr_body
from cardsync.lib.sections import SectionId, extract_section, merge_section
from cardsync.lib.store import CardStore, LoadedCard
from cardsync.runner.locking import card_lock
from cardsync.tracker.base import TrackerAdapter
from cardsync.workflow.fsm import TERMINAL_STATE
from cardsync.workflow.plan import Plan, PlanResult
from cardsync.workflow.state_machine import (
    Authority,
    CardStatus,
    InvalidTransition,
    advance,
    next_status,
    resolve_drift,
)

logger = logging.getLogger(__name__)


class DuplicatePullRequest(Exception):
    """More than one open PR claims the same card."""

    def __init__(self, card_id: str, numbers: list[int]):
        self.card_id = card_id
        self.numbers = numbers
        listed = ", ".join(f"#{n}" for n in numbers)
        super().__init__(
            f"{card_id} has {len(numbers)} open pull requests ({listed}); close all but one"
        )


class ChildSignal(NamedTuple):
    """A child issue reported complete (or reopened) by the caller."""
    number: int
    complete: bool = True


@dataclass
class ReconcileResult:
    """What one pass found, planned and (optionally) did."""
    card_id: str
    outcome: PlanResult
    document: WorkItemDocument
    status_before: str
    issue_number: int | None = None
    pr_number: int | None = None
    not_found: list[ReferenceNotFound] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    relations: list[SubIssueRelation] = field(default_factory=list)

    @property
    def status_after(self) -> str:
        return self.document.status

    @property
    def ok(self) -> bool:
        return self.outcome.ok

    def to_dict(self) -> dict:
        data = self.outcome.to_dict()
        data.update({
            "status_before": self.status_before,
            "status_after": self.status_after,
            "issue": self.issue_number,
            "pr": self.pr_number,
            "references_not_found": [e.child_number for e in self.not_found],
            "dropped_lines": self.dropped,
            "sub_issues": [
                {"number": r.child_number, "title": r.child_title, "completed": r.completed}
                for r in self.relations
            ],
        })
        return data


@dataclass
class _PassState:
    """Everything read at the start of a pass, plus what it wants to write."""
    loaded: LoadedCard
    doc: WorkItemDocument
    issue_number: int | None = None
    issue_body_before: str | None = None
    issue_body: str | None = None
    pr_number: int | None = None
    pr_body_before: str | None = None
    pr_body: str | None = None
    observed_status: str | None = None
    children: list[SubIssue] = field(default_factory=list)
    relations: list[SubIssueRelation] = field(default_factory=list)
    not_found: list[ReferenceNotFound] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)


class Reconciler:
    """Runs reconciliation passes against one tracker and one card store."""

    def __init__(
        self,
        tracker: TrackerAdapter,
        store: CardStore,
        lock_dir: Path,
        lock_timeout: float = 30,
    ):
        self.tracker = tracker
        self.store = store
        self.lock_dir = lock_dir
        self.lock_timeout = lock_timeout

    def reconcile(
        self,
        card_id: str,
        execute: bool = False,
        target: CardStatus | str | None = None,
        authority: Authority | None = None,
        child_signals: list[ChildSignal] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ReconcileResult:
        """Run one pass for `card_id`.

        Args:
            card_id: Card to reconcile
            execute: Apply the plan; otherwise only return it
            target: Status to advance to (exactly one step forward)
            authority: Which side wins if card and tracker disagree on status
            child_signals: Children known to have completed (or reopened)
            cancel_event: Set to stop issuing further writes

        Raises:
            LockTimeout: another pass holds the card's lock
            MalformedDocument: the card doesn't parse
            DuplicatePullRequest: more than one open PR names the card
            StatusDrift: statuses disagree and no authority was given
            InvalidTransition: `target` is not the next status
            TransportError: a read from the tracker failed (no writes made)
        """
        with card_lock(self.lock_dir, card_id, self.lock_timeout):
            logger.info(f"[RECONCILE] {card_id}: starting pass ({'execute' if execute else 'dry run'})")
            state = self._read(card_id)
            self._merge_hierarchy(state)
            self._propagate_signals(state, child_signals or [])
            self._refresh_pr(state)
            status_before = state.doc.status
            self._settle_status(state, target, authority)

            plan = self._build_plan(state)
            if execute:
                outcome = plan.execute(cancel_event)
            else:
                outcome = plan.preview()

            logger.info(
                f"[RECONCILE] {card_id}: {len(plan)} step(s), "
                f"{'ok' if outcome.ok else 'incomplete'}"
            )
            return ReconcileResult(
                card_id=card_id,
                outcome=outcome,
                document=state.doc,
                status_before=status_before,
                issue_number=state.issue_number,
                pr_number=state.pr_number,
                not_found=state.not_found,
                dropped=state.dropped,
                relations=state.relations,
            )

    # --- reading ---------------------------------------------------------

    def _read(self, card_id: str) -> _PassState:
        loaded = self.store.load(card_id)
        doc = loaded.doc
        if doc.edited_since_reconcile:
            logger.info(f"[RECONCILE] {card_id}: card edited since last reconciliation")

        state = _PassState(loaded=loaded, doc=doc)

        issue_number = doc.tracker_issue_number
        if issue_number is None:
            issue_number = self.tracker.find_issue_by_tag(card_id)
            if issue_number is not None:
                logger.info(f"[RECONCILE] {card_id}: found tracker issue #{issue_number}")
                state.doc = replace(doc, tracker_issue_number=issue_number)

        if issue_number is not None:
            state.issue_number = issue_number
            state.issue_body_before = self.tracker.get_issue_body(issue_number)
            state.issue_body = state.issue_body_before
            state.observed_status = self.tracker.get_issue_status(issue_number)

        prs = self.tracker.list_open_prs_for_id(card_id)
        if len(prs) > 1:
            raise DuplicatePullRequest(card_id, prs)
        if prs:
            state.pr_number = prs[0]
            state.pr_body_before = self.tracker.get_pr_body(prs[0])
            state.pr_body = state.pr_body_before

        return state

    # --- hierarchy -------------------------------------------------------

    def _declared_children(self, state: _PassState) -> list[SubIssue]:
        children = state.doc.sub_issues
        if children or not state.issue_body:
            return children
        # Card has no declarations yet; take them from the tracker issue
        return parse_sub_issues(extract_section(state.issue_body, SectionId.SUB_ISSUES))

    def _merge_hierarchy(self, state: _PassState) -> None:
        children = self._declared_children(state)
        if not children:
            return

        numbers = {}
        for child in children:
            if child.number is None:
                number = self.tracker.find_issue_by_tag(child.tag)
                if number is not None:
                    numbers[child.tag] = number
        children = with_numbers(children, numbers)

        states = {
            child.number: self.tracker.get_issue_state(child.number) == "closed"
            for child in children
            if child.number is not None
        }
        rendered = render_sub_issues(children, states)

        # Tracker state wins over manual edits; report what gets dropped
        state.dropped = dropped_lines(state.doc.section(SectionId.SUB_ISSUES), rendered)
        for line in state.dropped:
            logger.warning(f"[RECONCILE] {state.doc.id}: Sub-Issues line not backed by a child, dropping: {line}")

        state.children = children
        state.relations = resolve_relations(state.doc.id, children, states)
        state.doc = replace(state.doc, body=merge_section(state.doc.body, SectionId.SUB_ISSUES, rendered))
        if state.issue_body is not None:
            state.issue_body = merge_section(state.issue_body, SectionId.SUB_ISSUES, rendered)

    def _propagate_signals(self, state: _PassState, signals: list[ChildSignal]) -> None:
        for signal in signals:
            result = propagate(state.doc.body, signal.number, signal.complete, SectionId.SUB_ISSUES)
            if result.not_found is not None:
                logger.info(f"[RECONCILE] {state.doc.id}: {result.not_found}")
                state.not_found.append(result.not_found)
                continue
            state.doc = replace(state.doc, body=result.body)

            if state.issue_body is not None:
                state.issue_body = propagate(
                    state.issue_body, signal.number, signal.complete, SectionId.SUB_ISSUES
                ).body

    def _refresh_pr(self, state: _PassState) -> None:
        if state.pr_number is None:
            return

        body = state.pr_body
        if not body.strip():
            logger.info(f"[RECONCILE] {state.doc.id}: PR #{state.pr_number} has no body, generating one")
            body = render_pr_body(state.doc, self._source_path(state))

        has_progress = extract_section(body, SectionId.SUB_ISSUES_PROGRESS) is not None
        if state.children or has_progress:
            completed = states_from_section(state.doc.section(SectionId.SUB_ISSUES))
            body = merge_section(
                body,
                SectionId.SUB_ISSUES_PROGRESS,
                render_progress(state.children, completed),
                before=SectionId.ACCEPTANCE_CHECKLIST,
            )

        items = state.doc.acceptance_checklist
        if items:
            body = merge_section(body, SectionId.ACCEPTANCE_CHECKLIST, render_checklist(items))

        state.pr_body = body

    def _source_path(self, state: _PassState) -> str:
        path = state.loaded.path
        for base in (self.store.cards_dir.parent, path.parent):
            try:
                return str(path.relative_to(base))
            except ValueError:
                continue
        return path.name

    # --- status ----------------------------------------------------------

    def _settle_status(
        self,
        state: _PassState,
        target: CardStatus | str | None,
        authority: Authority | None,
    ) -> None:
        before = state.doc.status
        state.doc = resolve_drift(state.doc, state.observed_status, authority)
        if target is None:
            return

        # One status change per pass: adopting the tracker's status already was one
        if state.doc.status != before:
            attempted = target.value if isinstance(target, CardStatus) else target
            logger.warning(
                f"[RECONCILE] {state.doc.id}: status already moved {before} -> {state.doc.status} "
                f"this pass; re-run to advance to {attempted}"
            )
            raise InvalidTransition(state.doc.id, before, attempted, next_status(before))
        state.doc = advance(state.doc, target)

    # --- planning --------------------------------------------------------

    def _build_plan(self, state: _PassState) -> Plan:
        plan = Plan(state.doc.id)
        tracker = self.tracker
        issue = state.issue_number
        pr = state.pr_number

        if issue is not None and state.issue_body != state.issue_body_before:
            expected_issue_body = state.issue_body_before
            new_issue_body = state.issue_body

            def set_issue_body():
                if tracker.get_issue_body(issue) != expected_issue_body:
                    raise ConcurrentEdit(f"issue #{issue}")
                tracker.set_issue_body(issue, new_issue_body)

            plan.add("set-issue-body", f"issue #{issue}", "update Sub-Issues section",
                     set_issue_body, expected_issue_body, new_issue_body)

        if pr is not None and state.pr_body != state.pr_body_before:
            expected_pr_body = state.pr_body_before
            new_pr_body = state.pr_body
            summary = (
                "generate body from card" if not expected_pr_body.strip()
                else "update Sub-Issues Progress and Acceptance Checklist"
            )

            def set_pr_body():
                if tracker.get_pr_body(pr) != expected_pr_body:
                    raise ConcurrentEdit(f"PR #{pr}")
                tracker.set_pr_body(pr, new_pr_body)

            plan.add("set-pr-body", f"PR #{pr}", summary, set_pr_body, expected_pr_body, new_pr_body)

        if issue is not None and state.observed_status != state.doc.status:
            status = state.doc.status
            previous = state.observed_status or "unset"

            def set_issue_status():
                tracker.set_issue_status(issue, status)

            plan.add("set-issue-status", f"issue #{issue}", f"{previous} -> {status}", set_issue_status)

        loaded = state.loaded
        revision = loaded.revision
        card_changed = content_revision(state.doc) != content_revision(loaded.doc)

        if card_changed and loaded.archived:
            logger.info(f"[RECONCILE] {state.doc.id}: card is archived, leaving {loaded.path} unchanged")
        elif card_changed:
            new_doc = stamp(state.doc)
            state.doc = new_doc
            before_text = loaded.path.read_text()

            def write_card():
                nonlocal revision
                revision = self.store.write(loaded.path, new_doc, revision)

            changes = []
            if new_doc.status != loaded.doc.status:
                changes.append(f"status {loaded.doc.status} -> {new_doc.status}")
            if new_doc.tracker_issue_number != loaded.doc.tracker_issue_number:
                changes.append(f"Issue #{new_doc.tracker_issue_number}")
            if new_doc.body != loaded.doc.body:
                changes.append("body sections")

            plan.add("write-card", str(loaded.path), ", ".join(changes) or "frontmatter",
                     write_card, before_text, serialize_document(new_doc))

        if state.doc.status == TERMINAL_STATE and not loaded.archived:

            def archive_card():
                self.store.archive(loaded.path, revision)

            plan.add("archive-card", str(loaded.path), f"move to {self.store.archive_dir}", archive_card)

        return plan
