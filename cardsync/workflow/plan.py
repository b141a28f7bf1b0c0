"""
Reconciliation plans.

A plan is the ordered list of writes one pass wants to make. It is built
without side effects, shown as a dry run by default, and executed only on
request. Execution is strictly sequential and stops at the first failing
step; the result always reports every step as succeeded, failed or not
reached so an operator can re-run with confidence.
"""

import difflib
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from cardsync.lib.errors import ConcurrentEdit
from cardsync.tracker.base import TransportError

logger = logging.getLogger(__name__)

__all__ = [
    "ConcurrentEdit",
    "StepStatus",
    "PlanStep",
    "PlanResult",
    "Plan",
]

# Step kinds in the order a pass emits them
STEP_ORDER = [
    "set-issue-body",
    "set-pr-body",
    "set-issue-status",
    "write-card",
    "archive-card",
]

# Failures that stop the plan and are reported on the failed step
STEP_ERRORS = (TransportError, ConcurrentEdit, OSError)


class StepStatus(Enum):
    PLANNED = "planned"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_REACHED = "not-reached"


@dataclass
class PlanStep:
    """One write, with enough context to show it and to run it."""
    action: str
    target: str
    summary: str
    apply: Callable[[], None] = field(repr=False, compare=False)
    before: str | None = None
    after: str | None = None
    status: StepStatus = StepStatus.PLANNED
    error: str | None = None
    duration: float | None = None

    def diff(self) -> str:
        """Unified diff of the text this step replaces, if any."""
        if self.before is None or self.after is None:
            return ""
        return "".join(difflib.unified_diff(
            self.before.splitlines(keepends=True),
            self.after.splitlines(keepends=True),
            fromfile=f"{self.target} (current)",
            tofile=f"{self.target} (planned)",
        ))

    def to_dict(self) -> dict:
        data = {
            "action": self.action,
            "target": self.target,
            "summary": self.summary,
            "status": self.status.value,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.duration is not None:
            data["duration"] = round(self.duration, 3)
        return data


@dataclass
class PlanResult:
    """Outcome of previewing or executing a plan."""
    card_id: str
    steps: list[PlanStep]
    executed: bool
    cancelled: bool = False
    error: Exception | None = None

    def _with(self, status: StepStatus) -> list[PlanStep]:
        return [s for s in self.steps if s.status == status]

    @property
    def succeeded(self) -> list[PlanStep]:
        return self._with(StepStatus.SUCCEEDED)

    @property
    def failed(self) -> PlanStep | None:
        failed = self._with(StepStatus.FAILED)
        return failed[0] if failed else None

    @property
    def not_reached(self) -> list[PlanStep]:
        return self._with(StepStatus.NOT_REACHED)

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled

    def render_text(self, show_diff: bool = False) -> str:
        mode = "Executed" if self.executed else "Dry run"
        lines = [f"{mode} plan for {self.card_id}: {len(self.steps)} step(s)"]
        if not self.steps:
            lines.append("  nothing to do, card and tracker agree")

        for i, step in enumerate(self.steps, 1):
            lines.append(f"  {i}. [{step.status.value}] {step.action} {step.target}: {step.summary}")
            if step.error:
                lines.append(f"     error: {step.error}")
            if show_diff:
                diff = step.diff()
                if diff:
                    lines.extend("     " + d for d in diff.rstrip("\n").split("\n"))

        if self.cancelled:
            lines.append("Cancelled: remaining steps were not issued")
        elif self.failed:
            lines.append(
                f"Stopped at step {self.steps.index(self.failed) + 1}: "
                f"{len(self.succeeded)} succeeded, {len(self.not_reached)} not reached. "
                "Re-running is safe."
            )
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "card_id": self.card_id,
            "executed": self.executed,
            "cancelled": self.cancelled,
            "ok": self.ok,
            "error": str(self.error) if self.error else None,
            "steps": [s.to_dict() for s in self.steps],
        }


class Plan:
    """Ordered writes for one card."""

    def __init__(self, card_id: str):
        self.card_id = card_id
        self.steps: list[PlanStep] = []

    def add(
        self,
        action: str,
        target: str,
        summary: str,
        apply: Callable[[], None],
        before: str | None = None,
        after: str | None = None,
    ) -> PlanStep:
        if action not in STEP_ORDER:
            raise ValueError(f"Unknown plan step '{action}'")
        step = PlanStep(action, target, summary, apply, before, after)
        self.steps.append(step)
        return step

    @property
    def actions(self) -> list[str]:
        return [s.action for s in self.steps]

    def __len__(self) -> int:
        return len(self.steps)

    def preview(self) -> PlanResult:
        """Dry run: report every step as planned, touch nothing."""
        for step in self.steps:
            logger.info(f"[PLAN] {self.card_id}: would {step.action} {step.target} ({step.summary})")
        return PlanResult(self.card_id, self.steps, executed=False)

    def execute(self, cancel_event: threading.Event | None = None) -> PlanResult:
        """Run the steps in order.

        The first step that raises stops execution; later steps are marked
        not-reached. `cancel_event` is checked before every step and a step
        already running is always allowed to finish.
        """
        result = PlanResult(self.card_id, self.steps, executed=True)

        for i, step in enumerate(self.steps):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"[PLAN] {self.card_id}: cancelled before {step.action} {step.target}")
                result.cancelled = True
                self._mark_not_reached(i)
                return result

            start = time.time()
            try:
                step.apply()
            except STEP_ERRORS as e:
                step.duration = time.time() - start
                step.status = StepStatus.FAILED
                step.error = str(e)
                result.error = e
                logger.error(f"[PLAN] {self.card_id}: {step.action} {step.target} failed: {e}")
                self._mark_not_reached(i + 1)
                return result

            step.duration = time.time() - start
            step.status = StepStatus.SUCCEEDED
            logger.info(f"[PLAN] {self.card_id}: {step.action} {step.target} ({step.duration:.2f}s)")

        return result

    def _mark_not_reached(self, start: int) -> None:
        for step in self.steps[start:]:
            step.status = StepStatus.NOT_REACHED
