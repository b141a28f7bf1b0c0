"""
Checklist parsing and completion propagation.

propagate() flips the checkbox of the one checklist line that references a
child issue number and leaves every other byte of the body alone.
"""

import logging
import re
from dataclasses import dataclass
from typing import NamedTuple

from cardsync.lib.sections import SectionId, iter_fenced, section_line_range

logger = logging.getLogger(__name__)

CHECKBOX_RE = re.compile(r'^(\s*[-*+]\s+\[)([ xX])(\])(.*)$')


@dataclass(frozen=True)
class ChecklistItem:
    checked: bool
    text: str


def parse_checklist(text: str | None) -> list[ChecklistItem]:
    """Checklist items in order, ignoring other lines."""
    items = []
    if not text:
        return items
    for line in text.split("\n"):
        match = CHECKBOX_RE.match(line)
        if match:
            items.append(ChecklistItem(
                checked=match.group(2).lower() == "x",
                text=match.group(4).strip(),
            ))
    return items


def render_checklist(items: list[ChecklistItem]) -> str:
    return "\n".join(f"- [{'x' if item.checked else ' '}] {item.text}" for item in items)


class ReferenceNotFound(Exception):
    """No checklist line references the child. Reported, not raised."""

    def __init__(self, child_number: int, section: SectionId | None = None):
        self.child_number = child_number
        self.section = section
        where = f" in section '{section.value}'" if section else ""
        super().__init__(f"No checklist line references #{child_number}{where}")


class PropagateResult(NamedTuple):
    body: str
    changed: bool
    line_number: int | None = None  # 1-based line that references the child
    not_found: ReferenceNotFound | None = None


def _reference_re(child_number: int) -> re.Pattern:
    return re.compile(rf'#{child_number}(?!\d)')


def propagate(
    body: str,
    child_number: int,
    complete: bool,
    section: SectionId | None = None,
) -> PropagateResult:
    """Set the checkbox of the line referencing #child_number to `complete`.

    Only the first matching checklist line outside code fences is touched,
    optionally restricted to one section. Lines are never reordered.

    A missing reference is a no-op whose result carries ReferenceNotFound.
    """
    lines = body.split("\n")

    if section is not None:
        line_range = section_line_range(body, section)
        if line_range is None:
            return PropagateResult(body, False, None, ReferenceNotFound(child_number, section))
        first, last = line_range
    else:
        first, last = 1, len(lines)

    reference = _reference_re(child_number)
    mark = "x" if complete else " "

    scanned = list(iter_fenced(lines))
    for lineno, line, fenced in scanned:
        if fenced or lineno < first or lineno > last:
            continue
        match = CHECKBOX_RE.match(line)
        if not match or not reference.search(match.group(4)):
            continue

        if (match.group(2).lower() == "x") == complete:
            return PropagateResult(body, False, lineno)

        lines[lineno - 1] = line[:match.start(2)] + mark + line[match.end(2):]
        logger.debug(f"[CHECKLIST] #{child_number} -> [{mark}] at line {lineno}")
        return PropagateResult("\n".join(lines), True, lineno)

    return PropagateResult(body, False, None, ReferenceNotFound(child_number, section))
