"""
Parent -> child hierarchy for cards with sub-issues.

A parent card declares its children in its Sub-Issues section. Each pass
re-renders that section from the children's tracker state, in declaration
order, with one line per child.
"""

import re
from dataclasses import dataclass, replace
from typing import Mapping

from cardsync.lib.constants import PENDING_MARKER

CHECKLIST_DECL_RE = re.compile(
    r'^\s*[-*+]\s+\[[ xX]\]\s+(?:#(\d+)|' + re.escape(PENDING_MARKER) + r')\s+(\S+)(?:\s+-\s+(.*?))?\s*$'
)
NUMBERED_DECL_RE = re.compile(r'^\s*\d+\.\s+\*\*([A-Z]+-[\w-]+)\*\*\s*-\s*(.+?)\s*$')
CHECKBOX_PREFIX_RE = re.compile(r'^\s*[-*+]\s+\[[ xX]\]\s*')


@dataclass(frozen=True)
class SubIssue:
    """A child declared by a parent card."""
    tag: str
    description: str
    number: int | None = None

    @property
    def title(self) -> str:
        return f"{self.tag} - {self.description}" if self.description else self.tag


@dataclass(frozen=True)
class SubIssueRelation:
    """Parent/child link as observed during one pass."""
    parent_id: str
    child_number: int
    child_title: str
    completed: bool


def parse_sub_issues(section_text: str | None) -> list[SubIssue]:
    """Read child declarations from a Sub-Issues section.

    Accepts rendered checklist lines (`- [ ] #12 TAG - desc`), pending
    placeholders (`- [ ] (pending) TAG - desc`) and numbered declarations
    (`1. **TAG** - desc`). Other lines are ignored.
    """
    children: list[SubIssue] = []
    if not section_text:
        return children

    for line in section_text.split("\n"):
        match = CHECKLIST_DECL_RE.match(line)
        if match:
            number = int(match.group(1)) if match.group(1) else None
            children.append(SubIssue(
                tag=match.group(2),
                description=match.group(3) or "",
                number=number,
            ))
            continue
        match = NUMBERED_DECL_RE.match(line)
        if match:
            children.append(SubIssue(tag=match.group(1), description=match.group(2)))

    return children


def with_numbers(sub_issues: list[SubIssue], numbers: Mapping[str, int]) -> list[SubIssue]:
    """Fill in tracker numbers for children that don't have one yet."""
    resolved = []
    for child in sub_issues:
        if child.number is None and child.tag in numbers:
            child = replace(child, number=numbers[child.tag])
        resolved.append(child)
    return resolved


def resolve_relations(
    parent_id: str,
    sub_issues: list[SubIssue],
    states: Mapping[int, bool],
) -> list[SubIssueRelation]:
    """Relations for every filed child, in declaration order."""
    return [
        SubIssueRelation(
            parent_id=parent_id,
            child_number=child.number,
            child_title=child.title,
            completed=bool(states.get(child.number, False)),
        )
        for child in sub_issues
        if child.number is not None
    ]


def render_line(child: SubIssue, complete: bool) -> str:
    if child.number is None:
        return f"- [ ] {PENDING_MARKER} {child.title}"
    return f"- [{'x' if complete else ' '}] #{child.number} {child.title}"


def render_sub_issues(sub_issues: list[SubIssue], states: Mapping[int, bool]) -> str:
    """Checklist block for the Sub-Issues section.

    One line per declared child, in declared order. Children without a
    tracker number are kept as unchecked placeholders.
    """
    return "\n".join(
        render_line(child, bool(states.get(child.number, False)))
        for child in sub_issues
    )


def render_progress(sub_issues: list[SubIssue], states: Mapping[int, bool]) -> str:
    """Body of the PR's Sub-Issues Progress section."""
    if not sub_issues:
        return "_No sub-issues tracked yet._"
    done = sum(1 for c in sub_issues if c.number is not None and states.get(c.number, False))
    return (
        f"**Progress:** {done} / {len(sub_issues)} complete\n\n"
        + render_sub_issues(sub_issues, states)
    )


def states_from_section(section_text: str | None) -> dict[int, bool]:
    """Checkbox state per child number as currently written in a section."""
    states: dict[int, bool] = {}
    if not section_text:
        return states
    for line in section_text.split("\n"):
        match = re.match(r'^\s*[-*+]\s+\[([ xX])\]\s+#(\d+)(?!\d)', line)
        if match:
            states.setdefault(int(match.group(2)), match.group(1).lower() == "x")
    return states


def dropped_lines(existing_section: str | None, rendered: str) -> list[str]:
    """Lines of the existing section that a re-render would discard.

    Child lines are compared by tag, so a line that only changes checkbox
    state, gains its issue number or has its description refreshed is not
    reported.
    """
    if not existing_section:
        return []

    def normalize(line: str) -> str:
        match = CHECKLIST_DECL_RE.match(line) or NUMBERED_DECL_RE.match(line)
        if match:
            return match.group(2) if match.re is CHECKLIST_DECL_RE else match.group(1)
        return CHECKBOX_PREFIX_RE.sub("", line).strip()

    kept = {normalize(line) for line in rendered.split("\n")}
    return [
        line.strip()
        for line in existing_section.split("\n")
        if line.strip() and normalize(line) not in kept
    ]
