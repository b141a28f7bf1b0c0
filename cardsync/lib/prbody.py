"""
Pull request body generation and validation.

A generated PR body starts with the issue link and the card reference,
followed by the card's narrative sections and its acceptance checklist:

    Closes #42

    **Source:** `ideas/ARCH-123.md`

    ## Purpose
    ...
    ## Acceptance Checklist
    - [ ] ...

The link and source lines sit before the first heading so later section
merges never touch them.
"""

import re
from dataclasses import dataclass, field

from cardsync.lib.checklist import render_checklist
from cardsync.lib.document import WorkItemDocument
from cardsync.lib.sections import SectionId, merge_section, scan_sections

ISSUE_LINK_RE = re.compile(r'^(Closes #\d+|Linked ticket: [A-Z]+-[a-z0-9-]+)\s*$', re.MULTILINE)

NARRATIVE_SECTIONS = [SectionId.PURPOSE, SectionId.PROBLEM, SectionId.PROPOSAL]
OPTIONAL_SECTIONS = [*NARRATIVE_SECTIONS, SectionId.SUB_ISSUES_PROGRESS, SectionId.ACCEPTANCE_CHECKLIST]


def issue_link(doc: WorkItemDocument) -> str:
    if doc.tracker_issue_number is not None:
        return f"Closes #{doc.tracker_issue_number}"
    return f"Linked ticket: {doc.id}"


def render_pr_body(doc: WorkItemDocument, source: str | None = None) -> str:
    """Build a PR body from a card.

    Args:
        doc: The card
        source: Card path shown in the header (defaults to ideas/<ID>.md)
    """
    source = source or f"ideas/{doc.id}.md"
    body = f"{issue_link(doc)}\n\n**Source:** `{source}`\n"

    for section in NARRATIVE_SECTIONS:
        text = doc.section(section)
        if text:
            body = merge_section(body, section, text)

    items = doc.acceptance_checklist
    if items:
        body = merge_section(body, SectionId.ACCEPTANCE_CHECKLIST, render_checklist(items))

    return body


@dataclass
class PrBodyCheck:
    """Result of validate_pr_body()."""
    has_issue_link: bool
    present: list[SectionId] = field(default_factory=list)
    missing: list[SectionId] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.has_issue_link


def validate_pr_body(body: str) -> PrBodyCheck:
    """Check a PR body for the issue link and the optional card sections.

    Only the issue link is required. Headings inside code fences don't count.

    Raises:
        MalformedDocument: if the body has an unterminated code fence
    """
    headings = {block.title for block in scan_sections(body).blocks if block.level == 2}
    check = PrBodyCheck(has_issue_link=bool(ISSUE_LINK_RE.search(body)))
    for section in OPTIONAL_SECTIONS:
        (check.present if section.value in headings else check.missing).append(section)
    return check
