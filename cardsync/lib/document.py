"""
Card document model.

A card is a Markdown file with a `key: value` frontmatter block between two
`---` lines followed by a free-form body:

    ---
    ID: ARCH-123
    type: architecture
    lane: C
    status: Ticketed
    Issue: #42
    ---

    # ARCH-123: Title

    ## Problem
    ...

The body is kept verbatim; named sections are derived from it on demand.
serialize_document() is a stable inverse of parse_document().
"""

import hashlib
from dataclasses import dataclass, replace

from cardsync.lib import validate
from cardsync.lib.checklist import ChecklistItem, parse_checklist
from cardsync.lib.config import LifecycleConfig
from cardsync.lib.errors import MalformedDocument
from cardsync.lib.hierarchy import SubIssue, parse_sub_issues
from cardsync.lib.sections import SectionBlock, SectionId, extract_section, scan_sections

__all__ = [
    "MalformedDocument",
    "WorkItemDocument",
    "parse_document",
    "serialize_document",
    "content_revision",
    "stamp",
]

FRONTMATTER_DELIMITER = "---"
REQUIRED_KEYS = ["ID", "lane", "status"]

# Known keys in serialization order; lookups are case-insensitive
CANONICAL_KEYS = ["ID", "type", "lane", "status", "Issue", "Reconciled"]
_CANONICAL_BY_LOWER = {k.lower(): k for k in CANONICAL_KEYS}


@dataclass(frozen=True)
class WorkItemDocument:
    """A parsed card."""
    id: str
    type: str | None
    lane: str
    status: str
    body: str
    tracker_issue_number: int | None = None
    reconciled: str | None = None  # revision stamp written by the last pass
    extra: tuple[tuple[str, str], ...] = ()  # unknown frontmatter keys, in order

    @property
    def sections(self) -> list[SectionBlock]:
        return scan_sections(self.body).blocks

    def section(self, section: SectionId) -> str | None:
        return extract_section(self.body, section)

    @property
    def title(self) -> str | None:
        """Text of the first level-1 heading."""
        for block in self.sections:
            if block.level == 1:
                return block.title
        return None

    @property
    def purpose(self) -> str | None:
        return self.section(SectionId.PURPOSE)

    @property
    def problem(self) -> str | None:
        return self.section(SectionId.PROBLEM)

    @property
    def proposal(self) -> str | None:
        return self.section(SectionId.PROPOSAL)

    @property
    def acceptance_checklist(self) -> list[ChecklistItem]:
        return parse_checklist(self.section(SectionId.ACCEPTANCE_CHECKLIST))

    @property
    def sub_issues(self) -> list[SubIssue]:
        return parse_sub_issues(self.section(SectionId.SUB_ISSUES))

    @property
    def edited_since_reconcile(self) -> bool:
        """True if the card changed after the last pass stamped it."""
        if self.reconciled is None:
            return False
        return content_revision(self) != self.reconciled


def _split_frontmatter(text: str) -> tuple[list[tuple[int, str]], str]:
    """Return ([(lineno, line)] of the frontmatter, body)."""
    lines = text.split("\n")
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        raise MalformedDocument("Missing frontmatter block", key="frontmatter")

    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_DELIMITER:
            fm = [(n + 1, lines[n]) for n in range(1, i)]
            return fm, "\n".join(lines[i + 1:])

    raise MalformedDocument("Frontmatter block is never closed", key="frontmatter")


def _parse_frontmatter(fm_lines: list[tuple[int, str]]) -> dict[str, str]:
    fields: dict[str, str] = {}
    for lineno, raw in fm_lines:
        line = raw.strip()
        if not line:
            continue
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            raise MalformedDocument(f"Line {lineno}: expected 'key: value'", key=line)

        key = _CANONICAL_BY_LOWER.get(key.lower(), key)
        if key in fields:
            raise MalformedDocument(f"Line {lineno}: duplicate frontmatter key", key=key)

        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        fields[key] = value
    return fields


def parse_document(text: str, lifecycle: LifecycleConfig | None = None) -> WorkItemDocument:
    """Parse card text into a WorkItemDocument.

    Raises:
        MalformedDocument: missing or invalid frontmatter, a missing required
            key, a value outside the allowed vocabulary, or a body with an
            unterminated code fence. The offending key is named.
    """
    lifecycle = lifecycle or LifecycleConfig()
    fm_lines, body = _split_frontmatter(text)
    fields = _parse_frontmatter(fm_lines)

    for key in REQUIRED_KEYS:
        if not fields.get(key):
            raise MalformedDocument(f"Missing required frontmatter key '{key}'", key=key)

    try:
        validate.validate(fields, "card")
    except validate.ValidationError as e:
        raise MalformedDocument(f"Invalid frontmatter: {e.message}", key=e.path) from None

    if fields["lane"] not in lifecycle.lanes:
        raise MalformedDocument(
            f"Lane '{fields['lane']}' not allowed. Expected one of {', '.join(lifecycle.lanes)}",
            key="lane",
        )

    card_type = fields.get("type") or lifecycle.type_for_id(fields["ID"])
    if card_type is not None and card_type not in lifecycle.types:
        raise MalformedDocument(
            f"Type '{card_type}' not allowed. Expected one of {', '.join(sorted(lifecycle.types))}",
            key="type",
        )

    issue = fields.get("Issue", "").lstrip("#")

    # Surface unparseable section boundaries now rather than mid-pass
    scan_sections(body)

    return WorkItemDocument(
        id=fields["ID"],
        type=card_type,
        lane=fields["lane"],
        status=fields["status"],
        body=body,
        tracker_issue_number=int(issue) if issue else None,
        reconciled=fields.get("Reconciled") or None,
        extra=tuple((k, v) for k, v in fields.items() if k not in _CANONICAL_BY_LOWER.values()),
    )


def _quote(value: str) -> str:
    # Parsing strips one pair of matching quotes, so protect values that still have one
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        outer = "'" if value[0] == '"' else '"'
        return f"{outer}{value}{outer}"
    return value


def _frontmatter_lines(doc: WorkItemDocument) -> list[str]:
    lines = [f"ID: {doc.id}"]
    if doc.type:
        lines.append(f"type: {doc.type}")
    lines.append(f"lane: {doc.lane}")
    lines.append(f"status: {doc.status}")
    if doc.tracker_issue_number is not None:
        lines.append(f"Issue: #{doc.tracker_issue_number}")
    if doc.reconciled:
        lines.append(f"Reconciled: {doc.reconciled}")
    lines.extend(f"{k}: {_quote(v)}" for k, v in doc.extra)
    return lines


def serialize_document(doc: WorkItemDocument) -> str:
    """Render a card back to text."""
    lines = [FRONTMATTER_DELIMITER, *_frontmatter_lines(doc), FRONTMATTER_DELIMITER]
    return "\n".join(lines) + "\n" + doc.body


def content_revision(doc: WorkItemDocument) -> str:
    """Short content hash of a card, ignoring its own revision stamp."""
    text = serialize_document(replace(doc, reconciled=None))
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]


def stamp(doc: WorkItemDocument) -> WorkItemDocument:
    """Return `doc` carrying the revision stamp of its current content."""
    return replace(doc, reconciled=content_revision(doc))
