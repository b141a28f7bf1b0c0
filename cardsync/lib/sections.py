"""
Section model and merger for card and tracker bodies.

Bodies are scanned once into a preamble plus an ordered list of heading
blocks. Merges are list operations on that model (find-or-insert-at-index),
so a section that already exists is always replaced in place and never
appended a second time.
"""

import re
from dataclasses import dataclass
from enum import Enum

from cardsync.lib.errors import MalformedDocument

HEADING_RE = re.compile(r'^(#{1,6})[ \t]+(.*?)[ \t]*$')
FENCE_RE = re.compile(r'^[ ]{0,3}(`{3,}|~{3,})')


class SectionId(Enum):
    """Sections the engine knows how to read and write."""
    PURPOSE = "Purpose"
    PROBLEM = "Problem"
    PROPOSAL = "Proposal"
    ACCEPTANCE_CHECKLIST = "Acceptance Checklist"
    SUB_ISSUES = "Sub-Issues"
    SUB_ISSUES_PROGRESS = "Sub-Issues Progress"


@dataclass(frozen=True)
class UnrecognizedSection:
    """Heading the engine preserves but never merges into."""
    raw_heading: str


def classify_heading(title: str) -> SectionId | UnrecognizedSection:
    """Map heading text to a SectionId (exact, case-sensitive match)."""
    for section in SectionId:
        if section.value == title:
            return section
    return UnrecognizedSection(title)


@dataclass
class SectionBlock:
    """A heading line and the lines that follow it up to the next heading."""
    heading_line: str
    level: int
    title: str
    lines: list[str]
    line_number: int  # 1-based, within the scanned body

    @property
    def kind(self) -> SectionId | UnrecognizedSection:
        return classify_heading(self.title)


@dataclass
class SectionLayout:
    """Scanned body: preamble lines plus heading blocks, lossless."""
    preamble: list[str]
    blocks: list[SectionBlock]

    def find(self, title: str) -> int | None:
        """Index of the first block whose title equals `title`."""
        for i, block in enumerate(self.blocks):
            if block.title == title:
                return i
        return None

    def span_end(self, index: int) -> int:
        """Index one past the last block belonging to the section at `index`.

        A section owns every following block of a deeper level and stops at
        the next heading of equal or higher rank.
        """
        level = self.blocks[index].level
        for j in range(index + 1, len(self.blocks)):
            if self.blocks[j].level <= level:
                return j
        return len(self.blocks)

    def section_lines(self, index: int) -> list[str]:
        """Content lines of the section at `index` (heading excluded)."""
        lines = list(self.blocks[index].lines)
        for block in self.blocks[index + 1:self.span_end(index)]:
            lines.append(block.heading_line)
            lines.extend(block.lines)
        return lines

    def render(self) -> str:
        lines = list(self.preamble)
        for block in self.blocks:
            lines.append(block.heading_line)
            lines.extend(block.lines)
        return "\n".join(lines)


def iter_fenced(lines: list[str]):
    """Yield (lineno, line, fenced) for each line.

    `fenced` is True for fence delimiters and everything between them.

    Raises:
        MalformedDocument: once the lines are exhausted, if a fence is
            still open
    """
    fence: str | None = None
    fence_line = 0

    for lineno, line in enumerate(lines, 1):
        fence_match = FENCE_RE.match(line)
        if fence is not None:
            if fence_match:
                marker = fence_match.group(1)
                rest = line.strip()[len(marker):].strip()
                if marker[0] == fence[0] and len(marker) >= len(fence) and not rest:
                    fence = None
            yield lineno, line, True
        elif fence_match:
            fence = fence_match.group(1)
            fence_line = lineno
            yield lineno, line, True
        else:
            yield lineno, line, False

    if fence is not None:
        raise MalformedDocument(
            f"Unterminated code fence opened at line {fence_line}",
            key="body",
        )


def scan_sections(body: str) -> SectionLayout:
    """Scan a body into a SectionLayout.

    Heading-like lines inside fenced code blocks are body text.

    Raises:
        MalformedDocument: if a code fence is opened and never closed
    """
    preamble: list[str] = []
    blocks: list[SectionBlock] = []

    for lineno, line, fenced in iter_fenced(body.split("\n")):
        heading = None if fenced else HEADING_RE.match(line)
        if heading:
            blocks.append(SectionBlock(
                heading_line=line,
                level=len(heading.group(1)),
                title=heading.group(2),
                lines=[],
                line_number=lineno,
            ))
        elif blocks:
            blocks[-1].lines.append(line)
        else:
            preamble.append(line)

    return SectionLayout(preamble=preamble, blocks=blocks)


def section_line_range(body: str, section: SectionId) -> tuple[int, int] | None:
    """1-based inclusive (first, last) line numbers of a section's content.

    Returns None if the section is absent. `first > last` for an empty
    section.
    """
    layout = scan_sections(body)
    index = layout.find(section.value)
    if index is None:
        return None
    first = layout.blocks[index].line_number + 1
    end = layout.span_end(index)
    if end < len(layout.blocks):
        last = layout.blocks[end].line_number - 1
    else:
        last = len(body.split("\n"))
    return first, last


def _section_title(section: SectionId | str) -> str:
    if isinstance(section, SectionId):
        return section.value
    try:
        return SectionId(section).value
    except ValueError:
        raise ValueError(f"Not a recognized section: {section!r}") from None


def extract_section(body: str, section: SectionId | str) -> str | None:
    """Return the content of a section without its heading, or None."""
    layout = scan_sections(body)
    index = layout.find(_section_title(section))
    if index is None:
        return None
    return "\n".join(layout.section_lines(index)).strip("\n")


def _build_block(title: str, level: int, content: str, lineno: int) -> SectionBlock:
    content = content.strip("\n")
    lines = [""]
    if content:
        lines.extend(content.split("\n"))
        lines.append("")
    return SectionBlock(
        heading_line=f"{'#' * level} {title}",
        level=level,
        title=title,
        lines=lines,
        line_number=lineno,
    )


def merge_section(
    body: str,
    section: SectionId | str,
    content: str,
    level: int = 2,
    before: SectionId | None = None,
) -> str:
    """Insert or replace a named section in a body.

    Replaces the first heading whose text equals the section title, up to
    the next heading of equal or higher rank. A missing section is inserted
    before `before` when that section is present, otherwise appended after
    exactly one blank line. Applying the same merge twice gives the same
    bytes as applying it once.

    Raises:
        ValueError: if `section` is not a SectionId value
        MalformedDocument: if the body has an unterminated code fence
    """
    title = _section_title(section)
    layout = scan_sections(body)
    index = layout.find(title)

    if index is not None:
        existing = layout.blocks[index]
        new_block = _build_block(title, existing.level, content, existing.line_number)
        end = layout.span_end(index)
        layout.blocks[index:end] = [new_block]
        return layout.render()

    if before is not None:
        anchor = layout.find(before.value)
        if anchor is not None:
            new_block = _build_block(title, level, content, layout.blocks[anchor].line_number)
            layout.blocks.insert(anchor, new_block)
            return layout.render()

    head = body.rstrip("\n")
    new_block = _build_block(title, level, content, 0)
    rendered = new_block.heading_line + "\n" + "\n".join(new_block.lines)
    if not head:
        return rendered
    return head + "\n\n" + rendered
