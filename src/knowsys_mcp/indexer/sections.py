"""Splitting document bodies by headings, extracting sections and editing them."""

import re
from enum import Enum

from knowsys_mcp.errors import SectionNotFound
from knowsys_mcp.indexer.models import Section

# ATX heading: 1-6 hashes, whitespace, text, optional closing hashes
HEADING_PATTERN = re.compile(r"^(#{1,6})[ \t]+(.*?\S)(?:[ \t]+#+)?[ \t]*$")

# Fenced code block delimiter; headings inside fences are plain text
FENCE_PATTERN = re.compile(r"^ {0,3}(`{3,}|~{3,})")


class SectionOp(str, Enum):
    """Ways of writing content into a named section."""

    APPEND = "append"
    PREPEND = "prepend"
    INSERT_BEFORE = "insert_before"
    INSERT_AFTER = "insert_after"

    @classmethod
    def parse(cls, value: "str | SectionOp") -> "SectionOp":
        if isinstance(value, SectionOp):
            return value
        # Accept insertBefore / insert-before / insert_before
        snake = re.sub(r"(?<!^)(?=[A-Z])", "_", str(value)).replace("-", "_").lower()
        try:
            return cls(snake)
        except ValueError:
            valid = ", ".join(op.value for op in cls)
            raise ValueError(f"Invalid section operation '{value}'. Must be one of: {valid}") from None

    @property
    def requires_anchor(self) -> bool:
        return self in (SectionOp.INSERT_BEFORE, SectionOp.INSERT_AFTER)


def heading_key(name: str) -> str:
    """Reduce ``"## Day 3 "`` and ``"day 3"`` to the same lookup key."""
    return re.sub(r"\s+#+\s*$", "", re.sub(r"^#+\s*", "", name)).strip().lower()


def heading_level_hint(name: str, default: int = 2) -> int:
    """Level implied by leading hashes in a section name, else ``default``."""
    match = re.match(r"^(#{1,6})\s", name)
    return len(match.group(1)) if match else default


def scan_headings(lines: list[str]) -> list[tuple[int, int, str]]:
    """
    Find headings in document order, skipping fenced code blocks.

    Returns list of (line_index, level, heading_text).
    """
    headings: list[tuple[int, int, str]] = []
    fence: str | None = None

    for index, raw_line in enumerate(lines):
        line = raw_line.rstrip("\r\n")

        fence_match = FENCE_PATTERN.match(line)
        if fence_match:
            marker = fence_match.group(1)[0]
            if fence is None:
                fence = marker
            elif fence == marker:
                fence = None
            continue
        if fence is not None:
            continue

        match = HEADING_PATTERN.match(line)
        if match:
            headings.append((index, len(match.group(1)), match.group(2).strip()))

    return headings


def split_sections(body: str) -> list[Section]:
    """
    Split a body into sections in document order.

    Each section body runs from the line after its heading to the line before the
    next heading of any level, keeping line endings, so that joining the rendered
    sections reproduces the body. Text before the first heading becomes a level-0
    section with an empty heading; a body without headings is one such section.
    An empty body has no sections.
    """
    if not body:
        return []

    lines = body.splitlines(keepends=True)
    headings = scan_headings(lines)

    sections: list[Section] = []
    first_heading = headings[0][0] if headings else len(lines)
    if first_heading > 0:
        sections.append(Section(heading="", level=0, body="".join(lines[:first_heading])))

    for position, (index, level, text) in enumerate(headings):
        next_index = headings[position + 1][0] if position + 1 < len(headings) else len(lines)
        sections.append(Section(heading=text, level=level, body="".join(lines[index + 1 : next_index])))

    return sections


def find_section(sections: list[Section], name: str, occurrence: int = 0) -> int | None:
    """Index of the ``occurrence``-th section whose heading matches ``name``, case-insensitively."""
    key = heading_key(name)
    seen = 0
    for index, section in enumerate(sections):
        if section.level > 0 and section.heading.lower() == key:
            if seen == occurrence:
                return index
            seen += 1
    return None


def section_extent(sections: list[Section], index: int) -> int:
    """Exclusive end index: the next section at an equal or shallower level, or the end."""
    level = sections[index].level
    for later in range(index + 1, len(sections)):
        if 0 < sections[later].level <= level:
            return later
    return len(sections)


def extract_section(
    sections: list[Section],
    name: str,
    occurrence: int = 0,
    document_id: str | None = None,
) -> tuple[Section, str]:
    """
    Return the matching heading and the text it governs.

    The text starts after the heading line and stops before the next heading of
    equal or shallower level (or at the end), so nested subsections are included.
    Leading and trailing blank lines are dropped.

    Raises:
        SectionNotFound: if no heading matches
    """
    index = find_section(sections, name, occurrence)
    if index is None:
        raise SectionNotFound(name, document_id)

    end = section_extent(sections, index)
    parts = [sections[index].body]
    parts.extend(section.render() for section in sections[index + 1 : end])
    content = "".join(parts).strip("\n")
    return sections[index], content


def _find_span(lines: list[str], name: str, occurrence: int) -> tuple[int, int] | None:
    """Line span (heading line, exclusive end) of a named section."""
    key = heading_key(name)
    headings = scan_headings(lines)
    seen = 0
    for position, (index, level, text) in enumerate(headings):
        if text.lower() != key:
            continue
        if seen < occurrence:
            seen += 1
            continue
        for later_index, later_level, _ in headings[position + 1 :]:
            if later_level <= level:
                return index, later_index
        return index, len(lines)
    return None


def mutate_body(
    body: str,
    section: str,
    op: SectionOp,
    content: str,
    occurrence: int = 0,
) -> str:
    """
    Write ``content`` into a body relative to a named section.

    - append: at the end of the section, before its trailing blank lines. A missing
      section is created at the end of the document.
    - prepend: right after the heading line. A missing section is created at the
      start of the body, followed by a blank line.
    - insert_before: above the heading line; the section must exist.
    - insert_after: after the whole section, before the next heading of equal or
      shallower level; the section must exist.

    Raises:
        SectionNotFound: if insert_before/insert_after targets a missing section
        ValueError: if content is empty
    """
    if not content.strip():
        raise ValueError("content must not be empty")

    lines = body.split("\n")
    new_lines = content.strip("\n").split("\n")
    span = _find_span(lines, section, occurrence)

    if span is None:
        if op.requires_anchor:
            raise SectionNotFound(section)

        level = heading_level_hint(section)
        heading = re.sub(r"^#+\s*", "", section).strip()
        block = [f"{'#' * level} {heading}"] + new_lines

        if op is SectionOp.APPEND:
            while lines and not lines[-1].strip():
                lines.pop()
            if lines:
                return "\n".join(lines + [""] + block + [""])
            return "\n".join(block + [""])

        if not body.strip():
            return "\n".join(block + [""])
        return "\n".join(block + [""] + lines)

    start, end = span

    if op is SectionOp.APPEND:
        insert_at = start + 1
        for index in range(end - 1, start, -1):
            if lines[index].strip():
                insert_at = index + 1
                break
        return "\n".join(lines[:insert_at] + new_lines + lines[insert_at:])

    if op is SectionOp.PREPEND:
        return "\n".join(lines[: start + 1] + new_lines + lines[start + 1 :])

    if op is SectionOp.INSERT_BEFORE:
        return "\n".join(lines[:start] + new_lines + [""] + lines[start:])

    # INSERT_AFTER
    if end == len(lines) and lines[-1] == "":
        # The empty string after the final newline stays last
        end -= 1
    head, tail = lines[:end], lines[end:]
    block = list(new_lines)
    if head and head[-1].strip():
        block = [""] + block
    if tail and tail != [""]:
        tail = [""] + tail
    elif not tail:
        tail = [""]
    return "\n".join(head + block + tail)
