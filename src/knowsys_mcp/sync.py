"""Plan synchronization: aggregate per-writer pointer files into the team index.

Each writer owns exactly one pointer file, ``plans/active-<author>.md``, and
never edits anyone else's. The team index (``CURRENT_PLAN.md``) is derived from
those files alone, so it can be regenerated, overwritten or deleted at any time.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path, PurePosixPath

import yaml

from knowsys_mcp.errors import InvalidMetadata, ParseError
from knowsys_mcp.indexer.models import PlanStatus, normalize_author, normalize_date
from knowsys_mcp.indexer.parser import split_frontmatter
from knowsys_mcp.indexer.walker import POINTER_PREFIX, atomic_write_text

logger = logging.getLogger(__name__)

NO_ACTIVE_PLANS = "No active plans"
NO_ACTIVE_PLAN = "No active plan"

# Values of the plan field meaning "not working on anything"
EMPTY_PLAN_VALUES = {"", "none", "null", "-", "n/a"}

# Header keys, by the row field they feed
PLAN_KEYS = ("plan", "current_plan", "currentPlanId", "current_plan_id", "plan_id")
UPDATED_KEYS = ("last_updated", "lastUpdated", "updated", "date")

# Legacy body lines: **Currently Working On:** [Title](../PLAN_x.md)
BOLD_FIELD_PATTERN = re.compile(r"^\*\*(?P<key>[^*]+?):?\*\*:?\s*(?P<value>.*?)\s*$")
LINK_PATTERN = re.compile(r"^\[(?P<title>[^\]]*)\]\((?P<target>[^)]+)\)$")
POINTER_TITLE_PATTERN = re.compile(r"^#\s+Active Plan:\s*(?P<author>.+?)\s*$", re.IGNORECASE)

BOLD_FIELDS = {
    "currently working on": "plan",
    "current plan": "plan",
    "status": "status",
    "last updated": "last_updated",
    "note": "note",
    "notes": "note",
}


@dataclass
class PointerFile:
    """What one writer declares about their current work."""

    author: str
    plan_id: str | None = None
    plan_title: str | None = None
    status: str | None = None  # Display label, e.g. "Active"
    note: str | None = None
    last_updated: str | None = None


@dataclass
class TeamRow:
    author: str
    plan_id: str | None
    status: str | None
    last_updated: str | None
    plan_title: str | None = None

    def to_dict(self) -> dict:
        return {
            "author": self.author,
            "planId": self.plan_id,
            "status": self.status,
            "lastUpdated": self.last_updated,
        }


@dataclass
class SyncResult:
    """Rows of the team index plus the pointer files that had to be skipped."""

    rows: list[TeamRow] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    generated_at: str | None = None
    output_path: Path | None = None

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def to_dict(self) -> dict:
        data: dict = {
            "rows": [row.to_dict() for row in self.rows],
            "warnings": list(self.warnings),
            "generatedAt": self.generated_at,
            "empty": self.is_empty,
        }
        if self.is_empty:
            data["marker"] = NO_ACTIVE_PLANS
        if self.output_path is not None:
            data["outputPath"] = str(self.output_path)
        return data


def pointer_filename(author: str) -> str:
    """``"Alice Smith"`` -> ``"active-alice-smith.md"``."""
    normalized = normalize_author(author)
    if not normalized:
        raise ValueError(f"Author '{author}' has no usable characters")
    return f"{POINTER_PREFIX}{normalized}.md"


def _author_from_filename(path: PurePosixPath) -> str:
    return normalize_author(path.stem[len(POINTER_PREFIX) :])


def _plan_reference(value: str) -> tuple[str | None, str | None]:
    """(plan_id, title) from a link, a path or a bare id; (None, None) for "None"."""
    text = value.strip()
    if text.lower() in EMPTY_PLAN_VALUES:
        return None, None
    match = LINK_PATTERN.match(text)
    if match:
        target = PurePosixPath(match.group("target").split("#")[0])
        return target.stem or None, match.group("title").strip() or None
    if text.endswith(".md"):
        return PurePosixPath(text).stem, None
    return text, None


def parse_pointer(content: str, path: str) -> PointerFile:
    """
    Parse a pointer file.

    Accepts a YAML header (``author``, ``plan``, ``status``, ``note``,
    ``last_updated``) and the bold ``**Key:** value`` body lines older tooling
    writes; header values win. A file that names no plan yields a pointer with
    ``plan_id`` None.

    Raises:
        InvalidMetadata: malformed header, unknown status, bad date, or an
            author that does not match the filename
    """
    content = content.replace("\r\n", "\n")
    frontmatter = split_frontmatter(content, path)
    relative = PurePosixPath(path)
    owner = _author_from_filename(relative)

    fields: dict = {}
    declared_author = None
    for line in frontmatter.body.split("\n"):
        title_match = POINTER_TITLE_PATTERN.match(line)
        if title_match and declared_author is None:
            declared_author = title_match.group("author")
            continue
        field_match = BOLD_FIELD_PATTERN.match(line.strip())
        if field_match:
            name = BOLD_FIELDS.get(field_match.group("key").strip().lower())
            if name and name not in fields:
                fields[name] = field_match.group("value")

    raw = frontmatter.raw
    if raw.get("author") is not None:
        declared_author = str(raw["author"])
    for key in PLAN_KEYS:
        if key in raw:
            fields["plan"] = "" if raw[key] is None else str(raw[key])
            break
    if raw.get("status") is not None:
        fields["status"] = str(raw["status"])
    if raw.get("note") is not None:
        fields["note"] = str(raw["note"])
    for key in UPDATED_KEYS:
        if raw.get(key) is not None:
            fields["last_updated"] = raw[key]
            break

    if declared_author is not None and normalize_author(declared_author) != owner:
        raise InvalidMetadata(
            f"Pointer file belongs to '{owner}' but declares author '{declared_author}'",
            line=1,
            path=path,
        )

    plan_id, plan_title = _plan_reference(fields.get("plan", ""))

    status = None
    if fields.get("status") and fields["status"].strip() not in ("-", ""):
        try:
            status = PlanStatus.parse(fields["status"]).label
        except ValueError as e:
            raise InvalidMetadata(str(e), path=path) from e

    last_updated = None
    if fields.get("last_updated") not in (None, ""):
        last_updated = normalize_date(fields["last_updated"])
        if last_updated is None:
            raise InvalidMetadata(
                f"Invalid last updated date '{fields['last_updated']}', expected YYYY-MM-DD",
                path=path,
            )

    note = fields.get("note")
    return PointerFile(
        author=owner,
        plan_id=plan_id,
        plan_title=plan_title,
        status=status,
        note=note.strip() if note else None,
        last_updated=last_updated,
    )


def render_team_index(result: SyncResult) -> str:
    """Markdown for ``CURRENT_PLAN.md``. A pure function of the rows."""
    lines = [
        "# Team Plan Index",
        "",
        "<!-- Generated from plans/active-*.md by plan sync. Do not edit: changes are overwritten. -->",
        "",
        f"**Last Sync:** {result.generated_at or '-'}",
        f"**Developer Count:** {len(result.rows)}",
        "",
        "| Developer | Plan | Status | Last Updated |",
        "|-----------|------|--------|--------------|",
    ]
    if result.is_empty:
        lines.append(f"| *{NO_ACTIVE_PLANS}* | - | - | - |")
    for row in result.rows:
        if row.plan_id is None:
            plan = f"*{NO_ACTIVE_PLAN}*"
        else:
            plan = f"[{row.plan_title or row.plan_id}](plans/{row.plan_id}.md)"
        lines.append(
            f"| {row.author} | {plan} | {row.status or '-'} | {row.last_updated or '-'} |"
        )
    lines.append("")
    return "\n".join(lines)


class PlanSync:
    """Regenerates the team index from the pointer directory on demand."""

    def __init__(self, pointer_dir: Path, output_path: Path):
        self.pointer_dir = pointer_dir
        self.output_path = output_path

    def pointer_paths(self) -> list[Path]:
        if not self.pointer_dir.is_dir():
            return []
        return sorted(
            path
            for path in self.pointer_dir.glob(f"{POINTER_PREFIX}*.md")
            if path.is_file() and not path.name.startswith(".")
        )

    def collect(self) -> SyncResult:
        """
        Parse every pointer file without writing anything.

        A pointer file that cannot be read or parsed is skipped with a warning;
        the rest are still collected.
        """
        result = SyncResult()
        for path in self.pointer_paths():
            relative = f"{self.pointer_dir.name}/{path.name}"
            try:
                pointer = parse_pointer(path.read_text(encoding="utf-8"), relative)
            except (ParseError, OSError, UnicodeDecodeError) as e:
                message = f"Skipped {relative}: {e}"
                logger.warning("%s", message)
                result.warnings.append(message)
                continue
            result.rows.append(
                TeamRow(
                    author=pointer.author,
                    plan_id=pointer.plan_id,
                    status=pointer.status,
                    last_updated=pointer.last_updated,
                    plan_title=pointer.plan_title,
                )
            )

        result.rows.sort(key=lambda row: row.author)
        dates = [row.last_updated for row in result.rows if row.last_updated]
        result.generated_at = max(dates) if dates else None
        return result

    def sync(self, write: bool = True) -> SyncResult:
        """
        Regenerate the team index.

        Args:
            write: Replace ``output_path`` atomically with the rendered index

        Returns:
            The rows and warnings; with ``write`` the output path is set
        """
        result = self.collect()
        if write:
            atomic_write_text(self.output_path, render_team_index(result))
            result.output_path = self.output_path
        if result.is_empty:
            logger.info("No pointer files found; wrote empty team index")
        else:
            logger.info("Synced %d pointer file(s)", len(result.rows))
        return result

    def write_pointer(
        self,
        author: str,
        plan_id: str | None = None,
        status: "PlanStatus | str | None" = None,
        note: str | None = None,
        today: date | None = None,
    ) -> Path:
        """
        Replace one writer's pointer file.

        Raises:
            ValueError: for an empty author or unknown status
        """
        path = self.pointer_dir / pointer_filename(author)
        owner = normalize_author(author)
        header: dict = {"author": owner, "plan": plan_id or None}
        if status is not None:
            header["status"] = PlanStatus.parse(status).value
        if note:
            header["note"] = note
        header["last_updated"] = (today or date.today()).isoformat()

        text = yaml.safe_dump(header, sort_keys=False, allow_unicode=True, default_flow_style=False)
        atomic_write_text(path, f"---\n{text}---\n\n# Active Plan: {owner}\n")
        logger.info("Wrote pointer %s", path.name)
        return path
