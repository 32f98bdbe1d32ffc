"""File walker for discovering source documents under the workspace root."""

import hashlib
import os
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from knowsys_mcp.indexer.models import KIND_FOLDER_MAP

# Files that live next to sources but are derived or owned by plan sync
POINTER_PREFIX = "active-"
DERIVED_FILENAMES = {"CURRENT_PLAN.md"}
ARCHIVE_DIR = "archive"


@dataclass
class SourceFile:
    """A discovered source file."""

    path: Path  # Absolute path
    relative_path: str  # Relative to the workspace root, posix separators
    folder: str  # sessions, plans or learned
    filename: str
    mtime: float
    content_hash: str
    content: bytes


def compute_hash(content: bytes) -> str:
    """Compute SHA-256 hash of content."""
    return hashlib.sha256(content).hexdigest()


def is_pointer_file(path: Path) -> bool:
    return path.name.startswith(POINTER_PREFIX) and path.suffix == ".md"


def walk_workspace(root: Path) -> Iterator[SourceFile]:
    """
    Walk the workspace root and yield a SourceFile for each indexable .md file.

    Structure expected:
    <root>/
    ├── sessions/
    │   └── 2026-02-01-session.md
    ├── plans/
    │   ├── PLAN_auth.md
    │   └── active-alice.md      (pointer, skipped)
    ├── learned/
    │   └── error-handling.md
    ├── archive/                 (skipped)
    └── CURRENT_PLAN.md          (derived, skipped)

    Files are yielded in sorted order so that builds are deterministic.
    """
    if not root.exists():
        return

    for folder in sorted(KIND_FOLDER_MAP.values()):
        folder_dir = root / folder
        if not folder_dir.is_dir():
            continue

        for file_path in sorted(folder_dir.rglob("*.md")):
            if not file_path.is_file():
                continue

            relative_parts = file_path.relative_to(root).parts
            if any(part.startswith(".") for part in relative_parts):
                continue  # Skip hidden files and directories
            if ARCHIVE_DIR in relative_parts:
                continue
            if file_path.name in DERIVED_FILENAMES or is_pointer_file(file_path):
                continue

            content = file_path.read_bytes()
            yield SourceFile(
                path=file_path,
                relative_path=file_path.relative_to(root).as_posix(),
                folder=folder,
                filename=file_path.name,
                mtime=file_path.stat().st_mtime,
                content_hash=compute_hash(content),
                content=content,
            )


def atomic_write_text(path: Path, text: str) -> None:
    """
    Replace ``path`` with ``text`` so that readers see either the old or the new file.

    The content goes to a temporary file in the same directory, is flushed to disk,
    then renamed over the target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def read_source(root: Path, relative_path: str) -> SourceFile:
    """Read one source file by its path relative to the root."""
    file_path = root / relative_path
    content = file_path.read_bytes()
    parts = Path(relative_path).parts
    return SourceFile(
        path=file_path,
        relative_path=Path(relative_path).as_posix(),
        folder=parts[0] if len(parts) > 1 else "",
        filename=file_path.name,
        mtime=file_path.stat().st_mtime,
        content_hash=compute_hash(content),
        content=content,
    )
