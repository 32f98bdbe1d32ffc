"""Configuration module for knowsys-mcp.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path

BACKEND_INDEX_FILES = {
    "json": "context-index.json",
    "sqlite": "knowledge.db",
}

TRUE_VALUES = ("1", "true", "yes")
FALSE_VALUES = ("0", "false", "no")


def _positive_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
        if value < 1:
            raise ValueError(f"must be a positive integer, got {value}")
    except ValueError as e:
        raise ValueError(f"Invalid {name} value '{raw}': {e}") from e
    return value


def _flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid {name} value '{raw}': expected true or false")


@dataclass
class Config:
    """Application configuration."""

    root: Path
    backend: str
    index_path: Path
    default_limit: int
    archive_days: int
    verify_sources: bool
    read_only: bool

    @property
    def pointer_dir(self) -> Path:
        return self.root / "plans"

    @property
    def team_index_path(self) -> Path:
        return self.root / "CURRENT_PLAN.md"

    @classmethod
    def from_env(
        cls,
        read_only_override: bool | None = None,
        backend_override: str | None = None,
    ) -> "Config":
        """Load configuration from environment variables.

        Args:
            read_only_override: If provided, overrides the KNOWSYS_READ_ONLY env var.
            backend_override: If provided, overrides the KNOWSYS_BACKEND env var.
        """
        root = Path(os.getenv("KNOWSYS_ROOT", "./.aiknowsys")).expanduser().absolute()

        backend = (backend_override or os.getenv("KNOWSYS_BACKEND", "json")).strip().lower()
        if backend not in BACKEND_INDEX_FILES:
            valid = ", ".join(sorted(BACKEND_INDEX_FILES))
            raise ValueError(f"Invalid KNOWSYS_BACKEND value '{backend}': must be one of {valid}")

        default_index = str(root / BACKEND_INDEX_FILES[backend])
        index_path = Path(os.getenv("KNOWSYS_INDEX", default_index)).expanduser().absolute()

        # CLI flag takes precedence over env var
        if read_only_override is not None:
            read_only = read_only_override
        else:
            read_only = _flag("KNOWSYS_READ_ONLY", False)

        return cls(
            root=root,
            backend=backend,
            index_path=index_path,
            default_limit=_positive_int("KNOWSYS_DEFAULT_LIMIT", "20"),
            archive_days=_positive_int("KNOWSYS_ARCHIVE_DAYS", "30"),
            verify_sources=_flag("KNOWSYS_VERIFY_SOURCES", True),
            read_only=read_only,
        )
