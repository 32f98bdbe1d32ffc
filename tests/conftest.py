"""Shared fixtures: a small workspace of sessions, plans and patterns."""

from pathlib import Path

import pytest

SESSION_ONE = """---
author: Alice
topics: [auth, testing]
---

# Session notes

## Day 3
Fixed the login bug.

## Day 4
Wrote regression tests.
"""

SESSION_TWO = """---
author: Bob
topics: deploy
---

# Deploy day

Shipped the release.
"""

SESSION_THREE = """---
date: 2026-02-03
author: alice
tags: [Auth-Flow]
---

# Token refresh

## Findings
Refresh tokens expire early.
"""

PLAN_AUTH = """---
status: active
author: alice
date: 2026-01-20
topics: [auth]
---

# Authentication overhaul

## Goals
Replace session cookies with tokens.

## Steps
1. Add token endpoint
"""

PLAN_DEPLOY = """---
author: bob
---

# Deploy pipeline

## Goals
Automate releases.
"""

PLAN_OLD = """---
status: complete
date: 2025-12-01
---

# Old cleanup
"""

PATTERN = """---
type: pattern
topics: [errors]
---

# Error handling

Wrap adapter errors with a stable code.
"""

POINTER = """---
author: alice
plan: PLAN_auth
status: active
---
"""


def write_file(root: Path, relative: str, text: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace with three sessions, three plans, one pattern and one pointer."""
    root = tmp_path / ".aiknowsys"
    write_file(root, "sessions/2026-02-01-session.md", SESSION_ONE)
    write_file(root, "sessions/2026-02-02-session.md", SESSION_TWO)
    write_file(root, "sessions/2026-02-03-session.md", SESSION_THREE)
    write_file(root, "plans/PLAN_auth.md", PLAN_AUTH)
    write_file(root, "plans/PLAN_deploy.md", PLAN_DEPLOY)
    write_file(root, "plans/PLAN_old.md", PLAN_OLD)
    write_file(root, "plans/active-alice.md", POINTER)
    write_file(root, "learned/error-handling.md", PATTERN)
    return root
