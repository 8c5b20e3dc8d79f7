"""Assemble IDENTITY.md from knowledge/IDENTITY/ fragments.

The gateway reads IDENTITY.md on every conversation turn, so the file is
rebuilt from scratch on each bootstrap.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from ..util.fs import atomic_write_bytes

logger = logging.getLogger("clawboot.identity")

IDENTITY_FILENAME = "IDENTITY.md"
KNOWLEDGE_IDENTITY_DIR = Path("knowledge") / "IDENTITY"
FRAGMENTS: Sequence[str] = ("profile.md", "preferences.md", "goals.md")

AGENT_RULES = """## Agent Rules

- You are Effy's personal AI assistant with access to a shared knowledge base.
- Before responding, check relevant knowledge:
  - Person mentioned → search with search.js or read people/_index.md
  - Project question → read the project file in projects/
  - Schedule/availability question → check IDENTITY/preferences.md
- After learning something new, write it back:
  - New info about a person → update their file in people/
  - Important event or decision → append to journal with journal.js
  - Project status change → update the project file
- Never share personal info (IDENTITY/, people/) with anyone other than Effy unless she explicitly asks.
- Use Pacific Time (PT) for all timestamps and scheduling.
- Keep responses concise and direct.
"""


def render_identity(source_dir: Path, fragments: Sequence[str] = FRAGMENTS) -> bytes:
    """Fragments are concatenated as raw bytes; their encoding is not checked."""
    parts: List[bytes] = []
    for name in fragments:
        p = source_dir / name
        if not p.is_file():
            continue
        # Each fragment is followed by one blank line, like `cat f; echo`.
        parts.append(p.read_bytes())
        parts.append(b"\n")
    parts.append(AGENT_RULES.encode("utf-8"))
    return b"".join(parts)


def assemble_identity(workspace_dir: Path) -> Optional[Path]:
    source_dir = workspace_dir / KNOWLEDGE_IDENTITY_DIR
    if not source_dir.is_dir():
        logger.info("no knowledge/IDENTITY/ directory found, skipping IDENTITY.md generation")
        return None
    out = workspace_dir / IDENTITY_FILENAME
    atomic_write_bytes(out, render_identity(source_dir))
    logger.info("IDENTITY.md generated at %s", out)
    return out
