from __future__ import annotations

import logging
from pathlib import Path

from ..util.fs import remove_path

logger = logging.getLogger("clawboot.workspace")


def link_workspace(link: Path, target: Path) -> None:
    """Point the gateway's workspace at the persisted data directory.

    Always replaced, so a changed target heals on the next bootstrap.
    """
    remove_path(link)
    link.parent.mkdir(parents=True, exist_ok=True)
    link.symlink_to(target, target_is_directory=True)
    logger.info("workspace linked to %s", target, extra={"stage": "workspace_link"})
