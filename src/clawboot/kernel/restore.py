"""Restore stage: pull config, workspace and skills from R2.

Fails open. Missing credentials mean a fresh local state, and every copy
failure is logged and skipped so one broken tree never blocks the others.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional

from ..contracts.v1 import RestoreResult, StateTreeName
from ..paths import CONFIG_FILENAME, LEGACY_CONFIG_FILENAME
from ..settings import BootSettings
from .remote import R2Credentials, RcloneClient, RemoteCommandError, RemoteStateClient

logger = logging.getLogger("clawboot.restore")

CONFIG_PREFIX = "openclaw"
LEGACY_CONFIG_PREFIX = "clawdbot"


@dataclass(frozen=True)
class StateTree:
    name: StateTreeName
    prefix: str
    local_dir: Path


def state_trees(settings: BootSettings) -> List[StateTree]:
    paths = settings.paths
    return [
        StateTree(name="config", prefix=CONFIG_PREFIX, local_dir=paths.config_dir),
        StateTree(name="workspace", prefix="workspace", local_dir=paths.workspace_dir),
        StateTree(name="skills", prefix="skills", local_dir=paths.skills_dir),
    ]


def _copy(client: RemoteStateClient, tree: str, prefix: str, dest: Path, result: RestoreResult) -> bool:
    try:
        client.copy(prefix, dest)
        return True
    except RemoteCommandError as e:
        logger.warning("%s restore failed: %s", tree, e, extra={"tree": tree})
        result.errors.append(f"{tree}: {e}")
        return False


def migrate_legacy_config(config_dir: Path) -> bool:
    """Rename clawdbot.json to openclaw.json unless the current file already exists."""
    legacy = config_dir / LEGACY_CONFIG_FILENAME
    current = config_dir / CONFIG_FILENAME
    if not legacy.is_file() or current.exists():
        return False
    os.replace(legacy, current)
    return True


def _restore_config(client: RemoteStateClient, config_dir: Path, result: RestoreResult) -> None:
    if client.exists(f"{CONFIG_PREFIX}/{CONFIG_FILENAME}"):
        logger.info("restoring config from R2", extra={"tree": "config"})
        config_dir.mkdir(parents=True, exist_ok=True)
        result.config_restored = _copy(client, "config", CONFIG_PREFIX, config_dir, result)
        return

    if client.exists(f"{LEGACY_CONFIG_PREFIX}/{LEGACY_CONFIG_FILENAME}"):
        logger.info("restoring from legacy R2 backup", extra={"tree": "config"})
        config_dir.mkdir(parents=True, exist_ok=True)
        copied = _copy(client, "legacy config", LEGACY_CONFIG_PREFIX, config_dir, result)
        result.legacy_migrated = migrate_legacy_config(config_dir)
        result.config_restored = copied and (config_dir / CONFIG_FILENAME).exists()
        return

    logger.info("no config backup found in R2, starting fresh", extra={"tree": "config"})


def _restore_tree(client: RemoteStateClient, tree: StateTree, result: RestoreResult) -> int:
    count = client.count(tree.prefix + "/")
    if count <= 0:
        return 0
    logger.info("restoring %s from R2 (%d files)", tree.name, count, extra={"tree": tree.name})
    tree.local_dir.mkdir(parents=True, exist_ok=True)
    if not _copy(client, tree.name, tree.prefix, tree.local_dir, result):
        return 0
    return count


def restore(
    env: Mapping[str, str],
    settings: BootSettings,
    *,
    client_factory: Optional[Callable[[R2Credentials, BootSettings], RemoteStateClient]] = None,
) -> RestoreResult:
    creds = R2Credentials.from_env(env)
    if creds is None:
        logger.info("R2 not configured, starting fresh")
        return RestoreResult()

    client = (client_factory or RcloneClient)(creds, settings)
    client.configure()
    result = RestoreResult(configured=True)

    trees = {t.name: t for t in state_trees(settings)}
    _restore_config(client, trees["config"].local_dir, result)
    result.workspace_file_count = _restore_tree(client, trees["workspace"], result)
    result.skills_file_count = _restore_tree(client, trees["skills"], result)
    return result
