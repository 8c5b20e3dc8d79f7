"""Bootstrap settings.

Layering, lowest first:
- built-in defaults (the container image layout)
- YAML file at $CLAWBOOT_SETTINGS (default /etc/clawboot/settings.yaml)
- a few environment overrides (R2_BUCKET_NAME, CLAWBOOT_LOG_LEVEL, CLAWBOOT_LOG_DIR)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml  # type: ignore

from .paths import BootPaths
from .util.conv import coerce_bool
from .util.fs import atomic_write_text

logger = logging.getLogger("clawboot.settings")

DEFAULT_SETTINGS_PATH = Path("/etc/clawboot/settings.yaml")
DEFAULT_BUCKET = "moltbot-data"
DEFAULT_RCLONE_FLAGS: List[str] = ["--transfers=16", "--fast-list", "--s3-no-check-bucket"]


@dataclass
class BootSettings:
    paths: BootPaths = field(default_factory=BootPaths)
    bucket: str = DEFAULT_BUCKET
    rclone_flags: List[str] = field(default_factory=lambda: list(DEFAULT_RCLONE_FLAGS))
    gateway_signature: str = "openclaw gateway"
    stale_bridge_pattern: str = "supergateway"
    stale_kill_pause: float = 1.0
    sidecar_grace: float = 0.0
    sidecar_ready_timeout: float = 15.0
    probe_sidecars: bool = True
    log_level: str = "INFO"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "paths"}
        out["paths"] = {f.name: str(getattr(self.paths, f.name)) for f in fields(self.paths)}
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BootSettings":
        base = cls()
        raw_paths = d.get("paths")
        paths = base.paths
        if isinstance(raw_paths, dict):
            known = {f.name for f in fields(BootPaths)}
            overrides = {k: Path(str(v)).expanduser() for k, v in raw_paths.items() if k in known and v}
            paths = replace(paths, **overrides)

        flags = d.get("rclone_flags")
        return cls(
            paths=paths,
            bucket=str(d.get("bucket") or base.bucket),
            rclone_flags=[str(x) for x in flags] if isinstance(flags, list) else list(base.rclone_flags),
            gateway_signature=str(d.get("gateway_signature") or base.gateway_signature),
            stale_bridge_pattern=str(d.get("stale_bridge_pattern") or base.stale_bridge_pattern),
            stale_kill_pause=float(d.get("stale_kill_pause", base.stale_kill_pause)),
            sidecar_grace=float(d.get("sidecar_grace", base.sidecar_grace)),
            sidecar_ready_timeout=float(d.get("sidecar_ready_timeout", base.sidecar_ready_timeout)),
            probe_sidecars=coerce_bool(d.get("probe_sidecars"), default=base.probe_sidecars),
            log_level=str(d.get("log_level") or base.log_level),
        )


def settings_path(env: Mapping[str, str]) -> Path:
    raw = str(env.get("CLAWBOOT_SETTINGS") or "").strip()
    return Path(raw).expanduser() if raw else DEFAULT_SETTINGS_PATH


def load_settings_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        doc = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("ignoring unreadable settings file %s: %s", path, e)
        return {}
    return doc if isinstance(doc, dict) else {}


def load_settings(env: Mapping[str, str], *, path: Optional[Path] = None) -> BootSettings:
    """Resolve settings for one bootstrap run."""
    doc = load_settings_file(path or settings_path(env))
    settings = BootSettings.from_dict(doc)

    bucket = str(env.get("R2_BUCKET_NAME") or "").strip()
    if bucket:
        settings.bucket = bucket
    level = str(env.get("CLAWBOOT_LOG_LEVEL") or "").strip()
    if level:
        settings.log_level = level
    log_dir = str(env.get("CLAWBOOT_LOG_DIR") or "").strip()
    if log_dir:
        settings.paths = replace(settings.paths, log_dir=Path(log_dir).expanduser())
    return settings


def save_settings(settings: BootSettings, path: Path) -> None:
    atomic_write_text(path, yaml.safe_dump(settings.to_dict(), allow_unicode=True, sort_keys=False))
