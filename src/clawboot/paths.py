from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

GATEWAY_PORT = 18789
GOOGLE_WORKSPACE_PORT = 3100
NOTION_PORT = 3101

CONFIG_FILENAME = "openclaw.json"
LEGACY_CONFIG_FILENAME = "clawdbot.json"


@dataclass(frozen=True)
class BootPaths:
    config_dir: Path = Path("/root/.openclaw")
    workspace_dir: Path = Path("/root/clawd")
    rclone_conf: Path = Path("/root/.config/rclone/rclone.conf")
    google_mcp_dir: Path = Path("/root/.google-mcp")
    log_dir: Path = Path("/tmp/clawboot")
    tmp_dir: Path = Path("/tmp")

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILENAME

    @property
    def legacy_config_file(self) -> Path:
        return self.config_dir / LEGACY_CONFIG_FILENAME

    @property
    def skills_dir(self) -> Path:
        return self.workspace_dir / "skills"

    @property
    def workspace_link(self) -> Path:
        return self.config_dir / "workspace"

    @property
    def bootstrap_lock(self) -> Path:
        return self.config_dir / ".bootstrap.lock"

    @property
    def gateway_locks(self) -> Tuple[Path, ...]:
        return (self.tmp_dir / "openclaw-gateway.lock", self.config_dir / "gateway.lock")

    @property
    def rclone_marker(self) -> Path:
        return self.tmp_dir / ".rclone-configured"

    @property
    def google_token_dir(self) -> Path:
        return self.google_mcp_dir / "tokens"
