from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional

from clawboot.kernel.remote import RemoteCommandError, RemoteStateClient
from clawboot.paths import BootPaths
from clawboot.settings import BootSettings

R2_ENV = {"R2_ACCESS_KEY_ID": "key", "R2_SECRET_ACCESS_KEY": "secret", "CF_ACCOUNT_ID": "acct"}


def make_settings(root: Path, **overrides: object) -> BootSettings:
    paths = BootPaths(
        config_dir=root / ".openclaw",
        workspace_dir=root / "clawd",
        rclone_conf=root / ".config" / "rclone" / "rclone.conf",
        google_mcp_dir=root / ".google-mcp",
        log_dir=root / "logs",
        tmp_dir=root / "tmp",
    )
    settings = BootSettings(paths=paths, stale_kill_pause=0.0, sidecar_ready_timeout=0.0)
    for k, v in overrides.items():
        setattr(settings, k, v)
    return settings


class FakeRemote(RemoteStateClient):
    """In-memory bucket: key -> file content."""

    def __init__(self, objects: Dict[str, str], *, fail: Iterable[str] = ()) -> None:
        self.objects = dict(objects)
        self.fail = set(fail)
        self.configured = False
        self.copies: List[str] = []

    def configure(self) -> None:
        self.configured = True

    def list_keys(self, key: str) -> List[str]:
        k = key.rstrip("/")
        return [o for o in self.objects if o == k or o.startswith(k + "/")]

    def copy(self, prefix: str, dest: Path) -> None:
        p = prefix.rstrip("/")
        self.copies.append(p)
        if p in self.fail:
            raise RemoteCommandError(["copy", p], 1, "simulated network failure")
        for key, content in self.objects.items():
            if not key.startswith(p + "/"):
                continue
            out = dest / key[len(p) + 1 :]
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(content, encoding="utf-8")

    def factory(self, creds: object, settings: Optional[BootSettings] = None) -> "FakeRemote":
        return self
