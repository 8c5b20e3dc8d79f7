"""Thin wrapper over the `rclone` CLI for the R2 bucket.

The object-storage protocol itself is rclone's business; this module only
writes the remote definition and shells out for ls/copy.
"""
from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from ..settings import BootSettings
from ..util.fs import atomic_write_text

logger = logging.getLogger("clawboot.remote")

REMOTE_NAME = "r2"


class RemoteCommandError(RuntimeError):
    def __init__(self, args: Sequence[str], code: int, stderr: str) -> None:
        super().__init__(f"rclone {' '.join(args[:2])} failed (code={code}): {stderr.strip()[:500]}")
        self.code = code
        self.stderr = stderr


@dataclass(frozen=True)
class R2Credentials:
    access_key_id: str
    secret_access_key: str
    account_id: str

    def __repr__(self) -> str:
        return f"R2Credentials(account_id={self.account_id!r})"

    @property
    def endpoint(self) -> str:
        return f"https://{self.account_id}.r2.cloudflarestorage.com"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> Optional["R2Credentials"]:
        key = str(env.get("R2_ACCESS_KEY_ID") or "")
        secret = str(env.get("R2_SECRET_ACCESS_KEY") or "")
        account = str(env.get("CF_ACCOUNT_ID") or "")
        if not (key and secret and account):
            return None
        return cls(access_key_id=key, secret_access_key=secret, account_id=account)


class RemoteStateClient(ABC):
    """Interface the restore stage consumes. Keys are relative to the bucket root."""

    @abstractmethod
    def configure(self) -> None:
        """Write whatever the client needs before the first remote call."""
        pass

    @abstractmethod
    def list_keys(self, key: str) -> List[str]:
        """Keys under `key` (a file or a prefix). Empty when listing fails."""
        pass

    def exists(self, key: str) -> bool:
        name = key.rstrip("/").rsplit("/", 1)[-1]
        return any(k.rsplit("/", 1)[-1] == name for k in self.list_keys(key))

    def count(self, prefix: str) -> int:
        return len(self.list_keys(prefix))

    @abstractmethod
    def copy(self, prefix: str, dest: Path) -> None:
        """Copy everything under `prefix` into `dest`. Raises RemoteCommandError."""
        pass


def render_rclone_conf(creds: R2Credentials) -> str:
    return (
        f"[{REMOTE_NAME}]\n"
        "type = s3\n"
        "provider = Cloudflare\n"
        f"access_key_id = {creds.access_key_id}\n"
        f"secret_access_key = {creds.secret_access_key}\n"
        f"endpoint = {creds.endpoint}\n"
        "acl = private\n"
        "no_check_bucket = true\n"
    )


class RcloneClient(RemoteStateClient):
    def __init__(self, creds: R2Credentials, settings: BootSettings, *, binary: str = "rclone") -> None:
        self.creds = creds
        self.settings = settings
        self.binary = binary

    def _remote(self, key: str) -> str:
        return f"{REMOTE_NAME}:{self.settings.bucket}/{key}"

    def _run(self, args: List[str]) -> Tuple[int, str, str]:
        argv = [self.binary, *args, "--config", str(self.settings.paths.rclone_conf), *self.settings.rclone_flags]
        try:
            p = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=False,
            )
            return int(p.returncode), (p.stdout or ""), (p.stderr or "")
        except OSError as e:
            return 127, "", str(e)

    def configure(self) -> None:
        paths = self.settings.paths
        atomic_write_text(paths.rclone_conf, render_rclone_conf(self.creds), mode=0o600)
        paths.rclone_marker.parent.mkdir(parents=True, exist_ok=True)
        paths.rclone_marker.touch()
        logger.info("rclone configured for bucket: %s", self.settings.bucket)

    def list_keys(self, key: str) -> List[str]:
        code, out, err = self._run(["ls", self._remote(key)])
        if code != 0:
            logger.debug("rclone ls %s failed (code=%s): %s", key, code, err.strip())
            return []
        keys: List[str] = []
        for ln in out.splitlines():
            # "<size> <path>"
            parts = ln.strip().split(None, 1)
            if len(parts) == 2:
                keys.append(parts[1])
        return keys

    def copy(self, prefix: str, dest: Path) -> None:
        args = ["copy", self._remote(prefix.rstrip("/") + "/"), str(dest).rstrip("/") + "/", "-v"]
        code, _, err = self._run(args)
        if code != 0:
            raise RemoteCommandError(args, code, err)
