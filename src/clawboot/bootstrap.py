"""Container bootstrap for the OpenClaw gateway.

Stages run strictly in order:

    restoring -> config_reset -> onboarding (if no config) -> workspace_link
    -> reconciling -> sidecar_startup -> identity_assembly -> handoff

If a gateway is already running (or another bootstrap holds the lock) we exit
successfully without touching anything. Handoff replaces this process with
the gateway via exec; it does not return.
"""
from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Literal, Mapping, Optional, Sequence

from .contracts.v1 import RestoreResult, RuntimeConfig, SidecarReport
from .kernel.identity import assemble_identity
from .kernel.onboard import AuthStrategy, run_onboard
from .kernel.reconcile import reconcile_file
from .kernel.remote import R2Credentials, RemoteStateClient
from .kernel.restore import restore
from .kernel.sidecars import ensure_sidecars
from .kernel.workspace import link_workspace
from .paths import GATEWAY_PORT, BootPaths
from .settings import BootSettings
from .util.file_lock import LockUnavailableError, acquire_lockfile, release_lockfile
from .util.procs import find_pids

logger = logging.getLogger("clawboot.bootstrap")

Stage = Literal[
    "not_started",
    "restoring",
    "config_reset",
    "onboarding",
    "workspace_link",
    "reconciling",
    "sidecar_startup",
    "identity_assembly",
    "handoff",
]

ExecFn = Callable[[str, Sequence[str], Mapping[str, str]], None]
ClientFactory = Callable[[R2Credentials, BootSettings], RemoteStateClient]


class BootstrapError(RuntimeError):
    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"[{stage}] {message}")
        self.stage = stage


def gateway_command(*, binary: str = "openclaw") -> List[str]:
    return [binary, "gateway", "--port", str(GATEWAY_PORT), "--verbose", "--allow-unconfigured", "--bind", "lan"]


@dataclass
class BootstrapOutcome:
    stage: Stage = "not_started"
    skipped_reason: str = ""
    restore: Optional[RestoreResult] = None
    restored_config_existed: bool = False
    onboarded: bool = False
    auth: Optional[AuthStrategy] = None
    config: Optional[RuntimeConfig] = None
    sidecars: Optional[SidecarReport] = None
    identity_path: Optional[Path] = None
    gateway_argv: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return bool(self.skipped_reason)


def _execvpe(file: str, argv: Sequence[str], env: Mapping[str, str]) -> None:
    os.execvpe(file, list(argv), dict(env))


class Bootstrapper:
    def __init__(
        self,
        env: Mapping[str, str],
        settings: BootSettings,
        *,
        client_factory: Optional[ClientFactory] = None,
        exec_fn: ExecFn = _execvpe,
        cancel: Optional[threading.Event] = None,
        onboard_binary: str = "openclaw",
        gateway_binary: str = "openclaw",
    ) -> None:
        self.env = env
        self.settings = settings
        self.client_factory = client_factory
        self.exec_fn = exec_fn
        self.cancel = cancel or threading.Event()
        self.onboard_binary = onboard_binary
        self.gateway_binary = gateway_binary
        self.outcome = BootstrapOutcome()

    @property
    def paths(self) -> BootPaths:
        return self.settings.paths

    @contextmanager
    def _stage(self, stage: Stage) -> Iterator[None]:
        self.outcome.stage = stage
        logger.debug("entering stage %s", stage, extra={"stage": stage})
        try:
            yield
        except BootstrapError:
            raise
        except Exception as e:
            raise BootstrapError(stage, str(e) or type(e).__name__) from e

    def gateway_running(self) -> List[int]:
        return find_pids(self.settings.gateway_signature)

    # Stages

    def stage_restore(self) -> RestoreResult:
        with self._stage("restoring"):
            self.outcome.restore = restore(self.env, self.settings, client_factory=self.client_factory)
            return self.outcome.restore

    def stage_config_reset(self) -> None:
        with self._stage("config_reset"):
            self.paths.config_dir.mkdir(parents=True, exist_ok=True)
            cfg = self.paths.config_file
            self.outcome.restored_config_existed = cfg.exists()
            if self.outcome.restored_config_existed:
                logger.info("discarding existing config so onboarding uses the current env", extra={"stage": "config_reset"})
            cfg.unlink(missing_ok=True)

    def stage_onboard(self) -> None:
        with self._stage("onboarding"):
            if self.paths.config_file.exists():
                logger.info("using existing config", extra={"stage": "onboarding"})
                return
            logger.info("no existing config found, running openclaw onboard", extra={"stage": "onboarding"})
            self.outcome.auth = run_onboard(self.env, binary=self.onboard_binary)
            self.outcome.onboarded = True

    def stage_workspace_link(self) -> None:
        with self._stage("workspace_link"):
            link_workspace(self.paths.workspace_link, self.paths.workspace_dir)

    def stage_reconcile(self) -> RuntimeConfig:
        with self._stage("reconciling"):
            self.outcome.config = reconcile_file(self.paths.config_file, self.env)
            return self.outcome.config

    def stage_sidecars(self) -> SidecarReport:
        with self._stage("sidecar_startup"):
            self.outcome.sidecars = ensure_sidecars(self.env, self.settings, base_env=self.env, cancel=self.cancel)
            return self.outcome.sidecars

    def stage_identity(self) -> Optional[Path]:
        with self._stage("identity_assembly"):
            self.outcome.identity_path = assemble_identity(self.paths.workspace_dir)
            return self.outcome.identity_path

    def clear_gateway_locks(self) -> None:
        for p in self.paths.gateway_locks:
            try:
                p.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("could not remove lock %s: %s", p, e, extra={"stage": "handoff"})

    def handoff(self, *, dry_run: bool = False) -> None:
        with self._stage("handoff"):
            self.clear_gateway_locks()
            argv = gateway_command(binary=self.gateway_binary)
            self.outcome.gateway_argv = argv
            logger.info(
                "dev mode: %s", str(self.env.get("OPENCLAW_DEV_MODE") or "false"), extra={"stage": "handoff"}
            )
            if dry_run:
                logger.info("dry run, not starting gateway: %s", " ".join(argv), extra={"stage": "handoff"})
                return
            logger.info("starting OpenClaw gateway on port %d", GATEWAY_PORT, extra={"stage": "handoff"})
            for h in logging.getLogger().handlers:
                h.flush()
            self.exec_fn(argv[0], argv, self.env)

    def run(self, *, dry_run: bool = False) -> BootstrapOutcome:
        running = self.gateway_running()
        if running:
            logger.info("OpenClaw gateway is already running (pids=%s), exiting", running)
            self.outcome.skipped_reason = "gateway_running"
            return self.outcome

        try:
            lock = acquire_lockfile(self.paths.bootstrap_lock, blocking=False)
        except LockUnavailableError:
            logger.info("another bootstrap holds %s, exiting", self.paths.bootstrap_lock)
            self.outcome.skipped_reason = "bootstrap_locked"
            return self.outcome

        try:
            logger.info("config directory: %s", self.paths.config_dir)
            self.stage_restore()
            self.stage_config_reset()
            self.stage_onboard()
            self.stage_workspace_link()
            self.stage_reconcile()
            self.stage_sidecars()
            self.stage_identity()
            # The lock fd is close-on-exec, so exec releases it.
            self.handoff(dry_run=dry_run)
        finally:
            release_lockfile(lock)
        return self.outcome

