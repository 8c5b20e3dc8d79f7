"""MCP sidecars: supergateway bridges exposing stdio MCP servers over HTTP.

The gateway's mcp-integration plugin talks to them on fixed localhost ports.
We start them detached and do not supervise them afterwards; a container
restart re-runs the bootstrap, which kills stale bridges before relaunching.
"""
from __future__ import annotations

import json
import logging
import os
import subprocess
import threading
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..contracts.v1 import CredentialFile, SidecarReport, SidecarResult, SidecarSpec
from ..paths import GOOGLE_WORKSPACE_PORT, NOTION_PORT
from ..settings import BootSettings
from ..util.fs import atomic_write_text
from ..util.procs import kill_matching

logger = logging.getLogger("clawboot.sidecars")

NOTION_VERSION = "2022-06-28"

# (account name, refresh token env var), in accounts.json order.
GOOGLE_ACCOUNTS: Tuple[Tuple[str, str], ...] = (
    ("build", "GOOGLE_OAUTH_REFRESH_TOKEN"),
    ("work", "GOOGLE_OAUTH_REFRESH_TOKEN_WORK"),
    ("personal", "GOOGLE_OAUTH_REFRESH_TOKEN_PERSONAL"),
)

_PROBE_BACKOFF_START = 0.1
_PROBE_BACKOFF_MAX = 2.0


class SidecarLaunchError(RuntimeError):
    pass


def _compact(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")) + "\n"


def _bridge_command(stdio_command: str, port: int) -> List[str]:
    return [
        "supergateway",
        "--stdio",
        stdio_command,
        "--outputTransport",
        "streamableHttp",
        "--port",
        str(port),
    ]


def _has_all(env: Mapping[str, str], keys: List[str]) -> bool:
    return all(str(env.get(k) or "") for k in keys)


def google_workspace_spec(env: Mapping[str, str], google_dir: Path) -> Optional[SidecarSpec]:
    required = ["GOOGLE_OAUTH_CLIENT_ID", "GOOGLE_OAUTH_CLIENT_SECRET"]
    if not _has_all(env, required):
        return None
    client_id = str(env["GOOGLE_OAUTH_CLIENT_ID"])
    client_secret = str(env["GOOGLE_OAUTH_CLIENT_SECRET"])
    credentials_path = google_dir / "credentials.json"
    token_dir = google_dir / "tokens"

    files: List[CredentialFile] = [
        CredentialFile(
            path=str(credentials_path),
            content=_compact(
                {
                    "installed": {
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                        "token_uri": "https://oauth2.googleapis.com/token",
                        "redirect_uris": ["http://localhost"],
                    }
                }
            ),
        )
    ]

    accounts: Dict[str, Dict[str, str]] = {}
    for name, token_env in GOOGLE_ACCOUNTS:
        token = str(env.get(token_env) or "")
        if not token:
            continue
        token_path = token_dir / f"{name}.json"
        files.append(
            CredentialFile(
                path=str(token_path),
                content=_compact(
                    {
                        "type": "authorized_user",
                        "client_id": client_id,
                        "client_secret": client_secret,
                        "refresh_token": token,
                    }
                ),
            )
        )
        accounts[name] = {"credentialsPath": str(credentials_path), "tokenPath": str(token_path)}

    files.append(
        CredentialFile(
            path=str(google_dir / "accounts.json"),
            content=_compact({"accounts": accounts, "credentialsPath": str(credentials_path)}),
        )
    )

    return SidecarSpec(
        name="google-workspace",
        listen_port=GOOGLE_WORKSPACE_PORT,
        launch_command=_bridge_command("npx -y google-workspace-mcp", GOOGLE_WORKSPACE_PORT),
        credential_files=files,
        required_env=required,
        env={"GOOGLE_OAUTH_CLIENT_ID": client_id, "GOOGLE_OAUTH_CLIENT_SECRET": client_secret},
    )


def notion_spec(env: Mapping[str, str]) -> Optional[SidecarSpec]:
    required = ["NOTION_API_KEY"]
    if not _has_all(env, required):
        return None
    headers = {"Authorization": f"Bearer {env['NOTION_API_KEY']}", "Notion-Version": NOTION_VERSION}
    return SidecarSpec(
        name="notion",
        listen_port=NOTION_PORT,
        launch_command=_bridge_command("npx -y @notionhq/notion-mcp-server", NOTION_PORT),
        required_env=required,
        env={"OPENAPI_MCP_HEADERS": json.dumps(headers)},
    )


def build_specs(env: Mapping[str, str], *, google_dir: Optional[Path] = None) -> List[SidecarSpec]:
    """Sidecars whose prerequisites are all present, in launch order. No side effects."""
    specs: List[SidecarSpec] = []
    google = google_workspace_spec(env, google_dir or BootSettings().paths.google_mcp_dir)
    if google is not None:
        specs.append(google)
    notion = notion_spec(env)
    if notion is not None:
        specs.append(notion)
    return specs


def provision(spec: SidecarSpec) -> None:
    for cf in spec.credential_files:
        atomic_write_text(Path(cf.path), cf.content, mode=cf.mode)
    if spec.credential_files:
        logger.info(
            "%s: wrote %d credential file(s)",
            spec.name,
            len(spec.credential_files),
            extra={"sidecar": spec.name},
        )


def stop_stale(settings: BootSettings) -> List[int]:
    killed = kill_matching(settings.stale_bridge_pattern)
    if killed:
        logger.info("stopped %d stale bridge process(es): %s", len(killed), killed)
    time.sleep(settings.stale_kill_pause)
    return killed


def launch(spec: SidecarSpec, settings: BootSettings, base_env: Mapping[str, str]) -> subprocess.Popen:
    log_dir = settings.paths.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    env = dict(base_env)
    env.update(spec.env)
    log_f = (log_dir / f"{spec.name}.log").open("a", encoding="utf-8")
    try:
        proc = subprocess.Popen(
            spec.launch_command,
            stdout=log_f,
            stderr=log_f,
            stdin=subprocess.DEVNULL,
            env=env,
            start_new_session=True,
        )
    except OSError as e:
        raise SidecarLaunchError(f"{spec.name}: {e}") from e
    finally:
        # The child keeps its own copy of the fd.
        log_f.close()
    logger.info(
        "%s sidecar started on port %d (pid=%s)",
        spec.name,
        spec.listen_port,
        proc.pid,
        extra={"sidecar": spec.name, "pid": proc.pid, "port": spec.listen_port},
    )
    return proc


def probe(url: str, *, timeout: float = 1.0) -> bool:
    """True once something answers HTTP on `url`. Error statuses still count."""
    try:
        with urllib.request.urlopen(url, timeout=timeout):
            return True
    except urllib.error.HTTPError:
        return True
    except (urllib.error.URLError, OSError, ValueError):
        return False


def wait_ready(
    launched: List[Tuple[SidecarSpec, subprocess.Popen]],
    *,
    timeout: float,
    cancel: Optional[threading.Event] = None,
) -> List[SidecarResult]:
    """Poll every sidecar until it answers, exits, or the shared deadline passes."""
    deadline = time.monotonic() + max(0.0, timeout)
    pending = {spec.name: (spec, proc) for spec, proc in launched}
    done: Dict[str, SidecarResult] = {}
    delay = _PROBE_BACKOFF_START

    while pending:
        for name, (spec, proc) in list(pending.items()):
            code = proc.poll()
            if code is not None:
                done[name] = SidecarResult(
                    name=name, port=spec.listen_port, status="exited", pid=proc.pid, error=f"exit code {code}"
                )
                pending.pop(name)
            elif probe(spec.probe_url):
                done[name] = SidecarResult(name=name, port=spec.listen_port, status="ready", pid=proc.pid)
                pending.pop(name)
        if not pending:
            break
        remaining = deadline - time.monotonic()
        if remaining <= 0 or (cancel is not None and cancel.is_set()):
            break
        wait_s = min(delay, remaining)
        if cancel is not None:
            if cancel.wait(wait_s):
                break
        else:
            time.sleep(wait_s)
        delay = min(delay * 2, _PROBE_BACKOFF_MAX)

    for name, (spec, proc) in pending.items():
        done[name] = SidecarResult(name=name, port=spec.listen_port, status="not_ready", pid=proc.pid)
    return [done[spec.name] for spec, _ in launched]


def ensure_sidecars(
    env: Mapping[str, str],
    settings: BootSettings,
    *,
    base_env: Optional[Mapping[str, str]] = None,
    cancel: Optional[threading.Event] = None,
) -> SidecarReport:
    report = SidecarReport(stale_killed=stop_stale(settings))
    specs = build_specs(env, google_dir=settings.paths.google_mcp_dir)
    if not specs:
        logger.info("no MCP credentials provided, no sidecars to start")
        return report

    child_env = os.environ if base_env is None else base_env
    launched: List[Tuple[SidecarSpec, subprocess.Popen]] = []
    failed: Dict[str, SidecarResult] = {}
    for spec in specs:
        try:
            provision(spec)
            launched.append((spec, launch(spec, settings, child_env)))
        except (OSError, SidecarLaunchError) as e:
            logger.warning("failed to start %s sidecar: %s", spec.name, e, extra={"sidecar": spec.name})
            failed[spec.name] = SidecarResult(name=spec.name, port=spec.listen_port, status="failed", error=str(e))

    if launched and settings.sidecar_grace > 0:
        time.sleep(settings.sidecar_grace)

    if launched and settings.probe_sidecars:
        logger.info("waiting for MCP sidecars to initialize...")
        ready = {r.name: r for r in wait_ready(launched, timeout=settings.sidecar_ready_timeout, cancel=cancel)}
        for r in ready.values():
            if r.status != "ready":
                logger.warning(
                    "%s sidecar %s on port %d", r.name, r.status.replace("_", " "), r.port, extra={"sidecar": r.name}
                )
    else:
        ready = {
            spec.name: SidecarResult(name=spec.name, port=spec.listen_port, status="launched", pid=proc.pid)
            for spec, proc in launched
        }

    report.results = [ready.get(spec.name) or failed[spec.name] for spec in specs]
    return report
