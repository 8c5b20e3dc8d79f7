from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Mapping, Optional

import yaml  # type: ignore

from . import __version__
from .bootstrap import Bootstrapper, BootstrapError
from .kernel.identity import assemble_identity
from .kernel.reconcile import load_config, reconcile, reconcile_file
from .kernel.restore import restore
from .kernel.sidecars import ensure_sidecars
from .settings import BootSettings, load_settings, save_settings, settings_path
from .util.obslog import setup_root_json_logging
from .util.procs import find_pids

logger = logging.getLogger("clawboot.cli")


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def cmd_run(args: argparse.Namespace, env: Mapping[str, str], settings: BootSettings) -> int:
    outcome = Bootstrapper(env, settings).run(dry_run=bool(args.dry_run))
    if args.dry_run:
        _print_json(
            {
                "skipped": outcome.skipped_reason,
                "stage": outcome.stage,
                "onboarded": outcome.onboarded,
                "gateway_argv": outcome.gateway_argv,
            }
        )
    # Only reached when there was nothing to hand off to.
    return 0


def cmd_restore(args: argparse.Namespace, env: Mapping[str, str], settings: BootSettings) -> int:
    result = restore(env, settings)
    _print_json(result.model_dump())
    return 0


def cmd_reconcile(args: argparse.Namespace, env: Mapping[str, str], settings: BootSettings) -> int:
    path = settings.paths.config_file
    if args.print:
        _print_json(reconcile(load_config(path), env).to_document())
        return 0
    reconcile_file(path, env)
    return 0


def cmd_sidecars(args: argparse.Namespace, env: Mapping[str, str], settings: BootSettings) -> int:
    report = ensure_sidecars(env, settings, base_env=env)
    _print_json(report.model_dump())
    return 0 if all(r.status != "failed" for r in report.results) else 1


def cmd_identity(args: argparse.Namespace, env: Mapping[str, str], settings: BootSettings) -> int:
    out = assemble_identity(settings.paths.workspace_dir)
    _print_json({"identity": str(out) if out else None})
    return 0


def cmd_status(args: argparse.Namespace, env: Mapping[str, str], settings: BootSettings) -> int:
    gateway = find_pids(settings.gateway_signature)
    bridges = find_pids(settings.stale_bridge_pattern)
    _print_json(
        {
            "version": __version__,
            "gateway_pids": gateway,
            "bridge_pids": bridges,
            "config_file": str(settings.paths.config_file),
            "config_exists": settings.paths.config_file.exists(),
        }
    )
    return 0 if gateway else 1


def cmd_settings(args: argparse.Namespace, env: Mapping[str, str], settings: BootSettings) -> int:
    if args.write:
        save_settings(settings, settings_path(env))
        print(f"clawboot: settings written to {settings_path(env)}")
        return 0
    print(yaml.safe_dump(settings.to_dict(), allow_unicode=True, sort_keys=False), end="")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clawboot", description="OpenClaw container bootstrap")
    parser.add_argument("--version", action="version", version=f"clawboot {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("run", help="Restore, configure, start sidecars and exec the gateway")
    p.add_argument("--dry-run", action="store_true", help="Run every stage but do not exec the gateway")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("restore", help="Restore config/workspace/skills from R2")
    p.set_defaults(func=cmd_restore)

    p = sub.add_parser("reconcile", help="Apply env overlays to openclaw.json")
    p.add_argument("--print", action="store_true", help="Print the result instead of writing it")
    p.set_defaults(func=cmd_reconcile)

    p = sub.add_parser("sidecars", help="(Re)start MCP sidecars")
    p.set_defaults(func=cmd_sidecars)

    p = sub.add_parser("identity", help="Regenerate IDENTITY.md")
    p.set_defaults(func=cmd_identity)

    p = sub.add_parser("status", help="Show gateway/sidecar processes")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("settings", help="Show effective settings")
    p.add_argument("--write", action="store_true", help="Write them to the settings file")
    p.set_defaults(func=cmd_settings)
    return parser


def main(argv: Optional[list[str]] = None, env: Optional[Mapping[str, str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    env = dict(os.environ) if env is None else env
    settings = load_settings(env)
    setup_root_json_logging(component="clawboot", level=settings.log_level)

    try:
        return int(args.func(args, env, settings))
    except BootstrapError as e:
        logger.error("bootstrap failed: %s", e, exc_info=True, extra={"stage": e.stage})
        return 1


if __name__ == "__main__":
    sys.exit(main())
