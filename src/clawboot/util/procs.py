"""Best-effort process discovery over /proc (Linux only).

Matching is substring-based on the NUL-joined cmdline, the same thing
`pgrep -f` / `pkill -f` do. Not atomic: a process may exit between the scan
and the signal.
"""
from __future__ import annotations

import os
import signal
from pathlib import Path
from typing import List

PROC_ROOT = Path("/proc")


def _cmdline(proc_dir: Path) -> str:
    try:
        raw = (proc_dir / "cmdline").read_bytes()
    except OSError:
        return ""
    return raw.replace(b"\x00", b" ").decode("utf-8", "ignore").strip()


def find_pids(pattern: str, *, proc_root: Path = PROC_ROOT) -> List[int]:
    """Pids whose command line contains `pattern`, excluding this process."""
    needle = str(pattern or "").strip()
    if not needle or not proc_root.exists():
        return []
    me = os.getpid()
    out: List[int] = []
    for d in proc_root.iterdir():
        if not d.name.isdigit():
            continue
        pid = int(d.name)
        if pid == me:
            continue
        if needle in _cmdline(d):
            out.append(pid)
    return sorted(out)


def best_effort_killpg(pid: int, sig: signal.Signals = signal.SIGTERM) -> bool:
    """Signal the process group led by `pid`, falling back to the pid alone."""
    if pid <= 0:
        return False
    try:
        os.killpg(pid, sig)
        return True
    except OSError:
        try:
            os.kill(pid, sig)
            return True
        except OSError:
            return False


def kill_matching(pattern: str, *, sig: signal.Signals = signal.SIGTERM, proc_root: Path = PROC_ROOT) -> List[int]:
    """pkill -f equivalent. Returns the pids that were signaled."""
    killed: List[int] = []
    for pid in find_pids(pattern, proc_root=proc_root):
        if best_effort_killpg(pid, sig):
            killed.append(pid)
    return killed
