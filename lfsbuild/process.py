# lfsbuild/process.py
"""
Child-process helpers.

Build steps send their output to the per-package build log rather than to the
logger; each command is preceded by a ``$ cmd`` header line in that log.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, IO, List, Optional, Tuple

from lfsbuild.logging import get_logger

logger = get_logger("process")


def which(tool: str) -> Optional[str]:
    return shutil.which(tool)


def pretty(cmd: List[str]) -> str:
    return " ".join(shlex.quote(str(c)) for c in cmd)


def run_logged(cmd: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None, log: Optional[IO[str]] = None) -> int:
    """Run cmd with stdout/stderr appended to log. Returns the exit code (127 if it cannot start)."""
    line = pretty(cmd)
    logger.debug("RUN: %s (cwd=%s)", line, str(cwd) if cwd else None)
    if log is not None:
        log.write(f"\n$ {line}\n")
        log.flush()
    try:
        p = subprocess.run(
            [str(c) for c in cmd],
            cwd=str(cwd) if cwd else None,
            env=env,
            stdout=log if log is not None else subprocess.DEVNULL,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
        )
    except OSError as e:
        if log is not None:
            log.write(f"lfsbuild: cannot execute {cmd[0]}: {e}\n")
            log.flush()
        return 127
    return p.returncode


def run_capture(cmd: List[str], cwd: Optional[Path] = None, env: Optional[Dict[str, str]] = None) -> Tuple[int, str, str]:
    """Run command and capture output. Returns (rc, stdout, stderr)"""
    logger.debug("RUN: %s (cwd=%s)", pretty(cmd), str(cwd) if cwd else None)
    try:
        p = subprocess.run([str(c) for c in cmd], cwd=str(cwd) if cwd else None, env=(env or os.environ),
                           stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.DEVNULL, text=True)
    except OSError as e:
        return 127, "", str(e)
    return p.returncode, p.stdout or "", p.stderr or ""
