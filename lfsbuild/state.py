# lfsbuild/state.py
# -*- coding: utf-8 -*-
"""
Persistent package state.

One set of files per logical package name inside the state directory:

    <name>.meta          JSON key/value record (artifact id, category, ...)
    <name>.installed     installation timestamp; its presence alone means "installed"
    <name>.files         manifest of paths actually present in the target root
    <name>.files.staged  manifest of the staged install tree

Every write lands in a temporary file in the same directory first and is then
moved into place with os.replace, so readers never observe a partial record.
Uninstalling clears the marker and both manifests but keeps the .meta record.
"""

from __future__ import annotations

import os
import json
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from lfsbuild.logging import get_logger

logger = get_logger("state")

META_SUFFIX = ".meta"
MARKER_SUFFIX = ".installed"
MANIFEST_SUFFIX = ".files"
STAGED_SUFFIX = ".files.staged"


def _atomic_write(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class StateStore:
    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ----------------------
    # Internal helpers
    # ----------------------
    def _lock(self, name: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = self._locks[name] = threading.RLock()
            return lock

    def _path(self, name: str, suffix: str) -> Path:
        return self.state_dir / f"{name}{suffix}"

    def _read_meta(self, name: str) -> Dict[str, Any]:
        p = self._path(name, META_SUFFIX)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except ValueError:
            logger.warning("state: corrupt record %s ignored", p)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_meta(self, name: str, data: Dict[str, Any]) -> None:
        _atomic_write(self._path(name, META_SUFFIX), json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False) + "\n")

    # ----------------------
    # Key/value record
    # ----------------------
    def get(self, name: str, key: str, default: Any = None) -> Any:
        return self._read_meta(name).get(key, default)

    def set(self, name: str, key: str, value: Any) -> None:
        self.update(name, {key: value})

    def update(self, name: str, values: Dict[str, Any]) -> None:
        with self._lock(name):
            data = self._read_meta(name)
            data.update(values)
            self._write_meta(name, data)

    def record(self, name: str) -> Dict[str, Any]:
        """Full record for name, including installation status and timestamp."""
        data = self._read_meta(name)
        data["name"] = name
        data["installed"] = self.is_installed(name)
        data["installed_at"] = self.installed_at(name)
        return data

    # ----------------------
    # Installation marker
    # ----------------------
    def mark_installed(self, name: str, artifact_id: str) -> None:
        with self._lock(name):
            self.update(name, {"artifact_id": artifact_id})
            ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
            _atomic_write(self._path(name, MARKER_SUFFIX), ts + "\n")
        logger.debug("state: %s marked installed (%s)", name, artifact_id)

    def mark_uninstalled(self, name: str) -> None:
        with self._lock(name):
            for suffix in (MARKER_SUFFIX, MANIFEST_SUFFIX, STAGED_SUFFIX):
                _unlink(self._path(name, suffix))
        logger.debug("state: %s marked uninstalled", name)

    def is_installed(self, name: str) -> bool:
        return self._path(name, MARKER_SUFFIX).is_file()

    def installed_at(self, name: str) -> Optional[str]:
        try:
            return self._path(name, MARKER_SUFFIX).read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None

    def list_installed(self) -> List[str]:
        if not self.state_dir.is_dir():
            return []
        return sorted(p.name[: -len(MARKER_SUFFIX)] for p in self.state_dir.glob(f"*{MARKER_SUFFIX}") if p.is_file())

    # ----------------------
    # Manifests
    # ----------------------
    def write_manifest(self, name: str, paths: Iterable[str], staged: bool = False) -> None:
        suffix = STAGED_SUFFIX if staged else MANIFEST_SUFFIX
        body = "".join(f"{p}\n" for p in paths)
        with self._lock(name):
            _atomic_write(self._path(name, suffix), body)

    def read_manifest(self, name: str, staged: bool = False) -> Optional[List[str]]:
        suffix = STAGED_SUFFIX if staged else MANIFEST_SUFFIX
        try:
            text = self._path(name, suffix).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return [line for line in text.splitlines() if line]
