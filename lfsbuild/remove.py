# lfsbuild/remove.py
"""
remove.py - manifest-driven package removal for lfsbuild

Features:
- remove(name): delete every path recorded in the package manifest from the target root
- directories the target root holds as symlinks (/bin -> usr/bin) are never unlinked
- files and symlinks first (manifest order), then directories deepest-first, only when empty
- paths escaping the target root, and the root itself, are never touched
- recorded per-package post-remove hook, then configured global post_remove hooks
- toolchain-stage packages only have their state markers cleared
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from lfsbuild.config import Config
from lfsbuild.errors import ManifestMissing
from lfsbuild.hooks import HookManager, run_package_hook
from lfsbuild.logging import get_logger
from lfsbuild.pkgtool import target_path
from lfsbuild.recipe import TOOLCHAIN_PHASE
from lfsbuild.state import StateStore

logger = get_logger("remove")


def directory_entries(manifest: List[str]) -> Set[str]:
    """Entries that are the parent of another entry, i.e. were directories when recorded."""
    out: Set[str] = set()
    for entry in manifest:
        parent = entry.rstrip("/").rsplit("/", 1)[0]
        while parent and parent not in out:
            out.add(parent)
            parent = parent.rsplit("/", 1)[0]
    return out


class RemoveManager:
    def __init__(self, cfg: Config, state: Optional[StateStore] = None):
        self.cfg = cfg
        self.sysroot = cfg.paths.sysroot
        self.state = state or StateStore(cfg.paths.state)
        self.hooks = HookManager(cfg.get("hooks", {}), shell=cfg.get("build.shell", "/bin/sh"))

    def _remove_paths(self, manifest: List[str], staged: Optional[List[str]] = None) -> Dict[str, Any]:
        removed = 0
        errors: List[str] = []
        dirs: List[Path] = []
        staged_dirs = directory_entries(staged or manifest)
        for entry in manifest:
            p = target_path(self.sysroot, entry)
            if p is None:
                logger.warning("remove: skipping path outside target root: %s", entry)
                continue
            if entry in staged_dirs and p.is_symlink():
                # staged as a directory but the target root has a link there
                logger.debug("remove: keeping symlinked directory %s", p)
                continue
            if p.is_dir() and not p.is_symlink():
                dirs.append(p)
                continue
            if not os.path.lexists(p):
                continue
            try:
                p.unlink()
                removed += 1
            except OSError as e:
                logger.warning("remove: cannot remove %s: %s", p, e)
                errors.append(str(p))

        kept: List[str] = []
        for d in sorted(dirs, key=lambda x: len(x.parts), reverse=True):
            try:
                d.rmdir()
                removed += 1
            except OSError:
                # still holds files of other packages
                kept.append(str(d))
        return {"removed": removed, "kept_dirs": kept, "errors": errors}

    def remove(self, name: str) -> Dict[str, Any]:
        if not self.state.is_installed(name):
            logger.warning("remove: %s is not installed", name)
            return {"name": name, "status": "not-installed"}

        if self.state.get(name, "phase") == TOOLCHAIN_PHASE:
            self.state.mark_uninstalled(name)
            logger.info("remove: cleared toolchain-stage record for %s", name)
            return {"name": name, "status": "toolchain"}

        manifest = self.state.read_manifest(name)
        if manifest is None:
            raise ManifestMissing(name)

        logger.info("remove: removing %s from %s", name, self.sysroot)
        result = self._remove_paths(manifest, self.state.read_manifest(name, staged=True))

        hook = self.state.get(name, "post_remove_hook")
        if hook:
            run_package_hook(hook, name)
        self.hooks.run("post_remove", {"package": name})

        self.state.mark_uninstalled(name)
        result.update({"name": name, "status": "removed"})
        logger.info("remove: removed %s (%d paths)", name, result["removed"])
        return result
