# lfsbuild/patches.py
"""
patches.py - PatchManager for lfsbuild

Responsibilities:
- Resolve patch names against the sources directory, then as literal paths.
- Apply patches in recipe order with 'patch -p1' inside the extracted source tree.
- Abort on the first missing or rejected patch; output goes to the build log.
"""

from __future__ import annotations

from pathlib import Path
from typing import IO, Iterable, List, Optional

from lfsbuild.errors import PatchNotFound, PatchRejected, ToolMissing
from lfsbuild.logging import get_logger
from lfsbuild.process import run_logged, which

logger = get_logger("patches")


class PatchManager:
    def __init__(self, sources: Path, patch_tool: str = "patch"):
        self.sources = Path(sources)
        self.patch_tool = patch_tool

    def find(self, name: str) -> Path:
        for candidate in (self.sources / name, Path(name)):
            if candidate.is_file():
                return candidate
        raise PatchNotFound(f"patch not found: {name}")

    def apply(self, names: Iterable[str], srcdir: Path, log: Optional[IO[str]] = None) -> List[Path]:
        """Apply each patch in order; returns the patch files applied."""
        names = list(names)
        if not names:
            return []
        if not which(self.patch_tool):
            raise ToolMissing(self.patch_tool, "applying patches")
        applied: List[Path] = []
        for name in names:
            path = self.find(name)
            logger.info("patches: applying %s", path.name)
            rc = run_logged([self.patch_tool, "-p1", "-i", str(path.resolve())], cwd=srcdir, log=log)
            if rc != 0:
                raise PatchRejected(f"patch {path.name} did not apply cleanly (exit {rc})",
                                    Path(log.name) if log is not None and hasattr(log, "name") else None)
            applied.append(path)
        return applied
