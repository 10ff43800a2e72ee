# lfsbuild/errors.py
"""
Error kinds raised by lfsbuild.

Every failure of a single build or removal is reported as a subclass of
LFSBuildError. When a per-package build log exists its path travels with the
exception so the CLI can point the operator at it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional


class LFSBuildError(Exception):
    """Base class for all lfsbuild errors."""

    def __init__(self, message: str, log_path: Optional[Path] = None):
        super().__init__(message)
        self.log_path = log_path

    def __str__(self) -> str:
        msg = super().__str__()
        if self.log_path:
            return f"{msg} (see {self.log_path})"
        return msg


class ConfigError(LFSBuildError):
    pass


class InvalidRecipe(LFSBuildError):
    pass


class SourceNotFound(LFSBuildError):
    pass


class DownloadFailed(LFSBuildError):
    pass


class UnsupportedFormat(LFSBuildError):
    pass


class ToolMissing(LFSBuildError):
    def __init__(self, tool: str, purpose: str = "", log_path: Optional[Path] = None):
        msg = f"required tool not found in PATH: {tool}"
        if purpose:
            msg += f" (needed for {purpose})"
        super().__init__(msg, log_path)
        self.tool = tool


class PatchNotFound(LFSBuildError):
    pass


class PatchRejected(LFSBuildError):
    pass


class UnmetDependencies(LFSBuildError):
    def __init__(self, name: str, missing: List[str]):
        super().__init__(f"unmet dependencies for {name}: {', '.join(missing)}")
        self.name = name
        self.missing = list(missing)


class BuildFailed(LFSBuildError):
    def __init__(self, package_id: str, stage: str, returncode: Optional[int] = None, log_path: Optional[Path] = None):
        msg = f"build of {package_id} failed during {stage}"
        if returncode is not None:
            msg += f" (exit {returncode})"
        super().__init__(msg, log_path)
        self.package_id = package_id
        self.stage = stage
        self.returncode = returncode


class DeployFailed(LFSBuildError):
    pass


class ManifestMissing(LFSBuildError):
    def __init__(self, name: str):
        super().__init__(f"no file manifest on record for {name}; state may be corrupted")
        self.name = name


class UnresolvedSet(LFSBuildError):
    """Recipes left in the rebuild queue once no pass makes progress.

    ``unresolved`` maps each recipe label to the dependency names that were
    still missing; ``failures`` maps labels to build errors when the scheduler
    ran with keep_going; ``invalid`` maps recipe files that could not be
    loaded to the reason.
    """

    def __init__(self, unresolved: Dict[str, List[str]], passes: int, failures: Optional[Dict[str, str]] = None,
                 invalid: Optional[Dict[str, str]] = None):
        self.unresolved = dict(unresolved)
        self.passes = passes
        self.failures = dict(failures or {})
        self.invalid = dict(invalid or {})
        count = len(self.unresolved) + len(self.invalid)
        lines = [f"{count} recipe(s) could not be resolved after {passes} pass(es):"]
        for path, reason in self.invalid.items():
            lines.append(f"  {path}: invalid recipe: {reason}")
        for label, missing in self.unresolved.items():
            if label in self.failures:
                lines.append(f"  {label}: build failed: {self.failures[label]}")
            elif missing:
                lines.append(f"  {label}: waiting on {', '.join(missing)}")
            else:
                lines.append(f"  {label}: not built")
        super().__init__("\n".join(lines))
