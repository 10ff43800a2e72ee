# lfsbuild/pkgtool.py
"""
pkgtool.py - binary packaging and deployment for lfsbuild

Features:
- package: create <package_id>.pkg.tar.<gz|xz|bz2> from a staged DESTDIR, every
  entry normalized to root:root, written atomically
- deploy: extract a package over the target root and compute the manifest of
  paths the package actually owns there
- Optional external 'fakeroot tar' mode for both steps
"""

from __future__ import annotations

import os
import sys
import tarfile
import tempfile
from pathlib import Path
from typing import IO, Iterable, List, Optional, Sequence

from lfsbuild.errors import BuildFailed, DeployFailed, LFSBuildError, ToolMissing
from lfsbuild.logging import get_logger
from lfsbuild.process import run_logged, which

logger = get_logger("pkgtool")

# compression -> (tarfile mode suffix, tar flag)
COMPRESSIONS = {
    "gz": ("gz", "-z"),
    "xz": ("xz", "-J"),
    "bz2": ("bz2", "-j"),
}


def root_owned(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    tarinfo.uid = tarinfo.gid = 0
    tarinfo.uname = tarinfo.gname = "root"
    return tarinfo


def target_path(root: Path, entry: str) -> Optional[Path]:
    """Map a manifest entry ('/usr/bin/x') to a path under root; None if it escapes root."""
    rel = entry.lstrip("/")
    if not rel or rel == ".":
        return None
    root_abs = os.path.abspath(root)
    p = os.path.abspath(os.path.join(root_abs, rel))
    if p == root_abs or not p.startswith(root_abs.rstrip(os.sep) + os.sep):
        return None
    return Path(p)


class PackageTool:
    def __init__(self, packages: Path, compression: str = "gz", use_fakeroot: bool = False):
        if compression not in COMPRESSIONS:
            raise LFSBuildError(f"unsupported package compression: {compression}")
        self.packages = Path(packages)
        self.compression = compression
        self.use_fakeroot = use_fakeroot

    def archive_path(self, package_id: str) -> Path:
        return self.packages / f"{package_id}.pkg.tar.{self.compression}"

    # ----------------------
    # Packaging
    # ----------------------
    def package(self, staging: Path, package_id: str, log: Optional[IO[str]] = None) -> Path:
        """Archive the staged tree rooted at '.'; returns the archive path."""
        self.packages.mkdir(parents=True, exist_ok=True)
        out = self.archive_path(package_id)
        fd, tmp = tempfile.mkstemp(prefix=f".{out.name}.", suffix=".tmp", dir=str(self.packages))
        os.close(fd)
        try:
            if self.use_fakeroot:
                self._package_fakeroot(staging, package_id, Path(tmp), log)
            else:
                mode, _ = COMPRESSIONS[self.compression]
                with tarfile.open(tmp, f"w:{mode}") as tar:
                    tar.add(str(staging), arcname=".", filter=root_owned)
            os.replace(tmp, out)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.info("pkgtool: created %s", out.name)
        return out

    def _package_fakeroot(self, staging: Path, package_id: str, out: Path, log: Optional[IO[str]]) -> None:
        if not which("fakeroot"):
            raise ToolMissing("fakeroot", "packaging")
        _, flag = COMPRESSIONS[self.compression]
        rc = run_logged(["fakeroot", "tar", "-C", str(staging), flag, "-cf", str(out), "."], log=log)
        if rc != 0:
            raise BuildFailed(package_id, "package", rc)

    # ----------------------
    # Deployment
    # ----------------------
    def deploy(self, archive: Path, sysroot: Path, staged: Sequence[str], owned: Iterable[str] = (),
               log: Optional[IO[str]] = None) -> List[str]:
        """
        Extract archive over sysroot.

        Returns the staged entries minus directories that already existed in
        sysroot and were not listed in ``owned`` (the previous manifest).
        """
        owned_set = set(owned or ())
        preexisting = set()
        for entry in staged:
            p = target_path(sysroot, entry)
            # is_dir() follows links, so a host /bin -> usr/bin counts as pre-existing
            if p is not None and p.is_dir() and entry not in owned_set:
                preexisting.add(entry)

        try:
            if self.use_fakeroot:
                self._deploy_fakeroot(archive, sysroot, log)
            else:
                self._deploy_tarfile(archive, sysroot)
        except (tarfile.TarError, OSError) as e:
            raise DeployFailed(f"failed to deploy {archive.name} into {sysroot}: {e}") from e

        logger.info("pkgtool: deployed %s into %s", archive.name, sysroot)
        return [e for e in staged if e not in preexisting]

    def _deploy_tarfile(self, archive: Path, sysroot: Path) -> None:
        with tarfile.open(archive, "r:*") as tar:
            members = []
            for m in tar.getmembers():
                dest = target_path(sysroot, m.name)
                if dest is None:
                    continue
                # replace files and links instead of writing through them
                if not m.isdir() and os.path.lexists(dest) and not (dest.is_dir() and not dest.is_symlink()):
                    dest.unlink()
                members.append(m)
            if sys.version_info >= (3, 12):
                tar.extractall(sysroot, members=members, filter="fully_trusted")
            else:
                tar.extractall(sysroot, members=members)

    def _deploy_fakeroot(self, archive: Path, sysroot: Path, log: Optional[IO[str]]) -> None:
        if not which("fakeroot"):
            raise ToolMissing("fakeroot", "deployment")
        rc = run_logged(["fakeroot", "tar", "-xpf", str(archive), "-C", str(sysroot)], log=log)
        if rc != 0:
            raise DeployFailed(f"fakeroot tar failed deploying {archive.name} into {sysroot} (exit {rc})")
