# lfsbuild/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - lfsbuild build engine

Main API:
  bs = BuildSystem(cfg, state)
  result = bs.build(recipe)

Stages:
  precheck -> fetch -> extract -> patch -> build -> install (staged) -> strip
  -> snapshot -> (package -> deploy | toolchain staging) -> record -> cleanup

Behavior:
  - All child output of one build is appended to logdir/<package_id>.log.
  - Any failure raises an LFSBuildError carrying that log path; partial work
    and staging directories are left in place for inspection.
  - Toolchain-phase recipes stop after the staged install: they are marked
    installed but never packaged or deployed.
"""

from __future__ import annotations

import os
import shlex
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Dict, List, Optional

from lfsbuild.config import Config, Paths
from lfsbuild.errors import BuildFailed, LFSBuildError, UnmetDependencies
from lfsbuild.fetcher import Fetcher, locate_source_root
from lfsbuild.hooks import HookManager
from lfsbuild.logging import get_logger
from lfsbuild.patches import PatchManager
from lfsbuild.pkgtool import PackageTool
from lfsbuild.process import run_logged, which
from lfsbuild.recipe import Recipe
from lfsbuild.state import StateStore

logger = get_logger("buildsystem")

ELF_MAGIC = b"\x7fELF"
ET_EXEC = 2
ET_DYN = 3


# --- helpers ---
def _reset_dir(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def elf_type(path: Path) -> Optional[int]:
    """e_type of an ELF file, or None if path is not ELF."""
    try:
        with open(path, "rb") as f:
            head = f.read(18)
    except OSError:
        return None
    if len(head) < 18 or head[:4] != ELF_MAGIC:
        return None
    order = "big" if head[5] == 2 else "little"
    return int.from_bytes(head[16:18], order)


def snapshot(root: Path) -> List[str]:
    """Pre-order listing of files, symlinks and directories under root as '/rel/path'."""
    out: List[str] = []

    def walk(d: str, rel: str) -> None:
        for name in sorted(os.listdir(d)):
            p = os.path.join(d, name)
            r = f"{rel}/{name}"
            out.append(r)
            if os.path.isdir(p) and not os.path.islink(p):
                walk(p, r)

    walk(str(root), "")
    return out


@dataclass
class BuildResult:
    recipe: Recipe
    log_path: Path
    staged_manifest: List[str]
    manifest: List[str] = field(default_factory=list)
    archive: Optional[Path] = None

    @property
    def package_id(self) -> str:
        return self.recipe.package_id

    @property
    def toolchain(self) -> bool:
        return self.recipe.is_toolchain


@dataclass
class BuildContext:
    """Ephemeral per-build directories and the open build log."""
    recipe: Recipe
    workdir: Path
    staging: Path
    log_path: Path
    srcdir: Optional[Path] = None
    log: Optional[IO[str]] = None

    def __enter__(self) -> "BuildContext":
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.log = open(self.log_path, "a", encoding="utf-8")
        self.log.write(f"==> {self.recipe.package_id} ({time.strftime('%Y-%m-%d %H:%M:%S')})\n")
        self.log.flush()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.log is not None:
            if exc is not None:
                self.log.write(f"==> failed: {exc}\n")
            self.log.close()
            self.log = None


class BuildSystem:
    def __init__(self, cfg: Config, state: Optional[StateStore] = None):
        self.cfg = cfg
        self.paths: Paths = cfg.paths
        self.state = state or StateStore(self.paths.state)
        self.shell = cfg.get("build.shell", "/bin/sh")
        self.keep_build = bool(cfg.get("build.keep_build", False))
        self.shared_staging = bool(cfg.get("build.shared_staging", False))
        self.strip_tool = cfg.get("build.strip_tool", "strip")
        self.fetcher = Fetcher(self.paths.sources, cfg.get("fetcher.tools"))
        self.patches = PatchManager(self.paths.sources)
        self.pkgtool = PackageTool(
            self.paths.packages,
            compression=cfg.get("packaging.compression", "gz"),
            use_fakeroot=bool(cfg.get("packaging.fakeroot", False)),
        )
        self.hooks = HookManager(cfg.get("hooks", {}), shell=self.shell)

    # ----------------------
    # Context / environment
    # ----------------------
    def staging_dir(self, recipe: Recipe) -> Path:
        if self.shared_staging:
            return self.paths.destdir
        return self.paths.destdir / recipe.package_id

    def context(self, recipe: Recipe) -> BuildContext:
        return BuildContext(
            recipe=recipe,
            workdir=self.paths.work / recipe.package_id,
            staging=self.staging_dir(recipe),
            log_path=self.paths.logdir / f"{recipe.package_id}.log",
        )

    def environment(self, ctx: BuildContext) -> Dict[str, str]:
        env = dict(os.environ)
        env.update({
            "DESTDIR": str(ctx.staging),
            "NAME": ctx.recipe.name,
            "VERSION": ctx.recipe.version,
            "PKGID": ctx.recipe.package_id,
            "SOURCES": str(self.paths.sources),
            "SRCDIR": str(ctx.srcdir or ctx.workdir),
            "SYSROOT": str(self.paths.sysroot),
        })
        return env

    def missing_dependencies(self, recipe: Recipe) -> List[str]:
        return [d for d in recipe.depends if not self.state.is_installed(d)]

    # ----------------------
    # Stages
    # ----------------------
    def prepare(self, ctx: BuildContext) -> Path:
        """Fetch, extract into a fresh work dir and patch; returns the source root."""
        archive = self.fetcher.resolve(ctx.recipe.source, ctx.log)
        _reset_dir(ctx.workdir)
        self.fetcher.extract(archive, ctx.workdir, ctx.log)
        ctx.srcdir = locate_source_root(ctx.workdir, ctx.recipe.workdir_subdir)
        self.patches.apply(ctx.recipe.patches, ctx.srcdir, ctx.log)
        return ctx.srcdir

    def _run_stage(self, ctx: BuildContext, stage: str, cmd: List[str], env: Dict[str, str]) -> None:
        rc = run_logged(cmd, cwd=ctx.srcdir, env=env, log=ctx.log)
        if rc != 0:
            raise BuildFailed(ctx.recipe.package_id, stage, rc, ctx.log_path)

    def _configure_command(self, ctx: BuildContext) -> Optional[str]:
        configure = ctx.recipe.configure.strip()
        if not configure:
            return None
        first = shlex.split(configure)[0]
        script = (ctx.srcdir or ctx.workdir) / first
        if script.is_file() and not os.access(script, os.X_OK):
            configure = f"sh {configure}"
        return f"{configure} {ctx.recipe.configure_args}".strip()

    def compile(self, ctx: BuildContext, env: Dict[str, str]) -> None:
        r = ctx.recipe
        if r.has_build_step:
            self._run_stage(ctx, "build", [self.shell, "-e", "-c", r.build_script], env)
            return
        configure = self._configure_command(ctx)
        if configure:
            self._run_stage(ctx, "configure", [self.shell, "-c", configure], env)
        self._run_stage(ctx, "make", [self.shell, "-c", f"{r.make} {r.make_args}".strip()], env)

    def install(self, ctx: BuildContext, env: Dict[str, str]) -> None:
        r = ctx.recipe
        _reset_dir(ctx.staging)
        if r.has_install_step:
            self._run_stage(ctx, "install", [self.shell, "-e", "-c", r.install_script], env)
        else:
            target = r.install_args or "install"
            cmd = f"{r.make} DESTDIR={shlex.quote(str(ctx.staging))} {target}"
            self._run_stage(ctx, "install", [self.shell, "-c", cmd], env)

    def strip(self, ctx: BuildContext) -> int:
        """Strip ELF executables and shared objects in staging; failures are ignored."""
        if not which(self.strip_tool):
            logger.debug("buildsystem: %s not found, skipping strip", self.strip_tool)
            return 0
        stripped = 0
        for dirpath, _, files in os.walk(ctx.staging):
            for fname in sorted(files):
                p = Path(dirpath) / fname
                if p.is_symlink() or not p.is_file() or not (p.stat().st_mode & 0o100):
                    continue
                kind = elf_type(p)
                if kind not in (ET_EXEC, ET_DYN):
                    continue
                flag = "-s" if kind == ET_EXEC else "--strip-unneeded"
                if run_logged([self.strip_tool, flag, str(p)], log=ctx.log) == 0:
                    stripped += 1
        return stripped

    def cleanup(self, ctx: BuildContext) -> None:
        if self.keep_build:
            logger.info("buildsystem: keeping %s and %s", ctx.workdir, ctx.staging)
            return
        for d in (ctx.workdir, ctx.staging):
            shutil.rmtree(d, ignore_errors=True)

    # ----------------------
    # Pipeline
    # ----------------------
    def build(self, recipe: Recipe) -> BuildResult:
        missing = self.missing_dependencies(recipe)
        if missing:
            raise UnmetDependencies(recipe.name, missing)

        logger.info("buildsystem: building %s%s", recipe.package_id, f" ({recipe.phase})" if recipe.phase else "")
        with self.context(recipe) as ctx:
            try:
                return self._build(ctx)
            except LFSBuildError as e:
                if e.log_path is None:
                    e.log_path = ctx.log_path
                raise

    def _build(self, ctx: BuildContext) -> BuildResult:
        r = ctx.recipe
        self.prepare(ctx)
        env = self.environment(ctx)
        self.compile(ctx, env)
        self.install(ctx, env)
        if r.strip_binaries:
            n = self.strip(ctx)
            logger.debug("buildsystem: stripped %d file(s) in %s", n, ctx.staging)

        staged = snapshot(ctx.staging)
        self.state.write_manifest(r.name, staged, staged=True)
        record = {
            "version": r.version,
            "package_id": r.package_id,
            "category": r.category,
            "phase": r.phase,
            "post_remove_hook": r.post_remove_hook,
            "recipe": str(r.path),
        }
        result = BuildResult(recipe=r, log_path=ctx.log_path, staged_manifest=staged)

        if r.is_toolchain:
            record["archive"] = None
            self.state.update(r.name, record)
            self.state.mark_installed(r.name, r.artifact_id)
            logger.info("buildsystem: toolchain stage of %s staged in %s", r.package_id, ctx.staging)
            return result

        archive = self.pkgtool.package(ctx.staging, r.package_id, ctx.log)
        previous = self.state.read_manifest(r.name) or []
        manifest = self.pkgtool.deploy(archive, self.paths.sysroot, staged, owned=previous, log=ctx.log)
        self.state.write_manifest(r.name, manifest)
        record["archive"] = str(archive)
        self.state.update(r.name, record)
        self.state.mark_installed(r.name, r.artifact_id)
        self.hooks.run("post_install", {"package": r.name, "version": r.version, "archive": archive})

        result.archive = archive
        result.manifest = manifest
        self.cleanup(ctx)
        logger.info("buildsystem: installed %s", r.package_id)
        return result
