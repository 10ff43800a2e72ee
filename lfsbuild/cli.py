#!/usr/bin/env python3
# lfsbuild/cli.py
"""
lfsbuild CLI

Subcommands:
  build <recipe>        compile, package (unless toolchain stage) and install a recipe
  remove <name>         undo an installation using the recorded file manifest
  info <name>           show the record of a package
  list                  list installed packages
  status <name>         tell whether a package is installed (alias: is-installed)
  rebuild-all           rebuild every recipe of the repository in dependency order
  config                print the merged configuration
"""

from __future__ import annotations

import sys
import argparse
from pathlib import Path
from typing import Any, Callable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from lfsbuild import __version__
from lfsbuild import config as config_mod
from lfsbuild import logging as log_mod
from lfsbuild.buildsystem import BuildSystem
from lfsbuild.config import Config
from lfsbuild.errors import InvalidRecipe, LFSBuildError
from lfsbuild.recipe import discover, is_valid_name, load as load_recipe
from lfsbuild.remove import RemoveManager
from lfsbuild.scheduler import Scheduler
from lfsbuild.state import StateStore

logger = log_mod.get_logger("cli")

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {escape(msg)}")

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {escape(msg)}")

def print_err(msg: str):
    err_console.print(f"[bold red]✖[/] {escape(msg)}")

def print_info(msg: str):
    console.print(f"[cyan]{escape(msg)}[/cyan]")

# -----------------------
# CLI Implementation
# -----------------------
class LFSBuildCLI:
    def __init__(self, cfg: Config, spinner: bool = True):
        self.config = cfg
        self.spinner = spinner
        self.paths = cfg.paths
        self.paths.ensure()
        self.state = StateStore(self.paths.state)
        self.builder = BuildSystem(cfg, self.state)
        self.remover = RemoveManager(cfg, self.state)

    def _with_status(self, text: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if not self.spinner:
            return func(*args, **kwargs)
        with err_console.status(escape(text)):
            return func(*args, **kwargs)

    def build(self, recipe_path: str) -> int:
        recipe = load_recipe(Path(recipe_path))
        print_info(f"Building {recipe.package_id}" + (f" ({recipe.phase})" if recipe.phase else ""))
        result = self._with_status(f"building {recipe.package_id}", self.builder.build, recipe)
        if result.toolchain:
            print_ok(f"Toolchain stage of {recipe.package_id} staged in {self.builder.staging_dir(recipe)}")
        else:
            print_ok(f"Package created: {result.archive}")
            print_ok(f"Installed: {recipe.package_id}")
        return 0

    @staticmethod
    def _check_name(name: str) -> None:
        if not is_valid_name(name):
            raise LFSBuildError(f"invalid package name: {name!r}")

    def remove(self, name: str) -> int:
        self._check_name(name)
        res = self._with_status(f"removing {name}", self.remover.remove, name)
        if res["status"] == "not-installed":
            print_warn(f"{name} is not installed")
        else:
            print_ok(f"Removed: {name}")
        return 0

    def info(self, name: str) -> int:
        self._check_name(name)
        if not self.state.is_installed(name):
            print_warn(f"{name} is not installed")
            return 0
        rec = self.state.record(name)
        manifest = self.state.read_manifest(name) or []
        table = Table(show_header=False, box=None)
        table.add_column(style="bold")
        table.add_column()
        rows = [
            ("Name", name),
            ("Artifact", rec.get("artifact_id") or ""),
            ("Package id", rec.get("package_id") or ""),
            ("Version", rec.get("version") or ""),
            ("Category", rec.get("category") or ""),
            ("Phase", rec.get("phase") or ""),
            ("Installed at", rec.get("installed_at") or ""),
            ("Files", str(len(manifest))),
            ("Archive", rec.get("archive") or ""),
        ]
        for k, v in rows:
            table.add_row(k, escape(str(v)))
        console.print(table)
        return 0

    def list_installed(self) -> int:
        for name in self.state.list_installed():
            console.print(escape(name))
        return 0

    def status(self, name: str) -> int:
        self._check_name(name)
        if self.state.is_installed(name):
            print_ok(f"{name} is installed")
        else:
            print_warn(f"{name} is not installed")
        return 0

    def rebuild_all(self, keep_going: bool = False) -> int:
        recipes = []
        invalid = {}
        for path in discover(self.paths.repo):
            try:
                recipes.append(load_recipe(path))
            except InvalidRecipe as e:
                logger.error("invalid recipe: %s", e)
                invalid[str(path)] = str(e)
        if not recipes and not invalid:
            print_warn(f"no recipes found under {self.paths.repo}")
            return 0
        scheduler = Scheduler(self.builder, self.remover, self.state)
        report = self._with_status(f"rebuilding {len(recipes)} recipe(s)", scheduler.rebuild_all, recipes,
                                   keep_going=keep_going, invalid=invalid)
        for pid in report.order:
            print_ok(f"Built {pid}")
        print_ok(f"Rebuild complete ({len(report.built)} package(s), {report.passes} pass(es))")
        return 0

    def show_config(self) -> int:
        console.print(escape(config_mod.dump(self.config)), end="", soft_wrap=True)
        return 0

# -----------------------
# Argparse wiring
# -----------------------
def make_parser():
    ap = argparse.ArgumentParser(prog="lfsbuild", description="Source-based package builder for LFS-style systems")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", help="path to a YAML/JSON configuration file")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    ap.add_argument("--keep-build", action="store_true", help="keep work and staging directories after a build")
    ap.add_argument("--no-spinner", action="store_true", help="Disable spinner animations")
    sub = ap.add_subparsers(dest="cmd")

    p_build = sub.add_parser("build", help="build and install one recipe")
    p_build.add_argument("recipe")

    p_remove = sub.add_parser("remove", help="remove an installed package")
    p_remove.add_argument("name")

    p_info = sub.add_parser("info", help="show an installed package")
    p_info.add_argument("name")

    sub.add_parser("list", help="list installed packages")

    p_status = sub.add_parser("status", aliases=["is-installed"], help="check whether a package is installed")
    p_status.add_argument("name")

    p_rebuild = sub.add_parser("rebuild-all", help="rebuild every recipe in dependency order")
    p_rebuild.add_argument("--keep-going", action="store_true", help="continue past failed builds")

    sub.add_parser("config", help="print the merged configuration")
    return ap

def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 1

    try:
        cfg = config_mod.load(args.config)
        if args.keep_build:
            cfg.merged.setdefault("build", {})["keep_build"] = True
        log_mod.configure(cfg.get("logging", {}), verbose=args.verbose)
        cli = LFSBuildCLI(cfg, spinner=not args.no_spinner)

        if args.cmd == "build":
            return cli.build(args.recipe)
        if args.cmd == "remove":
            return cli.remove(args.name)
        if args.cmd == "info":
            return cli.info(args.name)
        if args.cmd == "list":
            return cli.list_installed()
        if args.cmd in ("status", "is-installed"):
            return cli.status(args.name)
        if args.cmd == "rebuild-all":
            return cli.rebuild_all(keep_going=args.keep_going)
        if args.cmd == "config":
            return cli.show_config()
    except LFSBuildError as e:
        print_err(str(e))
        return 1
    except KeyboardInterrupt:
        print_err("interrupted")
        return 130
    parser.print_help()
    return 1

if __name__ == "__main__":
    sys.exit(main())
