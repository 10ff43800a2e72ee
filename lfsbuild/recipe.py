# lfsbuild/recipe.py
# -*- coding: utf-8 -*-
"""
recipe.py - loader and validator for build recipes

Features:
- Flat shell-assignment recipes (*.recipe), parsed statically with shlex and
  never executed at load time
- Expansion of ${VAR} / $VAR references to variables assigned earlier in the
  same recipe; command substitutions are left for the shell at build time
- Detection of build_step() / install_step() shell functions
- YAML recipes (*.recipe.yaml / *.recipe.yml) with the same fields
- Immutable Recipe dataclass with derived artifact / package ids
- discover() walks a recipe repository
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from lfsbuild.errors import InvalidRecipe
from lfsbuild.logging import get_logger

logger = get_logger("recipe")

TOOLCHAIN_PHASE = "toolchain"
RECIPE_SUFFIXES = (".recipe", ".recipe.yaml", ".recipe.yml")

# shell variable name -> Recipe field
SHELL_KEYS: Dict[str, str] = {
    "NAME": "name",
    "VERSION": "version",
    "CATEGORY": "category",
    "PHASE": "phase",
    "PKGNAME": "artifact_override",
    "SOURCE": "source",
    "PATCHES": "patches",
    "DEPENDS": "depends",
    "WORKDIR_SUBDIR": "workdir_subdir",
    "CONFIGURE": "configure",
    "CONFIGURE_ARGS": "configure_args",
    "MAKE": "make",
    "MAKE_ARGS": "make_args",
    "INSTALL_ARGS": "install_args",
    "STRIP_BINARIES": "strip_binaries",
    "POST_REMOVE_HOOK": "post_remove_hook",
}

YAML_KEYS: Dict[str, str] = {v: v for v in SHELL_KEYS.values()}
YAML_KEYS.update({"pkgname": "artifact_override", "artifact": "artifact_override"})

DEFAULTS: Dict[str, Any] = {
    "name": "",
    "version": "",
    "category": "",
    "phase": "",
    "artifact_override": "",
    "source": "",
    "patches": "",
    "depends": "",
    "workdir_subdir": "",
    "configure": "./configure",
    "configure_args": "",
    "make": "make",
    "make_args": "",
    "install_args": "install",
    "strip_binaries": "no",
    "post_remove_hook": "",
}

ASSIGN_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$", re.S)
FUNC_RE = re.compile(r"^\s*(?:function\s+([A-Za-z_]\w*)\s*(?:\(\s*\))?|([A-Za-z_]\w*)\s*\(\s*\))\s*(?:\{|$)")
VAR_RE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")
STEP_FUNCTIONS = ("build_step", "install_step")


@dataclass(frozen=True)
class Recipe:
    path: Path
    name: str
    version: str
    category: str = ""
    phase: str = ""
    artifact_override: str = ""
    source: str = ""
    patches: Tuple[str, ...] = ()
    depends: Tuple[str, ...] = ()
    workdir_subdir: str = ""
    configure: str = "./configure"
    configure_args: str = ""
    make: str = "make"
    make_args: str = ""
    install_args: str = "install"
    strip_binaries: bool = False
    post_remove_hook: str = ""
    build_script: Optional[str] = field(default=None, repr=False)
    install_script: Optional[str] = field(default=None, repr=False)

    @property
    def artifact_id(self) -> str:
        return self.artifact_override or self.name

    @property
    def package_id(self) -> str:
        return f"{self.artifact_id}-{self.version}"

    @property
    def is_toolchain(self) -> bool:
        return self.phase == TOOLCHAIN_PHASE

    @property
    def has_build_step(self) -> bool:
        return self.build_script is not None

    @property
    def has_install_step(self) -> bool:
        return self.install_script is not None

# -----------------------
# Utilities
# -----------------------
def _truthy(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("yes", "true", "1", "on")

def _words(val: Any) -> List[str]:
    if val is None:
        return []
    if isinstance(val, (list, tuple)):
        return [str(v) for v in val if str(v).strip()]
    return str(val).split()

def _text(val: Any) -> str:
    """Command-line text; YAML lists are joined with shell quoting."""
    if val is None:
        return ""
    if isinstance(val, (list, tuple)):
        return " ".join(shlex.quote(str(v)) for v in val)
    return str(val)

def _dedupe(items: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    out: List[str] = []
    for it in items:
        if it not in seen:
            seen.add(it)
            out.append(it)
    return tuple(out)

def _expand(value: str, known: Dict[str, str]) -> str:
    def repl(m: "re.Match[str]") -> str:
        var = m.group(1) or m.group(2)
        if var in known:
            return known[var]
        return m.group(0)
    return VAR_RE.sub(repl, value)

def _statements(line: str) -> List[List[str]]:
    """Split one logical shell line into ';'-separated word lists."""
    lex = shlex.shlex(line, posix=True, punctuation_chars=";&|")
    lex.whitespace_split = True
    lex.commenters = "#"
    stmts: List[List[str]] = [[]]
    for tok in lex:
        if tok and set(tok) <= set(";&|"):
            stmts.append([])
        else:
            stmts[-1].append(tok)
    return [s for s in stmts if s]

def is_valid_name(name: str) -> bool:
    """Logical names double as state file names."""
    return bool(name) and "/" not in name and not any(c.isspace() for c in name) and name not in (".", "..")

def _validate_name(name: str, path: Path) -> None:
    if not name:
        raise InvalidRecipe(f"{path}: NAME is missing or empty")
    if not is_valid_name(name):
        raise InvalidRecipe(f"{path}: invalid logical name {name!r}")

# -----------------------
# Parsers
# -----------------------
def parse_shell(text: str, path: Path) -> Tuple[Dict[str, str], List[str]]:
    """
    Statically parse a flat shell recipe.

    Returns (assignments, functions): the shell variables assigned at top level
    and the names of the functions the recipe defines.
    """
    assigned: Dict[str, str] = {}
    functions: List[str] = []
    in_function = False
    opened = False
    depth = 0
    pending = ""

    for lineno, raw in enumerate(text.splitlines(), 1):
        if not in_function and not pending:
            m = FUNC_RE.match(raw)
            if m:
                functions.append(m.group(1) or m.group(2))
                in_function, opened, depth = True, False, 0
        if in_function:
            # body is skipped; the opening brace may sit on a later line
            depth += raw.count("{") - raw.count("}")
            opened = opened or "{" in raw
            if opened and depth <= 0:
                in_function = False
            continue

        line = pending + raw
        if line.rstrip().endswith("\\"):
            pending = line.rstrip()[:-1]
            continue
        try:
            stmts = _statements(line)
        except ValueError:
            # unterminated quote spans onto the next line
            pending = line + "\n"
            continue
        pending = ""

        for words in stmts:
            if words[0] in ("export", "readonly", "local"):
                words = words[1:]
            assignments = [ASSIGN_RE.match(w) for w in words]
            if words and all(assignments):
                for m in assignments:
                    assigned[m.group(1)] = _expand(m.group(2), assigned)
            else:
                logger.debug("%s:%d: ignoring statement %r", path, lineno, " ".join(words))

    if pending:
        raise InvalidRecipe(f"{path}: unterminated quoted string")
    return assigned, functions

def _from_fields(path: Path, values: Dict[str, Any], build_script: Optional[str], install_script: Optional[str]) -> Recipe:
    name = str(values.get("name") or "").strip()
    version = str(values.get("version") or "").strip()
    _validate_name(name, path)
    if not version:
        raise InvalidRecipe(f"{path}: VERSION is missing or empty")
    return Recipe(
        path=path,
        name=name,
        version=version,
        category=str(values.get("category") or ""),
        phase=str(values.get("phase") or ""),
        artifact_override=str(values.get("artifact_override") or ""),
        source=str(values.get("source") or ""),
        patches=tuple(_words(values.get("patches"))),
        depends=_dedupe(_words(values.get("depends"))),
        workdir_subdir=str(values.get("workdir_subdir") or ""),
        configure=_text(values.get("configure")),
        configure_args=_text(values.get("configure_args")),
        make=_text(values.get("make")) or "make",
        make_args=_text(values.get("make_args")),
        install_args=_text(values.get("install_args")),
        strip_binaries=_truthy(values.get("strip_binaries", False)),
        post_remove_hook=str(values.get("post_remove_hook") or ""),
        build_script=build_script,
        install_script=install_script,
    )

def _load_shell(path: Path, text: str) -> Recipe:
    assigned, functions = parse_shell(text, path)
    values: Dict[str, Any] = dict(DEFAULTS)
    for var, key in SHELL_KEYS.items():
        if var in assigned:
            values[key] = assigned[var]
    sourced = f". {shlex.quote(str(path.resolve()))}\n"
    build_script = sourced + "build_step\n" if "build_step" in functions else None
    install_script = sourced + "install_step\n" if "install_step" in functions else None
    return _from_fields(path, values, build_script, install_script)

def _load_yaml(path: Path, text: str) -> Recipe:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidRecipe(f"{path}: malformed YAML: {e}") from e
    if not isinstance(data, dict):
        raise InvalidRecipe(f"{path}: recipe must be a mapping")
    values: Dict[str, Any] = dict(DEFAULTS)
    for k, v in data.items():
        key = YAML_KEYS.get(str(k).lower())
        if key is None:
            if str(k).lower() not in STEP_FUNCTIONS:
                logger.debug("%s: ignoring unknown key %r", path, k)
            continue
        values[key] = v
    build_script = data.get("build_step")
    install_script = data.get("install_step")
    return _from_fields(
        path,
        values,
        str(build_script) if build_script else None,
        str(install_script) if install_script else None,
    )

# -----------------------
# Public API
# -----------------------
def is_recipe_file(path: Path) -> bool:
    return path.name.endswith(RECIPE_SUFFIXES)

def load(path: Path) -> Recipe:
    """Parse a recipe file. Raises InvalidRecipe; never writes anything."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidRecipe(f"cannot read recipe {path}: {e}") from e
    if path.name.endswith((".recipe.yaml", ".recipe.yml")):
        recipe = _load_yaml(path, text)
    else:
        recipe = _load_shell(path, text)
    logger.debug("recipe: loaded %s (%s)", recipe.package_id, path)
    return recipe

def discover(repo: Path) -> List[Path]:
    """All recipe files below repo, sorted."""
    repo = Path(repo)
    if not repo.is_dir():
        return []
    return sorted(p for p in repo.rglob("*") if p.is_file() and is_recipe_file(p))
