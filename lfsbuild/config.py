# lfsbuild/config.py
# -*- coding: utf-8 -*-
"""
lfsbuild central configuration loader

Features:
- Read YAML/JSON config from multiple locations (explicit, env override, cwd, user, system)
- Merge with authoritative DEFAULTS, normalize path fields to absolute paths
- Environment overrides for the root directories (LFSB_REPO, LFSB_SOURCES, ...)
- Validate structure and types, warn or raise ConfigError (fatal optional)
- Provide typed access via Config dataclass (Config.get("a.b")) and Paths
"""

from __future__ import annotations

import os
import json
import logging
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from lfsbuild.errors import ConfigError

logger = logging.getLogger("lfsbuild.config")

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "paths": {
        "repo": "./repo",          # recipe tree, e.g. repo/{base,x11,extras}/<pkg>/*.recipe
        "sources": "./sources",    # tarballs and patches
        "work": "./build",         # extraction / compilation area
        "destdir": "./destdir",    # staged installs
        "packages": "./packages",  # generated .pkg.tar.* archives
        "sysroot": "/",            # target install root
        "state": "./.state",       # package records and manifests
        "logdir": "./logs",        # one log per build
    },
    "build": {
        "keep_build": False,
        "shared_staging": False,
        "shell": "/bin/sh",
        "strip_tool": "strip",
    },
    "fetcher": {
        "tools": ["curl", "wget"],
    },
    "packaging": {
        "compression": "gz",
        "fakeroot": False,
    },
    "hooks": {
        "post_install": [],
        "post_remove": [],
    },
    "logging": {
        "level": "INFO",
        "color": True,
        "file": None,
        "max_size": "10M",
        "backups": 5,
        "module_levels": {},
    },
}

# environment variable -> (section, key)
ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "LFSB_REPO": ("paths", "repo"),
    "LFSB_SOURCES": ("paths", "sources"),
    "LFSB_WORK": ("paths", "work"),
    "LFSB_DESTDIR": ("paths", "destdir"),
    "LFSB_PKG": ("paths", "packages"),
    "LFSB_SYSROOT": ("paths", "sysroot"),
    "LFSB_STATE": ("paths", "state"),
    "LFSB_LOGDIR": ("paths", "logdir"),
    "LFSB_KEEP_BUILD": ("build", "keep_build"),
}

_COMPRESSIONS = ("gz", "xz", "bz2")

# ----------------------------
# Dataclasses to hold config
# ----------------------------
@dataclass
class Config:
    raw: Dict[str, Any] = field(default_factory=dict)     # values loaded from file (if any)
    merged: Dict[str, Any] = field(default_factory=dict)  # merged with DEFAULTS
    path: Optional[Path] = None

    def get(self, path: str, default: Any = None) -> Any:
        """Dot-separated getter for merged config."""
        parts = path.split(".") if path else []
        cur: Any = self.merged
        for p in parts:
            if isinstance(cur, dict) and p in cur:
                cur = cur[p]
            else:
                return default
        return cur

    def as_dict(self) -> Dict[str, Any]:
        return deepcopy(self.merged)

    @property
    def paths(self) -> "Paths":
        return Paths.from_config(self)


@dataclass(frozen=True)
class Paths:
    repo: Path
    sources: Path
    work: Path
    destdir: Path
    packages: Path
    sysroot: Path
    state: Path
    logdir: Path

    @classmethod
    def from_config(cls, cfg: Config) -> "Paths":
        p = cfg.get("paths", {})
        return cls(**{k: Path(p[k]) for k in DEFAULTS["paths"]})

    def ensure(self) -> None:
        """Create the directories the engine writes into."""
        for d in (self.work, self.destdir, self.packages, self.state, self.logdir):
            d.mkdir(parents=True, exist_ok=True)

# ----------------------------
# Utilities
# ----------------------------
def _expand_path(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    return os.path.abspath(os.path.expanduser(os.path.expandvars(str(val))))

def _to_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("1", "yes", "true", "on")

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    res = deepcopy(a)
    for k, v in b.items():
        if k in res and isinstance(res[k], dict) and isinstance(v, dict):
            res[k] = _deep_merge(res[k], v)
        else:
            res[k] = deepcopy(v)
    return res

def _find_candidates(explicit: Optional[str] = None) -> List[Path]:
    candidates: List[Path] = []
    env = os.environ.get("LFSB_CONFIG")
    if explicit:
        candidates.append(Path(explicit))
    if env:
        candidates.append(Path(env))
    candidates.extend([
        Path.cwd() / "lfsbuild.yaml",
        Path.cwd() / "lfsbuild.yml",
        Path.cwd() / "lfsbuild.json",
        Path.home() / ".config" / "lfsbuild" / "config.yaml",
        Path("/etc") / "lfsbuild" / "config.yaml",
    ])
    return candidates

def _load_file(path: Path) -> Dict[str, Any]:
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(txt)
        else:
            data = yaml.safe_load(txt)
    except (ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot parse config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data

def _apply_env(cfg: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    out = deepcopy(cfg)
    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        val = env.get(var)
        if val:
            out.setdefault(section, {})[key] = val
    return out

def _normalize_and_coerce(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize path fields and coerce basic types."""
    out = deepcopy(cfg)
    paths = out.get("paths")
    if isinstance(paths, dict):
        for k, v in list(paths.items()):
            if isinstance(v, str) and v:
                paths[k] = _expand_path(v)
    logcfg = out.get("logging")
    if isinstance(logcfg, dict) and logcfg.get("file"):
        logcfg["file"] = _expand_path(logcfg["file"])
    build = out.get("build")
    if isinstance(build, dict):
        for key in ("keep_build", "shared_staging"):
            if key in build:
                build[key] = _to_bool(build[key])
    packaging = out.get("packaging")
    if isinstance(packaging, dict):
        if "fakeroot" in packaging:
            packaging["fakeroot"] = _to_bool(packaging["fakeroot"])
        if "compression" in packaging:
            packaging["compression"] = str(packaging["compression"]).lower()
    fetcher = out.get("fetcher")
    if isinstance(fetcher, dict) and isinstance(fetcher.get("tools"), str):
        fetcher["tools"] = fetcher["tools"].split()
    return out

def _validate_structure(cfg: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Return (ok, issues_list)."""
    issues: List[str] = []
    for k in cfg.keys():
        if k not in DEFAULTS:
            issues.append(f"Unknown top-level config key: {k}")
    paths = cfg.get("paths")
    if not isinstance(paths, dict):
        issues.append("paths must be a mapping")
    else:
        for k in DEFAULTS["paths"]:
            if not isinstance(paths.get(k), str) or not paths.get(k):
                issues.append(f"paths.{k} must be a non-empty string")
    comp = cfg.get("packaging", {}).get("compression")
    if comp not in _COMPRESSIONS:
        issues.append(f"packaging.compression must be one of {', '.join(_COMPRESSIONS)}")
    tools = cfg.get("fetcher", {}).get("tools")
    if not isinstance(tools, list):
        issues.append("fetcher.tools should be a list")
    for event in ("post_install", "post_remove"):
        hooks = cfg.get("hooks", {}).get(event)
        if hooks is not None and not isinstance(hooks, list):
            issues.append(f"hooks.{event} should be a list")
    return (len(issues) == 0, issues)

# ----------------------------
# Loading
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(f"config file not found: {p}")
        return p
    for p in _find_candidates():
        if p.exists():
            return p
    return None

def from_dict(overrides: Dict[str, Any], fatal: bool = True, environ: Optional[Dict[str, str]] = None) -> Config:
    """Build a Config from an in-memory override mapping."""
    merged = _deep_merge(DEFAULTS, overrides or {})
    merged = _apply_env(merged, environ if environ is not None else {})
    normalized = _normalize_and_coerce(merged)
    ok, issues = _validate_structure(normalized)
    if not ok:
        msg = f"config: validation issues: {issues}"
        if fatal:
            raise ConfigError(msg)
        logger.warning(msg)
    return Config(raw=deepcopy(overrides or {}), merged=normalized)

def load(explicit_path: Optional[str] = None, fatal: bool = False) -> Config:
    """
    Load and merge config. If fatal=True then structural validation failures raise.
    Returns Config object.
    """
    cfg_path = _find_path(explicit_path)
    raw: Dict[str, Any] = _load_file(cfg_path) if cfg_path else {}
    merged = _apply_env(_deep_merge(DEFAULTS, raw))
    normalized = _normalize_and_coerce(merged)
    ok, issues = _validate_structure(normalized)
    if not ok:
        msg = f"config: validation issues: {issues}"
        if fatal:
            raise ConfigError(msg)
        logger.warning(msg)
    logger.debug("config: loaded merged config (from=%s)", str(cfg_path) if cfg_path else "<defaults>")
    return Config(raw=raw, merged=normalized, path=cfg_path)

def dump(cfg: Config) -> str:
    return yaml.safe_dump(cfg.as_dict(), default_flow_style=False, sort_keys=False)
