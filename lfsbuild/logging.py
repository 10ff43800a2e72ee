# lfsbuild/logging.py
# -*- coding: utf-8 -*-
"""
lfsbuild logging

Features:
 - Console color formatter (stderr, so command output on stdout stays clean)
 - Rotating file handler (logging.file / max_size / backups)
 - Module-level configurable log levels (logging.module_levels)
 - Thread-safe reconfiguration; nothing is installed until configure() runs
"""

from __future__ import annotations

import sys
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

_ROOT_NAME = "lfsbuild"
_logger = logging.getLogger("lfsbuild.logging")

# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m", # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg

# ----------------------
# Filters
# ----------------------
class ModuleDefaultFilter(logging.Filter):
    """Records from plain loggers get their logger name as lfsb_module."""

    def filter(self, record):
        if not hasattr(record, "lfsb_module"):
            record.lfsb_module = record.name
        return True


class ModuleLevelFilter(logging.Filter):
    def __init__(self, module_levels: Dict[str, str]):
        super().__init__()
        self.module_levels = {m: getattr(logging, str(lvl).upper(), logging.INFO) for m, lvl in (module_levels or {}).items()}

    def filter(self, record):
        mod = getattr(record, "lfsb_module", None)
        if mod and mod in self.module_levels:
            return record.levelno >= self.module_levels[mod]
        return True

# ----------------------
# Logger manager
# ----------------------
class LFSBuildLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger(_ROOT_NAME)
        self._handlers: List[logging.Handler] = []
        self._inited = True

    def configure(self, cfg: Dict[str, Any], verbose: bool = False) -> None:
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            level_name = "DEBUG" if verbose else str(cfg.get("level", "INFO")).upper()
            level = getattr(logging, level_name, logging.INFO)
            fmt = cfg.get("format") or "[%(asctime)s] [%(levelname)s] [%(lfsb_module)s] %(message)s"
            datefmt = cfg.get("datefmt", "%H:%M:%S")
            module_filter = ModuleLevelFilter(cfg.get("module_levels", {}) or {})

            ch = logging.StreamHandler(sys.stderr)
            ch.setLevel(level)
            ch.setFormatter(ColorFormatter(fmt, datefmt=datefmt, color=bool(cfg.get("color", True)) and sys.stderr.isatty()))
            ch.addFilter(ModuleDefaultFilter())
            ch.addFilter(module_filter)
            self._root.addHandler(ch)
            self._handlers.append(ch)

            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                try:
                    file_path.parent.mkdir(parents=True, exist_ok=True)
                    fh = logging.handlers.RotatingFileHandler(
                        str(file_path),
                        maxBytes=_parse_size(cfg.get("max_size", "10M")) or 10 * 1024 * 1024,
                        backupCount=int(cfg.get("backups", 5)),
                        encoding="utf-8",
                    )
                except OSError:
                    _logger.exception("logging: failed to configure file handler at %s", file_path)
                else:
                    fh.setLevel(logging.DEBUG)
                    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(lfsb_module)s] %(message)s"))
                    fh.addFilter(ModuleDefaultFilter())
                    fh.addFilter(module_filter)
                    self._root.addHandler(fh)
                    self._handlers.append(fh)

            self._root.setLevel(logging.DEBUG if cfg.get("file") else level)
            self._root.propagate = False
            _logger.debug("logging: configuration applied (level=%s)", level_name)

    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'lfsb_module' into records."""
        return logging.LoggerAdapter(logging.getLogger(_ROOT_NAME), {"lfsb_module": module_name})

# ----------------------
# Helper parse size
# ----------------------
def _parse_size(s: Any) -> Optional[int]:
    if s is None:
        return None
    if isinstance(s, int):
        return s
    ss = str(s).strip().upper()
    units = (("KB", 1024), ("K", 1024), ("MB", 1024**2), ("M", 1024**2), ("GB", 1024**3), ("G", 1024**3))
    try:
        for suffix, mult in units:
            if ss.endswith(suffix):
                return int(float(ss[: -len(suffix)]) * mult)
        return int(float(ss))
    except ValueError:
        _logger.debug("logging: parse size failed for %s", s)
        return None

# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = LFSBuildLogger()

def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)

def configure(cfg: Dict[str, Any], verbose: bool = False) -> None:
    _GLOBAL_LOGGER.configure(cfg, verbose=verbose)
