# lfsbuild/hooks.py

import os
import importlib
from pathlib import Path
from typing import Any, Dict, List, Optional

from lfsbuild.logging import get_logger
from lfsbuild.process import run_capture

logger = get_logger("hooks")

EVENTS = ("post_install", "post_remove")


class HookManager:
    """
    Global hooks declared in the configuration under hooks.<event>.

    An entry is either a shell command string or a mapping with name, type
    (script | python), command / module and priority. Hook failures are logged
    and never abort the operation that triggered them.
    """

    def __init__(self, cfg: Optional[Dict[str, Any]] = None, shell: str = "/bin/sh"):
        self.hooks: Dict[str, List[Dict[str, Any]]] = {}
        self.shell = shell
        self._load_global_hooks(cfg or {})

    # -----------------------------
    # Loading
    # -----------------------------
    def _load_global_hooks(self, cfg: Dict[str, Any]):
        for event in EVENTS:
            for i, entry in enumerate(cfg.get(event) or []):
                if isinstance(entry, str):
                    self.register(event, name=f"{event}-{i}", type="script", command_or_module=entry)
                elif isinstance(entry, dict):
                    self.register(
                        event=event,
                        name=entry.get("name", f"{event}-{i}"),
                        type=entry.get("type", "script"),
                        command_or_module=entry.get("command") or entry.get("module") or "",
                        priority=int(entry.get("priority", 10)),
                    )
                else:
                    logger.warning("hooks: ignoring malformed %s hook entry %r", event, entry)

    # -----------------------------
    # Registration
    # -----------------------------
    def register(self, event: str, name: str, type: str, command_or_module: str, priority: int = 10):
        self.hooks.setdefault(event, []).append({
            "name": name,
            "type": type,
            "command_or_module": command_or_module,
            "priority": priority,
        })
        self.hooks[event].sort(key=lambda h: h["priority"])

    def list(self, event: Optional[str] = None) -> List[Dict[str, Any]]:
        if event:
            return self.hooks.get(event, [])
        return [h for entries in self.hooks.values() for h in entries]

    # -----------------------------
    # Execution
    # -----------------------------
    def run(self, event: str, context: Optional[Dict[str, Any]] = None) -> bool:
        """Run every hook for event; returns False if any of them failed."""
        hooks = self.hooks.get(event, [])
        if not hooks:
            return True
        context = dict(context or {})
        logger.debug("hooks: running %d hook(s) for %s", len(hooks), event)
        ok = True
        for hook in hooks:
            name = hook["name"]
            try:
                if hook["type"] == "script":
                    env = dict(os.environ)
                    env["LFSB_HOOK_EVENT"] = event
                    env.update({f"LFSB_{k.upper()}": str(v) for k, v in context.items()})
                    rc, _, err = run_capture([self.shell, "-c", hook["command_or_module"]], env=env)
                    if rc != 0:
                        logger.warning("hooks: %s hook %s failed (exit %d): %s", event, name, rc, err.strip())
                        ok = False
                elif hook["type"] == "python":
                    module = importlib.import_module(hook["command_or_module"])
                    module.run(event, context)
                else:
                    logger.warning("hooks: unknown hook type %s for %s", hook["type"], name)
            except Exception as e:
                logger.warning("hooks: %s hook %s raised: %s", event, name, e)
                ok = False
        return ok


def run_package_hook(hook: str, name: str) -> bool:
    """Run a recipe's post-remove hook with the logical name as its argument."""
    path = Path(hook)
    if not (path.is_file() and os.access(path, os.X_OK)):
        logger.debug("hooks: post-remove hook %s missing or not executable", hook)
        return False
    logger.info("hooks: running post-remove hook %s %s", hook, name)
    rc, _, err = run_capture([str(path), name])
    if rc != 0:
        logger.warning("hooks: post-remove hook %s failed (exit %d): %s", hook, rc, err.strip())
        return False
    return True
