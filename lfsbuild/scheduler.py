# lfsbuild/scheduler.py
"""
scheduler.py - dependency-ordered rebuild of a recipe set

rebuild_all() repeats passes over the queue until a pass builds nothing:
each queued recipe is first removed if installed, skipped while any of its
dependencies is missing, otherwise built and dropped from the queue. Whatever
remains is reported through UnresolvedSet, together with recipe files that
could not be loaded (cycles, missing dependencies, keep_going failures).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from lfsbuild.buildsystem import BuildResult, BuildSystem
from lfsbuild.errors import LFSBuildError, UnresolvedSet
from lfsbuild.logging import get_logger
from lfsbuild.recipe import Recipe
from lfsbuild.remove import RemoveManager
from lfsbuild.state import StateStore

logger = get_logger("scheduler")


@dataclass
class RebuildReport:
    built: List[BuildResult] = field(default_factory=list)
    passes: int = 0

    @property
    def order(self) -> List[str]:
        return [r.package_id for r in self.built]


class Scheduler:
    def __init__(self, builder: BuildSystem, remover: RemoveManager, state: Optional[StateStore] = None):
        self.builder = builder
        self.remover = remover
        self.state = state or builder.state

    def rebuild_all(self, recipes: Sequence[Recipe], keep_going: bool = False,
                    invalid: Optional[Dict[str, str]] = None) -> RebuildReport:
        """invalid maps recipe files that failed to load to the reason; they are reported as unresolved."""
        queue: List[Recipe] = list(recipes)
        report = RebuildReport()
        failures: Dict[str, str] = {}

        while queue:
            report.passes += 1
            progressed = False
            logger.info("scheduler: pass %d, %d recipe(s) queued", report.passes, len(queue))
            for recipe in list(queue):
                if recipe.package_id in failures:
                    continue
                if self.state.is_installed(recipe.name):
                    self.remover.remove(recipe.name)
                missing = self.builder.missing_dependencies(recipe)
                if missing:
                    logger.debug("scheduler: %s waiting on %s", recipe.package_id, ", ".join(missing))
                    continue
                try:
                    result = self.builder.build(recipe)
                except LFSBuildError as e:
                    if not keep_going:
                        raise
                    logger.error("scheduler: %s failed: %s", recipe.package_id, e)
                    failures[recipe.package_id] = str(e)
                    continue
                if recipe.category:
                    self.state.set(recipe.name, "category", recipe.category)
                report.built.append(result)
                queue.remove(recipe)
                progressed = True
            if not progressed:
                break

        if queue or invalid:
            unresolved = {r.package_id: self.builder.missing_dependencies(r) for r in queue}
            raise UnresolvedSet(unresolved, report.passes, failures, invalid)
        logger.info("scheduler: rebuilt %d recipe(s) in %d pass(es)", len(report.built), report.passes)
        return report
