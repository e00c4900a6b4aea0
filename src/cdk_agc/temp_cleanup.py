"""Cleanup of CDK scratch directories in the system temp directory.

``cdk synth`` and ``cdk deploy`` against an app without an ``--output`` leave
``cdk.out*``/``cdk-*``/``.cdk*`` directories in ``$TMPDIR``. None of them are
referenced by anything once the command exits, so only the retention window
protects them.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from pathlib import Path

from cdk_agc.gc import (
    DeletionPlan,
    GCMode,
    GCResult,
    finish_run,
    now_utc_iso,
    size_candidate,
)
from cdk_agc.policy import ProtectionDecision, ProtectionReason, modification_age, normalize_keep_hours

logger = logging.getLogger(__name__)

TEMP_DIR_PREFIXES = ("cdk.out", "cdk-", ".cdk")


def is_temp_build_dir_name(name: str) -> bool:
    return name.startswith(TEMP_DIR_PREFIXES)


def find_temp_directories(temp_root: str, diagnostics: list[str] | None = None) -> list[str]:
    """Scratch directories directly under ``temp_root``, sorted.

    A temp root that cannot be listed yields an empty list and a warning.
    """
    try:
        with os.scandir(temp_root) as it:
            found = [
                entry.path
                for entry in it
                if entry.is_dir(follow_symlinks=False) and is_temp_build_dir_name(entry.name)
            ]
    except OSError as e:
        message = f"Failed to scan temp directory ({temp_root}): {e}"
        logger.warning(message)
        if diagnostics is not None:
            diagnostics.append(message)
        return []
    return sorted(found)


class TempDirectoryCollector:
    """Garbage collector for CDK scratch directories under ``$TMPDIR``."""

    def __init__(
        self,
        temp_root: Path | str | None = None,
        keep_hours: float = 0,
        now: float | None = None,
    ) -> None:
        self.temp_root = os.path.abspath(str(temp_root or tempfile.gettempdir()))
        self.keep_hours = normalize_keep_hours(keep_hours)
        self.now = now

    async def _evaluate(self, path: str, now: float) -> ProtectionDecision:
        name = os.path.basename(path)
        if self.keep_hours <= 0:
            return ProtectionDecision(name, path)
        age = await modification_age(path, now)
        if age is not None and age <= self.keep_hours:
            return ProtectionDecision(name, path, ProtectionReason.RECENT, age_hours=age)
        return ProtectionDecision(name, path, age_hours=age)

    async def plan_async(self) -> DeletionPlan:
        plan = DeletionPlan(root=self.temp_root)
        now = time.time() if self.now is None else self.now

        directories = await asyncio.to_thread(find_temp_directories, self.temp_root, plan.diagnostics)
        decisions = await asyncio.gather(*(self._evaluate(path, now) for path in directories))
        plan.protected = [d for d in decisions if d.protected]

        sized = await asyncio.gather(
            *(size_candidate(d, plan, detect_images=False) for d in decisions if not d.protected)
        )
        plan.candidates = [c for c in sized if c is not None]
        return plan

    def plan(self) -> DeletionPlan:
        return asyncio.run(self.plan_async())

    def run(self, dry_run: bool = True) -> GCResult:
        started_utc = now_utc_iso()
        plan = self.plan()
        return finish_run(
            GCMode.TEMP,
            plan,
            started_utc=started_utc,
            dry_run=dry_run,
            keep_hours=self.keep_hours,
        )
