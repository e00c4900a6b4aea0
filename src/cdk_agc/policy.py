"""Protection policy for candidate artifacts.

An entry is protected if ANY rule matches, checked in this order:

1. structural - CDK metadata files (``manifest.json``, ``*.template.json``,
   ``*.assets.json``, ...) are never deleted;
2. referenced - the path is in the reference set;
3. recent - the entry was modified within the retention window.

Candidate discovery only ever offers ``asset.``-prefixed names, so rule 1 is a
second guard rather than the primary scope.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from cdk_agc.manifest import DESCRIPTOR_SUFFIX, MANIFEST_FILENAME

if TYPE_CHECKING:
    from cdk_agc.references import ReferenceSet

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "asset."
TEMPLATE_SUFFIX = ".template.json"
PROTECTED_NAMES = frozenset({MANIFEST_FILENAME, "tree.json", "cdk.context.json", "cdk.out"})
PROTECTED_SUFFIXES = (TEMPLATE_SUFFIX, DESCRIPTOR_SUFFIX)

SECONDS_PER_HOUR = 3600.0


class ProtectionReason(str, Enum):
    """Why an entry was kept."""

    STRUCTURAL = "structural"
    REFERENCED = "referenced"
    RECENT = "recent"


@dataclass(frozen=True)
class ProtectionDecision:
    """Outcome of evaluating one candidate."""

    name: str
    path: str
    reason: ProtectionReason | None = None
    age_hours: float | None = None
    consumers: tuple[str, ...] = field(default_factory=tuple)

    @property
    def protected(self) -> bool:
        return self.reason is not None

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {
            "name": self.name,
            "path": self.path,
            "reason": self.reason.value if self.reason else None,
        }
        if self.age_hours is not None:
            result["age_hours"] = round(self.age_hours, 3)
        if self.consumers:
            result["consumers"] = list(self.consumers)
        return result


def normalize_keep_hours(value: float | int | None) -> float:
    """Clamp a retention window: ``None``, negatives and NaN mean disabled."""
    if value is None:
        return 0.0
    hours = float(value)
    if math.isnan(hours) or hours < 0:
        return 0.0
    return hours


def is_artifact_name(name: str) -> bool:
    return name.startswith(ARTIFACT_PREFIX)


def is_structurally_protected(name: str) -> bool:
    """True for CDK metadata file names that must never be deleted."""
    return name in PROTECTED_NAMES or name.endswith(PROTECTED_SUFFIXES)


def age_in_hours(mtime: float, now: float) -> float:
    return (now - mtime) / SECONDS_PER_HOUR


def is_within_retention(mtime: float, now: float, keep_hours: float) -> bool:
    """Inclusive recency check; a window of 0 never protects."""
    keep_hours = normalize_keep_hours(keep_hours)
    if keep_hours <= 0:
        return False
    return age_in_hours(mtime, now) <= keep_hours


async def modification_age(path: str, now: float) -> float | None:
    """Age of ``path`` in hours, or ``None`` if it can no longer be stat'ed."""
    try:
        st = await asyncio.to_thread(os.lstat, path)
    except OSError as e:
        logger.warning("Cannot stat %s, not applying retention window: %s", path, e)
        return None
    return age_in_hours(st.st_mtime, now)


async def evaluate_protection(
    path: str,
    references: ReferenceSet,
    keep_hours: float,
    now: float | None = None,
) -> ProtectionDecision:
    """Decide whether ``path`` must be kept.

    Args:
        path: Absolute path of the candidate.
        references: Fully built reference set (read only).
        keep_hours: Retention window in hours; <= 0 disables the recency rule.
        now: Reference time as epoch seconds; defaults to the current time.

    Returns:
        A ProtectionDecision whose ``reason`` is None when the entry may be
        deleted.
    """
    name = os.path.basename(path)
    consumers = tuple(references.consumers_of(path))

    if is_structurally_protected(name):
        return ProtectionDecision(name, path, ProtectionReason.STRUCTURAL)

    if path in references:
        return ProtectionDecision(name, path, ProtectionReason.REFERENCED, consumers=consumers)

    keep_hours = normalize_keep_hours(keep_hours)
    if keep_hours > 0:
        current = time.time() if now is None else now
        age = await modification_age(path, current)
        if age is not None and age <= keep_hours:
            return ProtectionDecision(name, path, ProtectionReason.RECENT, age_hours=age)
        return ProtectionDecision(name, path, None, age_hours=age)

    return ProtectionDecision(name, path, None)
