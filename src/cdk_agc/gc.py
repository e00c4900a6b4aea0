"""Garbage collection of unused assets in a CDK output directory.

This module plans and executes the cleanup of ``cdk.out``:
- Reference collection from the build manifest and every asset descriptor
- Layered protection (structural, referenced, recent)
- Concurrent sizing of the entries selected for deletion
- Container image cleanup for deleted container-image assets
- Dry-run mode that reports exactly what a real run deletes

The collector is safe by default:
- Only ``asset.``-prefixed direct children of the output root are candidates
- Metadata files are protected even if they somehow became candidates
- ``run()`` defaults to a dry run
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from cdk_agc.images import (
    DockerImageStore,
    ImageCleanupResult,
    ImageStore,
    cleanup_images,
    extract_image_hash,
    is_container_build_asset,
)
from cdk_agc.manifest import ensure_output_dir, read_references
from cdk_agc.policy import (
    ProtectionDecision,
    evaluate_protection,
    is_artifact_name,
    normalize_keep_hours,
)
from cdk_agc.sizing import calculate_size

logger = logging.getLogger(__name__)


class GCMode(str, Enum):
    """Which tree a collection run cleans."""

    ASSETS = "assets"
    TEMP = "temp"


class GCStatus(str, Enum):
    """Overall outcome of a collection run."""

    NOTHING_TO_DO = "nothing_to_do"
    DRY_RUN = "dry_run"
    COMPLETED = "completed"


@dataclass(frozen=True)
class DeletionCandidate:
    """An entry selected for deletion."""

    name: str
    path: str
    size: int
    image_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "path": self.path, "size": self.size}
        if self.image_hash is not None:
            result["image_hash"] = self.image_hash
        return result


@dataclass
class DeletionPlan:
    """Entries to delete, ordered by name, plus what was kept and why."""

    root: str
    candidates: list[DeletionCandidate] = field(default_factory=list)
    protected: list[ProtectionDecision] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.candidates

    @property
    def total_size(self) -> int:
        return sum(candidate.size for candidate in self.candidates)

    @property
    def image_hashes(self) -> list[str]:
        return [c.image_hash for c in self.candidates if c.image_hash is not None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "candidates": [c.to_dict() for c in self.candidates],
            "protected": [p.to_dict() for p in self.protected],
            "total_size": self.total_size,
            "image_hashes": self.image_hashes,
            "diagnostics": self.diagnostics,
        }


@dataclass
class GCResult:
    """Result of a garbage collection run."""

    mode: GCMode
    root: str
    status: GCStatus
    dry_run: bool
    keep_hours: float
    plan: DeletionPlan
    started_utc: str
    finished_utc: str
    deleted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    images: ImageCleanupResult | None = None

    @property
    def bytes_freed(self) -> int:
        deleted = set(self.deleted)
        return sum(c.size for c in self.plan.candidates if c.path in deleted)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "mode": self.mode.value,
            "root": self.root,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "keep_hours": self.keep_hours,
            "started_utc": self.started_utc,
            "finished_utc": self.finished_utc,
            "plan": self.plan.to_dict(),
            "deleted": self.deleted,
            "bytes_freed": self.bytes_freed,
            "errors": self.errors,
            "images": self.images.to_dict() if self.images is not None else None,
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)


def now_utc_iso() -> str:
    """Get current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _remove(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


async def execute_plan(plan: DeletionPlan) -> tuple[list[str], list[str]]:
    """Delete every candidate of ``plan`` concurrently.

    Entries are disjoint subtrees, so deletions do not interfere. A failure
    is recorded and the remaining deletions proceed.

    Returns:
        Tuple of (deleted paths, error messages), both in plan order.
    """

    async def delete_one(candidate: DeletionCandidate) -> str | None:
        try:
            await asyncio.to_thread(_remove, candidate.path)
        except FileNotFoundError:
            logger.debug("Already gone: %s", candidate.path)
        except OSError as e:
            message = f"Failed to delete {candidate.path}: {e}"
            logger.warning(message)
            return message
        return None

    outcomes = await asyncio.gather(*(delete_one(c) for c in plan.candidates))
    deleted = [c.path for c, error in zip(plan.candidates, outcomes) if error is None]
    errors = [error for error in outcomes if error is not None]
    return deleted, errors


async def size_candidate(
    decision: ProtectionDecision,
    plan: DeletionPlan,
    detect_images: bool,
) -> DeletionCandidate | None:
    """Size an unprotected entry; None (with a diagnostic) if it vanished."""
    try:
        size = await calculate_size(decision.path)
    except OSError as e:
        message = f"Skipping {decision.name}: cannot compute size ({e})"
        logger.warning(message)
        plan.diagnostics.append(message)
        return None

    image_hash = None
    if detect_images and await asyncio.to_thread(is_container_build_asset, decision.path):
        image_hash = extract_image_hash(decision.path)
    return DeletionCandidate(decision.name, decision.path, size, image_hash)


def list_candidates(root: str) -> list[str]:
    """Absolute paths of the ``asset.``-prefixed direct children of ``root``."""
    return sorted(os.path.join(root, name) for name in os.listdir(root) if is_artifact_name(name))


class AssetGarbageCollector:
    """Garbage collector for a CDK output directory.

    Example usage:
        gc = AssetGarbageCollector(Path("cdk.out"), keep_hours=24)

        # Dry run to see what would be deleted
        result = gc.run(dry_run=True)

        # Actually delete
        result = gc.run(dry_run=False)
    """

    def __init__(
        self,
        outdir: Path | str,
        keep_hours: float = 0,
        image_store: ImageStore | None = None,
        now: float | None = None,
    ) -> None:
        """Initialize the garbage collector.

        Args:
            outdir: CDK output directory to clean.
            keep_hours: Retention window; entries modified within it are kept.
                Negative values are treated as 0.
            image_store: Container runtime for image cleanup. Defaults to the
                Docker CLI named by ``CDK_DOCKER``.
            now: Fixed reference time (epoch seconds) for age computation.
        """
        self.outdir = str(outdir)
        self.keep_hours = normalize_keep_hours(keep_hours)
        self.image_store = image_store
        self.now = now

    def get_image_store(self) -> ImageStore:
        if self.image_store is None:
            self.image_store = DockerImageStore()
        return self.image_store

    async def plan_async(self) -> DeletionPlan:
        """Compute the deletion plan.

        Raises:
            OutputDirectoryNotFoundError: If the output directory is missing.
        """
        root = ensure_output_dir(self.outdir)
        scan = await read_references(root)
        references = scan.references
        plan = DeletionPlan(root=root, diagnostics=list(scan.diagnostics))
        now = time.time() if self.now is None else self.now

        candidates = await asyncio.to_thread(list_candidates, root)
        decisions = await asyncio.gather(
            *(evaluate_protection(path, references, self.keep_hours, now) for path in candidates)
        )

        for decision in decisions:
            logger.debug("%s: %s", decision.name, decision.reason.value if decision.reason else "delete")
        plan.protected = [d for d in decisions if d.protected]

        sized = await asyncio.gather(
            *(size_candidate(d, plan, detect_images=True) for d in decisions if not d.protected)
        )
        plan.candidates = [c for c in sized if c is not None]
        return plan

    def plan(self) -> DeletionPlan:
        """Synchronous wrapper around :meth:`plan_async`."""
        return asyncio.run(self.plan_async())

    def run(self, dry_run: bool = True, clean_images: bool = True) -> GCResult:
        """Run garbage collection.

        Args:
            dry_run: If True, only report what would be deleted.
            clean_images: If True, also remove container images built from
                deleted container-image assets.

        Returns:
            GCResult with details of the operation.
        """
        started_utc = now_utc_iso()
        plan = asyncio.run(self.plan_async())
        return finish_run(
            GCMode.ASSETS,
            plan,
            started_utc=started_utc,
            dry_run=dry_run,
            keep_hours=self.keep_hours,
            image_store=self.get_image_store() if clean_images and plan.image_hashes else None,
        )


def finish_run(
    mode: GCMode,
    plan: DeletionPlan,
    *,
    started_utc: str,
    dry_run: bool,
    keep_hours: float,
    image_store: ImageStore | None = None,
) -> GCResult:
    """Execute ``plan`` (unless dry-run or empty) and assemble the result."""
    deleted: list[str] = []
    errors: list[str] = []
    images: ImageCleanupResult | None = None

    if plan.is_empty:
        status = GCStatus.NOTHING_TO_DO
    elif dry_run:
        status = GCStatus.DRY_RUN
    else:
        deleted, errors = asyncio.run(execute_plan(plan))
        status = GCStatus.COMPLETED
        logger.info("Deleted %d of %d item(s)", len(deleted), len(plan.candidates))

    hashes = plan.image_hashes
    if not dry_run:
        # Images of assets that failed to delete are still in use
        removed = set(deleted)
        hashes = sorted({c.image_hash for c in plan.candidates if c.image_hash and c.path in removed})
    if image_store is not None and hashes:
        # Image removal failures stay in images.errors and do not fail the run
        images = cleanup_images(hashes, image_store, dry_run=dry_run)

    return GCResult(
        mode=mode,
        root=plan.root,
        status=status,
        dry_run=dry_run,
        keep_hours=keep_hours,
        plan=plan,
        started_utc=started_utc,
        finished_utc=now_utc_iso(),
        deleted=deleted,
        errors=errors,
        images=images,
    )
