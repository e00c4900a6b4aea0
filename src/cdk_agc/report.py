"""Human-readable report for a collection run."""

from __future__ import annotations

import os

from cdk_agc.gc import GCMode, GCResult, GCStatus
from cdk_agc.images import ImageCleanupResult
from cdk_agc.policy import ProtectionReason
from cdk_agc.sizing import format_bytes


def _format_hours(hours: float) -> str:
    return f"{hours:g}"


def render_header(mode: GCMode, root: str, keep_hours: float) -> list[str]:
    """Lines printed before scanning starts."""
    if mode is GCMode.TEMP:
        lines = [f"Scanning {root}"]
        if keep_hours > 0:
            lines.append(f"Keeping directories modified within {_format_hours(keep_hours)} hours")
        lines.append("")
        return lines
    return [
        f"Scanning {root}...",
        "Protection policy: Referenced assets + Time-based "
        f"(modified within {_format_hours(keep_hours)} hours)",
        "",
    ]


def render_images(images: ImageCleanupResult) -> list[str]:
    if not images.matched:
        return []
    lines = [""]
    for image in images.matched:
        lines.append(
            f"Found Docker image with {len(image.tags)} tag(s) "
            f"[asset.{image.image_hash[:8]}...] ({format_bytes(image.size_bytes)}):"
        )
        lines.extend(f"  - {tag}" for tag in image.tags)
        lines.append("")
    if images.total_bytes > 0:
        lines.append(f"Total Docker image size to reclaim: {format_bytes(images.total_bytes)}")
        lines.append("")
    if images.errors:
        lines.append(f"Warning: {len(images.errors)} Docker image tag(s) could not be removed.")
        lines.append("")
    return lines


def _render_protected(result: GCResult) -> list[str]:
    lines = [f"✓ No unused assets found. {len(result.plan.protected)} item(s) are protected."]

    referenced = [
        d for d in result.plan.protected if d.reason is ProtectionReason.REFERENCED and d.consumers
    ]
    if referenced:
        lines.append("")
        lines.append("Assets referenced in stacks:")
        for decision in referenced:
            lines.append(f"  - {decision.name} (used in {', '.join(decision.consumers)})")

    recent = [d for d in result.plan.protected if d.reason is ProtectionReason.RECENT]
    if recent:
        lines.append("")
        lines.append(f"Assets protected by --keep-hours {_format_hours(result.keep_hours)}:")
        lines.extend(f"  - {decision.name}" for decision in recent)
    return lines


def _render_completion(result: GCResult) -> list[str]:
    if result.status is GCStatus.DRY_RUN:
        return ["Dry-run mode: No files were deleted."]
    if result.errors:
        return [f"Cleanup finished with {len(result.errors)} error(s)."]
    return ["✓ Cleanup completed successfully."]


def render_result(result: GCResult) -> list[str]:
    """Lines describing the plan and its outcome."""
    plan = result.plan
    if result.mode is GCMode.TEMP:
        if result.status is GCStatus.NOTHING_TO_DO:
            return ["✓ No temporary CDK directories to clean."]
        lines = [f"Found {len(plan.candidates)} temporary CDK directory(ies):", ""]
    else:
        if result.status is GCStatus.NOTHING_TO_DO:
            return _render_protected(result)
        lines = [f"Found {len(plan.candidates)} unused item(s):", ""]

    for candidate in plan.candidates:
        relative = os.path.relpath(candidate.path, plan.root)
        lines.append(f"  - {relative} ({format_bytes(candidate.size)})")

    lines.append("")
    lines.append(f"Total size to reclaim: {format_bytes(plan.total_size)}")
    lines.append("")

    if result.images is not None:
        lines.extend(render_images(result.images))

    lines.extend(_render_completion(result))
    return lines
