"""Build manifest and asset descriptor reading.

A CDK output directory carries a root ``manifest.json`` and one
``<Stack>.assets.json`` descriptor per stack. Nested stages write their own
``assembly-<Stage>/`` sub-directories with further descriptors whose paths are
relative to the descriptor itself (often ``../asset.<hash>``).

Usage:
    >>> scan = asyncio.run(read_references("cdk.out"))
    >>> "cdk.out/asset.abc123" in scan.references
    True
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cdk_agc.errors import DescriptorError, OutputDirectoryNotFoundError
from cdk_agc.references import ReferenceSet, add_manifest_references, normalize_path

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"
DESCRIPTOR_SUFFIX = ".assets.json"


class _DescriptorBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class FileAssetSource(_DescriptorBase):
    path: str | None = None


class FileAsset(_DescriptorBase):
    source: FileAssetSource | None = None


class DockerImageAssetSource(_DescriptorBase):
    directory: str | None = None


class DockerImageAsset(_DescriptorBase):
    source: DockerImageAssetSource | None = None


_AssetEntry = TypeVar("_AssetEntry", FileAsset, DockerImageAsset)


class AssetDescriptor(_DescriptorBase):
    """Contents of one ``*.assets.json`` file.

    Entries are kept as raw JSON and validated one at a time, so a single
    oddly shaped entry is skipped without losing its siblings.
    """

    version: Any = None
    files: dict[str, Any] | None = None
    docker_images: dict[str, Any] | None = Field(default=None, alias="dockerImages")

    def file_paths(self, diagnostics: list[str] | None = None) -> list[str]:
        """Source paths of file assets, in descriptor order."""
        entries = _valid_entries(self.files, FileAsset, "files", diagnostics)
        return [entry.source.path for entry in entries if entry.source is not None and entry.source.path]

    def image_directories(self, diagnostics: list[str] | None = None) -> list[str]:
        """Source directories of container image assets, in descriptor order."""
        entries = _valid_entries(self.docker_images, DockerImageAsset, "dockerImages", diagnostics)
        return [
            entry.source.directory
            for entry in entries
            if entry.source is not None and entry.source.directory
        ]


def _valid_entries(
    entries: dict[str, Any] | None,
    model: type[_AssetEntry],
    section: str,
    diagnostics: list[str] | None,
) -> list[_AssetEntry]:
    valid: list[_AssetEntry] = []
    for asset_id, raw in (entries or {}).items():
        try:
            valid.append(model.model_validate(raw))
        except ValidationError as e:
            if diagnostics is not None:
                diagnostics.append(f"skipped malformed entry {section}.{asset_id}: {e.errors()[0]['msg']}")
    return valid


class BuildManifest(_DescriptorBase):
    """Root ``manifest.json`` of a cloud assembly.

    ``artifacts`` values are kept as raw JSON; their string leaves are paths
    relative to the output root.
    """

    version: Any = None
    artifacts: dict[str, Any] | None = None


@dataclass
class DescriptorScan:
    """Result of scanning an output directory for references."""

    references: ReferenceSet
    manifest_found: bool = False
    descriptor_files: list[str] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)


def consumer_name(descriptor_path: str) -> str:
    """Stack name a descriptor belongs to (file name without the suffix)."""
    name = os.path.basename(descriptor_path)
    if name.endswith(DESCRIPTOR_SUFFIX):
        return name[: -len(DESCRIPTOR_SUFFIX)]
    return name


def ensure_output_dir(root: str | Path) -> str:
    """Return the normalised root, or raise if it is not a directory."""
    path = normalize_path(str(root))
    if not os.path.isdir(path):
        raise OutputDirectoryNotFoundError(str(root))
    return path


def _parse(path: str, model: type[BaseModel]) -> Any:
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise DescriptorError(path, str(e)) from e
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        raise DescriptorError(path, f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}") from e


def load_descriptor(path: str | Path) -> AssetDescriptor:
    """Parse one asset descriptor file.

    Raises:
        DescriptorError: If the file cannot be read, is not JSON, or does not
            have the descriptor shape.
    """
    return _parse(str(path), AssetDescriptor)


def load_manifest(root: str | Path) -> BuildManifest | None:
    """Parse ``<root>/manifest.json``; ``None`` when the file does not exist.

    Raises:
        DescriptorError: If the manifest exists but cannot be parsed.
    """
    path = os.path.join(str(root), MANIFEST_FILENAME)
    if not os.path.isfile(path):
        return None
    return _parse(path, BuildManifest)


def _scan_dir(directory: str) -> list[tuple[str, bool, bool]]:
    with os.scandir(directory) as it:
        return [
            (entry.path, entry.is_dir(follow_symlinks=False), entry.is_file(follow_symlinks=False))
            for entry in it
        ]


async def find_descriptor_files(root: str, diagnostics: list[str] | None = None) -> list[str]:
    """Find every ``*.assets.json`` file below ``root``, sorted.

    Sub-directories are listed concurrently. An unreadable sub-directory is
    logged and skipped.
    """
    found: list[str] = []

    async def walk(directory: str) -> None:
        try:
            entries = await asyncio.to_thread(_scan_dir, directory)
        except OSError as e:
            message = f"Cannot scan {directory}: {e}"
            logger.warning(message)
            if diagnostics is not None:
                diagnostics.append(message)
            return

        subdirs: list[str] = []
        for path, is_dir, is_file in entries:
            if is_dir:
                subdirs.append(path)
            elif is_file and path.endswith(DESCRIPTOR_SUFFIX):
                found.append(path)
        await asyncio.gather(*(walk(subdir) for subdir in subdirs))

    await walk(root)
    return sorted(found)


async def _load_descriptor_or_warn(path: str, scan: DescriptorScan) -> AssetDescriptor | None:
    try:
        return await asyncio.to_thread(load_descriptor, path)
    except DescriptorError as e:
        logger.warning("Skipping malformed asset descriptor: %s", e)
        scan.diagnostics.append(str(e))
        return None


async def read_references(root: str | Path) -> DescriptorScan:
    """Build the reference set for an output directory.

    Reads the optional root manifest, then every asset descriptor in the tree.
    File and image asset paths are resolved against the directory holding the
    descriptor that names them.

    Raises:
        OutputDirectoryNotFoundError: If ``root`` is not an existing directory.
    """
    root_path = ensure_output_dir(root)
    scan = DescriptorScan(references=ReferenceSet(root_path))

    try:
        manifest = await asyncio.to_thread(load_manifest, root_path)
    except DescriptorError as e:
        logger.warning("Ignoring unreadable build manifest: %s", e)
        scan.diagnostics.append(str(e))
        manifest = None

    if manifest is not None:
        scan.manifest_found = True
        leaves = add_manifest_references(manifest, scan.references)
        logger.debug("Manifest contributed %d path reference(s)", leaves)

    scan.descriptor_files = await find_descriptor_files(root_path, scan.diagnostics)
    descriptors = await asyncio.gather(
        *(_load_descriptor_or_warn(path, scan) for path in scan.descriptor_files)
    )

    for path, descriptor in zip(scan.descriptor_files, descriptors):
        if descriptor is None:
            continue
        base_dir = os.path.dirname(path)
        stack = consumer_name(path)
        skipped: list[str] = []
        for reference in descriptor.file_paths(skipped) + descriptor.image_directories(skipped):
            scan.references.add(reference, base_dir, consumer=stack)
        for message in skipped:
            logger.warning("%s: %s", path, message)
            scan.diagnostics.append(f"{path}: {message}")

    logger.info(
        "Collected %d live path(s) from %d descriptor(s)",
        len(scan.references),
        len(scan.descriptor_files),
    )
    return scan
