"""Container images built from CDK container-image assets.

A container-image asset is an ``asset.<hash>`` directory holding a
``Dockerfile``. When such a directory is deleted, the images the CDK CLI built
from it are stale too. They are found by tag:

- ``cdkasset-<hash>:latest`` (local build tag),
- ``<account>.dkr.ecr.<region>.amazonaws.com/cdk-...-container-assets-...:<hash>``
  (tag used for publishing).

The runtime is reached through the ``ImageStore`` protocol so planning and
tests never need a real daemon.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from cdk_agc.errors import ImageStoreError, ImageStoreUnavailableError
from cdk_agc.policy import ARTIFACT_PREFIX

logger = logging.getLogger(__name__)

CONTAINER_RECIPE_FILENAME = "Dockerfile"
DOCKER_COMMAND_ENV = "CDK_DOCKER"
DEFAULT_DOCKER_COMMAND = "docker"
LOCAL_TAG_TEMPLATE = "cdkasset-{hash}:latest"
PUBLISHED_REPOSITORY_MARKER = "container-assets"

_IMAGE_LIST_FORMAT = "{{.Repository}}:{{.Tag}}\t{{.ID}}\t{{.Size}}"
_ASSET_HASH_RE = re.compile(rf"^{re.escape(ARTIFACT_PREFIX)}(.+)$")
_DOCKER_SIZE_RE = re.compile(r"^([\d.]+)\s*([KMGT]?B)$", re.IGNORECASE)
_SIZE_MULTIPLIERS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
    "TB": 1024**4,
}


def is_container_build_asset(path: str) -> bool:
    """True if ``path`` is a directory containing a Dockerfile.

    Best effort: any filesystem error (e.g. concurrent deletion) means no.
    """
    try:
        return os.path.isdir(path) and os.path.isfile(os.path.join(path, CONTAINER_RECIPE_FILENAME))
    except OSError:
        return False


def extract_image_hash(path: str) -> str | None:
    """Hash portion of an ``asset.<hash>`` path, or None if it does not match."""
    match = _ASSET_HASH_RE.match(os.path.basename(os.path.normpath(path)))
    return match.group(1) if match else None


def parse_docker_size(size: str) -> int:
    """Parse a runtime size column such as ``1.2GB`` or ``27.4kB`` to bytes."""
    match = _DOCKER_SIZE_RE.match(size.strip())
    if not match:
        return 0
    value = float(match.group(1))
    unit = match.group(2).upper()
    return round(value * _SIZE_MULTIPLIERS.get(unit, 1))


def tag_matches_hash(tag: str, image_hash: str) -> bool:
    if tag == LOCAL_TAG_TEMPLATE.format(hash=image_hash):
        return True
    return tag.endswith(f":{image_hash}") and PUBLISHED_REPOSITORY_MARKER in tag


@dataclass(frozen=True)
class ImageRecord:
    """One line of the runtime's image listing."""

    tag: str
    image_id: str
    size: str

    @property
    def size_bytes(self) -> int:
        return parse_docker_size(self.size)


class ImageStore(Protocol):
    """Container runtime capability used by image cleanup."""

    def list_images(self) -> list[ImageRecord]:
        """List all local images. Raises ImageStoreUnavailableError."""
        ...

    def remove(self, tag: str) -> None:
        """Remove one tag. Raises ImageStoreError."""
        ...


def get_docker_command(env: dict[str, str] | None = None) -> str:
    """Runtime executable, honouring ``CDK_DOCKER``."""
    source = os.environ if env is None else env
    return source.get(DOCKER_COMMAND_ENV) or DEFAULT_DOCKER_COMMAND


def parse_image_listing(output: str) -> list[ImageRecord]:
    records: list[ImageRecord] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        tag = parts[0]
        image_id = parts[1] if len(parts) > 1 else ""
        size = parts[2] if len(parts) > 2 else ""
        records.append(ImageRecord(tag=tag, image_id=image_id, size=size))
    return records


@dataclass(frozen=True)
class DockerImageStore:
    """ImageStore backed by a Docker-compatible CLI.

    Attributes:
        command: Executable name (``docker``, ``finch``, ``podman`` ...).
        timeout: Per-invocation timeout in seconds.
    """

    command: str = field(default_factory=get_docker_command)
    timeout: float | None = 120.0

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [self.command, *args],
            capture_output=True,
            text=True,
            check=True,
            timeout=self.timeout,
        )

    def list_images(self) -> list[ImageRecord]:
        try:
            result = self._run(["image", "ls", "--format", _IMAGE_LIST_FORMAT])
        except (OSError, subprocess.SubprocessError) as e:
            raise ImageStoreUnavailableError(
                f"Cannot check images ({self.command} daemon may not be running): {e}"
            ) from e
        return parse_image_listing(result.stdout)

    def remove(self, tag: str) -> None:
        try:
            self._run(["image", "rm", tag])
        except subprocess.CalledProcessError as e:
            raise ImageStoreError(f"Failed to delete image {tag}: {e.stderr.strip() or e}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise ImageStoreError(f"Failed to delete image {tag}: {e}") from e


@dataclass
class MatchedImage:
    """All tags of one image built from a deleted asset."""

    image_hash: str
    tags: list[str]
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {"hash": self.image_hash, "tags": self.tags, "size_bytes": self.size_bytes}


@dataclass
class ImageCleanupResult:
    """Outcome of removing images for a set of asset hashes."""

    requested_hashes: list[str] = field(default_factory=list)
    matched: list[MatchedImage] = field(default_factory=list)
    removed_tags: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped_reason: str | None = None

    @property
    def total_bytes(self) -> int:
        return sum(image.size_bytes for image in self.matched)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested_hashes": self.requested_hashes,
            "matched": [image.to_dict() for image in self.matched],
            "removed_tags": self.removed_tags,
            "errors": self.errors,
            "skipped_reason": self.skipped_reason,
            "total_bytes": self.total_bytes,
        }


def match_images(image_hash: str, records: Iterable[ImageRecord]) -> MatchedImage | None:
    """Collect every tag for ``image_hash``; size is taken from the first match."""
    matching = [record for record in records if tag_matches_hash(record.tag, image_hash)]
    if not matching:
        return None
    return MatchedImage(
        image_hash=image_hash,
        tags=[record.tag for record in matching],
        size_bytes=matching[0].size_bytes,
    )


def cleanup_images(hashes: Sequence[str], store: ImageStore, dry_run: bool) -> ImageCleanupResult:
    """Remove local images built from the given asset hashes.

    The image list is fetched once. When the runtime is unavailable the whole
    step is skipped with a warning; it never raises.

    Args:
        hashes: Asset hashes of deleted container-image assets.
        store: Runtime capability.
        dry_run: If True, report matches without removing anything.
    """
    result = ImageCleanupResult(requested_hashes=sorted(set(hashes)))
    if not result.requested_hashes:
        return result

    try:
        records = store.list_images()
    except ImageStoreError as e:
        logger.warning("%s. Skipping container image cleanup.", e)
        result.skipped_reason = str(e)
        return result

    for image_hash in result.requested_hashes:
        matched = match_images(image_hash, records)
        if matched is None:
            logger.debug("No local image for asset.%s", image_hash)
            continue
        result.matched.append(matched)
        if dry_run:
            continue
        for tag in matched.tags:
            try:
                store.remove(tag)
            except ImageStoreError as e:
                logger.warning("%s", e)
                result.errors.append(str(e))
            else:
                result.removed_tags.append(tag)

    return result
