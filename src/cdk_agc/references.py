"""Reference set of live paths inside a CDK output directory.

A path is live when the build manifest or any asset descriptor points at it.
Adding a path also marks every ancestor directory below the output root as
live, so a file referenced deep inside ``assembly-Stage/`` keeps the whole
chain of parent directories.
"""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from cdk_agc.manifest import BuildManifest

JsonScalar = Union[str, int, float, bool, None]
JsonValue = Union[JsonScalar, list["JsonValue"], dict[str, "JsonValue"]]


def iter_string_leaves(value: JsonValue) -> Iterator[str]:
    """Yield every string leaf of a JSON value, depth first.

    Numbers, booleans and nulls are not path references and are skipped.
    """
    if isinstance(value, str):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from iter_string_leaves(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_string_leaves(item)


def normalize_path(path: str) -> str:
    """Absolute, normalised form used for every set membership check."""
    return os.path.normpath(os.path.abspath(path))


@dataclass
class ReferenceSet:
    """Set of absolute paths considered in use below ``root``.

    Attributes:
        root: Normalised absolute output root. Never itself a member.
        paths: Referenced paths plus their ancestors inside ``root``.
        consumers: Referenced artifact path -> names of the stacks whose
            asset descriptors reference it.
    """

    root: str
    paths: set[str] = field(default_factory=set)
    consumers: dict[str, set[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.root = normalize_path(self.root)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and normalize_path(path) in self.paths

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.paths))

    def add(self, reference: str, base_dir: str, consumer: str | None = None) -> str:
        """Add ``reference`` resolved against ``base_dir``.

        Args:
            reference: Path as written in a descriptor; may be relative and
                may climb upwards with ``..``.
            base_dir: Directory the reference is relative to.
            consumer: Optional stack name recorded against the path.

        Returns:
            The normalised absolute path that was added.
        """
        full_path = normalize_path(os.path.join(base_dir, reference))
        if full_path != self.root:
            self.paths.add(full_path)
        self.paths.update(self._ancestors(full_path))
        if consumer is not None:
            self.consumers.setdefault(full_path, set()).add(consumer)
        return full_path

    def consumers_of(self, path: str) -> list[str]:
        """Sorted stack names referencing ``path`` (empty if none recorded)."""
        return sorted(self.consumers.get(normalize_path(path), ()))

    def _ancestors(self, path: str) -> Iterator[str]:
        prefix = self.root.rstrip(os.sep) + os.sep
        parent = os.path.dirname(path)
        while parent != self.root and parent.startswith(prefix):
            yield parent
            next_parent = os.path.dirname(parent)
            if next_parent == parent:
                break
            parent = next_parent


def add_manifest_references(manifest: BuildManifest, references: ReferenceSet) -> int:
    """Add every string leaf of ``manifest.artifacts`` relative to the root.

    Returns:
        Number of string leaves visited.
    """
    count = 0
    for leaf in iter_string_leaves(manifest.artifacts):
        references.add(leaf, references.root)
        count += 1
    return count
