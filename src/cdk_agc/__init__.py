"""cdk-agc: CDK Assembly Garbage Collector.

Reclaims disk space in AWS CDK output directories by deleting asset
artifacts that no manifest or asset descriptor references any more, together
with the container images built from them.

Public API
----------
- :class:`AssetGarbageCollector` - plan and run cleanup of a ``cdk.out`` directory
- :class:`TempDirectoryCollector` - clean CDK scratch directories in ``$TMPDIR``
- :func:`read_references` - build the reference set of an output directory
- :func:`evaluate_protection` - decide whether one candidate must be kept
- :func:`cleanup_images` - remove container images for deleted assets

Example
-------
>>> from cdk_agc import AssetGarbageCollector
>>> result = AssetGarbageCollector("cdk.out", keep_hours=24).run(dry_run=True)
>>> [c.name for c in result.plan.candidates]
['asset.unused']
"""

from __future__ import annotations

__version__ = "0.1.0"

from cdk_agc.errors import (
    AgcError,
    ConfigError,
    DescriptorError,
    ImageStoreError,
    ImageStoreUnavailableError,
    OutputDirectoryNotFoundError,
)
from cdk_agc.gc import (
    AssetGarbageCollector,
    DeletionCandidate,
    DeletionPlan,
    GCMode,
    GCResult,
    GCStatus,
)
from cdk_agc.images import (
    DockerImageStore,
    ImageCleanupResult,
    ImageRecord,
    ImageStore,
    cleanup_images,
    extract_image_hash,
)
from cdk_agc.manifest import AssetDescriptor, BuildManifest, read_references
from cdk_agc.policy import ProtectionDecision, ProtectionReason, evaluate_protection
from cdk_agc.references import ReferenceSet
from cdk_agc.temp_cleanup import TempDirectoryCollector

__all__ = [
    "AgcError",
    "AssetDescriptor",
    "AssetGarbageCollector",
    "BuildManifest",
    "ConfigError",
    "DeletionCandidate",
    "DeletionPlan",
    "DescriptorError",
    "DockerImageStore",
    "GCMode",
    "GCResult",
    "GCStatus",
    "ImageCleanupResult",
    "ImageRecord",
    "ImageStore",
    "ImageStoreError",
    "ImageStoreUnavailableError",
    "OutputDirectoryNotFoundError",
    "ProtectionDecision",
    "ProtectionReason",
    "ReferenceSet",
    "TempDirectoryCollector",
    "__version__",
    "cleanup_images",
    "evaluate_protection",
    "extract_image_hash",
    "read_references",
]
