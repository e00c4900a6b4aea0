# SPDX-License-Identifier: MIT
"""Pytest configuration and shared fixtures for test suite.

This module provides:
- Deterministic test environment setup
- A builder for CDK output directory trees
- A fake container image store
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import pytest

from cdk_agc.errors import ImageStoreError, ImageStoreUnavailableError
from cdk_agc.images import ImageRecord


# ---------------------------------------------------------------------------
# Environment Setup
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest environment for determinism.

    Sets environment variables to ensure reproducible test execution.
    """
    deterministic_env = {
        "LC_ALL": "C",
        "LANG": "C",
        "TZ": "UTC",
        "PYTHONHASHSEED": "0",
    }
    for key, value in deterministic_env.items():
        os.environ.setdefault(key, value)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep user settings out of the tests."""
    monkeypatch.delenv("CDK_DOCKER", raising=False)
    monkeypatch.delenv("CDK_AGC_CONFIG", raising=False)


# ---------------------------------------------------------------------------
# Fixtures: CDK output trees
# ---------------------------------------------------------------------------


class CdkOutBuilder:
    """Creates files inside a fake ``cdk.out`` directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def file(self, relative_path: str, content: str = "test") -> Path:
        path = self.root / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def json(self, relative_path: str, data: Any) -> Path:
        return self.file(relative_path, json.dumps(data, indent=2))

    def manifest(self, artifacts: dict[str, Any] | None = None, relative_dir: str = "") -> Path:
        path = f"{relative_dir}/manifest.json" if relative_dir else "manifest.json"
        return self.json(path, {"version": "36.0.0", "artifacts": artifacts or {}})

    def assets(
        self,
        stack: str,
        files: list[str] | None = None,
        images: list[str] | None = None,
        relative_dir: str = "",
    ) -> Path:
        """Write ``<stack>.assets.json`` referencing the given source paths."""
        data: dict[str, Any] = {"version": "36.0.0", "files": {}, "dockerImages": {}}
        for index, source in enumerate(files or []):
            data["files"][f"file{index}"] = {
                "source": {"path": source, "packaging": "zip"},
                "destinations": {},
            }
        for index, source in enumerate(images or []):
            data["dockerImages"][f"image{index}"] = {
                "source": {"directory": source},
                "destinations": {},
            }
        name = f"{stack}.assets.json"
        return self.json(f"{relative_dir}/{name}" if relative_dir else name, data)

    def exists(self, relative_path: str) -> bool:
        return (self.root / relative_path).exists()

    def set_mtime(self, relative_path: str, mtime: float) -> None:
        os.utime(self.root / relative_path, (mtime, mtime))

    def path(self, relative_path: str) -> str:
        return os.path.normpath(os.path.abspath(self.root / relative_path))


@pytest.fixture
def cdk_out(tmp_path: Path) -> CdkOutBuilder:
    """An empty ``cdk.out`` directory with a file builder."""
    root = tmp_path / "cdk.out"
    root.mkdir()
    return CdkOutBuilder(root)


# ---------------------------------------------------------------------------
# Fixtures: Fake image store
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_image_store():
    """Fixture providing a configurable fake container image store.

    Usage:
        def test_something(fake_image_store):
            store = fake_image_store(records=[ImageRecord("cdkasset-abc:latest", "id1", "10MB")])
            result = cleanup_images(["abc"], store, dry_run=False)
    """

    class FakeImageStore:
        def __init__(
            self,
            *,
            records: list[ImageRecord] | None = None,
            unavailable: bool = False,
            fail_tags: tuple[str, ...] = (),
        ) -> None:
            self.records = list(records or [])
            self.unavailable = unavailable
            self.fail_tags = fail_tags
            self.list_calls = 0
            self.removed: list[str] = []

        def list_images(self) -> list[ImageRecord]:
            self.list_calls += 1
            if self.unavailable:
                raise ImageStoreUnavailableError("Cannot check images (docker daemon may not be running)")
            return list(self.records)

        def remove(self, tag: str) -> None:
            if tag in self.fail_tags:
                raise ImageStoreError(f"Failed to delete image {tag}: conflict")
            self.removed.append(tag)

    def factory(**kwargs: Any) -> FakeImageStore:
        return FakeImageStore(**kwargs)

    return factory
