"""Tests for the reference set and JSON leaf traversal."""

from __future__ import annotations

import os
from pathlib import Path

from cdk_agc.manifest import BuildManifest
from cdk_agc.references import ReferenceSet, add_manifest_references, iter_string_leaves


class TestIterStringLeaves:
    def test_nested_values(self) -> None:
        value = {
            "Stack": {
                "type": "aws:cloudformation:stack",
                "properties": {"templateFile": "Stack.template.json", "tags": ["a", "b"]},
                "count": 3,
                "enabled": True,
                "missing": None,
            }
        }
        leaves = sorted(iter_string_leaves(value))
        assert leaves == ["Stack.template.json", "a", "aws:cloudformation:stack", "b"]

    def test_scalar_string(self) -> None:
        assert list(iter_string_leaves("asset.abc")) == ["asset.abc"]

    def test_non_string_scalars_yield_nothing(self) -> None:
        assert list(iter_string_leaves(42)) == []
        assert list(iter_string_leaves(None)) == []
        assert list(iter_string_leaves([])) == []


class TestReferenceSet:
    def test_add_protects_ancestors_below_root(self, tmp_path: Path) -> None:
        refs = ReferenceSet(str(tmp_path))
        added = refs.add("assembly-Stage/asset.abc/index.js", str(tmp_path))

        assert added == os.path.join(str(tmp_path), "assembly-Stage", "asset.abc", "index.js")
        assert os.path.join(str(tmp_path), "assembly-Stage", "asset.abc") in refs
        assert os.path.join(str(tmp_path), "assembly-Stage") in refs
        assert str(tmp_path) not in refs
        assert len(refs) == 3

    def test_upward_relative_reference(self, tmp_path: Path) -> None:
        root = str(tmp_path)
        refs = ReferenceSet(root)
        nested = os.path.join(root, "assembly-Stage")
        refs.add("../asset.shared", nested, consumer="StageStack")

        assert os.path.join(root, "asset.shared") in refs
        assert refs.consumers_of(os.path.join(root, "asset.shared")) == ["StageStack"]

    def test_reference_outside_root_adds_no_ancestors(self, tmp_path: Path) -> None:
        root = str(tmp_path / "cdk.out")
        refs = ReferenceSet(root)
        refs.add("../../elsewhere/file.txt", root)

        assert len(refs) == 1
        assert all(not p.startswith(root + os.sep) for p in refs)

    def test_absolute_reference_terminates(self, tmp_path: Path) -> None:
        refs = ReferenceSet(str(tmp_path))
        refs.add("/", str(tmp_path))
        refs.add("/etc/hosts", str(tmp_path))
        assert "/etc/hosts" in refs

    def test_shared_reference_counted_once(self, tmp_path: Path) -> None:
        root = str(tmp_path)
        refs = ReferenceSet(root)
        refs.add("asset.shared", root, consumer="StackA")
        refs.add("asset.shared", root, consumer="StackB")

        assert len(refs) == 1
        assert refs.consumers_of(os.path.join(root, "asset.shared")) == ["StackA", "StackB"]

    def test_empty_reference_is_root(self, tmp_path: Path) -> None:
        refs = ReferenceSet(str(tmp_path))
        refs.add("", str(tmp_path))
        assert len(refs) == 0

    def test_iteration_is_sorted(self, tmp_path: Path) -> None:
        root = str(tmp_path)
        refs = ReferenceSet(root)
        refs.add("b", root)
        refs.add("a", root)
        assert list(refs) == [os.path.join(root, "a"), os.path.join(root, "b")]


class TestManifestReferences:
    def test_manifest_leaves_resolved_against_root(self, tmp_path: Path) -> None:
        manifest = BuildManifest.model_validate(
            {
                "version": "36.0.0",
                "artifacts": {
                    "Stage": {
                        "type": "cdk:cloud-assembly",
                        "properties": {"directoryName": "assembly-Stage"},
                    },
                    "Stack": {"properties": {"templateFile": "asset.keep/template.json"}},
                },
            }
        )
        refs = ReferenceSet(str(tmp_path))
        count = add_manifest_references(manifest, refs)

        assert count == 3
        assert str(tmp_path / "assembly-Stage") in refs
        assert str(tmp_path / "asset.keep") in refs
        assert str(tmp_path / "asset.keep" / "template.json") in refs

    def test_manifest_without_artifacts(self, tmp_path: Path) -> None:
        refs = ReferenceSet(str(tmp_path))
        assert add_manifest_references(BuildManifest(version="1.0.0"), refs) == 0
        assert len(refs) == 0
