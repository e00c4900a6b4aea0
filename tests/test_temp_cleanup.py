"""Tests for cleanup of CDK scratch directories in the temp directory."""

from __future__ import annotations

import os
import re
from pathlib import Path

import pytest

from cdk_agc.gc import GCMode, GCStatus
from cdk_agc.policy import ProtectionReason
from cdk_agc.temp_cleanup import TempDirectoryCollector, find_temp_directories, is_temp_build_dir_name

NOW = 1_700_000_000.0
HOUR = 3600.0


def _make_dir(root: Path, name: str, content: str = "data", mtime: float | None = None) -> Path:
    path = root / name
    path.mkdir()
    (path / "manifest.json").write_text(content, encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("cdk.outABC123", True),
        ("cdk.out", True),
        ("cdk-xyz", True),
        (".cdkabc", True),
        ("cdkfoo", False),
        ("pytest-of-user", False),
        ("other-dir", False),
    ],
)
def test_temp_dir_names(name: str, expected: bool) -> None:
    assert is_temp_build_dir_name(name) is expected


class TestFindTempDirectories:
    def test_only_matching_directories(self, tmp_path: Path) -> None:
        _make_dir(tmp_path, "cdk.out123")
        _make_dir(tmp_path, "cdk-abc")
        _make_dir(tmp_path, ".cdkxyz")
        _make_dir(tmp_path, "unrelated")
        (tmp_path / "cdk.outfile").write_text("a file, not a directory", encoding="utf-8")

        found = find_temp_directories(str(tmp_path))

        assert [os.path.basename(p) for p in found] == [".cdkxyz", "cdk-abc", "cdk.out123"]

    def test_unreadable_root_yields_empty(self, tmp_path: Path) -> None:
        diagnostics: list[str] = []
        assert find_temp_directories(str(tmp_path / "missing"), diagnostics) == []
        assert len(diagnostics) == 1


class TestTempDirectoryCollector:
    def test_deletes_all_scratch_dirs(self, tmp_path: Path) -> None:
        _make_dir(tmp_path, "cdk.out1")
        _make_dir(tmp_path, "cdk-2")
        _make_dir(tmp_path, "keep-me")

        result = TempDirectoryCollector(tmp_path).run(dry_run=False)

        assert result.mode is GCMode.TEMP
        assert result.status is GCStatus.COMPLETED
        assert not (tmp_path / "cdk.out1").exists()
        assert not (tmp_path / "cdk-2").exists()
        assert (tmp_path / "keep-me").exists()

    def test_result_timestamps_use_gc_format(self, tmp_path: Path) -> None:
        result = TempDirectoryCollector(tmp_path).run(dry_run=True)

        for stamp in (result.started_utc, result.finished_utc):
            assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z", stamp)
        assert result.started_utc <= result.finished_utc

    def test_dry_run_keeps_everything(self, tmp_path: Path) -> None:
        _make_dir(tmp_path, "cdk.out1", content="12345")

        result = TempDirectoryCollector(tmp_path).run(dry_run=True)

        assert result.status is GCStatus.DRY_RUN
        assert (tmp_path / "cdk.out1").exists()
        assert result.plan.total_size == 5

    def test_retention_window(self, tmp_path: Path) -> None:
        _make_dir(tmp_path, "cdk.outnew", mtime=NOW - HOUR)
        _make_dir(tmp_path, "cdk.outedge", mtime=NOW - 2 * HOUR)
        _make_dir(tmp_path, "cdk.outold", mtime=NOW - 5 * HOUR)

        plan = TempDirectoryCollector(tmp_path, keep_hours=2, now=NOW).plan()

        assert [c.name for c in plan.candidates] == ["cdk.outold"]
        assert sorted(d.name for d in plan.protected) == ["cdk.outedge", "cdk.outnew"]
        assert all(d.reason is ProtectionReason.RECENT for d in plan.protected)

    def test_nothing_to_do(self, tmp_path: Path) -> None:
        result = TempDirectoryCollector(tmp_path).run(dry_run=False)
        assert result.status is GCStatus.NOTHING_TO_DO

    def test_no_image_hashes_in_temp_mode(self, tmp_path: Path) -> None:
        path = _make_dir(tmp_path, "cdk.outimg")
        (path / "Dockerfile").write_text("FROM scratch", encoding="utf-8")

        result = TempDirectoryCollector(tmp_path).run(dry_run=True)

        assert result.plan.image_hashes == []
        assert result.images is None

    def test_defaults_to_system_temp(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr("tempfile.gettempdir", lambda: str(tmp_path))
        assert TempDirectoryCollector().temp_root == str(tmp_path)
