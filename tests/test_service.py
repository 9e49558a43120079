from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest
from conftest import StaticCommitReader, build_tar, build_zip
from lucene_fixtures import FixtureSegment, write_index

from segscope.analyze.service import WORKSPACE_PREFIX, AnalyzerService, analysis_workspace
from segscope.config import Settings
from segscope.errors import (
    AmbiguousIndex,
    AnalysisError,
    CorruptIndex,
    InvalidInput,
    NoIndexFound,
    PathTraversal,
    UnsupportedArchiveFormat,
    VersionTooNew,
)
from segscope.utils.audit import AuditTrail


def _audit_events(settings: Settings) -> list[dict[str, Any]]:
    (log_file,) = settings.log_dir.glob("analyze-*.jsonl")
    return [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]


def _workspaces(settings: Settings) -> list[Path]:
    assert settings.work_dir is not None
    return list(settings.work_dir.glob(f"{WORKSPACE_PREFIX}*"))


def test_analyze_two_segment_index(
    analyzer_service: AnalyzerService,
    static_reader: StaticCommitReader,
    temp_settings: Settings,
    index_zip: Path,
) -> None:
    report = analyzer_service.analyze_path(index_zip)

    assert report.summary.segments == 2
    assert report.summary.docs == 150
    assert report.summary.live_docs == 145
    assert report.summary.total_size_bytes == 1536
    assert [segment.live_docs for segment in report.segments] == [95, 50]
    (index_dir,) = static_reader.calls
    assert index_dir.parts[-6:] == ("nodes", "0", "indices", "abc", "0", "index")
    assert _workspaces(temp_settings) == []

    events = [entry["event"] for entry in _audit_events(temp_settings)]
    assert events == [
        "analyze.received",
        "analyze.workspace",
        "analyze.staged",
        "analyze.extracted",
        "analyze.located",
        "analyze.commit_read",
        "analyze.completed",
    ]


def test_located_index_is_logged_relative(
    analyzer_service: AnalyzerService,
    temp_settings: Settings,
    index_zip: Path,
) -> None:
    analyzer_service.analyze_path(index_zip)

    located = next(entry for entry in _audit_events(temp_settings) if entry["event"] == "analyze.located")
    assert located["details"]["index"] == "nodes/0/indices/abc/0/index"


def test_empty_upload_is_rejected_before_workspace(
    analyzer_service: AnalyzerService,
    temp_settings: Settings,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fail_mkdtemp(**_: Any) -> str:
        raise AssertionError("workspace must not be created")

    monkeypatch.setattr("segscope.analyze.service.tempfile.mkdtemp", fail_mkdtemp)

    with pytest.raises(InvalidInput) as excinfo:
        analyzer_service.analyze(io.BytesIO(b""), "shard.zip")

    assert excinfo.value.message == "file is required"
    assert _workspaces(temp_settings) == []
    assert list(temp_settings.log_dir.glob("analyze-*.jsonl")) == []


def test_missing_stream_is_invalid_input(analyzer_service: AnalyzerService) -> None:
    with pytest.raises(InvalidInput):
        analyzer_service.analyze(None, "shard.zip")
    with pytest.raises(InvalidInput):
        analyzer_service.analyze_upload(None)


def test_unsupported_format_cleans_workspace(
    analyzer_service: AnalyzerService,
    static_reader: StaticCommitReader,
    temp_settings: Settings,
) -> None:
    with pytest.raises(UnsupportedArchiveFormat):
        analyzer_service.analyze(io.BytesIO(b"Rar!\x1a\x07"), "shard.rar")

    assert static_reader.calls == []
    assert _workspaces(temp_settings) == []
    failed = _audit_events(temp_settings)[-1]
    assert failed["event"] == "analyze.failed"
    assert failed["details"]["kind"] == "unsupported_archive_format"


def test_archive_without_index(analyzer_service: AnalyzerService, tmp_path: Path) -> None:
    archive = build_tar(tmp_path / "logs.tar.gz", {"logs/es.log": b"started"}, gzip=True)

    with pytest.raises(NoIndexFound) as excinfo:
        analyzer_service.analyze_path(archive)

    assert excinfo.value.message == "no lucene index found"


def test_archive_with_two_indices(analyzer_service: AnalyzerService, tmp_path: Path) -> None:
    archive = build_zip(
        tmp_path / "two.zip",
        {"a/index/segments_1": b"x", "b/index/segments_4": b"y"},
    )

    with pytest.raises(AmbiguousIndex) as excinfo:
        analyzer_service.analyze_path(archive)

    assert excinfo.value.message == "multiple lucene indices found"


def test_zip_slip_upload_is_rejected(
    analyzer_service: AnalyzerService,
    temp_settings: Settings,
    tmp_path: Path,
) -> None:
    archive = build_zip(tmp_path / "evil.zip", {"../../escaped.txt": b"pwned"})

    with pytest.raises(PathTraversal):
        analyzer_service.analyze_path(archive)

    assert list(tmp_path.rglob("escaped.txt")) == []
    assert _workspaces(temp_settings) == []


def test_version_too_new_keeps_actionable_message(
    temp_settings: Settings,
    index_zip: Path,
) -> None:
    service = AnalyzerService(config=temp_settings, reader=StaticCommitReader(error=VersionTooNew()))

    with pytest.raises(VersionTooNew) as excinfo:
        service.analyze_path(index_zip)

    assert "rebuild with a newer Lucene" in excinfo.value.message
    assert _workspaces(temp_settings) == []


@pytest.mark.parametrize("error", [ValueError("bad varint"), OSError("disk gone")])
def test_unexpected_reader_errors_become_corrupt_index(
    temp_settings: Settings,
    index_zip: Path,
    error: Exception,
) -> None:
    service = AnalyzerService(config=temp_settings, reader=StaticCommitReader(error=error))

    with pytest.raises(CorruptIndex):
        service.analyze_path(index_zip)


def test_cleanup_failure_does_not_mask_result(
    analyzer_service: AnalyzerService,
    temp_settings: Settings,
    index_zip: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_rmtree(path: Path) -> None:
        raise PermissionError(f"cannot remove {path}")

    monkeypatch.setattr("segscope.analyze.service.shutil.rmtree", broken_rmtree)

    report = analyzer_service.analyze_path(index_zip)

    assert report.summary.docs == 150
    events = _audit_events(temp_settings)
    cleanup = next(entry for entry in events if entry["event"] == "workspace.cleanup_failed")
    assert cleanup["level"] == "warning"
    assert cleanup["details"]["error"] == "PermissionError"
    assert cleanup["details"]["path"].startswith(".../")
    assert events[-1]["event"] == "analyze.completed"


def test_cleanup_failure_does_not_mask_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_rmtree(path: Path) -> None:
        raise OSError(f"busy: {path}")

    monkeypatch.setattr("segscope.analyze.service.shutil.rmtree", broken_rmtree)
    audit = AuditTrail(tmp_path / "logs", enabled=False)

    with pytest.raises(NoIndexFound):
        with analysis_workspace(tmp_path, audit):
            raise NoIndexFound()

    assert [event.event for event in audit.events] == ["analyze.workspace", "workspace.cleanup_failed"]


def test_upload_name_is_sanitized(
    analyzer_service: AnalyzerService,
    temp_settings: Settings,
    index_zip: Path,
) -> None:
    with index_zip.open("rb") as handle:
        analyzer_service.analyze(handle, "../my shard (1).zip")

    staged = next(entry for entry in _audit_events(temp_settings) if entry["event"] == "analyze.staged")
    assert staged["details"]["archive"] == ".._my_shard__1_.zip"
    assert len(staged["details"]["sha256"]) == 64
    assert staged["details"]["size"] == index_zip.stat().st_size


def test_audit_can_be_disabled(tmp_path: Path, static_reader: StaticCommitReader, index_zip: Path) -> None:
    settings = Settings(work_dir=tmp_path / "work", log_dir=tmp_path / "logs", audit_enabled=False)
    service = AnalyzerService(config=settings, reader=static_reader)

    service.analyze_path(index_zip)

    assert list(settings.log_dir.iterdir()) == []


def test_end_to_end_with_bundled_reader(temp_settings: Settings, tmp_path: Path) -> None:
    index_dir = tmp_path / "snapshot" / "indices" / "docs" / "0" / "index"
    write_index(
        index_dir,
        [
            FixtureSegment(name="_0", max_docs=40, del_count=4, del_gen=1, data_files={"_0.cfs": 128}),
            FixtureSegment(name="_1", max_docs=10, data_files={"_1.cfs": 32}, version=(9, 9, 0)),
        ],
        generation=2,
    )
    entries = {
        path.relative_to(tmp_path).as_posix(): path.read_bytes()
        for path in sorted((tmp_path / "snapshot").rglob("*"))
        if path.is_file()
    }
    archive = build_tar(tmp_path / "snapshot.tgz", entries, gzip=True)

    report = AnalyzerService(config=temp_settings).analyze_path(archive)

    assert report.summary.segments == 2
    assert report.summary.docs == 50
    assert report.summary.deleted_docs == 4
    assert report.summary.live_docs == 46
    assert report.summary.index_created_version_major == 9
    assert report.summary.min_segment_version == "9.9.0"
    assert report.summary.max_segment_version == "9.11.1"
    assert report.summary.total_size_bytes == sum(
        path.stat().st_size for path in index_dir.iterdir() if not path.name.startswith("segments_")
    )


def test_io_errors_surface_as_analysis_error(
    analyzer_service: AnalyzerService,
    index_zip: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_extract(*_: Any, **__: Any) -> list[Path]:
        raise OSError("no space left on device")

    monkeypatch.setattr("segscope.analyze.service.extract_archive", broken_extract)

    with pytest.raises(AnalysisError) as excinfo:
        analyzer_service.analyze_path(index_zip)

    assert excinfo.value.status_code == 400


def test_index_metadata_cannot_reach_host_files(temp_settings: Settings, tmp_path: Path) -> None:
    secret = tmp_path / "host-secret.bin"
    index_dir = tmp_path / "snapshot" / "index"
    write_index(index_dir, [FixtureSegment(name="_0", max_docs=1, data_files={str(secret): 777})])
    entries = {
        path.relative_to(tmp_path).as_posix(): path.read_bytes()
        for path in (tmp_path / "snapshot").rglob("*")
        if path.is_file()
    }
    archive = build_tar(tmp_path / "snapshot.tar", entries)

    with pytest.raises(CorruptIndex) as excinfo:
        AnalyzerService(config=temp_settings).analyze_path(archive)

    assert "illegal index file name" in excinfo.value.message
    assert secret.exists()
    assert _workspaces(temp_settings) == []


def test_unusable_log_dir_does_not_fail_analysis(
    analyzer_service: AnalyzerService,
    temp_settings: Settings,
    index_zip: Path,
    tmp_path: Path,
) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    temp_settings.log_dir = blocker / "logs"

    report = analyzer_service.analyze_path(index_zip)

    assert report.summary.docs == 150
    assert _workspaces(temp_settings) == []


def test_audit_write_failure_during_cleanup_keeps_report(
    analyzer_service: AnalyzerService,
    temp_settings: Settings,
    index_zip: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_rmtree(path: Path) -> None:
        (log_file,) = temp_settings.log_dir.glob("analyze-*.jsonl")
        log_file.unlink()
        log_file.mkdir()
        raise PermissionError(f"cannot remove {path}")

    monkeypatch.setattr("segscope.analyze.service.shutil.rmtree", broken_rmtree)

    report = analyzer_service.analyze_path(index_zip)

    assert report.summary.docs == 150
    assert report.summary.live_docs == 145
