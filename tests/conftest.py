from __future__ import annotations

import io
import sys
import tarfile
import zipfile
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from segscope.analyze.service import AnalyzerService  # noqa: E402
from segscope.api.main import app, get_analyzer_service  # noqa: E402
from segscope.config import Settings  # noqa: E402
from segscope.index.types import (  # noqa: E402
    CommitDescriptor,
    SegmentDescriptor,
    SegmentVersion,
)


class StaticCommitReader:
    """Commit reader double returning a fixed descriptor."""

    def __init__(self, descriptor: CommitDescriptor | None = None, error: Exception | None = None) -> None:
        self.descriptor = descriptor or CommitDescriptor()
        self.error = error
        self.calls: list[Path] = []

    def read_commit(self, index_dir: Path) -> CommitDescriptor:
        self.calls.append(index_dir)
        if self.error is not None:
            raise self.error
        return self.descriptor


def build_zip(path: Path, entries: dict[str, bytes | None]) -> Path:
    """Write a zip archive; a ``None`` payload stores a directory entry."""

    with zipfile.ZipFile(path, "w") as archive:
        for name, payload in entries.items():
            if payload is None:
                archive.writestr(zipfile.ZipInfo(name.rstrip("/") + "/"), b"")
            else:
                archive.writestr(zipfile.ZipInfo(name), payload)
    return path


def build_tar(path: Path, entries: dict[str, bytes | None], gzip: bool = False) -> Path:
    with tarfile.open(path, "w:gz" if gzip else "w") as archive:
        for name, payload in entries.items():
            info = tarfile.TarInfo(name)
            if payload is None:
                info.type = tarfile.DIRTYPE
                archive.addfile(info)
            else:
                info.size = len(payload)
                archive.addfile(info, io.BytesIO(payload))
    return path


@pytest.fixture()
def temp_settings(tmp_path: Path) -> Settings:
    return Settings(
        work_dir=tmp_path / "work",
        log_dir=tmp_path / "logs",
        app_version="1.2.3",
        git_sha="abc123",
    )


@pytest.fixture()
def two_segment_commit() -> CommitDescriptor:
    return CommitDescriptor(
        segments=(
            SegmentDescriptor(
                name="seg0",
                max_docs=100,
                deleted_docs=5,
                size_bytes=1024,
                file_count=4,
                codec_name="Lucene99",
                format_version=SegmentVersion(9, 11, 1),
                is_compound_file=True,
            ),
            SegmentDescriptor(
                name="seg1",
                max_docs=50,
                deleted_docs=0,
                size_bytes=512,
                file_count=3,
                codec_name="Lucene99",
                format_version=SegmentVersion(9, 8, 0),
            ),
        ),
        index_created_version_major=9,
        generation=3,
    )


@pytest.fixture()
def static_reader(two_segment_commit: CommitDescriptor) -> StaticCommitReader:
    return StaticCommitReader(two_segment_commit)


@pytest.fixture()
def analyzer_service(temp_settings: Settings, static_reader: StaticCommitReader) -> AnalyzerService:
    return AnalyzerService(config=temp_settings, reader=static_reader)


@pytest.fixture()
def index_zip(tmp_path: Path) -> Path:
    return build_zip(
        tmp_path / "shard.zip",
        {
            "nodes/0/indices/abc/0/index/": None,
            "nodes/0/indices/abc/0/index/segments_3": b"commit",
            "nodes/0/indices/abc/0/index/_0.si": b"info",
            "nodes/0/indices/abc/0/translog/translog.ckp": b"ckp",
        },
    )


@pytest.fixture()
def client(analyzer_service: AnalyzerService) -> Iterator[TestClient]:
    app.dependency_overrides[get_analyzer_service] = lambda: analyzer_service

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
