from __future__ import annotations

import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from fastapi import UploadFile

from segscope.archive.extractor import detect_archive_format, extract_archive
from segscope.config import Settings, settings
from segscope.errors import AnalysisError, CorruptIndex, InvalidInput
from segscope.index.locator import locate_index
from segscope.index.reader import CommitReader, LuceneCommitReader
from segscope.index.types import CommitDescriptor
from segscope.report.aggregate import AnalysisReport, aggregate
from segscope.utils.audit import AuditTrail
from segscope.utils.files import sanitize_filename, save_stream_to_path
from segscope.utils.hash import digest_file

WORKSPACE_PREFIX = "lucene-analyze-"
EXTRACT_DIRNAME = "extract"
_HEAD_SIZE = 65536


@contextmanager
def analysis_workspace(parent: Path | None, audit: AuditTrail) -> Iterator[Path]:
    """Create a private temporary directory and always remove it afterwards.

    Removal is best-effort: a failure is recorded on the audit trail and never
    replaces the outcome of the enclosed block.
    """

    path = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=parent))
    audit.record("info", "analyze.workspace", path=str(path))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as error:
            audit.record(
                "warning",
                "workspace.cleanup_failed",
                path=str(path),
                error=type(error).__name__,
            )


class AnalyzerService:
    """Stage an uploaded archive, find its Lucene index and report on it."""

    def __init__(
        self,
        config: Settings = settings,
        reader: CommitReader | None = None,
    ) -> None:
        self.config = config
        self.reader = reader or LuceneCommitReader(
            min_major=config.min_index_major,
            max_major=config.max_index_major,
        )

    def analyze_upload(self, upload: UploadFile | None) -> AnalysisReport:
        """Analyze a FastAPI UploadFile."""

        if upload is None:
            raise InvalidInput()
        upload.file.seek(0)
        return self.analyze(upload.file, upload.filename)

    def analyze_path(self, path: Path) -> AnalysisReport:
        """Analyze an archive already on disk."""

        with path.open("rb") as handle:
            return self.analyze(handle, path.name)

    def analyze(self, stream: IO[bytes] | None, upload_name: str | None) -> AnalysisReport:
        """Run the whole pipeline for one upload.

        Raises an :class:`AnalysisError` subclass for every failure. The empty
        upload check happens before any temporary storage exists.
        """

        if stream is None:
            raise InvalidInput()
        head = stream.read(_HEAD_SIZE)
        if not head:
            raise InvalidInput()

        audit = AuditTrail(self.config.log_dir, enabled=self.config.audit_enabled)
        archive_name = sanitize_filename(upload_name)
        audit.record("info", "analyze.received", upload=archive_name)
        try:
            with analysis_workspace(self.config.work_dir, audit) as workspace:
                report = self._run_pipeline(workspace, stream, head, archive_name, audit)
        except AnalysisError as error:
            audit.record("error", "analyze.failed", kind=error.kind.value, error=error.message)
            raise
        except OSError as error:
            audit.record("error", "analyze.failed", kind="io_error", error=type(error).__name__)
            raise AnalysisError() from error

        audit.record(
            "info",
            "analyze.completed",
            segments=report.summary.segments,
            docs=report.summary.docs,
        )
        return report

    def _run_pipeline(
        self,
        workspace: Path,
        stream: IO[bytes],
        head: bytes,
        archive_name: str,
        audit: AuditTrail,
    ) -> AnalysisReport:
        archive_path = save_stream_to_path(stream, workspace / archive_name, head=head)
        sha256, size_bytes = digest_file(archive_path)
        audit.record("info", "analyze.staged", archive=archive_name, sha256=sha256, size=size_bytes)

        archive_format = detect_archive_format(archive_name)
        extract_dir = workspace / EXTRACT_DIRNAME
        extract_dir.mkdir()
        extracted = extract_archive(archive_path, extract_dir, archive_format)
        audit.record("info", "analyze.extracted", format=archive_format.value, files=len(extracted))

        index_dir = locate_index(extract_dir)
        audit.record("info", "analyze.located", index=index_dir.relative_to(extract_dir).as_posix())

        descriptor = self._read_commit(index_dir)
        audit.record(
            "info",
            "analyze.commit_read",
            generation=descriptor.generation,
            segments=len(descriptor.segments),
            created_major=descriptor.index_created_version_major,
        )
        return aggregate(descriptor)

    def _read_commit(self, index_dir: Path) -> CommitDescriptor:
        try:
            return self.reader.read_commit(index_dir)
        except AnalysisError:
            raise
        except (OSError, ValueError) as error:
            raise CorruptIndex() from error


__all__ = ["AnalyzerService", "analysis_workspace"]
