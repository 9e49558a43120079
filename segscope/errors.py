from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Tags for every way an analysis request can fail."""

    INVALID_INPUT = "invalid_input"
    UNSUPPORTED_ARCHIVE_FORMAT = "unsupported_archive_format"
    PATH_TRAVERSAL = "path_traversal"
    CORRUPT_ARCHIVE = "corrupt_archive"
    NO_INDEX_FOUND = "no_index_found"
    AMBIGUOUS_INDEX = "ambiguous_index"
    VERSION_TOO_NEW = "version_too_new"
    CORRUPT_INDEX = "corrupt_index"


class AnalysisError(Exception):
    """Base class for failures surfaced to the caller as a bad request."""

    kind: ErrorKind = ErrorKind.CORRUPT_INDEX
    default_message = "failed to analyze archive"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(AnalysisError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "file is required"


class UnsupportedArchiveFormat(AnalysisError):
    kind = ErrorKind.UNSUPPORTED_ARCHIVE_FORMAT
    default_message = "unsupported archive format"


class PathTraversal(AnalysisError):
    kind = ErrorKind.PATH_TRAVERSAL
    default_message = "archive entry outside target dir"


class CorruptArchive(AnalysisError):
    kind = ErrorKind.CORRUPT_ARCHIVE
    default_message = "archive could not be read"


class NoIndexFound(AnalysisError):
    kind = ErrorKind.NO_INDEX_FOUND
    default_message = "no lucene index found"


class AmbiguousIndex(AnalysisError):
    kind = ErrorKind.AMBIGUOUS_INDEX
    default_message = "multiple lucene indices found"


class VersionTooNew(AnalysisError):
    kind = ErrorKind.VERSION_TOO_NEW
    default_message = (
        "lucene index version is newer than this analyzer; rebuild with a newer Lucene "
        "or recreate the index with an older Lucene version"
    )


class CorruptIndex(AnalysisError):
    kind = ErrorKind.CORRUPT_INDEX
    default_message = "lucene index could not be read"


__all__ = [
    "AmbiguousIndex",
    "AnalysisError",
    "CorruptArchive",
    "CorruptIndex",
    "ErrorKind",
    "InvalidInput",
    "NoIndexFound",
    "PathTraversal",
    "UnsupportedArchiveFormat",
    "VersionTooNew",
]
