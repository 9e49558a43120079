from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from segscope.index.types import CommitDescriptor, SegmentDescriptor, SegmentVersion

UNKNOWN_VERSION = "unknown"


def render_version(version: SegmentVersion | None) -> str:
    return UNKNOWN_VERSION if version is None else str(version)


@dataclass(frozen=True, slots=True)
class SegmentReport:
    name: str
    docs: int
    deleted_docs: int
    live_docs: int
    size_bytes: int
    files_count: int
    codec: str
    segment_version: str
    compound_file: bool

    @classmethod
    def from_descriptor(cls, segment: SegmentDescriptor) -> SegmentReport:
        return cls(
            name=segment.name,
            docs=segment.max_docs,
            deleted_docs=segment.deleted_docs,
            live_docs=segment.max_docs - segment.deleted_docs,
            size_bytes=segment.size_bytes,
            files_count=segment.file_count,
            codec=segment.codec_name,
            segment_version=render_version(segment.format_version),
            compound_file=segment.is_compound_file,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "docs": self.docs,
            "deleted_docs": self.deleted_docs,
            "live_docs": self.live_docs,
            "size_bytes": self.size_bytes,
            "files_count": self.files_count,
            "codec": self.codec,
            "segment_version": self.segment_version,
            "compound_file": self.compound_file,
        }


@dataclass(frozen=True, slots=True)
class Summary:
    segments: int
    docs: int
    deleted_docs: int
    live_docs: int
    total_size_bytes: int
    index_created_version_major: int | None
    min_segment_version: str
    max_segment_version: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "segments": self.segments,
            "docs": self.docs,
            "deleted_docs": self.deleted_docs,
            "live_docs": self.live_docs,
            "total_size_bytes": self.total_size_bytes,
            "index_created_version_major": self.index_created_version_major,
            "min_segment_version": self.min_segment_version,
            "max_segment_version": self.max_segment_version,
        }


@dataclass(frozen=True, slots=True)
class AnalysisReport:
    """Index-wide summary plus one report per segment, in commit order."""

    summary: Summary
    segments: tuple[SegmentReport, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "segments": [segment.to_dict() for segment in self.segments],
        }


def normalize_created_major(value: int | None) -> int | None:
    """Treat a missing or non-positive creation major as unknown."""

    if value is None or value <= 0:
        return None
    return value


def aggregate(descriptor: CommitDescriptor) -> AnalysisReport:
    """Project every segment and fold the totals into a :class:`Summary`.

    Min and max segment versions compare numerically on (major, minor, bugfix);
    segments without a version are left out of that comparison.
    """

    reports: list[SegmentReport] = []
    docs = deleted = live = size = 0
    min_version: SegmentVersion | None = None
    max_version: SegmentVersion | None = None

    for segment in descriptor.segments:
        report = SegmentReport.from_descriptor(segment)
        reports.append(report)
        docs += report.docs
        deleted += report.deleted_docs
        live += report.live_docs
        size += report.size_bytes

        version = segment.format_version
        if version is None:
            continue
        if min_version is None or version < min_version:
            min_version = version
        if max_version is None or version > max_version:
            max_version = version

    summary = Summary(
        segments=len(reports),
        docs=docs,
        deleted_docs=deleted,
        live_docs=live,
        total_size_bytes=size,
        index_created_version_major=normalize_created_major(
            descriptor.index_created_version_major
        ),
        min_segment_version=render_version(min_version),
        max_segment_version=render_version(max_version),
    )
    return AnalysisReport(summary=summary, segments=tuple(reports))


__all__ = [
    "AnalysisReport",
    "SegmentReport",
    "Summary",
    "UNKNOWN_VERSION",
    "aggregate",
    "normalize_created_major",
    "render_version",
]
