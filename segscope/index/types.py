from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True, order=True)
class SegmentVersion:
    """Lucene version triple, ordered numerically by (major, minor, bugfix)."""

    major: int
    minor: int = 0
    bugfix: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.bugfix}"


@dataclass(frozen=True, slots=True)
class SegmentDescriptor:
    """Per-segment metadata handed over by a commit reader."""

    name: str
    max_docs: int
    deleted_docs: int
    size_bytes: int
    file_count: int
    codec_name: str
    format_version: SegmentVersion | None = None
    is_compound_file: bool = False

    def __post_init__(self) -> None:
        if self.max_docs < 0 or self.size_bytes < 0 or self.file_count < 0:
            msg = f"segment {self.name} has negative counters"
            raise ValueError(msg)
        if not 0 <= self.deleted_docs <= self.max_docs:
            msg = f"segment {self.name} deletes {self.deleted_docs} of {self.max_docs} docs"
            raise ValueError(msg)


@dataclass(frozen=True, slots=True)
class CommitDescriptor:
    """The segments named by one commit point, in commit order."""

    segments: tuple[SegmentDescriptor, ...] = field(default_factory=tuple)
    index_created_version_major: int | None = None
    generation: int | None = None
    lucene_version: SegmentVersion | None = None


__all__ = ["CommitDescriptor", "SegmentDescriptor", "SegmentVersion"]
