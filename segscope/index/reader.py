from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from segscope.errors import CorruptIndex, VersionTooNew
from segscope.index.datainput import (
    FOOTER_LENGTH,
    ID_LENGTH,
    DataInput,
    check_footer,
    check_index_header_suffix,
    check_version,
    read_header,
)
from segscope.index.types import CommitDescriptor, SegmentDescriptor, SegmentVersion

SEGMENTS_CODEC = "segments"
SEGMENTS_PREFIX = "segments_"
VERSION_70 = 7
VERSION_72 = 8
VERSION_74 = 9
VERSION_86 = 10

_GENERATION_RE = re.compile(r"^segments_([0-9a-z]+)$")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class CommitReader(Protocol):
    """Turns a directory known to hold a commit into a :class:`CommitDescriptor`.

    Implementations raise :class:`VersionTooNew` when the index was created by a
    newer format than they understand, and :class:`CorruptIndex` for anything
    else they cannot parse.
    """

    def read_commit(self, index_dir: Path) -> CommitDescriptor: ...


@dataclass(frozen=True, slots=True)
class _SegmentInfoLayout:
    little_endian: bool
    has_blocks_flag: bool = False


# Keyed by the codec name found in each ``.si`` header.
_SEGMENT_INFO_LAYOUTS = {
    "Lucene70SegmentInfo": _SegmentInfoLayout(little_endian=False),
    "Lucene86SegmentInfo": _SegmentInfoLayout(little_endian=False),
    "Lucene90SegmentInfo": _SegmentInfoLayout(little_endian=True),
    "Lucene99SegmentInfo": _SegmentInfoLayout(little_endian=True, has_blocks_flag=True),
}


@dataclass(slots=True)
class _SegmentInfo:
    version: SegmentVersion
    max_docs: int
    is_compound_file: bool
    files: set[str]


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def file_name_from_generation(base: str, extension: str, generation: int) -> str | None:
    if generation == -1:
        return None
    if generation == 0:
        return f"{base}.{extension}"
    return f"{base}_{to_base36(generation)}.{extension}"


def index_file(index_dir: Path, file_name: str) -> Path:
    """Join a file name read from index metadata onto ``index_dir``.

    Lucene keeps every file of a commit flat inside the index directory, so a
    name carrying a separator or a parent reference is rejected.
    """

    if (
        not file_name
        or file_name in {".", ".."}
        or "/" in file_name
        or "\\" in file_name
        or "\x00" in file_name
    ):
        msg = f"illegal index file name: {file_name!r}"
        raise CorruptIndex(msg)
    return index_dir / file_name


def latest_commit_file(index_dir: Path) -> tuple[Path, int]:
    """Return the ``segments_N`` file with the highest generation."""

    generations = []
    for path in index_dir.glob(f"{SEGMENTS_PREFIX}*"):
        match = _GENERATION_RE.match(path.name)
        if match and path.is_file():
            generations.append((int(match.group(1), 36), path))
    if not generations:
        msg = "no segments_N file found in index directory"
        raise CorruptIndex(msg)
    generation, path = max(generations)
    return path, generation


def _read_version(data_input: DataInput, fixed_width: bool) -> SegmentVersion:
    read = data_input.read_int if fixed_width else data_input.read_vint
    major, minor, bugfix = read(), read(), read()
    if major < 0 or minor < 0 or bugfix < 0:
        raise data_input.corrupt(f"illegal version {major}.{minor}.{bugfix}")
    return SegmentVersion(major, minor, bugfix)


class LuceneCommitReader:
    """Pure-Python reader for Lucene 7 through 10 commit points."""

    def __init__(self, min_major: int = 7, max_major: int = 10) -> None:
        self.min_major = min_major
        self.max_major = max_major

    def read_commit(self, index_dir: Path) -> CommitDescriptor:
        path, generation = latest_commit_file(index_dir)
        data_input = DataInput.open(path)

        codec, format_version = read_header(data_input)
        if codec != SEGMENTS_CODEC:
            raise data_input.corrupt(f"codec mismatch: expected {SEGMENTS_CODEC!r}, got {codec!r}")
        check_version(data_input, codec, format_version, VERSION_70, VERSION_86)
        check_index_header_suffix(data_input, None, to_base36(generation))

        lucene_version = _read_version(data_input, fixed_width=False)
        created_major = data_input.read_vint()
        if created_major > self.max_major:
            raise VersionTooNew()
        if lucene_version.major < created_major:
            raise data_input.corrupt(
                f"creation version [{created_major}.x] can't be greater than the version "
                f"that wrote the segment infos: [{lucene_version}]"
            )
        if created_major < self.min_major:
            raise data_input.corrupt(
                f"index created with Lucene {created_major}.x is too old for this analyzer"
            )
        check_footer(data_input)

        segments = self._read_segments(index_dir, data_input, format_version, created_major)
        return CommitDescriptor(
            segments=tuple(segments),
            index_created_version_major=created_major,
            generation=generation,
            lucene_version=lucene_version,
        )

    def _read_segments(
        self,
        index_dir: Path,
        data_input: DataInput,
        format_version: int,
        created_major: int,
    ) -> list[SegmentDescriptor]:
        data_input.read_be_long()  # commit version
        if format_version > VERSION_70:
            data_input.read_vlong()
        else:
            data_input.read_be_int()
        num_segments = data_input.read_be_int()
        if num_segments < 0:
            raise data_input.corrupt(f"invalid segment count: {num_segments}")
        min_segment_version = None
        if num_segments > 0:
            min_segment_version = _read_version(data_input, fixed_width=False)

        segments: list[SegmentDescriptor] = []
        for _ in range(num_segments):
            name = data_input.read_string()
            segment_id = data_input.read_bytes(ID_LENGTH)
            codec_name = data_input.read_string()
            info = self._read_segment_info(index_dir, name, segment_id)

            del_gen = data_input.read_be_long()
            del_count = data_input.read_be_int()
            if not 0 <= del_count <= info.max_docs:
                raise data_input.corrupt(f"invalid deletion count: {del_count} vs maxDoc={info.max_docs}")
            data_input.read_be_long()  # field infos generation
            data_input.read_be_long()  # doc values generation
            soft_del_count = data_input.read_be_int() if format_version > VERSION_72 else 0
            if soft_del_count < 0 or soft_del_count + del_count > info.max_docs:
                raise data_input.corrupt(f"invalid soft deletion count: {soft_del_count}")
            if format_version > VERSION_74:
                marker = data_input.read_byte()
                if marker == 1:
                    data_input.read_bytes(ID_LENGTH)
                elif marker != 0:
                    raise data_input.corrupt(f"invalid segment commit id marker: {marker}")

            files = set(info.files)
            files |= data_input.read_set_of_strings()
            num_dv_fields = data_input.read_be_int()
            if num_dv_fields < 0:
                raise data_input.corrupt(f"invalid doc values update count: {num_dv_fields}")
            for _ in range(num_dv_fields):
                data_input.read_be_int()
                files |= data_input.read_set_of_strings()
            live_docs = file_name_from_generation(name, "liv", del_gen)
            if live_docs is not None:
                files.add(live_docs)

            if min_segment_version is not None and info.version < min_segment_version:
                raise data_input.corrupt(
                    f"segment {name} version {info.version} is older than the commit "
                    f"minimum {min_segment_version}"
                )
            if info.version.major < created_major:
                raise data_input.corrupt(
                    f"segment {name} version {info.version} predates index creation major {created_major}"
                )

            segments.append(
                SegmentDescriptor(
                    name=name,
                    max_docs=info.max_docs,
                    deleted_docs=del_count,
                    size_bytes=self._size_of(index_dir, files),
                    file_count=len(files),
                    codec_name=codec_name,
                    format_version=info.version,
                    is_compound_file=info.is_compound_file,
                )
            )

        data_input.read_map_of_strings()  # user data
        if data_input.remaining != FOOTER_LENGTH:
            raise data_input.corrupt("unexpected trailing bytes before footer")
        return segments

    def _read_segment_info(self, index_dir: Path, name: str, segment_id: bytes) -> _SegmentInfo:
        data_input = DataInput.open(index_file(index_dir, f"{name}.si"))
        codec, format_version = read_header(data_input)
        layout = _SEGMENT_INFO_LAYOUTS.get(codec)
        if layout is None:
            raise data_input.corrupt(f"unsupported segment info codec {codec!r}")
        check_version(data_input, codec, format_version, 0, 0)
        check_index_header_suffix(data_input, segment_id, "")
        check_footer(data_input)

        data_input.set_byte_order(little_endian=layout.little_endian)
        version = _read_version(data_input, fixed_width=True)
        if data_input.read_byte() == 1:
            _read_version(data_input, fixed_width=True)  # min version
        max_docs = data_input.read_int()
        if max_docs < 0:
            raise data_input.corrupt(f"invalid docCount: {max_docs}")
        is_compound_file = data_input.read_byte() == 1
        if layout.has_blocks_flag:
            data_input.read_byte()
        data_input.read_map_of_strings()  # diagnostics
        files = data_input.read_set_of_strings()
        return _SegmentInfo(
            version=version,
            max_docs=max_docs,
            is_compound_file=is_compound_file,
            files=files,
        )

    def _size_of(self, index_dir: Path, files: set[str]) -> int:
        total = 0
        for file_name in sorted(files):
            path = index_file(index_dir, file_name)
            try:
                total += path.stat().st_size
            except FileNotFoundError as exc:
                msg = f"missing index file: {file_name}"
                raise CorruptIndex(msg) from exc
        return total


__all__ = [
    "CommitReader",
    "LuceneCommitReader",
    "file_name_from_generation",
    "index_file",
    "latest_commit_file",
    "to_base36",
]
