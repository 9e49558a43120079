"""Primitive readers for Lucene's on-disk encoding.

Lucene writes codec headers, footers and the ``segments_N`` body big-endian;
segment info files from Lucene 9 onward use little-endian fixed-width ints.
Variable-length ints and strings are identical in both.
"""

from __future__ import annotations

import struct
import zlib
from pathlib import Path

from segscope.errors import CorruptIndex, VersionTooNew

CODEC_MAGIC = 0x3FD76C17
FOOTER_MAGIC = ~CODEC_MAGIC & 0xFFFFFFFF
FOOTER_LENGTH = 16
ID_LENGTH = 16

_BE_INT = struct.Struct(">i")
_BE_LONG = struct.Struct(">q")
_LE_INT = struct.Struct("<i")


class DataInput:
    """Sequential reader over an in-memory Lucene file."""

    def __init__(self, data: bytes, name: str, little_endian: bool = False) -> None:
        self.data = data
        self.name = name
        self.position = 0
        self._int = _LE_INT if little_endian else _BE_INT

    def set_byte_order(self, little_endian: bool) -> None:
        """Switch the width-fixed int encoding; headers always stay big-endian."""

        self._int = _LE_INT if little_endian else _BE_INT

    @classmethod
    def open(cls, path: Path, little_endian: bool = False) -> DataInput:
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            msg = f"missing index file: {path.name}"
            raise CorruptIndex(msg) from exc
        return cls(data, path.name, little_endian=little_endian)

    def corrupt(self, reason: str) -> CorruptIndex:
        return CorruptIndex(f"{reason} (resource={self.name})")

    def read_bytes(self, length: int) -> bytes:
        end = self.position + length
        if length < 0 or end > len(self.data):
            raise self.corrupt("read past EOF")
        chunk = self.data[self.position:end]
        self.position = end
        return chunk

    def read_byte(self) -> int:
        return self.read_bytes(1)[0]

    def _unpack(self, fmt: struct.Struct) -> int:
        return fmt.unpack(self.read_bytes(fmt.size))[0]

    def read_be_int(self) -> int:
        return self._unpack(_BE_INT)

    def read_be_long(self) -> int:
        return self._unpack(_BE_LONG)

    def read_int(self) -> int:
        return self._unpack(self._int)

    def _read_varint(self, max_bytes: int) -> int:
        value = 0
        for index in range(max_bytes):
            byte = self.read_byte()
            value |= (byte & 0x7F) << (7 * index)
            if not byte & 0x80:
                return value
        raise self.corrupt("invalid variable-length integer")

    def read_vint(self) -> int:
        value = self._read_varint(5) & 0xFFFFFFFF
        return value - (1 << 32) if value & 0x80000000 else value

    def read_vlong(self) -> int:
        return self._read_varint(9)

    def read_string(self) -> str:
        length = self.read_vint()
        if length < 0:
            raise self.corrupt(f"invalid string length {length}")
        raw = self.read_bytes(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise self.corrupt("invalid utf-8 string") from exc

    def read_set_of_strings(self) -> set[str]:
        count = self.read_vint()
        if count < 0:
            raise self.corrupt(f"invalid set size {count}")
        return {self.read_string() for _ in range(count)}

    def read_map_of_strings(self) -> dict[str, str]:
        count = self.read_vint()
        if count < 0:
            raise self.corrupt(f"invalid map size {count}")
        result: dict[str, str] = {}
        for _ in range(count):
            key = self.read_string()
            result[key] = self.read_string()
        return result

    @property
    def remaining(self) -> int:
        return len(self.data) - self.position


def read_header(data_input: DataInput) -> tuple[str, int]:
    """Read the codec magic, name and format version of a header."""

    magic = data_input.read_be_int() & 0xFFFFFFFF
    if magic != CODEC_MAGIC:
        raise data_input.corrupt(f"codec header mismatch: actual header={magic:#x}")
    codec = data_input.read_string()
    return codec, data_input.read_be_int()


def check_version(data_input: DataInput, codec: str, version: int, minimum: int, maximum: int) -> int:
    if version < minimum:
        raise data_input.corrupt(f"{codec} format {version} is too old (needs {minimum}..{maximum})")
    if version > maximum:
        raise VersionTooNew()
    return version


def check_index_header_suffix(
    data_input: DataInput,
    expected_id: bytes | None,
    expected_suffix: str,
) -> bytes:
    """Validate the object id and suffix that follow an index header."""

    object_id = data_input.read_bytes(ID_LENGTH)
    if expected_id is not None and object_id != expected_id:
        raise data_input.corrupt("file mismatch: segment id differs")
    suffix_length = data_input.read_byte()
    suffix = data_input.read_bytes(suffix_length).decode("ascii", "replace")
    if suffix != expected_suffix:
        raise data_input.corrupt(f"file mismatch: expected suffix={expected_suffix!r}, got={suffix!r}")
    return object_id


def check_footer(data_input: DataInput) -> None:
    """Verify the trailing footer magic and CRC32 checksum of the whole file."""

    data = data_input.data
    if len(data) < FOOTER_LENGTH:
        raise data_input.corrupt("file too short to hold a codec footer")
    magic, algorithm, checksum = struct.unpack(">iiq", data[-FOOTER_LENGTH:])
    if magic & 0xFFFFFFFF != FOOTER_MAGIC:
        raise data_input.corrupt("codec footer mismatch")
    if algorithm != 0:
        raise data_input.corrupt(f"unknown checksum algorithm {algorithm}")
    if checksum & ~0xFFFFFFFF:
        raise data_input.corrupt("illegal checksum value")
    actual = zlib.crc32(data[:-8])
    if actual != checksum:
        raise data_input.corrupt(f"checksum failed (expected={checksum:x} actual={actual:x})")


__all__ = [
    "CODEC_MAGIC",
    "DataInput",
    "FOOTER_LENGTH",
    "FOOTER_MAGIC",
    "ID_LENGTH",
    "check_footer",
    "check_index_header_suffix",
    "check_version",
    "read_header",
]
