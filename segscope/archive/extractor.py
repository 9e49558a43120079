from __future__ import annotations

import os
import shutil
import tarfile
import zipfile
import zlib
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from functools import partial
from pathlib import Path
from typing import IO

from segscope.errors import CorruptArchive, PathTraversal, UnsupportedArchiveFormat

_ARCHIVE_ERRORS = (zipfile.BadZipFile, tarfile.TarError, EOFError, zlib.error, NotImplementedError)


class ArchiveFormat(str, Enum):
    """Archive containers accepted for upload."""

    ZIP = "zip"
    TAR = "tar"
    TAR_GZ = "tar.gz"


@dataclass(slots=True)
class ArchiveEntry:
    """One stored entry, consumed while extracting."""

    name: str
    is_dir: bool
    opener: Callable[[], IO[bytes]] | None = None

    def open(self) -> IO[bytes]:
        if self.opener is None:
            msg = f"archive entry has no payload: {self.name}"
            raise CorruptArchive(msg)
        return self.opener()


def detect_archive_format(name: str) -> ArchiveFormat:
    """Select the archive format from a file name suffix."""

    lowered = name.lower()
    if lowered.endswith(".zip"):
        return ArchiveFormat.ZIP
    if lowered.endswith((".tar.gz", ".tgz")):
        return ArchiveFormat.TAR_GZ
    if lowered.endswith(".tar"):
        return ArchiveFormat.TAR
    raise UnsupportedArchiveFormat()


def safe_resolve(destination: Path, entry_name: str) -> Path:
    """Resolve an entry name under ``destination``, refusing anything that escapes it.

    ``destination`` must already be absolute and normalized. Backslashes are
    treated as separators so Windows-built archives cannot smuggle ``..\\``.
    """

    normalized = entry_name.replace("\\", "/")
    resolved = Path(os.path.normpath(destination / normalized))
    if resolved != destination and destination not in resolved.parents:
        msg = f"archive entry outside target dir: {entry_name}"
        raise PathTraversal(msg)
    return resolved


def _zip_entries(archive: zipfile.ZipFile) -> Iterator[ArchiveEntry]:
    for info in archive.infolist():
        yield ArchiveEntry(
            name=info.filename,
            is_dir=info.is_dir(),
            opener=partial(archive.open, info),
        )


def _open_tar_member(archive: tarfile.TarFile, member: tarfile.TarInfo) -> IO[bytes]:
    handle = archive.extractfile(member)
    if handle is None:
        msg = f"archive entry has no payload: {member.name}"
        raise CorruptArchive(msg)
    return handle


def _tar_entries(archive: tarfile.TarFile) -> Iterator[ArchiveEntry]:
    for member in archive:
        if member.isdir():
            yield ArchiveEntry(name=member.name, is_dir=True)
        elif member.isfile():
            yield ArchiveEntry(
                name=member.name,
                is_dir=False,
                opener=partial(_open_tar_member, archive, member),
            )
        else:
            # Links and device nodes could point anywhere on the host.
            msg = f"unsupported link or special entry in archive: {member.name}"
            raise PathTraversal(msg)


@contextmanager
def open_entries(archive_path: Path, archive_format: ArchiveFormat) -> Iterator[Iterator[ArchiveEntry]]:
    """Open an archive and yield its entries in stored order."""

    if archive_format is ArchiveFormat.ZIP:
        with zipfile.ZipFile(archive_path) as archive:
            yield _zip_entries(archive)
        return
    mode = "r:gz" if archive_format is ArchiveFormat.TAR_GZ else "r:"
    with tarfile.open(archive_path, mode=mode) as archive:
        yield _tar_entries(archive)


def extract_archive(
    archive_path: Path,
    destination: Path,
    archive_format: ArchiveFormat | None = None,
) -> list[Path]:
    """Unpack every entry of ``archive_path`` below ``destination``.

    Entries are processed in archive order. The first entry resolving outside
    ``destination`` aborts the extraction with :class:`PathTraversal` before
    anything is written for it; any I/O failure aborts as well. Existing files
    are overwritten. Returns the written file paths.
    """

    if archive_format is None:
        archive_format = detect_archive_format(archive_path.name)
    destination = Path(os.path.abspath(destination))
    destination.mkdir(parents=True, exist_ok=True)

    extracted: list[Path] = []
    try:
        with open_entries(archive_path, archive_format) as entries:
            for entry in entries:
                target = safe_resolve(destination, entry.name)
                if entry.is_dir:
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with entry.open() as source, target.open("wb") as handle:
                    shutil.copyfileobj(source, handle)
                extracted.append(target)
    except _ARCHIVE_ERRORS as exc:
        msg = f"failed to read {archive_format.value} archive"
        raise CorruptArchive(msg) from exc
    return extracted


__all__ = [
    "ArchiveEntry",
    "ArchiveFormat",
    "detect_archive_format",
    "extract_archive",
    "open_entries",
    "safe_resolve",
]
