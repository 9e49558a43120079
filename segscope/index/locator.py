from __future__ import annotations

from pathlib import Path

from segscope.errors import AmbiguousIndex, NoIndexFound

COMMIT_GLOB = "segments_*"


def _has_commit(directory: Path) -> bool:
    return any(path.is_file() for path in directory.glob(COMMIT_GLOB))


def find_index_candidates(root: Path) -> list[Path]:
    """Return every directory under ``root`` (inclusive) holding a ``segments_*`` file."""

    directories = [root, *(path for path in root.rglob("*") if path.is_dir())]
    return sorted(directory for directory in directories if _has_commit(directory))


def choose_index_root(candidates: list[Path]) -> Path:
    """Accept exactly one candidate; zero or several is an error."""

    if not candidates:
        raise NoIndexFound()
    if len(candidates) > 1:
        raise AmbiguousIndex()
    return candidates[0]


def locate_index(root: Path) -> Path:
    return choose_index_root(find_index_candidates(root))


__all__ = ["COMMIT_GLOB", "choose_index_root", "find_index_candidates", "locate_index"]
