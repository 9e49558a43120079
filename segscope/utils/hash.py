from __future__ import annotations

import hashlib
from pathlib import Path


def digest_file(path: Path, chunk_size: int = 65536) -> tuple[str, int]:
    """Return the SHA-256 hex digest and byte length of a file, read in chunks."""

    digest = hashlib.sha256()
    size = 0
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            digest.update(chunk)
            size += len(chunk)
    return digest.hexdigest(), size


__all__ = ["digest_file"]
