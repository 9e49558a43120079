from __future__ import annotations

import re
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import IO
from uuid import uuid4

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def timestamped_stem(prefix: str) -> str:
    """Return a safe stem combining prefix, timestamp and a random suffix."""

    now = datetime.now(tz=UTC).strftime("%Y%m%dT%H%M%S")
    return f"{prefix}-{now}-{uuid4().hex[:8]}"


def sanitize_filename(name: str | None, fallback: str = "upload") -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with an underscore."""

    if not name:
        return fallback
    safe = _UNSAFE_CHARS.sub("_", name)
    if safe in {".", ".."}:
        return fallback
    return safe


def save_stream_to_path(stream: IO[bytes], destination: Path, head: bytes = b"") -> Path:
    """Persist ``head`` followed by the rest of a binary stream to the destination path."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    with destination.open("wb") as handle:
        if head:
            handle.write(head)
        shutil.copyfileobj(stream, handle)
    return destination


__all__ = [
    "sanitize_filename",
    "save_stream_to_path",
    "timestamped_stem",
]
