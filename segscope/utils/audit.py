from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path, PurePath
from typing import Any

from segscope.utils.files import timestamped_stem


def _redact(value: str) -> str:
    path = PurePath(value)
    if path.is_absolute() and path.name:
        return f".../{path.name}"
    return value


def redact_details(details: dict[str, Any]) -> dict[str, Any]:
    """Recursively reduce absolute filesystem paths to their final component."""

    redacted: dict[str, Any] = {}
    for key, value in details.items():
        if isinstance(value, str):
            redacted[key] = _redact(value)
        elif isinstance(value, dict):
            redacted[key] = redact_details(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_details(item)
                if isinstance(item, dict)
                else _redact(item)
                if isinstance(item, str)
                else item
                for item in value
            ]
        else:
            redacted[key] = value
    return redacted


@dataclass(slots=True)
class AuditEvent:
    level: str
    event: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "event": self.event,
            "details": redact_details(self.details),
        }


class AuditTrail:
    """Collect pipeline events for one request and append them to a JSONL file.

    The file is a best-effort sink: once creating or appending to it fails,
    ``write_error`` names the error and later events are kept in memory only.
    Recording never raises, so the audit trail cannot change an outcome.
    """

    def __init__(self, log_dir: Path, enabled: bool = True) -> None:
        self.path: Path | None = None
        self.write_error: str | None = None
        self._events: list[AuditEvent] = []
        if enabled:
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
            except OSError as error:
                self.write_error = type(error).__name__
            else:
                self.path = log_dir / f"{timestamped_stem('analyze')}.jsonl"

    def record(self, level: str, event: str, **details: Any) -> AuditEvent:
        audit_event = AuditEvent(level=level, event=event, details=details)
        self._events.append(audit_event)
        if self.path is not None:
            line = json.dumps(audit_event.to_dict(), ensure_ascii=False, default=str)
            try:
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as error:
                self.write_error = type(error).__name__
                self.path = None
        return audit_event

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)


__all__ = ["AuditEvent", "AuditTrail", "redact_details"]
