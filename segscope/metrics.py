from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest

ANALYZE_REQUESTS = Counter(
    "analyze_requests",
    "Archive analysis requests by outcome",
    ["result"],
)
ANALYZE_DURATION = Histogram(
    "analyze_duration_seconds",
    "Wall time spent analyzing one uploaded archive",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

for _result in ("success", "failure"):
    ANALYZE_REQUESTS.labels(result=_result)


@contextmanager
def track_analysis() -> Iterator[None]:
    """Time the enclosed analysis and count it as a success or failure."""

    with ANALYZE_DURATION.time():
        try:
            yield
        except Exception:
            ANALYZE_REQUESTS.labels(result="failure").inc()
            raise
    ANALYZE_REQUESTS.labels(result="success").inc()


def render_metrics() -> tuple[bytes, str]:
    """Return the Prometheus text exposition and its content type."""

    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST


__all__ = ["ANALYZE_DURATION", "ANALYZE_REQUESTS", "render_metrics", "track_analysis"]
