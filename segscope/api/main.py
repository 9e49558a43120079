from __future__ import annotations

import platform
import socket

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse, Response
from pydantic import BaseModel

from segscope import __version__
from segscope.analyze.service import AnalyzerService
from segscope.config import settings
from segscope.errors import AnalysisError
from segscope.metrics import render_metrics, track_analysis
from segscope.report.aggregate import AnalysisReport

app = FastAPI(title="segscope", version=__version__)


def get_analyzer_service() -> AnalyzerService:
    return AnalyzerService()


class SummaryModel(BaseModel):
    segments: int
    docs: int
    deleted_docs: int
    live_docs: int
    total_size_bytes: int
    index_created_version_major: int | None
    min_segment_version: str
    max_segment_version: str


class SegmentModel(BaseModel):
    name: str
    docs: int
    deleted_docs: int
    live_docs: int
    size_bytes: int
    files_count: int
    codec: str
    segment_version: str
    compound_file: bool


class AnalysisResponse(BaseModel):
    summary: SummaryModel
    segments: list[SegmentModel]


class InfoModel(BaseModel):
    version: str
    git_sha: str
    arch: str
    hostname: str


def _report_to_model(report: AnalysisReport) -> AnalysisResponse:
    return AnalysisResponse(
        summary=SummaryModel(**report.summary.to_dict()),
        segments=[SegmentModel(**segment.to_dict()) for segment in report.segments],
    )


@app.get("/healthz", response_class=PlainTextResponse)
def healthz() -> str:
    return "ok"


@app.get("/info", response_model=InfoModel)
def info() -> InfoModel:
    return InfoModel(
        version=settings.app_version,
        git_sha=settings.git_sha,
        arch=platform.machine() or "unknown",
        hostname=socket.gethostname(),
    )


@app.get("/metrics")
def metrics() -> Response:
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)


@app.post("/analyze", response_model=AnalysisResponse)
def analyze(
    file: UploadFile | None = File(default=None),
    service: AnalyzerService = Depends(get_analyzer_service),
) -> AnalysisResponse:
    try:
        with track_analysis():
            report = service.analyze_upload(file)
    except AnalysisError as error:
        raise HTTPException(status_code=error.status_code, detail=error.message) from error
    return _report_to_model(report)


__all__ = ["app"]
