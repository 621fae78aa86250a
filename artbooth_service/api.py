"""
FastAPI layer exposing the transformation queue.

Endpoints:
 - GET /health
 - POST /jobs
 - GET /jobs
 - GET /jobs/{job_id}
 - POST /jobs/{job_id}/retry
 - GET /jobs/{job_id}/result
"""

from __future__ import annotations

import base64
import binascii
from contextlib import asynccontextmanager
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field, HttpUrl
import requests

from . import config
from .errors import InvalidPixelBuffer
from .preprocessing import load_pixel_buffer_from_bytes
from .scheduler import JobScheduler, build_scheduler

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

_scheduler: Optional[JobScheduler] = None


def get_scheduler() -> JobScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = build_scheduler(settings).start()
    return _scheduler


@asynccontextmanager
async def lifespan(_app: FastAPI):
    get_scheduler()
    yield
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None


app = FastAPI(title="Art Booth Transformation Service", version="0.1.0", lifespan=lifespan)


class TransformationSpec(BaseModel):
    type: Optional[str] = None
    params: Dict[str, Optional[float]] = Field(default_factory=dict)


class SubmitJobRequest(BaseModel):
    imageUrl: Optional[HttpUrl] = None
    imageData: Optional[str] = None  # base64, optionally a data: URL
    transformation: TransformationSpec = Field(default_factory=TransformationSpec)


class SubmitJobResponse(BaseModel):
    jobId: str
    status: str


class JobView(BaseModel):
    jobId: str
    type: str
    params: Dict[str, float]
    status: str
    progress: int
    attempt: int
    width: int
    height: int
    hasResult: bool
    error: Optional[Dict[str, Any]] = None
    createdAt: float


def _decode_base64_image(value: str) -> bytes:
    raw = value.strip()
    if raw.startswith("data:"):
        _, _, raw = raw.partition(",")
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("imageData is not valid base64") from exc


def _download_image(url: str) -> bytes:
    resp = requests.get(url, timeout=(5, settings.request_timeout_seconds))
    resp.raise_for_status()
    return resp.content


def _job_or_404(job_id: str):
    job = get_scheduler().get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.get("/health")
def health():
    return {"status": "ok", "jobs": get_scheduler().counts()}


@app.post("/jobs", response_model=SubmitJobResponse)
def submit_job(body: SubmitJobRequest):
    if body.imageData:
        try:
            image_bytes = _decode_base64_image(body.imageData)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve)) from ve
    elif body.imageUrl:
        try:
            image_bytes = _download_image(str(body.imageUrl))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to download image: %s", exc)
            raise HTTPException(status_code=400, detail="Could not download image") from exc
    else:
        raise HTTPException(status_code=400, detail="Provide imageData or imageUrl")

    kind = body.transformation.type or settings.default_transformation
    try:
        buffer = load_pixel_buffer_from_bytes(image_bytes, settings.max_long_edge)
        job_id = get_scheduler().enqueue(buffer, kind, body.transformation.params)
    except (InvalidPixelBuffer, ValueError) as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve

    job = get_scheduler().get(job_id)
    return SubmitJobResponse(jobId=job_id, status=job.status.value)


@app.get("/jobs", response_model=List[JobView])
def list_jobs():
    return [JobView(**job.view()) for job in get_scheduler().jobs()]


@app.get("/jobs/{job_id}", response_model=JobView)
def read_job(job_id: str):
    return JobView(**_job_or_404(job_id).view())


@app.post("/jobs/{job_id}/retry", response_model=JobView)
def retry_job(job_id: str):
    _job_or_404(job_id)
    get_scheduler().retry(job_id)
    return JobView(**_job_or_404(job_id).view())


@app.get("/jobs/{job_id}/result")
def get_result(job_id: str):
    job = _job_or_404(job_id)
    if job.result is None:
        raise HTTPException(status_code=404, detail="Result not available")
    try:
        png_bytes = job.result.to_png_bytes(dpi=settings.print_dpi)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Failed to encode result for %s: %s", job_id, exc)
        raise HTTPException(status_code=500, detail="Result encoding failed") from exc
    return Response(content=png_bytes, media_type="image/png")
