"""Export control plane: start, poll, cancel and download."""

import logging
import time
from collections.abc import AsyncIterator

from fastapi import APIRouter, status
from fastapi.responses import StreamingResponse

from timeline_export.api.deps import Delivery, Orchestrator
from timeline_export.exceptions import ExportNotReadyError
from timeline_export.schemas.export import (
    ExportJobStatus,
    ExportStartRequest,
    ExportStartResponse,
    ExportStatusResponse,
    MessageResponse,
)
from timeline_export.services.job_store import JobStatus

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/start",
    response_model=ExportStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_export(payload: ExportStartRequest, orchestrator: Orchestrator) -> ExportStartResponse:
    """
    Validate a timeline and start exporting it in the background.

    Validation errors fail the request (400) and no job is created.
    Warnings are returned alongside the job id.
    """
    tracks = [t.to_track() for t in payload.tracks]
    elements = [c.to_element() for c in payload.clips]
    job, warnings = await orchestrator.start_export(
        tracks, elements, payload.export_settings.to_settings()
    )
    return ExportStartResponse(job_id=job.id, warnings=warnings)


@router.get("/status/{job_id}", response_model=ExportStatusResponse)
async def get_export_status(job_id: str, orchestrator: Orchestrator) -> ExportStatusResponse:
    job = await orchestrator.get_job(job_id)
    return ExportStatusResponse(job=ExportJobStatus(**job.to_status_dict()))


@router.delete("/cancel/{job_id}", response_model=MessageResponse)
async def cancel_export(job_id: str, orchestrator: Orchestrator) -> MessageResponse:
    await orchestrator.cancel(job_id)
    return MessageResponse(message="Job cancelled")


@router.get("/download/{job_id}")
async def download_export(
    job_id: str,
    orchestrator: Orchestrator,
    delivery: Delivery,
) -> StreamingResponse:
    """Proxy the finished MP4 so browsers can save it without CORS trouble."""
    job = await orchestrator.get_job(job_id)
    if job.status != JobStatus.COMPLETED.value or not job.output_key:
        raise ExportNotReadyError()

    logger.info(f"[EXPORT] Proxying download for job {job_id}")
    chunks = delivery.open_artifact(job.output_key)
    # Pull the first chunk now so a missing artifact fails before headers go out
    first = await anext(chunks, b"")

    async def body() -> AsyncIterator[bytes]:
        if first:
            yield first
        async for chunk in chunks:
            yield chunk

    filename = f"video-export-{int(time.time() * 1000)}.mp4"
    return StreamingResponse(
        body(),
        media_type="video/mp4",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-cache",
        },
    )
