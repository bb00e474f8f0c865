"""Endpoints for starting, observing and steering CSV inventory imports."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncGenerator, NoReturn

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import StreamingResponse

from inventory_import.api.dependencies.runner import get_job_runner
from inventory_import.api.routers.job_helpers import (
    serialize_errors,
    serialize_snapshot,
    sse_frame,
)
from inventory_import.api.schemas.job import ImportErrorRead, ImportJobStatus
from inventory_import.core.config import get_settings
from inventory_import.core.exceptions import (
    ImportServiceError,
    InvalidJobStateError,
    JobNotFoundError,
    MalformedInputError,
)
from inventory_import.services.import_models import ReconciliationMode
from inventory_import.services.job_runner import JobRunner

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_FOR_ERROR = {
    MalformedInputError: status.HTTP_400_BAD_REQUEST,
    JobNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidJobStateError: status.HTTP_409_CONFLICT,
}


def _raise_http(exc: Exception, context: str) -> NoReturn:
    """Translate service exceptions into HTTP errors."""
    if isinstance(exc, ImportServiceError):
        for error_type, status_code in _STATUS_FOR_ERROR.items():
            if isinstance(exc, error_type):
                raise HTTPException(status_code=status_code, detail=exc.message) from exc
    logger.error(f"Unexpected error {context}: {exc}", exc_info=True)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred",
    ) from exc


@router.post(
    "/",
    summary="Start a CSV import job",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportJobStatus,
)
async def start_import(
    file: UploadFile = File(...),
    mode: ReconciliationMode = Form(ReconciliationMode.UPSERT),
    runner: JobRunner = Depends(get_job_runner),
) -> ImportJobStatus:
    """Validate the upload, register a job and start processing it in the background."""
    try:
        if not file.filename:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Filename is required",
            )
        if not file.filename.lower().endswith(".csv"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only CSV uploads are supported",
            )

        content = await file.read()
        if not content.strip():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Uploaded file is empty",
            )
        max_bytes = get_settings().max_upload_bytes
        if len(content) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File exceeds the {max_bytes} byte upload limit",
            )

        snap = runner.submit(content, mode)
        logger.info(f"Created import job {snap.job_id} for file {file.filename}")
        return serialize_snapshot(snap)
    except HTTPException:
        raise
    except Exception as exc:
        _raise_http(exc, "starting import")


@router.get("/", summary="List import jobs", response_model=list[ImportJobStatus])
async def list_imports(runner: JobRunner = Depends(get_job_runner)) -> list[ImportJobStatus]:
    try:
        return [serialize_snapshot(snap) for snap in runner.list()]
    except Exception as exc:
        _raise_http(exc, "listing imports")


@router.get("/{job_id}", summary="Fetch the latest progress of a job", response_model=ImportJobStatus)
async def get_import(job_id: str, runner: JobRunner = Depends(get_job_runner)) -> ImportJobStatus:
    try:
        return serialize_snapshot(runner.get(job_id))
    except Exception as exc:
        _raise_http(exc, f"fetching import {job_id}")


@router.get(
    "/{job_id}/errors",
    summary="List row errors of a job",
    response_model=list[ImportErrorRead],
)
async def get_import_errors(
    job_id: str, runner: JobRunner = Depends(get_job_runner)
) -> list[ImportErrorRead]:
    try:
        return serialize_errors(runner.errors(job_id))
    except Exception as exc:
        _raise_http(exc, f"fetching errors for import {job_id}")


@router.get("/{job_id}/stream", summary="Server-Sent Events stream for real-time progress")
async def stream_import(job_id: str, runner: JobRunner = Depends(get_job_runner)) -> StreamingResponse:
    """Stream progress via Server-Sent Events.

    One `data:` frame is sent per new snapshot. The stream ends with
    `event: close` once the job reaches completed or error.
    """
    try:
        runner.get(job_id)
    except Exception as exc:
        _raise_http(exc, f"opening stream for import {job_id}")

    poll_interval = get_settings().stream_poll_interval

    async def event_generator() -> AsyncGenerator[str, None]:
        last_sequence = -1
        while True:
            try:
                snap = runner.get(job_id)
            except JobNotFoundError:
                yield f"event: error\ndata: {json.dumps({'error': 'Job not found'})}\n\n"
                break

            if snap.sequence != last_sequence:
                last_sequence = snap.sequence
                yield sse_frame(serialize_snapshot(snap))

            if snap.is_terminal:
                yield "event: close\ndata: {}\n\n"
                break

            await asyncio.sleep(poll_interval)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.post("/{job_id}/pause", summary="Pause a running import", response_model=ImportJobStatus)
async def pause_import(job_id: str, runner: JobRunner = Depends(get_job_runner)) -> ImportJobStatus:
    try:
        return serialize_snapshot(runner.pause(job_id))
    except Exception as exc:
        _raise_http(exc, f"pausing import {job_id}")


@router.post("/{job_id}/resume", summary="Resume a paused import", response_model=ImportJobStatus)
async def resume_import(job_id: str, runner: JobRunner = Depends(get_job_runner)) -> ImportJobStatus:
    try:
        return serialize_snapshot(runner.resume(job_id))
    except Exception as exc:
        _raise_http(exc, f"resuming import {job_id}")


@router.post("/{job_id}/cancel", summary="Cancel an import", response_model=ImportJobStatus)
async def cancel_import(job_id: str, runner: JobRunner = Depends(get_job_runner)) -> ImportJobStatus:
    """Request cancellation. Rows already imported are kept."""
    try:
        return serialize_snapshot(runner.cancel(job_id))
    except Exception as exc:
        _raise_http(exc, f"cancelling import {job_id}")


@router.delete(
    "/{job_id}",
    summary="Discard a finished import",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
async def discard_import(job_id: str, runner: JobRunner = Depends(get_job_runner)) -> Response:
    try:
        runner.discard(job_id)
    except Exception as exc:
        _raise_http(exc, f"discarding import {job_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
