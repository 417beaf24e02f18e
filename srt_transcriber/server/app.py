"""FastAPI application with job management routes and OpenAPI docs.

WHY: The transcription queue is driven from a browser or scripts: add
audio files, tweak settings, start or retry jobs, watch progress and
download the results. FastAPI provides automatic OpenAPI documentation,
request validation, and background task support.

HOW: A single FastAPI app exposes the job store over REST. Uploading a
file creates an idle job with the saved default settings (overridable
per request). Starting a job moves it to processing synchronously and
runs the pipeline in a background task, so clients poll GET /jobs/{id}.

RULES:
- All endpoints have OpenAPI descriptions on every parameter and response
- Error responses use a consistent ErrorResponse schema
- Background runs use FastAPI BackgroundTasks
- The job store and settings storage are module-level singletons
- File validation checks extension against SUPPORTED_AUDIO_FORMATS
- Custom dictionary paths must resolve inside DICTIONARY_DIR
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Annotated, List, Optional

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response

from srt_transcriber import __version__, config
from srt_transcriber.core.job import Job, JobStatus, SrtSettings
from srt_transcriber.core.srt import dictionary_filename, subtitle_filename
from srt_transcriber.server.jobs import JobStateError, JobStore
from srt_transcriber.server.models import (
    BulkActionResponse,
    ErrorResponse,
    HealthResponse,
    JobCreatedResponse,
    JobResponse,
    SettingsModel,
    StatusCountsResponse,
)
from srt_transcriber.server.pipeline import JobPipeline
from srt_transcriber.services.base import TranscriptionService
from srt_transcriber.services.gemini import GeminiTranscriptionService
from srt_transcriber.settings_storage import SettingsStorage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

job_store = JobStore()
settings_storage = SettingsStorage()

app = FastAPI(
    title="SRT Transcriber API",
    description=(
        "REST API for turning audio files into SRT subtitles with Gemini. "
        "Upload files, start jobs on the basic or four-stage advanced "
        "pipeline, poll for progress, and download subtitles and dictionaries."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Job not found"}}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_job_or_404(job_id: str) -> Job:
    job = job_store.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return job


def _validate_file_extension(filename: str) -> None:
    """Raise HTTPException if the file extension is not supported."""
    ext = Path(filename).suffix.lower()
    if ext not in config.SUPPORTED_AUDIO_FORMATS:
        raise HTTPException(
            status_code=400,
            detail="Unsupported file type '{}'. Supported formats: {}".format(
                ext, ", ".join(sorted(config.SUPPORTED_AUDIO_FORMATS))
            ),
        )


def _confine_dictionary_path(settings: SrtSettings) -> SrtSettings:
    """Resolve the custom dictionary path inside DICTIONARY_DIR.

    RULES:
    - Relative names are taken relative to DICTIONARY_DIR
    - Anything that resolves outside DICTIONARY_DIR is a 400
    - The stored path is the resolved absolute one
    """
    if not settings.custom_dictionary_path:
        return settings
    root = config.DICTIONARY_DIR.resolve()
    candidate = (root / settings.custom_dictionary_path).resolve()
    if root not in candidate.parents:
        raise HTTPException(
            status_code=400,
            detail="Custom dictionary must be a file inside {}".format(root),
        )
    return replace(settings, custom_dictionary_path=str(candidate))


def _make_service() -> TranscriptionService:
    return GeminiTranscriptionService()


async def _run_job(job: Job, store: JobStore) -> None:
    """Run the pipeline for a job that begin_run() already moved to processing.

    RULES:
    - A missing API key marks the job as errored instead of raising
    - Everything else is handled by JobPipeline.execute()
    """
    try:
        service = _make_service()
    except ValueError as exc:
        logger.error("Cannot run job %s: %s", job.id, exc)
        store.update_job(
            job.id,
            run_token=job.run_token,
            status=JobStatus.ERROR,
            progress=None,
            error=str(exc),
        )
        return

    await JobPipeline(store, service).execute(job)


def _run_job_sync(job: Job, store: JobStore) -> None:
    """Synchronous wrapper for the async pipeline.

    WHY: FastAPI BackgroundTasks run synchronous callables in a thread
    pool. This wraps the async pipeline with asyncio.run().
    """
    asyncio.run(_run_job(job, store))


def _start(job_id: str, background_tasks: BackgroundTasks) -> Job:
    try:
        job = job_store.begin_run(job_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    except JobStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    background_tasks.add_task(_run_job_sync, job, job_store)
    return job


def _attachment(content: str, media_type: str, filename: str) -> Response:
    return Response(
        content=content.encode("utf-8"),
        media_type=media_type,
        headers={"Content-Disposition": 'attachment; filename="{}"'.format(filename)},
    )


# ---------------------------------------------------------------------------
# Endpoints: Jobs
# ---------------------------------------------------------------------------


@app.post(
    "/jobs",
    response_model=JobCreatedResponse,
    status_code=201,
    tags=["jobs"],
    summary="Add an audio file",
    description=(
        "Upload an audio file and create an idle job. Settings not given in "
        "the form fall back to the saved defaults. Set start=true to start "
        "the job right away."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid file type or settings"},
        429: {"model": ErrorResponse, "description": "Too many jobs"},
    },
)
async def create_job(
    background_tasks: BackgroundTasks,
    file: Annotated[
        UploadFile,
        File(description="Audio file to transcribe (wav, mp3, aiff, aac, ogg, flac, m4a)"),
    ],
    max_chars_per_subtitle: Annotated[
        Optional[int],
        Form(description="Target maximum characters per subtitle block."),
    ] = None,
    enable_speaker_detection: Annotated[
        Optional[bool],
        Form(description="Prefix subtitles with speaker names."),
    ] = None,
    remove_filler_words: Annotated[
        Optional[bool],
        Form(description="Ask the model to drop filler words."),
    ] = None,
    enable_advanced_processing: Annotated[
        Optional[bool],
        Form(description="Use the four-stage advanced pipeline."),
    ] = None,
    custom_dictionary_path: Annotated[
        Optional[str],
        Form(
            description=(
                "CSV dictionary inside the server's dictionary directory "
                "(advanced path only)."
            )
        ),
    ] = None,
    start: Annotated[
        bool,
        Form(description="Start the job immediately."),
    ] = False,
) -> JobCreatedResponse:
    # Sanitize filename to prevent path traversal
    filename = Path(file.filename or "upload").name
    _validate_file_extension(filename)

    overrides = {
        "max_chars_per_subtitle": max_chars_per_subtitle,
        "enable_speaker_detection": enable_speaker_detection,
        "remove_filler_words": remove_filler_words,
        "enable_advanced_processing": enable_advanced_processing,
        "custom_dictionary_path": custom_dictionary_path,
    }
    values = settings_storage.load().to_dict()
    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        settings = SrtSettings(**values)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    settings = _confine_dictionary_path(settings)

    try:
        job = job_store.create_job(filename=filename, settings=settings)
    except ValueError as exc:
        raise HTTPException(status_code=429, detail=str(exc))

    job.source_path.write_bytes(await file.read())

    if start:
        job = _start(job.id, background_tasks)

    return JobCreatedResponse(id=job.id, status=job.status.value, filename=job.filename)


@app.get(
    "/jobs",
    response_model=List[JobResponse],
    tags=["jobs"],
    summary="List all jobs",
    description="Returns every job in the active set, oldest first.",
)
async def list_jobs() -> List[JobResponse]:
    return [JobResponse.from_job(job) for job in job_store.list_jobs()]


@app.get(
    "/jobs/summary",
    response_model=StatusCountsResponse,
    tags=["jobs"],
    summary="Count jobs per status",
    description="Returns the number of idle, processing, completed and errored jobs.",
)
async def job_summary() -> StatusCountsResponse:
    counts = job_store.status_counts()
    return StatusCountsResponse(
        idle=counts[JobStatus.IDLE],
        processing=counts[JobStatus.PROCESSING],
        completed=counts[JobStatus.COMPLETED],
        error=counts[JobStatus.ERROR],
        total=sum(counts.values()),
    )


@app.post(
    "/jobs/clear",
    response_model=BulkActionResponse,
    tags=["jobs"],
    summary="Remove finished jobs",
    description="Delete every completed job, or every errored job.",
    responses={400: {"model": ErrorResponse, "description": "Invalid status"}},
)
async def clear_jobs(
    status: Annotated[
        str,
        Query(description="Which jobs to remove: 'completed' or 'error'."),
    ] = "completed",
) -> BulkActionResponse:
    try:
        removed = job_store.clear_jobs(JobStatus(status))
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail="Cannot clear jobs with status '{}'. Use 'completed' or 'error'.".format(
                status
            ),
        )
    return BulkActionResponse(affected=removed)


@app.post(
    "/jobs/retry-errors",
    response_model=BulkActionResponse,
    tags=["jobs"],
    summary="Reset errored jobs",
    description="Return every errored job to idle so it can be started again.",
)
async def retry_errors() -> BulkActionResponse:
    return BulkActionResponse(affected=job_store.reset_errors())


@app.put(
    "/jobs/settings",
    response_model=BulkActionResponse,
    tags=["jobs"],
    summary="Apply settings to all jobs",
    description="Replace the settings of every job that is not currently processing.",
    responses={400: {"model": ErrorResponse, "description": "Dictionary path not allowed"}},
)
async def apply_settings(settings: SettingsModel) -> BulkActionResponse:
    confined = _confine_dictionary_path(settings.to_settings())
    return BulkActionResponse(affected=job_store.apply_settings(confined))


@app.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    tags=["jobs"],
    summary="Get job state",
    description=(
        "Poll this endpoint to follow a job. Advanced jobs include all four "
        "stages with their status, result or error."
    ),
    responses=_NOT_FOUND,
)
async def get_job(job_id: str) -> JobResponse:
    return JobResponse.from_job(_get_job_or_404(job_id))


@app.post(
    "/jobs/{job_id}/start",
    response_model=JobResponse,
    status_code=202,
    tags=["jobs"],
    summary="Start or retry a job",
    description=(
        "Runs the job's selected pipeline from the first step. Only idle "
        "and errored jobs can be started."
    ),
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Job is processing or completed"},
    },
)
async def start_job(job_id: str, background_tasks: BackgroundTasks) -> JobResponse:
    return JobResponse.from_job(_start(job_id, background_tasks))


@app.post(
    "/jobs/{job_id}/cancel",
    response_model=JobResponse,
    tags=["jobs"],
    summary="Cancel a running job",
    description=(
        "Returns a processing job to idle. A model call already in flight "
        "keeps running, but its result is discarded."
    ),
    responses=_NOT_FOUND,
)
async def cancel_job(job_id: str) -> JobResponse:
    job = job_store.cancel_run(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return JobResponse.from_job(job)


@app.delete(
    "/jobs/{job_id}",
    status_code=204,
    tags=["jobs"],
    summary="Delete a job",
    description="Remove a job and its uploaded audio from the active set.",
    responses=_NOT_FOUND,
)
async def delete_job(job_id: str) -> Response:
    if not job_store.delete_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found: {}".format(job_id))
    return Response(status_code=204)


@app.get(
    "/jobs/{job_id}/subtitles.srt",
    tags=["downloads"],
    summary="Download the SRT result",
    description=(
        "Download the raw SRT text of a completed job as "
        "<audio name>_subtitles.srt. Available even when validation failed."
    ),
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Job has no result yet"},
    },
)
async def download_subtitles(job_id: str) -> Response:
    job = _get_job_or_404(job_id)
    if job.result is None:
        raise HTTPException(
            status_code=409,
            detail="Job has no result (current status: {}).".format(job.status.value),
        )
    return _attachment(job.result, "application/x-subrip", subtitle_filename(job.filename))


@app.get(
    "/jobs/{job_id}/dictionary.csv",
    tags=["downloads"],
    summary="Download the dictionary",
    description="Download the dictionary CSV built (or loaded) by an advanced job.",
    responses={
        **_NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Job has no dictionary"},
    },
)
async def download_dictionary(job_id: str) -> Response:
    job = _get_job_or_404(job_id)
    if job.dictionary is None:
        raise HTTPException(status_code=409, detail="Job has no dictionary.")
    return _attachment(job.dictionary, "text/csv", dictionary_filename(job.filename))


# ---------------------------------------------------------------------------
# Endpoints: Default settings
# ---------------------------------------------------------------------------


@app.get(
    "/settings/defaults",
    response_model=SettingsModel,
    tags=["settings"],
    summary="Get default settings",
    description="Settings given to new jobs when the upload does not override them.",
)
async def get_default_settings() -> SettingsModel:
    return SettingsModel.from_settings(settings_storage.load())


@app.put(
    "/settings/defaults",
    response_model=SettingsModel,
    tags=["settings"],
    summary="Save default settings",
    description="Persist new default settings for future jobs.",
    responses={400: {"model": ErrorResponse, "description": "Dictionary path not allowed"}},
)
async def save_default_settings(settings: SettingsModel) -> SettingsModel:
    confined = _confine_dictionary_path(settings.to_settings())
    settings_storage.save(confined)
    return SettingsModel.from_settings(confined)


@app.delete(
    "/settings/defaults",
    response_model=SettingsModel,
    tags=["settings"],
    summary="Reset default settings",
    description="Forget the saved defaults and return the built-in ones.",
)
async def reset_default_settings() -> SettingsModel:
    return SettingsModel.from_settings(settings_storage.reset())


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api():
    """Entry point for the srt-transcriber-api console script."""
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
