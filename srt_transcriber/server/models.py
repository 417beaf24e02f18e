"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. Jobs are
internal frozen dataclasses; these models are the public view of them.

HOW: One model per response body, plus SettingsModel which is used both
as a request body and inside job responses. Converters from the
internal dataclasses live next to the models they produce.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Status values are the string values of the internal enums
- Response models never expose internal details (work dirs, run tokens)
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from srt_transcriber import config
from srt_transcriber.core.job import Job, SrtSettings
from srt_transcriber.core.stages import merge_stages


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SettingsModel(BaseModel):
    """Subtitle generation settings of a job (or the saved defaults)."""

    max_chars_per_subtitle: int = Field(
        default=config.DEFAULT_MAX_CHARS_PER_SUBTITLE,
        gt=0,
        description="Target maximum characters per subtitle block.",
    )
    enable_speaker_detection: bool = Field(
        default=config.DEFAULT_SPEAKER_DETECTION,
        description="Prefix subtitles with speaker names.",
    )
    remove_filler_words: bool = Field(
        default=config.DEFAULT_REMOVE_FILLER_WORDS,
        description="Ask the model to drop filler words (um, uh, ...).",
    )
    enable_advanced_processing: bool = Field(
        default=config.DEFAULT_ADVANCED_PROCESSING,
        description=(
            "Use the four-stage pipeline: initial transcript, topic analysis, "
            "dictionary creation and final subtitles."
        ),
    )
    custom_dictionary_path: Optional[str] = Field(
        default=None,
        description=(
            "CSV dictionary used instead of generating one. Over HTTP it must "
            "lie inside the server's dictionary directory."
        ),
    )

    def to_settings(self) -> SrtSettings:
        return SrtSettings(**self.model_dump())

    @classmethod
    def from_settings(cls, settings: SrtSettings) -> SettingsModel:
        return cls(**settings.to_dict())


# ---------------------------------------------------------------------------
# Job responses
# ---------------------------------------------------------------------------


class StageResponse(BaseModel):
    """One stage of the advanced pipeline."""

    name: str = Field(description="Display name of the stage.")
    status: str = Field(description="pending, processing, completed or error.")
    description: Optional[str] = Field(default=None, description="What the stage does.")
    result: Optional[str] = Field(default=None, description="Stage output once completed.")
    error: Optional[str] = Field(default=None, description="Failure detail once errored.")


class ValidationResponse(BaseModel):
    """Structural check of the generated SRT text."""

    is_valid: bool = Field(description="True when no structural errors were found.")
    errors: List[str] = Field(description="Every structural error found.")


class SubtitleResponse(BaseModel):
    """One parsed subtitle block."""

    index: int = Field(description="1-based position of the block.")
    start_time: str = Field(description="Start timestamp (HH:MM:SS,mmm).")
    end_time: str = Field(description="End timestamp (HH:MM:SS,mmm).")
    text: str = Field(description="Subtitle text, possibly multi-line.")


class JobResponse(BaseModel):
    """Full state of a transcription job.

    RULES:
    - subtitles is only present when validation passed
    - stages always carries all four stages on advanced jobs
    """

    id: str = Field(description="Unique job identifier.")
    filename: str = Field(description="Uploaded audio filename.")
    status: str = Field(description="idle, processing, completed or error.")
    settings: SettingsModel = Field(description="Settings snapshot used by the job.")
    created_at: float = Field(description="Unix timestamp when the job was created.")
    updated_at: float = Field(description="Unix timestamp of the last change.")
    completed_at: Optional[float] = Field(
        default=None, description="Unix timestamp when the job finished."
    )
    progress: Optional[str] = Field(default=None, description="Current step label.")
    result: Optional[str] = Field(default=None, description="Raw SRT text returned by the model.")
    subtitles: Optional[List[SubtitleResponse]] = Field(
        default=None, description="Parsed subtitles (withheld when the SRT is invalid)."
    )
    validation: Optional[ValidationResponse] = Field(
        default=None, description="Structural validation of the result."
    )
    stages: Optional[Dict[str, StageResponse]] = Field(
        default=None, description="Advanced pipeline stages keyed by stage name."
    )
    dictionary: Optional[str] = Field(default=None, description="Dictionary CSV text.")
    dictionary_path: Optional[str] = Field(
        default=None, description="Where the dictionary was exported or loaded from."
    )
    analyzed_topic: Optional[str] = Field(default=None, description="Topic analysis text.")
    error: Optional[str] = Field(default=None, description="Error message if the job failed.")

    @classmethod
    def from_job(cls, job: Job) -> JobResponse:
        stages = None
        if job.stages is not None:
            stages = {
                key.value: StageResponse(
                    name=state.name,
                    status=state.status.value,
                    description=state.description,
                    result=state.result,
                    error=state.error,
                )
                for key, state in merge_stages(job.stages).items()
            }

        subtitles = None
        if job.subtitles is not None:
            subtitles = [
                SubtitleResponse(
                    index=s.index, start_time=s.start_time, end_time=s.end_time, text=s.text
                )
                for s in job.subtitles
            ]

        validation = None
        if job.validation is not None:
            validation = ValidationResponse(
                is_valid=job.validation.is_valid, errors=list(job.validation.errors)
            )

        return cls(
            id=job.id,
            filename=job.filename,
            status=job.status.value,
            settings=SettingsModel.from_settings(job.settings),
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            progress=job.progress,
            result=job.result,
            subtitles=subtitles,
            validation=validation,
            stages=stages,
            dictionary=job.dictionary,
            dictionary_path=job.dictionary_path,
            analyzed_topic=job.analyzed_topic,
            error=job.error,
        )


class JobCreatedResponse(BaseModel):
    """Response after a file was accepted."""

    id: str = Field(description="Unique job identifier for polling.")
    status: str = Field(description="Initial job status (always 'idle').")
    filename: str = Field(description="Uploaded audio filename.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "status": "idle",
                "filename": "lecture.mp3",
            }
        ]
    }}


# ---------------------------------------------------------------------------
# Bulk actions
# ---------------------------------------------------------------------------


class StatusCountsResponse(BaseModel):
    """Number of jobs per status."""

    idle: int = Field(description="Jobs waiting to be started.")
    processing: int = Field(description="Jobs currently running.")
    completed: int = Field(description="Finished jobs.")
    error: int = Field(description="Failed jobs.")
    total: int = Field(description="All jobs.")


class BulkActionResponse(BaseModel):
    """Result of an action applied to many jobs at once."""

    affected: int = Field(description="Number of jobs the action changed or removed.")


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    """

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
