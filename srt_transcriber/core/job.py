"""Job and settings dataclasses shared by the store, pipeline and API.

WHY: One audio file's transcription accumulates a lot of state: the
settings snapshot, progress text, raw result, parsed subtitles,
validation report, per-stage status, dictionary and topic analysis.
Keeping it in one typed record lets the job store replace it atomically
and lets every layer read it the same way.

HOW: ``SrtSettings`` and ``Job`` are frozen dataclasses. The job store
produces updated copies with ``dataclasses.replace`` instead of mutating
in place, so a reader never sees a half-applied update.

RULES:
- settings is a snapshot taken at creation (or re-applied in bulk)
- subtitles is only set when validation passed
- stages is only set on the advanced path
- run_token identifies the pipeline run allowed to write to the job
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from srt_transcriber import config
from srt_transcriber.core.srt import SubtitleRecord, ValidationResult
from srt_transcriber.core.stages import StageKey, StageState


class JobStatus(str, enum.Enum):
    """Lifecycle of a job: idle → processing → completed | error."""

    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class SrtSettings:
    """Per-job subtitle generation settings.

    Attributes:
        max_chars_per_subtitle: Target maximum characters per subtitle block.
        enable_speaker_detection: Prefix subtitles with speaker names.
        remove_filler_words: Ask the model to drop filler words.
        enable_advanced_processing: Use the four-stage pipeline.
        custom_dictionary_path: CSV file used verbatim instead of
            generating a dictionary (advanced path only).
    """

    max_chars_per_subtitle: int = config.DEFAULT_MAX_CHARS_PER_SUBTITLE
    enable_speaker_detection: bool = config.DEFAULT_SPEAKER_DETECTION
    remove_filler_words: bool = config.DEFAULT_REMOVE_FILLER_WORDS
    enable_advanced_processing: bool = config.DEFAULT_ADVANCED_PROCESSING
    custom_dictionary_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_chars_per_subtitle <= 0:
            raise ValueError(
                "max_chars_per_subtitle must be positive, got {}".format(
                    self.max_chars_per_subtitle
                )
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SrtSettings":
        """Build settings from a dict, ignoring unknown keys."""
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass(frozen=True)
class Job:
    """State of one audio file's transcription.

    ``source_path`` is the uploaded audio kept in the job's working
    directory ``work_dir``; both live until the job is deleted.
    """

    id: str
    filename: str
    work_dir: Path
    settings: SrtSettings
    created_at: float
    updated_at: float
    status: JobStatus = JobStatus.IDLE
    progress: Optional[str] = None
    result: Optional[str] = None
    subtitles: Optional[List[SubtitleRecord]] = None
    validation: Optional[ValidationResult] = None
    stages: Optional[Dict[StageKey, StageState]] = None
    dictionary: Optional[str] = None
    dictionary_path: Optional[str] = None
    analyzed_topic: Optional[str] = None
    error: Optional[str] = None
    completed_at: Optional[float] = None
    run_token: int = 0

    @property
    def source_path(self) -> Path:
        return self.work_dir / self.filename

    @property
    def is_finished(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.ERROR)
