"""In-memory job store with run tokens and bulk actions.

WHY: The pipeline, the HTTP API and the CLI all need one owner for the
active job set. Jobs outlive a single pipeline run (retry re-runs them),
and a run the user has abandoned can still finish later, so the store
must be able to tell a current run's updates from a stale one's.

HOW: Jobs are frozen dataclasses stored in a dict keyed by ID. Every
update builds a new Job with ``dataclasses.replace`` and swaps it in
under a lock. ``begin_run`` hands out a monotonically increasing run
token; updates carrying an older token are dropped.

RULES:
- All store mutations are protected by threading.Lock
- Each job gets a dedicated temp directory holding the uploaded audio
- get_job() returns None for unknown IDs (no exceptions)
- Only idle or errored jobs can be started; a start resets all results
- update_job() with a stale run_token changes nothing and returns None
- completed_at is set when a job reaches a terminal state
- Jobs leave the store only by delete_job() or a bulk clear
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import time
import uuid
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from srt_transcriber.core.job import Job, JobStatus, SrtSettings

logger = logging.getLogger(__name__)

DEFAULT_MAX_JOBS = 100

_STARTABLE = (JobStatus.IDLE, JobStatus.ERROR)
_UPDATABLE_FIELDS = frozenset(f.name for f in fields(Job)) - {
    "id",
    "filename",
    "work_dir",
    "created_at",
    "updated_at",
    "completed_at",
    "run_token",
}

# Everything a run produces; cleared when a new run starts.
_RUN_RESET: Dict[str, Any] = {
    "progress": None,
    "result": None,
    "subtitles": None,
    "validation": None,
    "stages": None,
    "dictionary": None,
    "dictionary_path": None,
    "analyzed_topic": None,
    "error": None,
    "completed_at": None,
}


class JobStateError(Exception):
    """Raised when a job is asked to do something its status does not allow."""


class JobStore:
    """Thread-safe in-memory store for transcription jobs.

    RULES:
    - create_job() generates a UUID, creates a temp dir, and stores the job
    - begin_run() moves an idle/errored job to processing and returns its token
    - cancel_run() invalidates the current run and returns the job to idle
    - delete_job() removes the job and cleans up its temp directory
    - on_change (if given) is called with every job update_job() stores
    """

    def __init__(
        self,
        max_jobs: int = DEFAULT_MAX_JOBS,
        on_change: Optional[Callable[[Job], None]] = None,
    ) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()
        self.max_jobs = max_jobs
        self.on_change = on_change

    def create_job(
        self,
        filename: str,
        settings: Optional[SrtSettings] = None,
    ) -> Job:
        """Create a new idle job with a dedicated working directory.

        RULES:
        - Raises ValueError when max_jobs jobs already exist
        - The uploaded audio belongs at job.source_path
        """
        with self._lock:
            if len(self._jobs) >= self.max_jobs:
                raise ValueError(
                    "Maximum number of jobs ({}) reached".format(self.max_jobs)
                )

            now = time.time()
            job = Job(
                id=uuid.uuid4().hex,
                filename=Path(filename).name,
                work_dir=Path(tempfile.mkdtemp(prefix="srt_job_")),
                settings=settings or SrtSettings(),
                created_at=now,
                updated_at=now,
            )
            self._jobs[job.id] = job

        logger.info("Created job %s for file %s", job.id, job.filename)
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[Job]:
        """Return all jobs, oldest first."""
        with self._lock:
            return sorted(self._jobs.values(), key=lambda j: j.created_at)

    def status_counts(self) -> Dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}
        with self._lock:
            for job in self._jobs.values():
                counts[job.status] += 1
        return counts

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def begin_run(self, job_id: str) -> Job:
        """Start a fresh run of a job and return the job carrying the new token.

        RULES:
        - Raises KeyError for unknown job IDs
        - Raises JobStateError unless the job is idle or errored
        - All results of the previous run are cleared
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            if job.status not in _STARTABLE:
                raise JobStateError(
                    "Job {} cannot be started while {}".format(job_id, job.status.value)
                )
            job = replace(
                job,
                status=JobStatus.PROCESSING,
                run_token=job.run_token + 1,
                updated_at=time.time(),
                **_RUN_RESET,
            )
            self._jobs[job_id] = job
            return job

    def cancel_run(self, job_id: str) -> Optional[Job]:
        """Abandon the current run: the job goes back to idle.

        Partial results and stage states of the abandoned run are cleared.
        The in-flight external call keeps running; its late updates carry
        the old token and are discarded by update_job().
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return job
            job = replace(
                job,
                status=JobStatus.IDLE,
                run_token=job.run_token + 1,
                updated_at=time.time(),
                **_RUN_RESET,
            )
            self._jobs[job_id] = job

        logger.info("Cancelled current run of job %s", job_id)
        return job

    def update_job(
        self,
        job_id: str,
        run_token: Optional[int] = None,
        **changes: Any,
    ) -> Optional[Job]:
        """Replace a job with a copy that has ``changes`` applied.

        Values are applied as given, so ``progress=None`` clears progress.

        RULES:
        - Returns the new Job, or None if the job is gone or run_token is stale
        - Unknown or read-only field names raise TypeError
        - updated_at is always bumped; completed_at set on terminal status
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError("Cannot update job fields: {}".format(", ".join(sorted(unknown))))

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            if run_token is not None and run_token != job.run_token:
                logger.info(
                    "Discarding update from stale run %s of job %s (current %s)",
                    run_token,
                    job_id,
                    job.run_token,
                )
                return None

            now = time.time()
            job = replace(job, updated_at=now, **changes)
            if "status" in changes and job.is_finished:
                job = replace(job, completed_at=now)
            self._jobs[job_id] = job

        if self.on_change is not None:
            self.on_change(job)
        return job

    # ------------------------------------------------------------------
    # Bulk actions
    # ------------------------------------------------------------------

    def apply_settings(self, settings: SrtSettings) -> int:
        """Give every job that is not processing a copy of ``settings``."""
        now = time.time()
        with self._lock:
            targets = [
                job for job in self._jobs.values() if job.status != JobStatus.PROCESSING
            ]
            for job in targets:
                self._jobs[job.id] = replace(job, settings=settings, updated_at=now)
        return len(targets)

    def reset_errors(self) -> int:
        """Return all errored jobs to a clean idle state so they can be started again."""
        now = time.time()
        with self._lock:
            targets = [job for job in self._jobs.values() if job.status == JobStatus.ERROR]
            for job in targets:
                self._jobs[job.id] = replace(
                    job, status=JobStatus.IDLE, updated_at=now, **_RUN_RESET
                )
        return len(targets)

    def clear_jobs(self, status: JobStatus) -> int:
        """Delete every job in ``status`` (completed or error only)."""
        if status not in (JobStatus.COMPLETED, JobStatus.ERROR):
            raise ValueError("Only completed or errored jobs can be cleared")

        with self._lock:
            removed = [job for job in self._jobs.values() if job.status == status]
            for job in removed:
                del self._jobs[job.id]

        for job in removed:
            self._cleanup_work_dir(job.work_dir)
        logger.info("Cleared %d %s jobs", len(removed), status.value)
        return len(removed)

    def delete_job(self, job_id: str) -> bool:
        """Delete a job and its working directory; False if it did not exist."""
        with self._lock:
            job = self._jobs.pop(job_id, None)

        if job is None:
            return False

        self._cleanup_work_dir(job.work_dir)
        logger.info("Deleted job %s", job_id)
        return True

    @staticmethod
    def _cleanup_work_dir(work_dir: Path) -> None:
        """Best-effort removal of a job's working directory."""
        if work_dir.exists():
            try:
                shutil.rmtree(work_dir)
            except OSError:
                logger.warning("Failed to clean up temp dir: %s", work_dir)
