"""Job pipeline: drive one job through the basic or advanced path.

WHY: Turning an audio file into subtitles takes one to four slow,
independently failable model calls. The user needs to see where a job
is, keep whatever finished before a failure, and retry without a
previous (abandoned) run overwriting the new one.

HOW: ``JobPipeline.run`` starts a run in the JobStore (which hands out a
run token) and then follows the path selected by
``settings.enable_advanced_processing``. Every state change is written
through ``JobStore.update_job`` with the run token; a rejected update
means the run was superseded, and the pipeline stops quietly. Stage
progress is kept as a sparse map of updates and published through
``merge_stages`` so the job always carries all four stages.

RULES:
- Exceptions from the service never escape run()/execute(); they end up
  in Job.error (and the failing stage's error on the advanced path)
- Stages run strictly in order; a failed stage leaves later ones pending
- An SRT result that fails validation still completes the job; only
  ``subtitles`` is withheld
- A retry always starts from the first step
- Staged audio is released when the transcribe step ends, even on failure
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from srt_transcriber import config
from srt_transcriber.core.job import Job, JobStatus
from srt_transcriber.core.media import format_duration_label, probe_duration_ms
from srt_transcriber.core.prompts import (
    INITIAL_TRANSCRIPT_PROMPT,
    build_srt_prompt,
    extract_main_topic,
)
from srt_transcriber.core.srt import dictionary_filename, parse_srt, validate_srt
from srt_transcriber.core.stages import StageKey, StageState, merge_stages
from srt_transcriber.server.jobs import JobStore
from srt_transcriber.services.base import StagedFile, TranscriptionService

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Progress labels
# ---------------------------------------------------------------------------

BASIC_STEPS = (
    "Step 1/6: Staging file...",
    "Step 2/6: Reading audio duration...",
    "Step 3/6: Preparing prompt...",
    "Step 4/6: Sending audio to Gemini...",
    "Step 5/6: Generating subtitles (1-3 min)...",
    "Step 6/6: Validating subtitle format...",
)

INITIAL_PROGRESS = "Stage 1/4: Creating initial transcript..."
TOPIC_PROGRESS = "Stage 2/4: Analyzing topic..."
DICTIONARY_PROGRESS = "Stage 3/4: Building dictionary..."
CUSTOM_DICTIONARY_PROGRESS = "Stage 3/4: Loading custom dictionary..."
TOPIC_DICTIONARY_PROGRESS = 'Building dictionary for "{}"...'
FINAL_PROGRESS = "Stage 4/4: Generating final subtitles..."

DurationProbe = Callable[[Path], Optional[int]]


def _describe(exc: BaseException) -> str:
    """Error text for a job or stage; falls back to the exception type name."""
    return str(exc) or type(exc).__name__


class _RunSuperseded(Exception):
    """The job was cancelled, restarted or deleted while this run was active."""


class _StageFailed(Exception):
    def __init__(self, key: StageKey, cause: Exception) -> None:
        self.key = key
        self.cause = cause
        super().__init__(str(cause))


class _Run:
    """Write access to one job for the duration of one run token."""

    def __init__(self, store: JobStore, job: Job) -> None:
        self.store = store
        self.job_id = job.id
        self.token = job.run_token
        self.stage_updates: Dict[StageKey, StageState] = {}

    def update(self, **changes) -> Job:
        job = self.store.update_job(self.job_id, run_token=self.token, **changes)
        if job is None:
            raise _RunSuperseded(self.job_id)
        return job

    def stages(self) -> Dict[StageKey, StageState]:
        return merge_stages(self.stage_updates)

    def set_stage(self, key: StageKey, state: StageState, **changes) -> Job:
        self.stage_updates[key] = state
        return self.update(stages=self.stages(), **changes)


class JobPipeline:
    """Runs jobs from a JobStore against a TranscriptionService.

    RULES:
    - run() starts and executes a job (raises JobStateError if not startable)
    - execute() continues a job already moved to processing by begin_run()
    - Both return the job as stored after the run, or None if it was deleted
    """

    def __init__(
        self,
        store: JobStore,
        service: TranscriptionService,
        duration_probe: DurationProbe = probe_duration_ms,
        basic_model: Optional[str] = None,
        fast_model: Optional[str] = None,
    ) -> None:
        self.store = store
        self.service = service
        self.duration_probe = duration_probe
        self.basic_model = basic_model or config.GEMINI_BASIC_MODEL
        self.fast_model = fast_model or config.GEMINI_FAST_MODEL

    async def run(self, job_id: str) -> Optional[Job]:
        return await self.execute(self.store.begin_run(job_id))

    async def execute(self, job: Job) -> Optional[Job]:
        run = _Run(self.store, job)
        advanced = job.settings.enable_advanced_processing
        logger.info(
            "Starting %s run %d of job %s (%s)",
            "advanced" if advanced else "basic",
            run.token,
            job.id,
            job.filename,
        )

        try:
            if advanced:
                await self._run_advanced(run, job)
            else:
                await self._run_basic(run, job)
        except _RunSuperseded:
            logger.info("Run %d of job %s was superseded; stopping", run.token, job.id)
        except Exception as exc:
            logger.exception("Transcription failed for job %s", job.id)
            self.store.update_job(
                job.id,
                run_token=run.token,
                status=JobStatus.ERROR,
                progress=None,
                error="Transcription failed: {}".format(_describe(exc)),
            )

        return self.store.get_job(job.id)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _stage_file(self, job: Job) -> StagedFile:
        return await self.service.stage_file(job.source_path.read_bytes(), job.filename)

    async def _release(self, staged: StagedFile) -> None:
        try:
            await self.service.release_file(staged)
        except Exception:
            logger.warning("Could not release staged file %s", staged.name, exc_info=True)

    def _probe_duration(self, job: Job) -> Optional[int]:
        try:
            return self.duration_probe(job.source_path)
        except Exception:
            logger.warning("Duration probe failed for %s", job.source_path, exc_info=True)
            return None

    def _complete(self, run: _Run, text: str) -> Job:
        """Validate the SRT text and mark the job completed."""
        validation = validate_srt(text)
        if validation.is_valid:
            subtitles = parse_srt(text)
        else:
            subtitles = None
            logger.warning(
                "Job %s produced invalid SRT (%d errors)",
                run.job_id,
                len(validation.errors),
            )

        job = run.update(
            status=JobStatus.COMPLETED,
            progress=None,
            result=text,
            subtitles=subtitles,
            validation=validation,
        )
        logger.info("Job %s completed", run.job_id)
        return job

    # ------------------------------------------------------------------
    # Basic path
    # ------------------------------------------------------------------

    async def _run_basic(self, run: _Run, job: Job) -> None:
        settings = job.settings
        run.update(progress=BASIC_STEPS[0])
        staged = await self._stage_file(job)
        try:
            run.update(progress=BASIC_STEPS[1])
            duration_ms = self._probe_duration(job)

            run.update(progress=BASIC_STEPS[2])
            prompt = build_srt_prompt(
                settings.max_chars_per_subtitle,
                settings.enable_speaker_detection,
                remove_filler_words=settings.remove_filler_words,
                duration_label=format_duration_label(duration_ms) if duration_ms else None,
            )

            # Upload and generation happen inside one service call.
            run.update(progress=BASIC_STEPS[3])
            run.update(progress=BASIC_STEPS[4])
            text = await self.service.transcribe(staged, prompt, self.basic_model)
        finally:
            await self._release(staged)

        run.update(progress=BASIC_STEPS[5])
        self._complete(run, text)

    # ------------------------------------------------------------------
    # Advanced path
    # ------------------------------------------------------------------

    async def _stage(
        self,
        run: _Run,
        key: StageKey,
        progress: str,
        work: Callable[[], Awaitable[str]],
    ) -> str:
        """Run one stage: processing, then completed with its result."""
        state = run.stages()[key]
        run.set_stage(key, state.start(), progress=progress)
        logger.info("Job %s: %s started", run.job_id, state.name)
        try:
            result = await work()
        except _RunSuperseded:
            raise
        except Exception as exc:
            raise _StageFailed(key, exc) from exc

        run.set_stage(key, run.stages()[key].complete(result))
        logger.info("Job %s: %s completed", run.job_id, state.name)
        return result

    async def _run_advanced(self, run: _Run, job: Job) -> None:
        settings = job.settings
        run.update(stages=run.stages(), progress=INITIAL_PROGRESS)

        try:
            duration_ms = self._probe_duration(job)

            async def initial_transcript() -> str:
                staged = await self._stage_file(job)
                try:
                    return await self.service.transcribe(
                        staged, INITIAL_TRANSCRIPT_PROMPT, self.fast_model
                    )
                finally:
                    await self._release(staged)

            transcript = await self._stage(
                run, StageKey.INITIAL_TRANSCRIPTION, INITIAL_PROGRESS, initial_transcript
            )

            topic = await self._stage(
                run,
                StageKey.TOPIC_ANALYSIS,
                TOPIC_PROGRESS,
                lambda: self.service.analyze_topic(transcript),
            )
            run.update(analyzed_topic=topic)

            dictionary = await self._create_dictionary(run, job, topic)

            async def final_transcript() -> str:
                return await self.service.enhance(
                    transcript,
                    dictionary,
                    settings.max_chars_per_subtitle,
                    settings.enable_speaker_detection,
                    duration_ms=duration_ms,
                    remove_filler_words=settings.remove_filler_words,
                )

            text = await self._stage(
                run, StageKey.FINAL_TRANSCRIPTION, FINAL_PROGRESS, final_transcript
            )
        except _StageFailed as failure:
            self._fail_stage(run, failure)
            return

        self._complete(run, text)

    async def _create_dictionary(self, run: _Run, job: Job, topic: str) -> str:
        custom_path = job.settings.custom_dictionary_path
        if custom_path:
            async def load_custom() -> str:
                return Path(custom_path).read_text(encoding="utf-8")

            dictionary = await self._stage(
                run,
                StageKey.DICTIONARY_CREATION,
                CUSTOM_DICTIONARY_PROGRESS,
                load_custom,
            )
            run.update(dictionary=dictionary, dictionary_path=custom_path)
            return dictionary

        main_topic = extract_main_topic(topic)
        progress = (
            TOPIC_DICTIONARY_PROGRESS.format(main_topic) if main_topic else DICTIONARY_PROGRESS
        )
        exported_path = None

        async def generate() -> str:
            nonlocal exported_path
            text = await self.service.create_dictionary(topic)
            exported_path = await self.service.export_text(
                text, dictionary_filename(job.filename)
            )
            return text

        dictionary = await self._stage(
            run, StageKey.DICTIONARY_CREATION, progress, generate
        )
        run.update(dictionary=dictionary, dictionary_path=exported_path)
        return dictionary

    def _fail_stage(self, run: _Run, failure: _StageFailed) -> None:
        state = run.stages()[failure.key]
        cause = _describe(failure.cause)
        logger.error(
            "Job %s: %s failed: %s",
            run.job_id,
            state.name,
            cause,
            exc_info=failure.cause,
        )
        run.stage_updates[failure.key] = state.fail(cause)
        self.store.update_job(
            run.job_id,
            run_token=run.token,
            status=JobStatus.ERROR,
            progress=None,
            stages=run.stages(),
            error="{} failed: {}".format(state.name, cause),
        )
