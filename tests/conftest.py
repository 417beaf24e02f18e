"""Shared test fixtures for the srt_transcriber test suite.

WHY: The pipeline, CLI and API tests all need a transcription service
that never touches the network, and the same known-good SRT sample.
Centralizing both here keeps the tests consistent.

HOW: FakeTranscriptionService implements every TranscriptionService
operation in memory. Each operation returns a canned value, or raises
when a failure is configured for it. Every call is recorded.

RULES:
- Tests never call Gemini (no network)
- Each test gets a fresh JobStore; job temp dirs are removed afterwards
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest

from srt_transcriber.core.job import SrtSettings
from srt_transcriber.server.jobs import JobStore
from srt_transcriber.services.base import StagedFile, TranscriptionService

# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

VALID_SRT = (
    "1\n"
    "00:00:00,000 --> 00:00:03,000\n"
    "Hello world\n"
    "\n"
    "2\n"
    "00:00:03,000 --> 00:00:06,000\n"
    "This is a test\n"
)

INVALID_SRT = (
    "1\n"
    "00:00:00,000 --> 00:00:03,000\n"
    "Hello world\n"
    "\n"
    "3\n"
    "00:00:02,000 --> 00:00:06,000\n"
    "This is a test\n"
)

TOPIC_ANALYSIS = "Main topic: Quantum computing\nSubtopics: qubits, error correction"
DICTIONARY_CSV = "term,reading\nqubit,kyuubitto\n"


class FakeTranscriptionService(TranscriptionService):
    """In-memory TranscriptionService.

    ``failures`` maps an operation name to the exception it should raise.
    ``calls`` records ``(operation, args)`` in call order.
    ``staged`` and ``released`` track staged files outside ``calls``.
    """

    def __init__(
        self,
        transcript: str = VALID_SRT,
        initial_transcript: str = "hello world this is a test",
        topic: str = TOPIC_ANALYSIS,
        dictionary: str = DICTIONARY_CSV,
        enhanced: str = VALID_SRT,
        failures: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.transcript = transcript
        self.initial_transcript = initial_transcript
        self.topic = topic
        self.dictionary = dictionary
        self.enhanced = enhanced
        self.failures = failures or {}
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.exports: Dict[str, str] = {}
        self.staged: List[StagedFile] = []
        self.released: List[StagedFile] = []

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, args))
        if operation in self.failures:
            raise self.failures[operation]

    @property
    def operations(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def stage_file(self, data: bytes, name: str) -> StagedFile:
        self._record("stage_file", data, name)
        staged = StagedFile(path=Path("/staged") / name, name=name)
        self.staged.append(staged)
        return staged

    async def release_file(self, file: StagedFile) -> None:
        self.released.append(file)

    async def transcribe(self, file: StagedFile, prompt: str, model: str) -> str:
        self._record("transcribe", file, prompt, model)
        if "Generate a transcript" in prompt:
            return self.initial_transcript
        return self.transcript

    async def analyze_topic(self, transcript: str) -> str:
        self._record("analyze_topic", transcript)
        return self.topic

    async def create_dictionary(self, topic_analysis: str) -> str:
        self._record("create_dictionary", topic_analysis)
        return self.dictionary

    async def enhance(
        self,
        initial_transcript: str,
        dictionary: str,
        max_chars: int,
        speaker_detection: bool,
        duration_ms: Optional[int] = None,
        remove_filler_words: bool = True,
    ) -> str:
        self._record(
            "enhance",
            initial_transcript,
            dictionary,
            max_chars,
            speaker_detection,
            duration_ms,
            remove_filler_words,
        )
        return self.enhanced

    async def export_text(self, content: str, suggested_name: str) -> str:
        self._record("export_text", content, suggested_name)
        path = "/exports/{}".format(suggested_name)
        self.exports[path] = content
        return path


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    """A fresh JobStore; remaining jobs are deleted after the test."""
    job_store = JobStore()
    yield job_store
    for job in job_store.list_jobs():
        job_store.delete_job(job.id)


@pytest.fixture
def fake_service():
    return FakeTranscriptionService()


@pytest.fixture
def make_job(store):
    """Create a job with fake audio bytes in its working directory."""

    def _make(
        filename: str = "lecture.mp3",
        settings: Optional[SrtSettings] = None,
        data: bytes = b"fake audio",
    ):
        job = store.create_job(filename, settings)
        job.source_path.write_bytes(data)
        return job

    return _make


@pytest.fixture
def valid_srt():
    """The two-block sample used across the suite."""
    return VALID_SRT


@pytest.fixture
def invalid_srt():
    """Sample with an index gap and an overlap."""
    return INVALID_SRT


@pytest.fixture
def service_factory():
    """The FakeTranscriptionService class, for tests that configure their own."""
    return FakeTranscriptionService
