"""Abstract transcription service and staged-file reference.

WHY: The pipeline should not know which backend transcribes audio or
where exported files end up. It only needs six asynchronous operations,
each of which may fail, plus a way to free staged audio. Defining them
once lets the CLI, the HTTP API and the tests plug in the Gemini
implementation or a fake.

HOW: TranscriptionService is an ABC with one abstract coroutine per
operation. StagedFile is the opaque reference returned by
``stage_file``, passed back to ``transcribe`` and finally handed to
``release_file``.

RULES:
- Every method may raise; the pipeline treats any exception as fatal
  for the job (no automatic retry)
- ``export_text`` writes UTF-8 text and returns the saved path
- Every staged file is released when its run ends, successful or not
- To add a backend: subclass TranscriptionService and implement every method
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class StagedFile:
    """An audio file copied to the service's staging area.

    Attributes:
        path: Local path of the staged copy.
        name: Original filename (used for display and MIME detection).
    """

    path: Path
    name: str


class TranscriptionService(ABC):
    """Asynchronous operations the job pipeline depends on."""

    @abstractmethod
    async def stage_file(self, data: bytes, name: str) -> StagedFile:
        """Store audio bytes where ``transcribe`` can read them."""

    @abstractmethod
    async def release_file(self, file: StagedFile) -> None:
        """Remove a staged file once the run no longer needs it."""

    @abstractmethod
    async def transcribe(self, file: StagedFile, prompt: str, model: str) -> str:
        """Run the model on the audio with the given prompt and return its text."""

    @abstractmethod
    async def analyze_topic(self, transcript: str) -> str:
        """Return a topic analysis of the transcript (contains a main-topic line)."""

    @abstractmethod
    async def create_dictionary(self, topic_analysis: str) -> str:
        """Return a CSV dictionary of domain terms for the analysed topic."""

    @abstractmethod
    async def enhance(
        self,
        initial_transcript: str,
        dictionary: str,
        max_chars: int,
        speaker_detection: bool,
        duration_ms: Optional[int] = None,
        remove_filler_words: bool = True,
    ) -> str:
        """Return SRT text generated from the transcript with dictionary help."""

    @abstractmethod
    async def export_text(self, content: str, suggested_name: str) -> str:
        """Persist UTF-8 text under (a variant of) ``suggested_name``; return the path."""
