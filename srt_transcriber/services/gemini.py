"""TranscriptionService backed by Gemini and the local filesystem.

WHY: The pipeline's six operations map onto Gemini calls (transcribe,
analyse, dictionary, enhance) plus two local file operations (staging
uploaded audio, exporting text). This module is the only place that
knows about both.

HOW: Each model operation opens a GeminiClient, builds its prompt from
``core.prompts`` and returns the generated text. SRT-producing calls
strip markdown code fences from the answer. Staged audio lives in a
unique sub-directory of the staging dir until ``release_file`` removes
it; exports go to the export dir with a numeric suffix on name conflicts.

RULES:
- transcribe uploads the staged file, waits until ACTIVE, then generates
- analyze_topic and create_dictionary use the fast model; the dictionary
  call has Google Search grounding enabled
- enhance uses the enhancement model
- export_text never overwrites an existing file
"""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import Optional

import httpx

from srt_transcriber import config
from srt_transcriber.api.client import GeminiClient
from srt_transcriber.core.media import format_duration_label
from srt_transcriber.core.prompts import (
    build_dictionary_prompt,
    build_enhancement_prompt,
    build_topic_prompt,
)
from srt_transcriber.core.srt import extract_srt_content
from srt_transcriber.services.base import StagedFile, TranscriptionService

logger = logging.getLogger(__name__)


def resolve_export_path(output_dir: Path, filename: str) -> Path:
    """Return a path in ``output_dir`` for ``filename`` that does not exist yet.

    RULES:
    - First attempt: {filename} (e.g. talk_subtitles.srt)
    - Conflict: insert a counter before the extension (talk_subtitles-2.srt)
    - Counter starts at 2 and increments
    """
    base_path = output_dir / filename
    if not base_path.exists():
        return base_path

    stem = Path(filename).stem
    ext = Path(filename).suffix
    counter = 2
    while True:
        candidate = output_dir / "{}-{}{}".format(stem, counter, ext)
        if not candidate.exists():
            return candidate
        counter += 1


class GeminiTranscriptionService(TranscriptionService):
    """Gemini-backed implementation of the six pipeline operations."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        staging_dir: Optional[Path] = None,
        export_dir: Optional[Path] = None,
        fast_model: Optional[str] = None,
        enhance_model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key or config.load_api_key()
        self.staging_dir = Path(staging_dir or config.STAGING_DIR)
        self.export_dir = Path(export_dir or config.EXPORT_DIR)
        self.fast_model = fast_model or config.GEMINI_FAST_MODEL
        self.enhance_model = enhance_model or config.GEMINI_ENHANCE_MODEL
        self._transport = transport

    def _client(self) -> GeminiClient:
        return GeminiClient(api_key=self._api_key, transport=self._transport)

    async def stage_file(self, data: bytes, name: str) -> StagedFile:
        target_dir = self.staging_dir / uuid.uuid4().hex
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / Path(name).name
        path.write_bytes(data)
        logger.debug("Staged %s at %s", name, path)
        return StagedFile(path=path, name=name)

    async def release_file(self, file: StagedFile) -> None:
        staged_dir = file.path.parent
        if staged_dir.parent != self.staging_dir:
            logger.warning("Not releasing %s: outside staging dir", file.path)
            return
        if staged_dir.exists():
            try:
                shutil.rmtree(staged_dir)
            except OSError:
                logger.warning("Failed to clean up staged file: %s", staged_dir)

    async def transcribe(self, file: StagedFile, prompt: str, model: str) -> str:
        async with self._client() as client:
            uploaded = await client.upload_file(file.path, config.mime_type_for(file.name))
            uploaded = await client.wait_for_file_processing(uploaded)
            text = await client.generate_from_file(uploaded, prompt, model)
        return extract_srt_content(text)

    async def analyze_topic(self, transcript: str) -> str:
        async with self._client() as client:
            return await client.generate_text(build_topic_prompt(transcript), self.fast_model)

    async def create_dictionary(self, topic_analysis: str) -> str:
        async with self._client() as client:
            return await client.generate_text(
                build_dictionary_prompt(topic_analysis),
                self.fast_model,
                use_search=True,
            )

    async def enhance(
        self,
        initial_transcript: str,
        dictionary: str,
        max_chars: int,
        speaker_detection: bool,
        duration_ms: Optional[int] = None,
        remove_filler_words: bool = True,
    ) -> str:
        prompt = build_enhancement_prompt(
            initial_transcript,
            dictionary,
            max_chars,
            speaker_detection,
            duration_label=format_duration_label(duration_ms) if duration_ms else None,
            remove_filler_words=remove_filler_words,
        )
        async with self._client() as client:
            text = await client.generate_text(prompt, self.enhance_model)
        return extract_srt_content(text)

    async def export_text(self, content: str, suggested_name: str) -> str:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        path = resolve_export_path(self.export_dir, Path(suggested_name).name)
        path.write_text(content, encoding="utf-8")
        logger.info("Exported %s", path)
        return str(path)
