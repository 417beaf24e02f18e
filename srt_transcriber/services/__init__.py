"""Transcription service interface and its Gemini implementation.

WHY: The job pipeline depends on six external operations, not on a
particular backend. Keeping the interface separate from the Gemini
implementation lets tests and alternative backends substitute freely.

RULES:
- The pipeline imports only TranscriptionService and StagedFile
- GeminiTranscriptionService is constructed by the CLI and HTTP API
"""

from srt_transcriber.services.base import StagedFile, TranscriptionService
from srt_transcriber.services.gemini import GeminiTranscriptionService

__all__ = ["GeminiTranscriptionService", "StagedFile", "TranscriptionService"]
