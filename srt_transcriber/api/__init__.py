"""Gemini API client package: async HTTP interface to the Gemini REST API.

WHY: Transcription, topic analysis and dictionary creation all run on
Gemini models. This package keeps every HTTP detail (auth, file upload,
processing poll, response parsing) behind one async client class.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. GeminiClient provides
one method per API workflow step; responses are parsed into the typed
dataclasses in models.py.

RULES:
- All HTTP calls go through GeminiClient (no direct httpx usage elsewhere)
- Authentication is via the API key from config
"""

from srt_transcriber.api.client import GeminiClient
from srt_transcriber.api.models import GeminiFile, GenerateContentResponse

__all__ = ["GeminiClient", "GeminiFile", "GenerateContentResponse"]
