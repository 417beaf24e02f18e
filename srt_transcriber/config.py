"""Configuration constants, model identifiers, and .env loading.

WHY: Model names, directories and subtitle defaults change more often
than the pipeline logic. Keeping them as plain module-level data makes
them easy to find and override without touching the orchestrator.

HOW: python-dotenv loads the .env file on import. Constants read
``os.getenv`` with a default. ``load_api_key()`` gives a clear error when
the Gemini key is missing.

RULES:
- The API key is loaded from the environment, never hardcoded
- Every directory and model name can be overridden via environment variables
- SUPPORTED_AUDIO_FORMATS lists accepted extensions (lowercase, with dot)
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Gemini API
# ---------------------------------------------------------------------------

GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
)
GEMINI_BASIC_MODEL = os.getenv("GEMINI_BASIC_MODEL", "gemini-2.5-pro")
"""Model used by the single-call basic path."""

GEMINI_FAST_MODEL = os.getenv("GEMINI_FAST_MODEL", "gemini-2.0-flash")
"""Low-cost model for the initial transcript, topic analysis and dictionary."""

GEMINI_ENHANCE_MODEL = os.getenv("GEMINI_ENHANCE_MODEL", "gemini-2.5-pro")
"""Model for the final, dictionary-assisted subtitle generation."""

# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

SUPPORTED_AUDIO_FORMATS: set[str] = {
    ".wav", ".mp3", ".aiff", ".aac", ".ogg", ".flac", ".m4a",
}

AUDIO_MIME_TYPES: dict[str, str] = {
    ".wav": "audio/wav",
    ".mp3": "audio/mp3",
    ".aiff": "audio/aiff",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".m4a": "audio/mp4",
}

STAGING_DIR = Path(
    os.getenv(
        "SRT_STAGING_DIR",
        str(Path(tempfile.gettempdir()) / "srt_transcriber_staging"),
    )
)
EXPORT_DIR = Path(os.getenv("SRT_EXPORT_DIR", "exports"))
DICTIONARY_DIR = Path(os.getenv("SRT_DICTIONARY_DIR", "dictionaries"))
"""Directory the HTTP API reads custom dictionaries from."""
SETTINGS_PATH = Path(
    os.getenv("SRT_SETTINGS_PATH", str(Path.home() / ".srt_transcriber" / "settings.json"))
).expanduser()

# ---------------------------------------------------------------------------
# Subtitle defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_CHARS_PER_SUBTITLE = int(os.getenv("DEFAULT_MAX_CHARS_PER_SUBTITLE", "20"))
DEFAULT_SPEAKER_DETECTION = os.getenv("DEFAULT_SPEAKER_DETECTION", "true").lower() == "true"
DEFAULT_REMOVE_FILLER_WORDS = os.getenv("DEFAULT_REMOVE_FILLER_WORDS", "true").lower() == "true"
DEFAULT_ADVANCED_PROCESSING = os.getenv("DEFAULT_ADVANCED_PROCESSING", "false").lower() == "true"


def mime_type_for(filename: str) -> str:
    """Return the audio MIME type for a filename, ``audio/wav`` when unknown."""
    return AUDIO_MIME_TYPES.get(Path(filename).suffix.lower(), "audio/wav")


def load_api_key() -> str:
    """Load the Gemini API key from the environment.

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("GEMINI_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Gemini API key not configured. "
            "Add GEMINI_API_KEY to the .env file in the app folder."
        )
    return key
