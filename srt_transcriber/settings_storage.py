"""Persisted default settings for new jobs.

Defaults are stored as a small JSON file. A missing, unreadable or
corrupt file is never an error: ``load`` falls back to the built-in
defaults from ``config`` and logs a warning.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from srt_transcriber import config
from srt_transcriber.core.job import SrtSettings

logger = logging.getLogger(__name__)


class SettingsStorage:
    """Save, load and reset the default SrtSettings."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path or config.SETTINGS_PATH)

    def load(self) -> SrtSettings:
        if not self.path.exists():
            return SrtSettings()

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings file does not contain an object")
            return SrtSettings.from_dict(data)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self.path, exc)
            return SrtSettings()

    def save(self, settings: SrtSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(settings.to_dict(), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        logger.info("Saved default settings to %s", self.path)

    def reset(self) -> SrtSettings:
        """Delete the saved defaults and return the built-in ones."""
        if self.path.exists():
            self.path.unlink()
            logger.info("Reset default settings (%s removed)", self.path)
        return SrtSettings()
