"""Audio duration probing and duration labels.

WHY: Telling the model how long the audio is keeps its timestamps from
running past the end of the file. The duration is a hint only, so a
failed probe must never stop a job.

HOW: ``probe_duration_ms`` runs ffprobe and reads ``format.duration``.
``format_duration_label`` renders the value for prompts.

RULES:
- probe_duration_ms returns None on any failure (missing ffprobe,
  unreadable file, no duration)
- Labels use total minutes: 3665.123 s → "61m 5s (3665123ms)"
"""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def probe_duration_ms(path: Path) -> Optional[int]:
    """Return the audio duration of ``path`` in milliseconds, or None."""
    cmd = [
        "ffprobe",
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        str(path),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.info("Could not probe duration of %s: %s", path, exc)
        return None

    if result.returncode != 0:
        logger.info("ffprobe failed for %s: %s", path, result.stderr.strip())
        return None

    try:
        duration = float(json.loads(result.stdout)["format"]["duration"])
    except (ValueError, KeyError, TypeError):
        logger.info("ffprobe returned no duration for %s", path)
        return None

    if duration <= 0:
        return None
    return int(round(duration * 1000))


def format_duration_label(duration_ms: int) -> str:
    total_seconds = duration_ms // 1000
    return "{}m {}s ({}ms)".format(total_seconds // 60, total_seconds % 60, duration_ms)
