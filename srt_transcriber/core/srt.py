"""Subtitle format engine: parse, generate and validate SRT text.

WHY: The transcription model returns free-form text that is supposed to
be SRT but frequently is not quite: a missing blank line, a two-digit
millisecond field, a restarted index. The pipeline needs a structured
view of well-formed output and an enumerated list of everything wrong
with malformed output, without ever failing on bad input.

HOW: ``parse_srt`` splits on blank lines and keeps every block that has
an index line, a ``start --> end`` line and at least one text line. It is
deliberately lenient about timestamp shape so that ``validate_srt`` can
report malformed timestamps instead of silently dropping the block.
``generate_srt`` is the canonical serializer. ``validate_srt`` collects
all violations in one pass.

RULES:
- parse_srt never raises; blocks without a time range line are skipped
- A non-numeric index line is kept as index 0 so validation reports it
- Text lines of a block are joined with "\\n"
- generate_srt(parse_srt(generate_srt(r))) == generate_srt(r) for well-formed r
- validate_srt accumulates every error; is_valid is "no errors"
- A timestamp is valid only as HH:MM:SS,mmm (hours two or more digits)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple

# Lenient: accepts any digit widths and "." as the millisecond separator so
# that validation can report the defect.
_TIME_RANGE_RE = re.compile(
    r"^\s*(\d+:\d+:\d+[,.]\d+)\s*-->\s*(\d+:\d+:\d+[,.]\d+)"
)
_INDEX_RE = re.compile(r"^\s*(\d+)\s*$")
_BLOCK_SPLIT_RE = re.compile(r"\n[ \t]*\n")

TIMESTAMP_RE = re.compile(r"^\d{2,}:\d{2}:\d{2},\d{3}$")
"""Strict SRT timestamp: HH:MM:SS,mmm with hours of two or more digits."""

NO_SUBTITLES_ERROR = "No valid subtitles found in the SRT content"


@dataclass
class SubtitleRecord:
    """One timestamped subtitle block.

    Attributes:
        index: 1-based sequence number as written in the text.
        start_time: Start timestamp string, e.g. ``"00:00:03,000"``.
        end_time: End timestamp string.
        text: Subtitle text; multiple lines joined with ``"\\n"``.
    """

    index: int
    start_time: str
    end_time: str
    text: str


@dataclass
class ValidationResult:
    """Outcome of :func:`validate_srt`."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n").lstrip("\ufeff")


def _parse_blocks(text: str) -> List[Tuple[str, SubtitleRecord]]:
    """Return ``(index line, record)`` for every block parse_srt accepts."""
    blocks: List[Tuple[str, SubtitleRecord]] = []
    content = _normalize_newlines(text or "").strip()
    if not content:
        return blocks

    for block in _BLOCK_SPLIT_RE.split(content):
        lines = block.strip().split("\n")
        if len(lines) < 3:
            continue

        time_match = _TIME_RANGE_RE.match(lines[1])
        if not time_match:
            continue

        index_line = lines[0].strip()
        index_match = _INDEX_RE.match(index_line)
        blocks.append(
            (
                index_line,
                SubtitleRecord(
                    index=int(index_match.group(1)) if index_match else 0,
                    start_time=time_match.group(1),
                    end_time=time_match.group(2),
                    text="\n".join(lines[2:]),
                ),
            )
        )

    return blocks


def parse_srt(text: str) -> List[SubtitleRecord]:
    """Parse SRT text into subtitle records, skipping malformed blocks.

    A block is kept when it has at least three lines and the second line
    is a ``start --> end`` time range. An index line that is not a number
    gives ``index=0``. Anything else is ignored; callers use
    :func:`validate_srt` to judge quality.
    """
    return [record for _, record in _parse_blocks(text)]


def generate_srt(records: Sequence[SubtitleRecord]) -> str:
    """Serialize records to canonical SRT text.

    Each block is ``index\\nstart --> end\\ntext\\n``; blocks are separated
    by one blank line.
    """
    return "\n".join(
        "{}\n{} --> {}\n{}\n".format(r.index, r.start_time, r.end_time, r.text)
        for r in records
    )


def time_to_seconds(timestamp: str) -> float:
    """Convert ``HH:MM:SS,mmm`` to seconds (``h*3600 + m*60 + s + ms/1000``).

    Also accepts the lenient shapes that :func:`parse_srt` lets through
    (short fields, ``.`` separator) so that ordering can still be checked.
    """
    clock, _, millis = timestamp.replace(".", ",").partition(",")
    hours, minutes, seconds = (int(part) for part in clock.split(":"))
    return hours * 3600 + minutes * 60 + seconds + int(millis or 0) / 1000


def validate_srt(text: str) -> ValidationResult:
    """Check SRT text for structural problems, collecting all of them.

    RULES:
    - No parsable records → a single error
    - Index must equal the 1-based position (one error per record)
    - Start and end timestamps must match TIMESTAMP_RE (one error per field)
    - start < end per record
    - start of record i must not be earlier than end of record i-1
    """
    blocks = _parse_blocks(text)
    if not blocks:
        return ValidationResult(is_valid=False, errors=[NO_SUBTITLES_ERROR])

    subtitles = [record for _, record in blocks]
    errors: List[str] = []

    for position, (index_line, subtitle) in enumerate(blocks, start=1):
        if subtitle.index != position:
            errors.append(
                "Subtitle {} has an incorrect index (found {})".format(
                    position, index_line
                )
            )

    for subtitle in subtitles:
        if not TIMESTAMP_RE.match(subtitle.start_time):
            errors.append(
                "Subtitle {} has a malformed start time: {}".format(
                    subtitle.index, subtitle.start_time
                )
            )
        if not TIMESTAMP_RE.match(subtitle.end_time):
            errors.append(
                "Subtitle {} has a malformed end time: {}".format(
                    subtitle.index, subtitle.end_time
                )
            )

    previous_end = None
    for subtitle in subtitles:
        start = time_to_seconds(subtitle.start_time)
        end = time_to_seconds(subtitle.end_time)

        if start >= end:
            errors.append(
                "Subtitle {} starts at or after its end time".format(subtitle.index)
            )
        if previous_end is not None and start < previous_end:
            errors.append(
                "Subtitle {} overlaps the previous subtitle".format(subtitle.index)
            )
        previous_end = end

    return ValidationResult(is_valid=not errors, errors=errors)


def extract_srt_content(text: str) -> str:
    """Return the body of the first fenced code block in model output.

    Models often wrap SRT in markdown fences. An ```` ```srt ```` block wins
    over a generic ```` ``` ```` block; the body is trimmed. Text without a
    complete fence is returned unchanged.
    """
    for opener in ("```srt", "```"):
        start = text.find(opener)
        if start == -1:
            continue
        body_start = start + len(opener)
        end = text.find("```", body_start)
        if end == -1:
            continue
        return text[body_start:end].strip()
    return text


def subtitle_filename(source_filename: str) -> str:
    """Suggested download name for a job's subtitles: ``<stem>_subtitles.srt``."""
    return "{}_subtitles.srt".format(Path(source_filename).stem)


def dictionary_filename(source_filename: str) -> str:
    """Suggested export name for a job's dictionary: ``<stem>_dictionary.csv``."""
    return "{}_dictionary.csv".format(Path(source_filename).stem)
