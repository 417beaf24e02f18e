"""Prompt builders for every call made to the transcription model.

WHY: Prompts carry the subtitle settings (character limit, speaker
labels, filler-word removal, known audio duration) into the model. They
are plain data with a few conditional sections, so they live together
where they can be read and tuned without touching the pipeline.

HOW: One function per external operation. Sections that depend on a
setting are appended only when the setting asks for them.

RULES:
- The SRT format section is identical for the basic and enhancement prompts
- The duration line appears only when a duration is known
- Topic analysis output starts its main-topic line with MAIN_TOPIC_MARKER
"""

from __future__ import annotations

from typing import List, Optional

MAIN_TOPIC_MARKER = "Main topic:"

INITIAL_TRANSCRIPT_PROMPT = "Generate a transcript of the speech."

_SRT_STRUCTURE = """# 1. SRT file structure

An SRT file is a sequence of blocks. Every block has exactly these parts:

1.  **Sequence number:** consecutive numbers starting at `1`.
2.  **Timestamps:** `hours:minutes:seconds,milliseconds --> hours:minutes:seconds,milliseconds`
    (for example `00:01:23,456 --> 00:01:28,912`).
3.  **Subtitle text:** the text shown on screen.
4.  **Blank line:** separates blocks. It is required.

**Example**
1
00:00:05,520 --> 00:00:08,910
This is the text of
the first subtitle.

2
00:00:09,150 --> 00:00:11,300
And this is the second subtitle.

Follow this structure strictly."""


def _srt_rules(
    max_chars: int,
    speaker_detection: bool,
    remove_filler_words: bool,
) -> str:
    rules: List[str] = [
        "# 2. Transcription rules",
        "",
        "1.  **Timestamp accuracy**",
        "    - Use the `hh:mm:ss,mmm` format exactly, always with three millisecond digits.",
        "    - Align subtitle timing precisely with when the words are spoken.",
        "",
        "2.  **Subtitle text**",
        "    - **Length:** keep the text of one subtitle block within about "
        "**{} characters**. Break longer sentences at natural pauses.".format(max_chars),
    ]
    if remove_filler_words:
        rules.append(
            "    - **Filler words:** remove meaningless fillers such as \"um\", "
            "\"uh\" and \"you know\" so the text reads naturally."
        )
    if speaker_detection:
        rules.append(
            "    - **Speakers:** when there are several speakers, start each "
            "subtitle with the speaker's name (for example `Host: `)."
        )
    else:
        rules.append(
            "    - **Speakers:** do not add speaker names; transcribe only what is said."
        )
    return "\n".join(rules)


def _duration_line(duration_label: Optional[str]) -> str:
    if not duration_label:
        return ""
    return "\n\n**Audio duration: {}**".format(duration_label)


def build_srt_prompt(
    max_chars: int,
    speaker_detection: bool,
    remove_filler_words: bool = True,
    duration_label: Optional[str] = None,
) -> str:
    """Prompt for the basic path: audio in, SRT out."""
    return (
        "Transcribe the provided audio file into a high-quality SRT "
        "(SubRip Text) subtitle file.{}\n\n{}\n\n{}".format(
            _duration_line(duration_label),
            _SRT_STRUCTURE,
            _srt_rules(max_chars, speaker_detection, remove_filler_words),
        )
    )


def build_topic_prompt(transcript: str) -> str:
    """Prompt asking for the topic, field and keywords of a transcript."""
    return (
        "Analyse the following transcript and identify what it is about.\n\n"
        "Answer in exactly this format:\n"
        "{marker} <one short phrase>\n"
        "Field: <domain or field of expertise>\n"
        "Keywords: <comma-separated proper nouns and technical terms>\n\n"
        "Transcript:\n{transcript}".format(marker=MAIN_TOPIC_MARKER, transcript=transcript)
    )


def build_dictionary_prompt(topic_analysis: str) -> str:
    """Prompt asking for a CSV dictionary of domain terms (search-grounded)."""
    return (
        "Using Google Search, build a dictionary of the proper nouns and "
        "technical terms that are likely to appear in audio about the "
        "following topic.\n\n"
        "Output CSV only, one term per line, as `term,reading_or_note`. "
        "Do not add a header or any commentary.\n\n"
        "Topic analysis:\n{}".format(topic_analysis)
    )


def build_enhancement_prompt(
    initial_transcript: str,
    dictionary: str,
    max_chars: int,
    speaker_detection: bool,
    duration_label: Optional[str] = None,
    remove_filler_words: bool = True,
) -> str:
    """Prompt for the final stage: rough transcript + dictionary in, SRT out."""
    return (
        "Produce a high-quality SRT subtitle file from the rough transcript "
        "below. Correct misrecognised words using the dictionary; the "
        "dictionary spelling always wins.{duration}\n\n{structure}\n\n{rules}\n\n"
        "# 3. Dictionary (CSV)\n{dictionary}\n\n"
        "# 4. Rough transcript\n{transcript}".format(
            duration=_duration_line(duration_label),
            structure=_SRT_STRUCTURE,
            rules=_srt_rules(max_chars, speaker_detection, remove_filler_words),
            dictionary=dictionary,
            transcript=initial_transcript,
        )
    )


def extract_main_topic(topic_analysis: str) -> Optional[str]:
    """Return the text after MAIN_TOPIC_MARKER, or None when no such line exists."""
    for line in topic_analysis.splitlines():
        stripped = line.strip().lstrip("*-# ").strip()
        if stripped.startswith(MAIN_TOPIC_MARKER):
            topic = stripped[len(MAIN_TOPIC_MARKER):].strip().strip("*").strip()
            return topic or None
    return None
