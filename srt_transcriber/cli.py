"""Command-line interface for the SRT Transcriber.

WHY: Users need a simple way to turn one audio file into subtitles from
the terminal, and to check an existing SRT file for structural errors.
The CLI wires the job store, pipeline and Gemini service together
behind a single command.

HOW: Uses argparse for the input file and subtitle settings. Settings
not given on the command line fall back to the saved defaults. The job
runs via asyncio.run(); progress lines are echoed to stderr as the
pipeline updates the job. The SRT result (and a generated dictionary)
is exported next to the source file or to --output-dir.

RULES:
- Positional argument: input audio file path (omit with --validate)
- Validates file extension against SUPPORTED_AUDIO_FORMATS before any API call
- Output naming: {stem}_subtitles.srt, numeric suffix for conflicts
  (talk_subtitles-2.srt)
- Status output goes to stderr (not stdout)
- Exit code 1 when the job errors or the file is invalid; 130 on Ctrl-C
- Python 3.9+ compatible (no match/case, no X | Y unions)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from srt_transcriber.config import SUPPORTED_AUDIO_FORMATS
from srt_transcriber.core.job import Job, JobStatus, SrtSettings
from srt_transcriber.core.srt import subtitle_filename, validate_srt
from srt_transcriber.server.jobs import JobStore
from srt_transcriber.server.pipeline import JobPipeline
from srt_transcriber.services.gemini import GeminiTranscriptionService
from srt_transcriber.settings_storage import SettingsStorage


def _status(msg: str) -> None:
    """Print a status message to stderr.

    WHY: Status output must not pollute stdout so the CLI can be piped.

    RULES:
    - All status messages go to stderr
    - Always flush after writing
    """
    print(msg, file=sys.stderr, flush=True)


class _ProgressPrinter:
    """JobStore listener that prints each new progress label once."""

    def __init__(self) -> None:
        self._last: Optional[str] = None

    def __call__(self, job: Job) -> None:
        if job.progress and job.progress != self._last:
            _status(job.progress)
        self._last = job.progress


def _build_settings(args: argparse.Namespace, defaults: SrtSettings) -> SrtSettings:
    """Overlay command-line flags on the saved default settings."""
    values = defaults.to_dict()
    overrides = {
        "max_chars_per_subtitle": args.max_chars,
        "enable_speaker_detection": args.speakers,
        "remove_filler_words": args.remove_fillers,
        "enable_advanced_processing": args.advanced,
        "custom_dictionary_path": args.dictionary,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return SrtSettings(**values)


def _validate_file(path: Path) -> int:
    """Print the validation report of an SRT file and return the exit code."""
    if not path.is_file():
        print("Error: File not found: {}".format(path), file=sys.stderr)
        return 1

    result = validate_srt(path.read_text(encoding="utf-8"))
    if result.is_valid:
        print("{}: valid SRT".format(path.name))
        return 0

    print("{}: {} problem(s) found".format(path.name, len(result.errors)))
    for error in result.errors:
        print("  - {}".format(error))
    return 1


def _report(job: Job) -> None:
    if job.stages:
        for state in job.stages.values():
            _status("  [{}] {}".format(state.status.value, state.name))
    if job.validation is not None and not job.validation.is_valid:
        _status("Warning: the generated subtitles are not valid SRT:")
        for error in job.validation.errors:
            _status("  - {}".format(error))


async def _run_job(args: argparse.Namespace) -> int:
    """Transcribe one audio file and export its subtitles.

    RULES:
    - Validate input before creating the service (no API call on bad input)
    - The job's temp directory is removed when done, successful or not
    - The raw SRT text is exported even when validation failed
    """
    input_path = Path(args.input_file).resolve()

    if not input_path.is_file():
        print("Error: File not found: {}".format(input_path), file=sys.stderr)
        return 1

    ext = input_path.suffix.lower()
    if ext not in SUPPORTED_AUDIO_FORMATS:
        print(
            "Error: Unsupported file type '{}'. Supported formats: {}".format(
                ext, ", ".join(sorted(SUPPORTED_AUDIO_FORMATS))
            ),
            file=sys.stderr,
        )
        return 1

    output_dir = Path(args.output_dir).resolve() if args.output_dir else input_path.parent
    if not output_dir.is_dir():
        print("Error: Output directory does not exist: {}".format(output_dir), file=sys.stderr)
        return 1

    try:
        settings = _build_settings(args, SettingsStorage().load())
        service = GeminiTranscriptionService(export_dir=output_dir)
    except ValueError as e:
        # Config errors (missing API key, bad settings)
        print("Error: {}".format(e), file=sys.stderr)
        return 1

    store = JobStore(on_change=_ProgressPrinter())
    job = store.create_job(input_path.name, settings)
    job_id = job.id
    try:
        shutil.copyfile(input_path, job.source_path)
        _status(
            "Transcribing {} ({} path)...".format(
                input_path.name,
                "advanced" if settings.enable_advanced_processing else "basic",
            )
        )
        job = await JobPipeline(store, service).run(job_id)
        _report(job)

        if job.status != JobStatus.COMPLETED:
            print("Error: {}".format(job.error), file=sys.stderr)
            return 1

        saved = await service.export_text(job.result, subtitle_filename(job.filename))
        _status("")
        _status("Done! Saved subtitles to {}".format(saved))
        if job.dictionary_path and not settings.custom_dictionary_path:
            _status("Dictionary saved to {}".format(job.dictionary_path))
        return 0
    finally:
        store.delete_job(job_id)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI.

    RULES:
    - Positional: input_file (optional only together with --validate)
    - Setting flags default to None so saved defaults can fill the gaps
    """
    parser = argparse.ArgumentParser(
        prog="srt-transcriber",
        description="Transcribe audio files into SRT subtitles with Gemini.",
    )

    parser.add_argument(
        "input_file",
        nargs="?",
        help="Path to the audio file to transcribe.",
    )

    parser.add_argument(
        "--validate",
        metavar="SRT_FILE",
        default=None,
        help="Check an existing SRT file for structural errors and exit.",
    )

    parser.add_argument(
        "--advanced",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Use the four-stage pipeline with topic analysis and a dictionary.",
    )

    parser.add_argument(
        "--max-chars",
        type=int,
        default=None,
        help="Maximum characters per subtitle block.",
    )

    parser.add_argument(
        "--speakers",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Prefix subtitles with speaker names.",
    )

    fillers = parser.add_mutually_exclusive_group()
    fillers.add_argument(
        "--remove-fillers",
        dest="remove_fillers",
        action="store_true",
        default=None,
        help="Drop filler words (um, uh, ...).",
    )
    fillers.add_argument(
        "--keep-fillers",
        dest="remove_fillers",
        action="store_false",
        help="Keep filler words in the subtitles.",
    )

    parser.add_argument(
        "--dictionary",
        default=None,
        help="CSV dictionary to use instead of generating one (advanced path).",
    )

    parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory to save output files (default: same as input file).",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log pipeline details to stderr.",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the srt-transcriber console script.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    if args.validate:
        sys.exit(_validate_file(Path(args.validate)))

    if not args.input_file:
        parser.error("an input audio file is required unless --validate is given")

    try:
        code = asyncio.run(_run_job(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
