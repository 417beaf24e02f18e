"""SRT Transcriber: audio files in, synchronized subtitle files out.

WHY: Speech-to-subtitle conversion with an LLM produces free-form text
that only sometimes follows the SRT format. This package drives each
audio file through a tracked transcription job, checks the returned text
against the SRT structure, and keeps partial progress visible when an
external call fails.

HOW: Three layers. The subtitle format engine and stage merger (pure
functions in ``core``), the external transcription service (``services``
on top of the Gemini REST client in ``api``), and the job store plus
pipeline orchestrator (``server``) that the CLI and HTTP API share.

RULES:
- ``core`` never performs I/O against external services
- Every external call goes through a TranscriptionService
- Jobs are only mutated by the pipeline and the job store
"""

__version__ = "0.1.0"
