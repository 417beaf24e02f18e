"""Job store, pipeline orchestrator and HTTP API.

WHY: The CLI and the HTTP API share one way of owning jobs and running
them. This package holds the in-memory job store, the pipeline that
drives a job through the basic or advanced path, and the FastAPI app
exposing both.

RULES:
- Only JobStore and JobPipeline mutate jobs
- app.py is imported lazily (it pulls in FastAPI)
"""

from srt_transcriber.server.jobs import JobStateError, JobStore
from srt_transcriber.server.pipeline import JobPipeline

__all__ = ["JobPipeline", "JobStateError", "JobStore"]
