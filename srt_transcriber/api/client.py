"""Async HTTP client for the Gemini generative language REST API.

WHY: Every external step of the pipeline (audio transcription, topic
analysis, search-grounded dictionary creation and enhancement) is a
Gemini call. This module wraps the upload → wait-for-processing →
generate workflow in one client so the service layer never deals with
URLs, auth parameters or response shapes.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. GeminiClient is an
async context manager: enter it to open the connection pool, exit to
close it. The API key travels as the ``key`` query parameter.

RULES:
- Always use the async context manager (async with GeminiClient(...) as client:)
- Model names may be given with or without the "models/" prefix
- File processing is polled once per second for at most 30 attempts
- Non-2xx responses raise GeminiAPIError with the status and body
- A response without a text part raises EmptyResponseError
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import httpx

from srt_transcriber.api.models import GeminiFile, GenerateContentResponse
from srt_transcriber.config import GEMINI_BASE_URL, load_api_key

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_FILE_POLL_INTERVAL_S = 1.0
_FILE_POLL_ATTEMPTS = 30


class GeminiAPIError(Exception):
    """Raised when the Gemini API returns an error response.

    RULES:
    - Always include status_code and message
    - message is the response body text
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Gemini API error {status_code}: {message}")


class FileProcessingError(Exception):
    """Raised when an uploaded file enters the FAILED state."""


class FileProcessingTimeoutError(TimeoutError):
    """Raised when an uploaded file does not become ACTIVE in time."""


class EmptyResponseError(Exception):
    """Raised when generateContent returns no text content."""


def _model_path(model: str) -> str:
    name = model[len("models/"):] if model.startswith("models/") else model
    return f"/v1beta/models/{name}:generateContent"


class GeminiClient:
    """Async client for the Gemini Files and generateContent endpoints.

    RULES:
    - Use as: async with GeminiClient() as client: ...
    - api_key defaults to load_api_key() from .env
    - base_url defaults to GEMINI_BASE_URL from config
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or load_api_key()
        self._base_url = (base_url or GEMINI_BASE_URL).rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GeminiClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            params={"key": self._api_key},
            timeout=httpx.Timeout(600.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "GeminiClient must be used as an async context manager: "
                "async with GeminiClient() as client: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def upload_file(self, file_path: Path, mime_type: str) -> GeminiFile:
        """Upload an audio file via the multipart Files API.

        Returns:
            The GeminiFile described by the upload response.
        """
        client = self._ensure_client()
        file_path = Path(file_path)
        metadata = json.dumps({"file": {"displayName": file_path.name}})

        with open(file_path, "rb") as f:
            resp = await client.post(
                "/upload/v1beta/files",
                headers={"X-Goog-Upload-Protocol": "multipart"},
                files={
                    "metadata": (None, metadata, "application/json"),
                    "data": (file_path.name, f, mime_type),
                },
            )

        if resp.status_code not in (200, 201):
            raise GeminiAPIError(resp.status_code, resp.text)

        uploaded = GeminiFile.from_dict(resp.json()["file"])
        logger.info("Uploaded %s as %s", file_path.name, uploaded.name)
        return uploaded

    async def wait_for_file_processing(self, file: GeminiFile) -> GeminiFile:
        """Poll the file resource until it is ACTIVE.

        RULES:
        - Returns immediately when the file is already ACTIVE
        - Raises FileProcessingError on FAILED
        - Raises FileProcessingTimeoutError after _FILE_POLL_ATTEMPTS polls
        """
        if file.state == "ACTIVE":
            return file

        client = self._ensure_client()
        for _ in range(_FILE_POLL_ATTEMPTS):
            resp = await client.get(f"/v1beta/{file.name}")
            if resp.status_code != 200:
                raise GeminiAPIError(resp.status_code, resp.text)

            current = GeminiFile.from_dict(resp.json())
            if current.state == "ACTIVE":
                return current
            if current.state == "FAILED":
                raise FileProcessingError(f"File processing failed: {file.name}")

            await asyncio.sleep(_FILE_POLL_INTERVAL_S)

        raise FileProcessingTimeoutError(
            f"File {file.name} was not ready after {_FILE_POLL_ATTEMPTS} checks"
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate(self, model: str, body: dict) -> GenerateContentResponse:
        client = self._ensure_client()
        resp = await client.post(_model_path(model), json=body)
        if resp.status_code != 200:
            raise GeminiAPIError(resp.status_code, resp.text)

        response = GenerateContentResponse.from_dict(resp.json())
        if response.text is None:
            raise EmptyResponseError("No text content found in response")
        return response

    async def generate_from_file(self, file: GeminiFile, prompt: str, model: str) -> str:
        """Generate text from an uploaded file plus a prompt."""
        body = {
            "contents": [
                {
                    "parts": [
                        {"fileData": {"mimeType": file.mime_type, "fileUri": file.uri}},
                        {"text": prompt},
                    ]
                }
            ]
        }
        response = await self._generate(model, body)
        return response.text

    async def generate_text(self, prompt: str, model: str, use_search: bool = False) -> str:
        """Generate text from a text-only prompt.

        Args:
            prompt: The full prompt text.
            model: Gemini model name.
            use_search: Enable the Google Search grounding tool.
        """
        body: dict = {"contents": [{"parts": [{"text": prompt}]}]}
        if use_search:
            body["tools"] = [{"googleSearch": {}}]

        response = await self._generate(model, body)
        if use_search and response.candidates[0].search_entry_point:
            logger.debug("Search grounding used for %s response", model)
        return response.text
