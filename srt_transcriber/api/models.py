"""Gemini API response dataclasses.

WHY: The Gemini REST API returns nested camelCase JSON. Typed
dataclasses make the few fields we rely on explicit and keep the key
names in one place.

HOW: Each dataclass maps one Gemini JSON object; ``from_dict`` factories
parse raw responses and tolerate absent optional fields.

RULES:
- Field names are snake_case; JSON keys are camelCase
- Only fields the client actually uses are modelled
- GeminiFile.state is one of "PROCESSING", "ACTIVE", "FAILED"
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class GeminiFile:
    """A file uploaded through the Gemini Files API.

    ``name`` is the resource name (``files/abc123``) used for polling;
    ``uri`` is what generateContent requests reference.
    """

    name: str
    uri: str
    mime_type: str
    state: str = "PROCESSING"
    display_name: str | None = None
    size_bytes: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> GeminiFile:
        size = data.get("sizeBytes")
        return cls(
            name=data["name"],
            uri=data["uri"],
            mime_type=data.get("mimeType", "application/octet-stream"),
            state=data.get("state", "PROCESSING"),
            display_name=data.get("displayName"),
            size_bytes=int(size) if size is not None else None,
        )


@dataclass
class Candidate:
    """One generated candidate: its text parts and optional search grounding."""

    texts: list[str] = field(default_factory=list)
    finish_reason: str | None = None
    search_entry_point: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Candidate:
        parts = (data.get("content") or {}).get("parts") or []
        grounding = data.get("groundingMetadata") or {}
        entry_point = grounding.get("searchEntryPoint") or {}
        return cls(
            texts=[p["text"] for p in parts if "text" in p],
            finish_reason=data.get("finishReason"),
            search_entry_point=entry_point.get("renderedContent"),
        )


@dataclass
class GenerateContentResponse:
    """Response of ``models/{model}:generateContent``.

    RULES:
    - text is the first text part of the first candidate, or None
    - total_tokens comes from usageMetadata when present
    """

    candidates: list[Candidate]
    total_tokens: int | None = None

    @property
    def text(self) -> str | None:
        if not self.candidates or not self.candidates[0].texts:
            return None
        return self.candidates[0].texts[0]

    @classmethod
    def from_dict(cls, data: dict) -> GenerateContentResponse:
        usage = data.get("usageMetadata") or {}
        return cls(
            candidates=[Candidate.from_dict(c) for c in data.get("candidates") or []],
            total_tokens=usage.get("totalTokenCount"),
        )
