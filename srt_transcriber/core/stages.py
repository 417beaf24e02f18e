"""Advanced-pipeline stages and the stage-map merger.

WHY: The advanced path reports progress per stage, but a job only ever
records the stages it has touched. Displays and API responses need the
full, ordered four-stage map with each stage's canonical name and
description, whatever subset the job carries.

HOW: ``StageKey`` is a closed enumeration; ``DEFAULT_STAGES`` holds one
immutable pending ``StageState`` per key. ``merge_stages`` walks the
enumeration (never the input) and merges field by field, so no key can
be dropped or invented.

RULES:
- Stage order is StageKey declaration order
- A supplied entry overrides name and status; description, result and
  error are taken from the entry when set, otherwise from the default
- merge_stages is idempotent and always returns all four keys
- pending → processing → completed | error; terminal states are final
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Optional


class StageKey(str, enum.Enum):
    """The four stages of the advanced pipeline, in execution order."""

    INITIAL_TRANSCRIPTION = "initialTranscription"
    TOPIC_ANALYSIS = "topicAnalysis"
    DICTIONARY_CREATION = "dictionaryCreation"
    FINAL_TRANSCRIPTION = "finalTranscription"


class StageStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


_TERMINAL = (StageStatus.COMPLETED, StageStatus.ERROR)


class StageTransitionError(RuntimeError):
    """Raised when a stage is moved out of a terminal state."""


@dataclass(frozen=True)
class StageState:
    """Status and output of one stage.

    ``result`` is only set once the stage completed, ``error`` once it
    failed. ``description`` is normally left unset on updates and filled
    in from the defaults by :func:`merge_stages`.
    """

    name: str
    status: StageStatus = StageStatus.PENDING
    description: Optional[str] = None
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def _transition(self, status: StageStatus, **changes) -> "StageState":
        if self.is_terminal:
            raise StageTransitionError(
                "Stage '{}' is already {}; cannot move to {}".format(
                    self.name, self.status.value, status.value
                )
            )
        return replace(self, status=status, **changes)

    def start(self) -> "StageState":
        return self._transition(StageStatus.PROCESSING)

    def complete(self, result: str) -> "StageState":
        return self._transition(StageStatus.COMPLETED, result=result)

    def fail(self, error: str) -> "StageState":
        return self._transition(StageStatus.ERROR, error=error)


DEFAULT_STAGES: Dict[StageKey, StageState] = {
    StageKey.INITIAL_TRANSCRIPTION: StageState(
        name="Initial transcription (Gemini 2.0 Flash)",
        description="Creates a plain transcript of the audio file",
    ),
    StageKey.TOPIC_ANALYSIS: StageState(
        name="Topic analysis (Gemini 2.0 Flash)",
        description="Analyses the transcript for its topic and main themes",
    ),
    StageKey.DICTIONARY_CREATION: StageState(
        name="Dictionary creation (Google Search + Gemini 2.0 Flash)",
        description="Builds a dictionary of domain terms for the topic using Google Search",
    ),
    StageKey.FINAL_TRANSCRIPTION: StageState(
        name="Final subtitles (Gemini 2.5 Pro)",
        description="Generates accurate SRT subtitles using the dictionary",
    ),
}


def _merge_stage(default: StageState, actual: StageState) -> StageState:
    return StageState(
        name=actual.name,
        status=actual.status,
        description=actual.description if actual.description is not None else default.description,
        result=actual.result if actual.result is not None else default.result,
        error=actual.error if actual.error is not None else default.error,
    )


def merge_stages(
    actual: Optional[Mapping[StageKey, StageState]] = None,
) -> Dict[StageKey, StageState]:
    """Return the complete, ordered stage map with ``actual`` applied over the defaults.

    Args:
        actual: Sparse map of stage updates. Keys may be ``StageKey``
            members or their string values.

    Returns:
        A new dict with exactly the four ``StageKey`` entries.
    """
    if actual is None:
        return dict(DEFAULT_STAGES)

    supplied = {StageKey(key): entry for key, entry in actual.items()}
    merged: Dict[StageKey, StageState] = {}
    for key in StageKey:
        default = DEFAULT_STAGES[key]
        entry = supplied.get(key)
        merged[key] = _merge_stage(default, entry) if entry is not None else default
    return merged
