"""Schemas for streaming menu extraction.

Three groups of models live here:

* Menu content decoded from the extraction stream (``MenuItem``,
  ``MenuSection``).
* The typed events the stream parser emits (``ExtractionEvent`` union,
  discriminated on ``type``).
* Progress narration records and schedules used by the progress tracker, plus
  the request/SSE envelopes of the streaming endpoint.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


MAX_SSE_EVENT_BYTES: int = 262_144


# -----------------------------------------------------------------------------
# Menu content
# -----------------------------------------------------------------------------


class MenuItem(BaseModel):
    """A dish decoded from an ``ITEM:`` line."""

    name: str
    price: float = 0.0
    description: str | None = None
    confidence: int = Field(default=0, ge=0, le=100)


class MenuSection(BaseModel):
    """A menu section decoded from a ``SECTION:`` line and the items after it."""

    name: str
    confidence: int = Field(default=0, ge=0, le=100)
    items: list[MenuItem] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Parser events
# -----------------------------------------------------------------------------


class ThinkingEvent(BaseModel):
    type: Literal["thinking"] = "thinking"
    message: str


class SectionFoundEvent(BaseModel):
    type: Literal["section_found"] = "section_found"
    name: str
    confidence: int = Field(ge=0, le=100)
    progress: int = Field(
        ge=0, le=100, description="Heuristic progress from sections/items so far"
    )


class ItemFoundEvent(MenuItem):
    type: Literal["item_found"] = "item_found"
    progress: int = Field(
        ge=0, le=100, description="Heuristic progress from sections/items so far"
    )

    def to_item(self) -> MenuItem:
        return MenuItem(
            name=self.name,
            price=self.price,
            description=self.description,
            confidence=self.confidence,
        )


class ProgressEvent(BaseModel):
    """Upstream-reported percentage; independent of the parser heuristic."""

    type: Literal["progress"] = "progress"
    progress: int = Field(ge=0, le=100)
    message: str


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    result: dict[str, Any]


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str
    error_code: str | None = None


ExtractionEvent = Annotated[
    ThinkingEvent
    | SectionFoundEvent
    | ItemFoundEvent
    | ProgressEvent
    | CompleteEvent
    | ErrorEvent,
    Field(discriminator="type"),
]


# -----------------------------------------------------------------------------
# Progress narration
# -----------------------------------------------------------------------------


class ProgressUpdate(BaseModel):
    """One narration record appended to a tracker's log.

    ``progress`` is None for timeout warnings, which do not move the bar.
    """

    stage: str
    progress: int | None = Field(default=None, ge=0, le=100)
    message: str
    elapsed_ms: int = Field(ge=0)
    metadata: dict[str, Any] | None = None


class ScheduleEntry(BaseModel):
    """Canned status message shown once ``delay_ms`` has elapsed."""

    delay_ms: int = Field(ge=0)
    stage: str
    progress: int = Field(ge=0, le=100)
    message: str

    model_config = ConfigDict(frozen=True)


class TimeoutWarning(BaseModel):
    """Escalating warning surfaced once ``after_ms`` has elapsed."""

    after_ms: int = Field(gt=0)
    stage: str
    message: str

    model_config = ConfigDict(frozen=True)


# -----------------------------------------------------------------------------
# HTTP surface
# -----------------------------------------------------------------------------


class MenuExtractRequest(BaseModel):
    """Request payload for the streaming extraction endpoint."""

    menu_id: UUID
    restaurant_id: UUID
    thumbnail_url: HttpUrl = Field(..., description="Downscaled menu image")
    enhanced_url: HttpUrl | None = Field(
        default=None, description="Full-resolution image for low-confidence retries"
    )
    force_reprocess: bool = Field(
        default=False, description="Ignore a cached result for this menu"
    )
    prompt_override: str | None = Field(default=None, max_length=1000)

    model_config = ConfigDict(extra="forbid")

    @property
    def run_key(self) -> str:
        return f"{self.restaurant_id}:{self.menu_id}"


class ExtractionSseEvent(BaseModel):
    """Canonical SSE envelope for extraction streaming.

    ``status`` carries tracker narration (including timeout warnings); the
    remaining event names mirror the parser event types.
    """

    event: Literal[
        "status",
        "thinking",
        "section_found",
        "item_found",
        "progress",
        "complete",
        "error",
    ]
    menu_id: UUID
    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def to_sse(self) -> str:
        """Serialize event to SSE format with size validation."""
        payload = self.model_dump_json()
        if len(payload.encode("utf-8")) > MAX_SSE_EVENT_BYTES:
            raise ValueError("SSE payload exceeded MAX_SSE_EVENT_BYTES")
        return f"data: {payload}\n\n"
