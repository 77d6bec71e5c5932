"""Incremental parser for the streaming extraction protocol.

The parser buffers arbitrary text chunks, decodes complete lines through
``services.extraction.protocol.decode_line`` and applies each decoded line to
a single ``ParserState``. Events are delivered synchronously, in line order,
to the ``on_update`` callback given at construction; a successfully decoded
``COMPLETE:`` payload goes to ``on_complete`` instead.

One parser instance serves exactly one extraction run and must be fed
sequentially; it provides no locking.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from schemas.extraction import (
    ErrorEvent,
    ExtractionEvent,
    ItemFoundEvent,
    MenuItem,
    MenuSection,
    ProgressEvent,
    SectionFoundEvent,
    ThinkingEvent,
)
from services.extraction.protocol import (
    CompleteLine,
    DecodedLine,
    ErrorLine,
    ItemLine,
    MalformedCompleteLine,
    ProgressLine,
    SectionLine,
    ThinkingLine,
    decode_line,
)


logger = logging.getLogger(__name__)

# Heuristic progress weights
BASE_PROGRESS = 10
SECTION_PROGRESS_STEP = 10
SECTION_PROGRESS_CAP = 30
ITEM_PROGRESS_STEP = 2
ITEM_PROGRESS_CAP = 50
# Only an explicit completion payload may report 100
HEURISTIC_PROGRESS_CEILING = 90

UpdateCallback = Callable[[ExtractionEvent], None]
CompleteCallback = Callable[[dict[str, Any]], None]


@dataclass(slots=True)
class ParserState:
    """Accumulated content of one extraction run.

    ``current_section_index`` points into ``sections``; items decoded before
    any section exist only in the flat ``items`` list.
    """

    buffer: str = ""
    sections: list[MenuSection] = field(default_factory=list)
    items: list[MenuItem] = field(default_factory=list)
    current_section_index: int | None = None
    section_count: int = 0
    item_count: int = 0
    malformed_completions: int = 0

    @property
    def current_section(self) -> MenuSection | None:
        if self.current_section_index is None:
            return None
        return self.sections[self.current_section_index]

    @property
    def orphan_items(self) -> int:
        """Number of items that arrived before the first section."""
        return self.item_count - sum(len(s.items) for s in self.sections)


def calculate_progress(section_count: int, item_count: int) -> int:
    """Estimate progress from content found so far, capped below completion."""
    section_progress = min(section_count * SECTION_PROGRESS_STEP, SECTION_PROGRESS_CAP)
    item_progress = min(item_count * ITEM_PROGRESS_STEP, ITEM_PROGRESS_CAP)
    return min(
        BASE_PROGRESS + section_progress + item_progress, HEURISTIC_PROGRESS_CEILING
    )


class MenuExtractionParser:
    """Decode a chunked extraction stream into typed events."""

    def __init__(
        self,
        on_update: UpdateCallback,
        on_complete: CompleteCallback,
    ) -> None:
        self._on_update = on_update
        self._on_complete = on_complete
        self.state = ParserState()

    @property
    def sections(self) -> list[MenuSection]:
        return self.state.sections

    @property
    def items(self) -> list[MenuItem]:
        return self.state.items

    def process_chunk(self, chunk: str) -> None:
        """Buffer ``chunk`` and process every line it completes."""
        self.state.buffer += chunk
        *lines, self.state.buffer = self.state.buffer.split("\n")
        for line in lines:
            self._process_line(line)

    def flush(self) -> None:
        """Process a trailing unterminated line once the source has ended."""
        remainder, self.state.buffer = self.state.buffer, ""
        if remainder.strip():
            self._process_line(remainder)

    def calculate_progress(self) -> int:
        return calculate_progress(self.state.section_count, self.state.item_count)

    def _process_line(self, line: str) -> None:
        decoded = decode_line(line)
        if decoded is not None:
            self._apply(decoded)

    def _apply(self, decoded: DecodedLine) -> None:
        state = self.state
        match decoded:
            case ThinkingLine(message=message):
                self._on_update(ThinkingEvent(message=message))

            case SectionLine(name=name, confidence=confidence):
                state.sections.append(MenuSection(name=name, confidence=confidence))
                state.current_section_index = len(state.sections) - 1
                state.section_count += 1
                self._on_update(
                    SectionFoundEvent(
                        name=name,
                        confidence=confidence,
                        progress=self.calculate_progress(),
                    )
                )

            case ItemLine(item=item):
                state.items.append(item)
                state.item_count += 1
                if state.current_section is not None:
                    state.current_section.items.append(item)
                self._on_update(
                    ItemFoundEvent(
                        **item.model_dump(), progress=self.calculate_progress()
                    )
                )

            case ProgressLine(percent=percent):
                self._on_update(
                    ProgressEvent(
                        progress=percent,
                        message=f"Processing menu... {state.item_count} items found",
                    )
                )

            case CompleteLine(result=result):
                self._on_complete(result)

            case MalformedCompleteLine(reason=reason):
                state.malformed_completions += 1
                logger.warning("Dropping completion payload: %s", reason)

            case ErrorLine(message=message):
                self._on_update(ErrorEvent(message=message))
