"""Line protocol spoken by the streaming extraction model.

Each line is self-describing through a fixed prefix::

    THINKING: <text>
    SECTION: <name>|<confidence>
    ITEM: <name>|<price>|<description>|<confidence>
    PROGRESS: <percent>
    COMPLETE: <json object>
    ERROR: <text>

``decode_line`` turns one line into a typed ``DecodedLine`` variant through a
dispatch table keyed by prefix; unknown and blank lines decode to ``None``.
``StreamingExtractionEncoder`` produces the same format. Pipe-delimited fields
have no escaping, so the encoder rejects fields containing ``|`` or newlines.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from schemas.extraction import MenuItem
from services.extraction.coercion import (
    clamp,
    parse_float_or_default,
    parse_int_or_default,
)
from services.extraction.exceptions import ProtocolEncodingError


FIELD_SEPARATOR = "|"


class LinePrefix(StrEnum):
    THINKING = "THINKING:"
    SECTION = "SECTION:"
    ITEM = "ITEM:"
    PROGRESS = "PROGRESS:"
    COMPLETE = "COMPLETE:"
    ERROR = "ERROR:"


@dataclass(frozen=True, slots=True)
class ThinkingLine:
    message: str


@dataclass(frozen=True, slots=True)
class SectionLine:
    name: str
    confidence: int


@dataclass(frozen=True, slots=True)
class ItemLine:
    item: MenuItem


@dataclass(frozen=True, slots=True)
class ProgressLine:
    percent: int


@dataclass(frozen=True, slots=True)
class CompleteLine:
    result: dict[str, Any]


@dataclass(frozen=True, slots=True)
class MalformedCompleteLine:
    reason: str


@dataclass(frozen=True, slots=True)
class ErrorLine:
    message: str


DecodedLine = (
    ThinkingLine
    | SectionLine
    | ItemLine
    | ProgressLine
    | CompleteLine
    | MalformedCompleteLine
    | ErrorLine
)


def _field(parts: list[str], index: int) -> str | None:
    if index >= len(parts):
        return None
    return parts[index].strip()


def _decode_thinking(body: str) -> ThinkingLine:
    return ThinkingLine(message=body.strip())


def _decode_section(body: str) -> SectionLine:
    parts = body.split(FIELD_SEPARATOR)
    return SectionLine(
        name=_field(parts, 0) or "",
        confidence=clamp(parse_int_or_default(_field(parts, 1))),
    )


def _decode_item(body: str) -> ItemLine:
    parts = body.split(FIELD_SEPARATOR)
    return ItemLine(
        item=MenuItem(
            name=_field(parts, 0) or "",
            price=parse_float_or_default(_field(parts, 1)),
            description=_field(parts, 2) or None,
            confidence=clamp(parse_int_or_default(_field(parts, 3))),
        )
    )


def _decode_progress(body: str) -> ProgressLine:
    return ProgressLine(percent=clamp(parse_int_or_default(body)))


def _decode_complete(body: str) -> CompleteLine | MalformedCompleteLine:
    start = body.find("{")
    if start == -1:
        return MalformedCompleteLine(reason="no JSON object in completion line")
    try:
        result = json.loads(body[start:])
    except json.JSONDecodeError as e:
        return MalformedCompleteLine(reason=f"invalid completion JSON: {e.msg}")
    return CompleteLine(result=result)


def _decode_error(body: str) -> ErrorLine:
    return ErrorLine(message=body.strip())


_DECODERS: Mapping[LinePrefix, Callable[[str], DecodedLine]] = {
    LinePrefix.THINKING: _decode_thinking,
    LinePrefix.SECTION: _decode_section,
    LinePrefix.ITEM: _decode_item,
    LinePrefix.PROGRESS: _decode_progress,
    LinePrefix.COMPLETE: _decode_complete,
    LinePrefix.ERROR: _decode_error,
}


def decode_line(line: str) -> DecodedLine | None:
    """Decode a single protocol line, or return None for blank/unknown lines."""
    line = line.strip()
    if not line:
        return None
    for prefix, decoder in _DECODERS.items():
        if line.startswith(prefix):
            return decoder(line[len(prefix) :])
    return None


# -----------------------------------------------------------------------------
# Encoding
# -----------------------------------------------------------------------------


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _check_text(value: str, field: str) -> str:
    if "\n" in value or "\r" in value:
        raise ProtocolEncodingError(f"{field} must not contain line breaks")
    return value


def _check_field(value: str, field: str) -> str:
    _check_text(value, field)
    if FIELD_SEPARATOR in value:
        raise ProtocolEncodingError(
            f"{field} must not contain '{FIELD_SEPARATOR}'"
        )
    return value


def encode_line(prefix: LinePrefix, *fields: str) -> str:
    return f"{prefix} {FIELD_SEPARATOR.join(fields)}\n"


class StreamingExtractionEncoder:
    """Write protocol lines to ``on_chunk``, one call per line."""

    def __init__(self, on_chunk: Callable[[str], None]) -> None:
        self._on_chunk = on_chunk

    def thinking(self, message: str) -> None:
        self._on_chunk(encode_line(LinePrefix.THINKING, _check_text(message, "message")))

    def found_section(self, name: str, confidence: int) -> None:
        self._on_chunk(
            encode_line(
                LinePrefix.SECTION, _check_field(name, "name"), str(int(confidence))
            )
        )

    def found_item(self, item: MenuItem) -> None:
        self._on_chunk(
            encode_line(
                LinePrefix.ITEM,
                _check_field(item.name, "name"),
                _format_number(item.price),
                _check_field(item.description or "", "description"),
                str(item.confidence),
            )
        )

    def progress(self, percent: int) -> None:
        self._on_chunk(encode_line(LinePrefix.PROGRESS, str(int(percent))))

    def complete(self, result: Mapping[str, Any]) -> None:
        # json.dumps escapes embedded newlines, so the payload stays on one line
        self._on_chunk(encode_line(LinePrefix.COMPLETE, json.dumps(dict(result))))

    def error(self, message: str) -> None:
        self._on_chunk(encode_line(LinePrefix.ERROR, _check_text(message, "message")))
