"""Streaming menu extraction orchestrator.

Runs one extraction per request and turns it into SSE lines:

1. ``status`` update for the validated request
2. a cached result short-circuits with a terminal ``complete``
3. parser events (``thinking``/``section_found``/``item_found``/``progress``)
   interleaved with ``status`` narration from the progress tracker and the
   timeout monitor; upstream ``ERROR:`` lines are forwarded as ``error``
   events with a null ``error_code`` and do not end the run
4. exactly one terminal event: ``complete``, or ``error`` with an ``error_code``

The model source runs in a producer task feeding an ``asyncio.Queue`` so that
timed narration reaches the client while the model is still silent.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from core.config import get_settings
from core.error_handler import StructuredLogger
from core.exceptions import ExtractionInProgressError
from core.observability import get_tracer
from schemas.extraction import (
    CompleteEvent,
    ErrorEvent,
    ExtractionEvent,
    ExtractionSseEvent,
    MenuExtractRequest,
    ProgressUpdate,
)
from services.extraction.agent import ExtractionStreamSource, MenuStreamAgentAdapter
from services.extraction.cache import ExtractionCache, get_extraction_cache
from services.extraction.exceptions import (
    ExtractionError,
    ExtractionTimeout,
    IncompleteExtraction,
    UpstreamStreamError,
)
from services.extraction.parser import MenuExtractionParser
from services.extraction.progress import ProgressTracker, TimeoutMonitor
from services.extraction.schedules import (
    EXTRACTION_PROGRESS_MESSAGES,
    EXTRACTION_TIMEOUTS,
)


structured_logger = StructuredLogger(__name__)
_tracer = get_tracer(__name__)

VALIDATION_PROGRESS = 5


@dataclass(slots=True)
class _SourceFinished:
    """Queue sentinel posted by the producer task when the source ends."""

    error: BaseException | None = None


@dataclass(slots=True)
class _RunOutcome:
    status: str = "started"
    error_code: str | None = None
    chunks: int = 0


def _terminal_error(menu_id: Any, error: ExtractionError) -> str:
    return ExtractionSseEvent(
        event="error",
        menu_id=menu_id,
        data=ErrorEvent(message=error.message, error_code=error.error_code).model_dump(),
    ).to_sse()


class _ClaimedRun:
    """SSE line iterator that owns a claimed run key.

    The key is released once, when the stream is exhausted, fails, is closed
    or is garbage collected, including when it was never iterated at all.
    """

    def __init__(
        self,
        stream: AsyncGenerator[str, None],
        release: Callable[[], None],
    ) -> None:
        self._stream = stream
        self._release = release
        self._released = False

    def __aiter__(self) -> _ClaimedRun:
        return self

    async def __anext__(self) -> str:
        try:
            return await self._stream.__anext__()
        except BaseException:
            self.release()
            raise

    async def aclose(self) -> None:
        try:
            await self._stream.aclose()
        finally:
            self.release()

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._release()

    def __del__(self) -> None:
        self.release()


class ExtractionStreamService:
    """Compose the stream source, parser, tracker and cache for one endpoint.

    One instance is shared by all requests so duplicate runs for the same
    ``restaurant_id:menu_id`` can be rejected. Active runs are tracked in
    process memory, so with several server workers the guard only applies
    within each worker.
    """

    def __init__(
        self,
        source: ExtractionStreamSource,
        cache: ExtractionCache,
        *,
        total_timeout_seconds: float = 90.0,
        poll_interval_ms: int = 500,
        window_ms: int = 3000,
        warning_window_ms: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._cache = cache
        self._total_timeout_seconds = total_timeout_seconds
        self._poll_interval_ms = poll_interval_ms
        self._window_ms = window_ms
        self._warning_window_ms = warning_window_ms
        self._clock = clock
        self._active_runs: set[str] = set()

    def is_active(self, run_key: str) -> bool:
        return run_key in self._active_runs

    def stream_extraction(self, request: MenuExtractRequest) -> AsyncIterator[str]:
        """Claim the run key and return the SSE line iterator for ``request``.

        The key stays claimed until the iterator is exhausted, closed or
        discarded.

        Raises:
            ExtractionInProgressError: an extraction for the same menu is
                already streaming.
        """
        run_key = request.run_key
        if run_key in self._active_runs:
            raise ExtractionInProgressError(f"Run {run_key} is already streaming")
        self._active_runs.add(run_key)
        return _ClaimedRun(
            self._stream(request, run_key),
            lambda: self._active_runs.discard(run_key),
        )

    async def _stream(
        self, request: MenuExtractRequest, run_key: str
    ) -> AsyncGenerator[str, None]:
        menu_id = request.menu_id
        queue: asyncio.Queue[ExtractionSseEvent | _SourceFinished] = asyncio.Queue()
        completion: list[dict[str, Any]] = []
        upstream_errors: list[str] = []
        outcome = _RunOutcome()
        started_at = time.monotonic()

        def on_progress(update: ProgressUpdate) -> None:
            queue.put_nowait(
                ExtractionSseEvent(
                    event="status", menu_id=menu_id, data=update.model_dump(mode="json")
                )
            )

        def on_parser_event(event: ExtractionEvent) -> None:
            if isinstance(event, ErrorEvent):
                # Forwarded without an error_code: the run continues
                upstream_errors.append(event.message)
            queue.put_nowait(
                ExtractionSseEvent(
                    event=event.type, menu_id=menu_id, data=event.model_dump()
                )
            )

        tracker = ProgressTracker(
            on_progress,
            clock=self._clock,
            poll_interval_ms=self._poll_interval_ms,
            window_ms=self._window_ms,
        )
        monitor = TimeoutMonitor(
            tracker,
            EXTRACTION_TIMEOUTS,
            poll_interval_ms=self._poll_interval_ms,
            window_ms=self._warning_window_ms,
        )
        parser = MenuExtractionParser(on_parser_event, completion.append)
        producer: asyncio.Task[None] | None = None

        async def produce() -> None:
            error: BaseException | None = None
            try:
                async for chunk in self._source.stream_chunks(
                    str(request.thumbnail_url), request.prompt_override
                ):
                    outcome.chunks += 1
                    parser.process_chunk(chunk)
                parser.flush()
            except Exception as e:
                error = e
            queue.put_nowait(_SourceFinished(error))

        try:
            tracker.send_update("validation", VALIDATION_PROGRESS, "Request validated")
            while not queue.empty():
                pending = queue.get_nowait()
                if isinstance(pending, ExtractionSseEvent):
                    yield pending.to_sse()

            if not request.force_reprocess:
                cached = await self._cache.get(menu_id)
                if cached is not None:
                    outcome.status = "cached"
                    yield ExtractionSseEvent(
                        event="complete",
                        menu_id=menu_id,
                        data={
                            **CompleteEvent(result=cached).model_dump(),
                            "progress": 100,
                            "message": "Retrieved from cache",
                            "from_cache": True,
                        },
                    ).to_sse()
                    return

            tracker.start_timed_messages(EXTRACTION_PROGRESS_MESSAGES["ai"])
            monitor.start()
            producer = asyncio.create_task(produce(), name=f"menu-stream:{run_key}")
            deadline = asyncio.get_running_loop().time() + self._total_timeout_seconds

            while True:
                remaining = deadline - asyncio.get_running_loop().time()
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=max(remaining, 0))
                except TimeoutError:
                    raise ExtractionTimeout(
                        f"Extraction exceeded {self._total_timeout_seconds:g} seconds"
                    ) from None

                if isinstance(item, ExtractionSseEvent):
                    yield item.to_sse()
                    continue

                # Source finished; everything it produced is already queued
                # ahead of the sentinel. A completion wins over earlier
                # upstream errors and over a failure after it arrived.
                if item.error is not None:
                    structured_logger.error(
                        "Extraction source failed",
                        menu_id=str(menu_id),
                        exception_type=type(item.error).__name__,
                        completed=bool(completion),
                    )
                if completion:
                    break
                if upstream_errors:
                    raise UpstreamStreamError(upstream_errors[0])
                if item.error is not None:
                    raise UpstreamStreamError(f"Extraction stream failed: {item.error}")
                raise IncompleteExtraction(
                    "Extraction ended without a result"
                    if parser.state.malformed_completions == 0
                    else "Extraction result could not be read"
                )

            tracker.stop_timed_messages()
            monitor.stop()
            result = completion[0]
            await self._cache.set(menu_id, result)
            outcome.status = "completed"
            structured_logger.info(
                "Extraction completed",
                menu_id=str(menu_id),
                sections=parser.state.section_count,
                items=parser.state.item_count,
                upstream_errors=len(upstream_errors),
            )
            yield ExtractionSseEvent(
                event="complete",
                menu_id=menu_id,
                data={
                    **CompleteEvent(result=result).model_dump(),
                    "progress": 100,
                    "message": "Extraction complete!",
                    "from_cache": False,
                    "metrics": {
                        "sections": parser.state.section_count,
                        "items": parser.state.item_count,
                        "processing_time_ms": tracker.get_elapsed(),
                    },
                },
            ).to_sse()

        except ExtractionError as e:
            outcome.status = "failed"
            outcome.error_code = e.error_code
            structured_logger.warning(
                "Extraction failed",
                menu_id=str(menu_id),
                error_code=e.error_code,
                error_message=e.message,
                upstream_errors=len(upstream_errors),
            )
            yield _terminal_error(menu_id, e)

        finally:
            tracker.stop_timed_messages()
            monitor.stop()
            if producer is not None and not producer.done():
                producer.cancel()
            with _tracer.start_as_current_span("menu_extraction.stream") as span:
                span.set_attribute("menu_id", str(menu_id))
                span.set_attribute("status", outcome.status)
                span.set_attribute("error_code", outcome.error_code or "")
                span.set_attribute("chunks", outcome.chunks)
                span.set_attribute("sections", parser.state.section_count)
                span.set_attribute("items", parser.state.item_count)
                span.set_attribute("upstream_errors", len(upstream_errors))
                span.set_attribute(
                    "duration_ms", int((time.monotonic() - started_at) * 1000)
                )


@lru_cache
def get_extraction_stream_service() -> ExtractionStreamService:
    """FastAPI DI provider; one shared instance per worker process tracks runs."""
    settings = get_settings()
    return ExtractionStreamService(
        MenuStreamAgentAdapter(),
        get_extraction_cache(),
        total_timeout_seconds=settings.EXTRACTION_TOTAL_TIMEOUT_SECONDS,
        poll_interval_ms=settings.PROGRESS_POLL_INTERVAL_MS,
        window_ms=settings.PROGRESS_WINDOW_MS,
        warning_window_ms=settings.TIMEOUT_WARNING_WINDOW_MS,
    )
