"""Streaming menu extraction endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from core.ratelimit import check_rate_limit
from schemas.extraction import MenuExtractRequest
from services.extraction.orchestrator import (
    ExtractionStreamService,
    get_extraction_stream_service,
)


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/menu", tags=["menu-extraction"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Disable proxy buffering so events reach the client as they are produced
    "X-Accel-Buffering": "no",
}


@router.post(
    "/extract-stream",
    summary="Stream menu extraction progress via Server-Sent Events",
    dependencies=[Depends(check_rate_limit)],
)
async def extract_menu_stream(
    request: MenuExtractRequest,
    service: Annotated[ExtractionStreamService, Depends(get_extraction_stream_service)],
) -> StreamingResponse:
    """Extract a menu image and stream progress as it happens.

    Every ``data:`` line is an ``ExtractionSseEvent`` JSON object:

      event: status|thinking|section_found|item_found|progress|complete|error
      menu_id: the requested menu
      data: event payload; ``status`` carries tracker narration
        ({stage, progress, message, elapsed_ms}), ``complete`` carries the
        extraction ``result`` and ``from_cache``, ``error`` carries
        ``message`` and ``error_code``

    Upstream ``error`` events with a null ``error_code`` are informational.
    The stream always ends with exactly one ``complete`` event or one
    ``error`` event carrying an ``error_code``.
    A second request for a menu that is still streaming is rejected with 409.
    """
    logger.info(
        "Menu extraction requested for menu %s (force_reprocess=%s)",
        request.menu_id,
        request.force_reprocess,
    )
    stream = service.stream_extraction(request)
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)
