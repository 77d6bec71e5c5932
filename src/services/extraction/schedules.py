"""Canned narration used while the extraction model is working.

Delays and thresholds are milliseconds since the tracker or monitor started.
"""

from __future__ import annotations

from schemas.extraction import ScheduleEntry, TimeoutWarning


def _entry(delay_ms: int, stage: str, progress: int, message: str) -> ScheduleEntry:
    return ScheduleEntry(
        delay_ms=delay_ms, stage=stage, progress=progress, message=message
    )


EXTRACTION_PROGRESS_MESSAGES: dict[str, tuple[ScheduleEntry, ...]] = {
    "ocr": (
        _entry(0, "ocr_start", 10, "Scanning menu structure..."),
        _entry(1000, "ocr_processing", 15, "Detecting text regions..."),
        _entry(2000, "ocr_processing", 20, "Extracting menu content..."),
    ),
    "ai": (
        _entry(0, "ai_start", 25, "Preparing AI analysis..."),
        _entry(3000, "ai_processing", 35, "Detecting menu sections..."),
        _entry(6000, "ai_processing", 45, "Identifying dishes and prices..."),
        _entry(9000, "ai_processing", 55, "Analyzing dietary information..."),
        _entry(12000, "ai_processing", 65, "Extracting allergen details..."),
        _entry(15000, "ai_processing", 70, "Finalizing menu structure..."),
        _entry(20000, "ai_processing", 75, "Processing complex items..."),
        _entry(25000, "ai_processing", 78, "Almost there, finishing up..."),
    ),
    "merge": (
        _entry(0, "merge_start", 80, "Combining OCR and AI results..."),
        _entry(1000, "merge_processing", 85, "Validating extracted items..."),
        _entry(2000, "merge_processing", 90, "Organizing menu structure..."),
    ),
    "save": (
        _entry(0, "save_start", 92, "Saving to database..."),
        _entry(500, "save_processing", 95, "Caching results..."),
        _entry(1000, "save_complete", 100, "Extraction complete!"),
    ),
}

EXTRACTION_TIMEOUTS: tuple[TimeoutWarning, ...] = (
    TimeoutWarning(
        after_ms=15000,
        stage="warning",
        message=(
            "This is taking longer than usual. "
            "Large or complex menus may need extra time..."
        ),
    ),
    TimeoutWarning(
        after_ms=30000,
        stage="offer_alternative",
        message=(
            "Still processing. "
            "You can continue waiting or try with different settings."
        ),
    ),
    TimeoutWarning(
        after_ms=45000,
        stage="timeout_warning",
        message=(
            "Processing is taking unusually long. "
            "Consider using a clearer image if available."
        ),
    ),
)
