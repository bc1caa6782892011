"""Data export — a single JSON snapshot of everything the detector knows."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from sleep_detector.detection.controller import StatusTransitionController

logger = structlog.get_logger(__name__)


def build_snapshot(
    controller: StatusTransitionController, now: datetime | None = None
) -> dict[str, Any]:
    """Records, summaries, settings and patterns as JSON-ready data."""
    return {
        "activityRecords": [r.model_dump(mode="json") for r in controller.records],
        "dailySummaries": [s.model_dump(mode="json") for s in controller.daily_summaries],
        "settings": controller.settings.model_dump(mode="json"),
        "sleepPatterns": controller.sleep_patterns.model_dump(mode="json"),
        "exportDate": (now or datetime.now()).isoformat(),
    }


async def export_snapshot_json(
    controller: StatusTransitionController,
    output_path: str | Path,
    *,
    now: datetime | None = None,
) -> Path:
    """Write the export snapshot to *output_path*.

    Returns the resolved output path.
    """
    snapshot = build_snapshot(controller, now)

    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with output.open("w", encoding="utf-8") as f:
        json.dump(snapshot, f, indent=2)

    logger.info(
        "export.json_written",
        path=str(output),
        records=len(snapshot["activityRecords"]),
        summaries=len(snapshot["dailySummaries"]),
    )
    return output
