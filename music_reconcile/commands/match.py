from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from ..app import ReconcileApp
from ..matcher import match_statistics
from ..models import ProgressEvent, ReconciliationResult

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 25


def report_progress(event: ProgressEvent) -> None:
    if event.processed_count == event.total_count or event.processed_count % PROGRESS_EVERY == 0:
        logger.info(
            "[%s] %d/%d %s",
            event.phase,
            event.processed_count,
            event.total_count,
            event.current_unit_label,
        )


def run(app: ReconcileApp, *, output: Optional[Path] = None) -> ReconciliationResult:
    files = app.scanner.scan()
    result = app.get_matcher(progress=report_progress).run(files)
    stats = match_statistics(result.tracks)

    print(f"Artists: {len(result.artists)}  Albums: {len(result.albums)}  Tracks: {len(result.tracks)}")
    print(
        "Matched {matched} (auto {auto}, review {review}, manual {manual}), "
        "no match {no_match}, errors {errors}, skipped {skipped}".format(
            matched=stats["matched"],
            auto=stats["by_category"]["auto_approve"],
            review=stats["by_category"]["review"],
            manual=stats["by_category"]["manual"],
            no_match=stats["no_match"],
            errors=stats["errors"],
            skipped=stats["skipped"],
        )
    )
    if result.cancelled:
        print("Matching was cancelled; results are partial.")

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        payload = {"statistics": stats, "result": result.to_record()}
        output.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"Wrote match results to {output}")
    return result
