from __future__ import annotations

import json
import logging
from collections import Counter
from pathlib import Path
from typing import List, Optional

from ..app import ReconcileApp
from ..models import AUTO_APPROVE, RENAME_ERROR, REVIEW, RenameOutcome, TrackMatch
from ..renamer import build_rename_previews
from . import match as cmd_match

logger = logging.getLogger(__name__)


def load_tracks(path: Path) -> List[TrackMatch]:
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    result = payload.get("result", payload)
    return [TrackMatch.from_record(record) for record in result.get("tracks", [])]


def run(
    app: ReconcileApp,
    *,
    input_path: Optional[Path] = None,
    apply: bool = False,
    include_review: bool = False,
    cleanup: bool = True,
) -> List[RenameOutcome]:
    if input_path:
        tracks = load_tracks(input_path)
        logger.info("Loaded %d track result(s) from %s", len(tracks), input_path)
    else:
        tracks = cmd_match.run(app).tracks

    plan = build_rename_previews(tracks, app.get_path_builder())
    categories = [AUTO_APPROVE, REVIEW] if include_review else [AUTO_APPROVE]
    previews = plan.select(categories)
    executor = app.get_executor(cleanup_empty_dirs=cleanup, progress=cmd_match.report_progress)
    outcomes = executor.execute(previews, dry_run=not apply)

    counts = Counter(outcome.status for outcome in outcomes)
    mode = "Applied" if apply else "Dry-run"
    print(
        f"{mode}: {len(outcomes)} of {plan.summary['total']} track(s) considered; "
        + ", ".join(f"{status} {count}" for status, count in sorted(counts.items()))
    )
    for outcome in outcomes:
        if outcome.status == RENAME_ERROR:
            print(f" - {outcome.original_path}: {outcome.message}")
        elif not apply and outcome.original_path != outcome.proposed_path:
            print(f" {outcome.original_path} -> {outcome.proposed_path}")
    if not apply and outcomes:
        print("Re-run with --apply to rename the files.")
    return outcomes
