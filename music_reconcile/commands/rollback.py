from __future__ import annotations

from collections import Counter

from ..app import ReconcileApp
from ..models import RENAME_ERROR, RENAME_SUCCESS


def run(app: ReconcileApp) -> None:
    if not app.cache.list_moves():
        print("No recorded moves to rollback.")
        return
    outcomes = app.get_executor().rollback()
    counts = Counter(outcome.status for outcome in outcomes)
    for outcome in outcomes:
        if outcome.status == RENAME_ERROR:
            print(f" - {outcome.original_path}: {outcome.message}")
    print(f"Rollback complete: {counts.get(RENAME_SUCCESS, 0)} restored, {counts.get(RENAME_ERROR, 0)} failed.")
