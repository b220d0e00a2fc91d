from __future__ import annotations

import errno
import logging
import os
import shutil
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from .cache import MetadataCache
from .fs_utils import path_exists, safe_rename, unique_destination
from .models import (
    PHASE_RENAME,
    RENAME_DRY_RUN,
    RENAME_ERROR,
    RENAME_SKIPPED,
    RENAME_SUCCESS,
    RENAME_SUCCESS_WITH_SUFFIX,
    FilesystemError,
    ProgressEvent,
    ReconcileError,
    RenameOutcome,
    RenamePreview,
)

logger = logging.getLogger(__name__)


class RenameExecutor:
    """Applies rename previews to disk and can undo the renames it recorded."""

    def __init__(
        self,
        scan_roots: Iterable[Path],
        cache: Optional[MetadataCache] = None,
        cleanup_empty_dirs: bool = True,
        max_cleanup_depth: int = 8,
        progress: Optional[Callable[[ProgressEvent], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.scan_roots = [_resolve(Path(root)) for root in scan_roots]
        self.cache = cache
        self.cleanup_empty_dirs = cleanup_empty_dirs
        self.max_cleanup_depth = max(0, max_cleanup_depth)
        self.progress = progress
        self.cancel_event = cancel_event or threading.Event()

    def execute(self, previews: Iterable[RenamePreview], dry_run: bool = True) -> List[RenameOutcome]:
        previews = list(previews)
        total = len(previews)
        outcomes: List[RenameOutcome] = []
        touched: Dict[Path, None] = {}
        claimed: Set[Path] = set()
        for index, preview in enumerate(previews, start=1):
            if self.cancel_event.is_set():
                logger.info("Rename cancelled after %d of %d item(s)", index - 1, total)
                break
            outcome = self._execute_one(preview, dry_run, claimed)
            outcomes.append(outcome)
            if outcome.status in (RENAME_SUCCESS, RENAME_SUCCESS_WITH_SUFFIX):
                touched[preview.original_path.parent] = None
            if self.progress is not None:
                self.progress(
                    ProgressEvent(
                        processed_count=index,
                        total_count=total,
                        current_unit_label=preview.original_path.name,
                        phase=PHASE_RENAME,
                    )
                )
        # Directories are checked only after every rename in the batch has run.
        if not dry_run and self.cleanup_empty_dirs:
            for directory in touched:
                self.cleanup_source_directory(directory)
        return outcomes

    def _execute_one(self, preview: RenamePreview, dry_run: bool, claimed: Set[Path]) -> RenameOutcome:
        source = preview.original_path
        target = preview.proposed_path

        def outcome(status: str, message: str, path: Path = target) -> RenameOutcome:
            return RenameOutcome(
                original_path=source,
                proposed_path=path,
                status=status,
                message=message,
                dry_run=dry_run,
            )

        if not preview.changed:
            return outcome(RENAME_SKIPPED, "No changes needed")
        if not path_exists(source):
            logger.warning("Source file does not exist: %s", source)
            return outcome(RENAME_ERROR, f"Source file does not exist: {source}")

        destination, suffix = self._free_destination(source, target, claimed)
        claimed.add(destination)
        if dry_run:
            logger.info("Dry-run would move %s -> %s", source, destination)
            return outcome(RENAME_DRY_RUN, f"[DRY RUN] Would rename to {destination}", destination)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            self._move(source, destination)
        except (OSError, FilesystemError) as exc:
            logger.warning("Failed to move %s -> %s: %s", source, destination, exc)
            return outcome(RENAME_ERROR, str(exc), destination)

        logger.info("Moved %s -> %s", source, destination)
        message = f"Renamed to {destination}"
        if suffix:
            message += " (destination existed)"
        if not self._journal_move(source, destination):
            message += " (not recorded for rollback)"
        status = RENAME_SUCCESS_WITH_SUFFIX if suffix else RENAME_SUCCESS
        return outcome(status, message, destination)

    def _journal_move(self, source: Path, destination: Path) -> bool:
        if self.cache is None:
            return True
        try:
            self.cache.record_move(source, destination)
        except sqlite3.Error as exc:
            logger.warning("Moved %s but could not record it for rollback: %s", source, exc)
            return False
        return True

    @staticmethod
    def _free_destination(source: Path, target: Path, claimed: Set[Path]) -> tuple[Path, int]:
        # A case-only rename on a case-insensitive filesystem reports the target as present.
        if target not in claimed and path_exists(target) and _same_file(source, target):
            return target, 0
        return unique_destination(target, claimed)

    @staticmethod
    def _move(source: Path, destination: Path) -> None:
        try:
            try:
                safe_rename(source, destination)
            except OSError as exc:
                if exc.errno != errno.EXDEV:
                    raise
                # Cross-device rename failed; fall back to shutil.move which copies+removes.
                shutil.move(str(source), str(destination))
        except OSError as exc:
            raise FilesystemError(f"Failed to rename {source} -> {destination}: {exc}") from exc

    def cleanup_source_directory(self, directory: Path) -> List[Path]:
        """Remove ``directory`` and then its parents while they are empty.

        Stops at the first non-empty directory, at the scan root (never removed)
        and after ``max_cleanup_depth`` levels.
        """
        removed: List[Path] = []
        current = directory
        for _ in range(self.max_cleanup_depth):
            resolved = _resolve(current)
            if self._is_scan_root(resolved) or not self._is_under_scan_root(resolved):
                break
            if not resolved.exists():
                current = resolved.parent
                continue
            try:
                resolved.rmdir()
            except OSError as exc:
                if exc.errno not in (errno.ENOTEMPTY, errno.EEXIST):
                    logger.warning("Could not remove source directory %s: %s", resolved, exc)
                break
            logger.info("Removed empty source directory %s", resolved)
            removed.append(resolved)
            current = resolved.parent
        return removed

    def rollback(self) -> List[RenameOutcome]:
        """Move every recorded rename back to where it came from, newest first."""
        if self.cache is None:
            raise ReconcileError("Rollback needs the cache that recorded the renames")
        outcomes: List[RenameOutcome] = []
        moves = self.cache.list_moves()
        logger.info("Rolling back %d recorded move(s)", len(moves))
        for source_str, target_str in moves:
            original = Path(source_str)
            renamed = Path(target_str)

            def outcome(status: str, message: str) -> RenameOutcome:
                return RenameOutcome(
                    original_path=renamed,
                    proposed_path=original,
                    status=status,
                    message=message,
                    dry_run=False,
                )

            if not path_exists(renamed):
                logger.warning("Cannot restore %s -> %s: target missing", renamed, original)
                self.cache.delete_move(source_str)
                outcomes.append(outcome(RENAME_ERROR, f"Renamed file no longer exists: {renamed}"))
                continue
            if path_exists(original):
                logger.warning("Cannot restore %s -> %s: original path is occupied", renamed, original)
                outcomes.append(outcome(RENAME_ERROR, f"Original path is occupied: {original}"))
                continue
            try:
                original.parent.mkdir(parents=True, exist_ok=True)
                self._move(renamed, original)
            except (OSError, FilesystemError) as exc:
                logger.error("Failed to restore %s -> %s: %s", renamed, original, exc)
                outcomes.append(outcome(RENAME_ERROR, str(exc)))
                continue
            self.cache.delete_move(source_str)
            logger.info("Restored %s -> %s", renamed, original)
            outcomes.append(outcome(RENAME_SUCCESS, f"Restored to {original}"))
            if self.cleanup_empty_dirs:
                self.cleanup_source_directory(renamed.parent)
        return outcomes

    def _is_under_scan_root(self, path: Path) -> bool:
        for root in self.scan_roots:
            try:
                path.relative_to(root)
                return True
            except ValueError:
                continue
        return False

    def _is_scan_root(self, path: Path) -> bool:
        return any(path == root for root in self.scan_roots)


def _resolve(path: Path) -> Path:
    try:
        return path.resolve()
    except (FileNotFoundError, RuntimeError):
        return path


def _same_file(a: Path, b: Path) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False
