from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .fs_utils import MAX_BASENAME_BYTES, truncate_filename
from .heuristics import TRACK_TITLE_PATTERN, extract_track_number
from .models import AUTO_APPROVE, MANUAL, REVIEW, STATUS_MATCHED, RenamePreview, TrackMatch, is_missing

logger = logging.getLogger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
UNKNOWN_TITLE = "Unknown Title"

_CONTROL = re.compile(r"[\x00-\x1f\x7f]")
_ILLEGAL = re.compile(r'[/\\:*?"<>|]')
_WHITESPACE = re.compile(r"\s+")

PREVIEW_CATEGORIES = (AUTO_APPROVE, REVIEW, MANUAL)


def sanitize_component(value: Optional[str]) -> str:
    """Make a single path component safe on common filesystems.

    Illegal characters become ``_``, control characters and runs of whitespace
    collapse to one space, and trailing dots/spaces are trimmed.  Applying it
    twice gives the same result as applying it once.
    """
    if not value:
        return ""
    cleaned = _CONTROL.sub(" ", value)
    cleaned = _ILLEGAL.sub("_", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned.rstrip(". ")


class RenamePathBuilder:
    """Turns a track match into ``root/Artist/Album (Year)/NN - Title.ext``."""

    def __init__(self, root: Path, max_filename_length: int = MAX_BASENAME_BYTES) -> None:
        self.root = Path(root)
        self.max_filename_length = max_filename_length

    def build(self, track: TrackMatch) -> RenamePreview:
        scanned = track.file
        artist = sanitize_component(track.corrected_artist or scanned.effective_artist) or UNKNOWN_ARTIST
        album = sanitize_component(self._album_name(track)) or UNKNOWN_ALBUM
        year = self._year(track)
        album_dir = f"{album} ({year})" if year else album

        track_number = extract_track_number(scanned.file_name) or scanned.track_number
        title = sanitize_component(self._title(track, track_number)) or UNKNOWN_TITLE
        prefix = f"{track_number:02d} - " if track_number else ""
        filename = f"{prefix}{title}{scanned.path.suffix}"
        filename = truncate_filename(Path(filename), self.max_filename_length).name

        return RenamePreview(
            original_path=scanned.path,
            proposed_path=self.root / artist / album_dir / filename,
            artist=artist,
            album=album_dir,
            filename=filename,
        )

    @staticmethod
    def _album_name(track: TrackMatch) -> Optional[str]:
        if track.corrected_album:
            return track.corrected_album
        if track.release and track.release.title:
            return track.release.title
        return track.file.effective_album

    @staticmethod
    def _year(track: TrackMatch) -> Optional[str]:
        if track.release and track.release.year:
            return track.release.year
        return track.file.year

    @staticmethod
    def _title(track: TrackMatch, track_number: Optional[int]) -> str:
        if track.candidate is not None and track.corrected_title:
            return track.corrected_title
        scanned = track.file
        title = scanned.title if not is_missing(scanned.title) else scanned.path.stem
        suffix = scanned.path.suffix
        if suffix and title.lower().endswith(suffix.lower()):
            title = title[: -len(suffix)]
        # Titles taken from a filename may already carry the number we are about to prefix.
        match = TRACK_TITLE_PATTERN.match(title)
        if match and track_number and int(match.group("num")) == track_number:
            title = match.group("title")
        return title


@dataclass
class RenamePlan:
    """Previews grouped by match category, plus the tracks that get none."""

    groups: Dict[str, List[RenamePreview]] = field(
        default_factory=lambda: {category: [] for category in PREVIEW_CATEGORIES}
    )
    skipped: List[TrackMatch] = field(default_factory=list)

    def select(self, categories: Iterable[str]) -> List[RenamePreview]:
        previews: List[RenamePreview] = []
        for category in categories:
            previews.extend(self.groups.get(category, []))
        return previews

    @property
    def summary(self) -> Dict[str, int]:
        summary = {category: len(items) for category, items in self.groups.items()}
        summary["skipped"] = len(self.skipped)
        summary["changed"] = sum(1 for items in self.groups.values() for preview in items if preview.changed)
        summary["total"] = sum(len(items) for items in self.groups.values()) + len(self.skipped)
        return summary

    def to_record(self) -> Dict[str, object]:
        return {
            "groups": {
                category: [preview.to_record() for preview in items]
                for category, items in self.groups.items()
            },
            "skipped": [
                {"path": str(track.file.path), "status": track.status, "reason": track.reason}
                for track in self.skipped
            ],
            "summary": self.summary,
        }


def build_rename_previews(tracks: Iterable[TrackMatch], builder: RenamePathBuilder) -> RenamePlan:
    plan = RenamePlan()
    for track in tracks:
        if track.status != STATUS_MATCHED or track.skipped:
            plan.skipped.append(track)
            continue
        plan.groups.setdefault(track.category, []).append(builder.build(track))
    logger.info(
        "Rename plan: %s",
        ", ".join(f"{name}={count}" for name, count in plan.summary.items()),
    )
    return plan
