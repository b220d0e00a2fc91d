from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

LEADING_NUMBER_PATTERN = re.compile(r"^(?P<num>\d{1,3})\s*[-.\s]")
TRACK_WORD_PATTERN = re.compile(r"track\s*(?P<num>\d{1,3})", re.IGNORECASE)
TRACK_TITLE_PATTERN = re.compile(r"^(?P<num>\d{1,3})(?:\s*[-.]\s*|\s+)(?P<title>.+)$")
ARTIST_ALBUM_PATTERN = re.compile(r"^(?P<artist>[^/]+?)\s+[-–]\s+(?P<album>.+)$")
YEAR_PATTERN = re.compile(r"^\s*(\d{4})")


@dataclass(slots=True)
class PathGuess:
    artist: Optional[str] = None
    album: Optional[str] = None
    title: Optional[str] = None
    track_number: Optional[int] = None


def guess_metadata_from_path(path: Path, root: Optional[Path] = None) -> PathGuess:
    """Infer artist/album/title from an ``Artist/Album/NN - Title.ext`` style layout."""
    guess = PathGuess()
    filename = path.stem
    guess.track_number = extract_track_number(path.name)
    title_match = TRACK_TITLE_PATTERN.match(filename)
    guess.title = _clean(title_match.group("title") if title_match else filename)

    parents = path.parent
    if root is not None:
        try:
            parts = parents.relative_to(root).parts
        except ValueError:
            parts = parents.parts
    else:
        parts = parents.parts
    if not parts:
        return guess

    album_dir = parts[-1]
    artist_dir = parts[-2] if len(parts) >= 2 else None
    match = ARTIST_ALBUM_PATTERN.match(album_dir)
    if match and not artist_dir:
        guess.artist = _clean(match.group("artist"))
        guess.album = _clean(match.group("album"))
    elif artist_dir:
        guess.artist = _clean(artist_dir)
        guess.album = _clean(album_dir)
    else:
        # A single directory level below the root is treated as the artist.
        guess.artist = _clean(album_dir)
    return guess


def extract_track_number(filename: Optional[str]) -> Optional[int]:
    """Track number from ``NN - Title``, ``NN. Title`` or ``Track NN`` filenames."""
    if not filename:
        return None
    stem = Path(filename).stem
    for pattern in (LEADING_NUMBER_PATTERN, TRACK_WORD_PATTERN):
        match = pattern.search(stem)
        if not match:
            continue
        number = int(match.group("num"))
        if 0 < number < 100:
            return number
    return None


def parse_track_number(value: object) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    cleaned = str(value).strip()
    if "/" in cleaned:
        cleaned = cleaned.split("/", 1)[0].strip()
    if cleaned.isdigit():
        number = int(cleaned)
        return number if number > 0 else None
    return None


def parse_year(value: object) -> Optional[str]:
    if value is None:
        return None
    match = YEAR_PATTERN.match(str(value))
    return match.group(1) if match else None


def _clean(value: str | None) -> Optional[str]:
    if not value:
        return None
    cleaned = value.replace("_", " ").strip(" ._-")
    return cleaned or None
