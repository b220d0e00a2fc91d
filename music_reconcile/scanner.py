from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Dict, List, Optional

from mutagen import File as MutagenFile

from .config import LibrarySettings
from .heuristics import guess_metadata_from_path, parse_track_number, parse_year
from .models import ScannedFile

logger = logging.getLogger(__name__)


class LibraryScanner:
    """Walks the library roots and turns each audio file into a ScannedFile."""

    def __init__(self, settings: LibrarySettings) -> None:
        self.settings = settings
        self._exts = {ext.lower() for ext in self.settings.include_extensions}

    def scan(self) -> List[ScannedFile]:
        files = list(self.iter_files())
        logger.info("Scanned %d audio file(s) under %d root(s)", len(files), len(self.settings.roots))
        return files

    def iter_files(self) -> Iterator[ScannedFile]:
        for root in self.settings.roots:
            if not root.exists():
                logger.warning("Library root %s does not exist", root)
                continue
            for file_path in sorted(root.rglob("*")):
                if not file_path.is_file():
                    continue
                if not self._should_include(file_path):
                    continue
                yield self.read_file(file_path, root)

    def read_file(self, path: Path, root: Optional[Path] = None) -> ScannedFile:
        guess = guess_metadata_from_path(path, root)
        tags = self._read_basic_tags(path)
        return ScannedFile(
            path=path,
            artist=tags.get("artist"),
            album=tags.get("album"),
            title=tags.get("title") or guess.title,
            track_number=parse_track_number(tags.get("tracknumber")) or guess.track_number,
            year=parse_year(tags.get("date")),
            folder_artist=guess.artist,
            folder_album=guess.album,
        )

    def _should_include(self, path: Path) -> bool:
        if path.suffix.lower() not in self._exts:
            return False
        rel = str(path)
        for pattern in self.settings.exclude_patterns:
            if fnmatch.fnmatch(rel, pattern):
                return False
        return True

    def _read_basic_tags(self, path: Path) -> Dict[str, Optional[str]]:
        try:
            audio = MutagenFile(path, easy=True)
        except Exception as exc:  # pragma: no cover - tag parsing failures
            logger.debug("Failed to read tags from %s: %s", path, exc)
            return {}
        if not audio or not audio.tags:
            return {}
        return {
            "artist": _first_tag(audio, ["artist", "albumartist"]),
            "album": _first_tag(audio, ["album"]),
            "title": _first_tag(audio, ["title"]),
            "tracknumber": _first_tag(audio, ["tracknumber"]),
            "date": _first_tag(audio, ["date", "originaldate"]),
        }


def _first_tag(audio, keys) -> Optional[str]:
    for key in keys:
        values = audio.tags.get(key)
        if values:
            value = values[0] if isinstance(values, list) else values
            value = str(value).strip()
            if value:
                return value
    return None
