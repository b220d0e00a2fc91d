"""
Provider protocol consumed by the matcher.

Any object with a compatible ``search`` method can stand in for MusicBrainz,
which is how the tests drive the matcher with in-memory fakes.
"""

from __future__ import annotations

from typing import List, Mapping, Protocol

from ..models import MatchCandidate
from ..similarity import normalize_match_text

KIND_ARTIST = "artist"
KIND_RELEASE = "release"
KIND_RECORDING = "recording"

SEARCH_KINDS = (KIND_ARTIST, KIND_RELEASE, KIND_RECORDING)

QUERY_FIELDS = {
    KIND_ARTIST: ("artist",),
    KIND_RELEASE: ("artist", "album"),
    KIND_RECORDING: ("artist", "album", "title"),
}


class MetadataProvider(Protocol):
    def search(self, kind: str, fields: Mapping[str, str], limit: int = 1) -> List[MatchCandidate]:
        """Return candidates ordered by descending confidence.

        Raises:
            ProviderError: when the lookup fails transiently
        """
        ...


def cache_key(kind: str, fields: Mapping[str, str]) -> str:
    names = QUERY_FIELDS.get(kind, tuple(sorted(fields)))
    return "|".join(normalize_match_text(fields.get(name) or "") for name in names)
