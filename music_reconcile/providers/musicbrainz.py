from __future__ import annotations

import logging
import socket
import time
import urllib.error
from typing import Any, Callable, Dict, List, Mapping, Optional

import musicbrainzngs

from ..cache import DAY_SECONDS, MetadataCache
from ..config import ProviderSettings
from ..heuristics import parse_track_number
from ..models import MatchCandidate, ProviderError
from ..rate_limiter import RateLimiter
from ..similarity import field_similarity, round_half_up
from .base import KIND_ARTIST, KIND_RELEASE, QUERY_FIELDS, SEARCH_KINDS, cache_key

logger = logging.getLogger(__name__)


class MusicBrainzProvider:
    """Cached, rate-limited artist/release/recording search against MusicBrainz."""

    def __init__(
        self,
        settings: Optional[ProviderSettings] = None,
        cache: Optional[MetadataCache] = None,
        limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or ProviderSettings()
        self.cache = cache
        self.limiter = limiter or RateLimiter(self.settings.min_request_interval_seconds)
        self._sleep = sleep
        musicbrainzngs.set_useragent(
            self.settings.app_name,
            self.settings.app_version,
            contact=self.settings.musicbrainz_useragent,
        )

    def search(self, kind: str, fields: Mapping[str, str], limit: int = 1) -> List[MatchCandidate]:
        if kind not in SEARCH_KINDS:
            raise ValueError(f"Unknown search kind: {kind}")
        query = {name: (fields.get(name) or "").strip() for name in QUERY_FIELDS[kind]}
        key = cache_key(kind, query)
        ttl = self.settings.cache_ttl_days * DAY_SECONDS
        if self.cache is not None:
            cached = self.cache.get_response(kind, key, ttl)
            if cached is not None:
                logger.debug("MusicBrainz cache hit for %s:%s", kind, key)
                return [MatchCandidate.from_record(record) for record in cached][:limit]

        fetch_limit = max(limit, self.settings.search_limit)
        logger.debug("Searching MusicBrainz %s: %s", kind, query)
        response = self._run_with_retries(
            lambda: self._query(kind, query, fetch_limit), kind=kind, query=query
        )
        candidates = self._parse(kind, query, response or {})
        candidates.sort(key=lambda candidate: candidate.confidence, reverse=True)
        if self.cache is not None:
            self.cache.set_response(kind, key, [candidate.to_record() for candidate in candidates])
        return candidates[:limit]

    def _query(self, kind: str, query: Dict[str, str], limit: int) -> Dict[str, Any]:
        with self.limiter:
            if kind == KIND_ARTIST:
                return musicbrainzngs.search_artists(artist=query["artist"], limit=limit)
            if kind == KIND_RELEASE:
                terms = _drop_empty({"artist": query["artist"], "release": query["album"]})
                return musicbrainzngs.search_releases(limit=limit, **terms)
            terms = _drop_empty(
                {
                    "artist": query["artist"],
                    "release": query["album"],
                    "recording": query["title"],
                }
            )
            return musicbrainzngs.search_recordings(limit=limit, **terms)

    def _run_with_retries(self, fn, *, kind: str, query: Dict[str, str]):
        retries = max(0, int(self.settings.network_retries))
        backoff = max(0.0, float(self.settings.network_retry_backoff_seconds))
        attempts = 1 + retries
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return fn()
            except Exception as exc:
                if self._is_response_error(exc):
                    raise ProviderError(f"MusicBrainz {kind} search failed: {exc}", kind, query) from exc
                if not self._is_transient_network_error(exc):
                    raise
                last_exc = exc
                if attempt >= attempts:
                    break
                sleep_for = backoff * (2 ** (attempt - 1))
                if sleep_for:
                    self._sleep(sleep_for)
        logger.warning("MusicBrainz %s search failed for %s: %s", kind, query, last_exc)
        raise ProviderError(
            f"MusicBrainz {kind} search failed after {attempts} attempt(s): {last_exc}", kind, query
        ) from last_exc

    @staticmethod
    def _is_response_error(exc: Exception) -> bool:
        response_err = getattr(musicbrainzngs, "ResponseError", None)
        return bool(response_err) and isinstance(exc, response_err)

    @staticmethod
    def _is_transient_network_error(exc: Exception) -> bool:
        if isinstance(exc, (socket.gaierror, urllib.error.URLError, TimeoutError, ConnectionError)):
            return True
        network_err = getattr(musicbrainzngs, "NetworkError", None)
        if network_err and isinstance(exc, network_err):
            return True
        return False

    def _parse(self, kind: str, query: Dict[str, str], response: Dict[str, Any]) -> List[MatchCandidate]:
        if kind == KIND_ARTIST:
            return [self._artist_candidate(query, entry) for entry in response.get("artist-list", []) if entry.get("id")]
        if kind == KIND_RELEASE:
            return [self._release_candidate(query, entry) for entry in response.get("release-list", []) if entry.get("id")]
        return [
            self._recording_candidate(query, entry)
            for entry in response.get("recording-list", [])
            if entry.get("id")
        ]

    @staticmethod
    def _artist_candidate(query: Dict[str, str], entry: Dict[str, Any]) -> MatchCandidate:
        name = entry.get("name") or ""
        inputs = {"artist": field_similarity(query["artist"], name)}
        return MatchCandidate(
            provider_id=entry["id"],
            display_name=name,
            confidence=inputs["artist"],
            raw_fields={
                "artist": name,
                "sort_name": entry.get("sort-name") or "",
                "disambiguation": entry.get("disambiguation") or "",
                "type": entry.get("type") or "",
                "country": entry.get("country") or "",
            },
            confidence_inputs=inputs,
        )

    @staticmethod
    def _release_candidate(query: Dict[str, str], entry: Dict[str, Any]) -> MatchCandidate:
        artist = _credit_name(entry)
        title = entry.get("title") or ""
        inputs = {
            "artist": field_similarity(query["artist"], artist),
            "album": field_similarity(query["album"], title),
        }
        return MatchCandidate(
            provider_id=entry["id"],
            display_name=title,
            confidence=_mean(inputs),
            raw_fields={
                "artist": artist,
                "artist_id": _credit_id(entry),
                "album": title,
                "date": entry.get("date") or "",
                "country": entry.get("country") or "",
                "status": entry.get("status") or "",
                "track_count": _release_track_count(entry),
                "barcode": entry.get("barcode") or "",
            },
            confidence_inputs=inputs,
        )

    @staticmethod
    def _recording_candidate(query: Dict[str, str], entry: Dict[str, Any]) -> MatchCandidate:
        artist = _credit_name(entry)
        title = entry.get("title") or ""
        releases = [
            {
                "id": release.get("id"),
                "title": release.get("title") or "",
                "date": release.get("date") or "",
                "track_number": _release_track_number(release),
            }
            for release in entry.get("release-list") or []
            if release.get("id")
        ]
        album_scores = [field_similarity(query["album"], release["title"]) for release in releases]
        inputs = {
            "artist": field_similarity(query["artist"], artist),
            "title": field_similarity(query["title"], title),
            "album": max(album_scores) if album_scores else 0,
        }
        length = entry.get("length")
        return MatchCandidate(
            provider_id=entry["id"],
            display_name=title,
            confidence=_mean(inputs),
            raw_fields={
                "artist": artist,
                "artist_id": _credit_id(entry),
                "title": title,
                "length": int(length) if str(length or "").isdigit() else None,
                "releases": releases,
            },
            confidence_inputs=inputs,
        )


def _mean(inputs: Dict[str, int]) -> int:
    if not inputs:
        return 0
    return round_half_up(sum(inputs.values()) / len(inputs))


def _drop_empty(terms: Dict[str, str]) -> Dict[str, str]:
    return {key: value for key, value in terms.items() if value}


def _credit_name(entry: Dict[str, Any]) -> str:
    phrase = entry.get("artist-credit-phrase")
    if phrase:
        return phrase
    for credit in entry.get("artist-credit") or []:
        if isinstance(credit, dict):
            name = credit.get("name") or (credit.get("artist") or {}).get("name")
            if name:
                return name
    return ""


def _credit_id(entry: Dict[str, Any]) -> str:
    for credit in entry.get("artist-credit") or []:
        if isinstance(credit, dict):
            artist = credit.get("artist") or {}
            if artist.get("id"):
                return artist["id"]
    return ""


def _release_track_count(release: Dict[str, Any]) -> int:
    count = release.get("medium-track-count")
    if count is not None and str(count).isdigit():
        return int(count)
    total = 0
    for medium in release.get("medium-list") or []:
        value = medium.get("track-count")
        if value is not None and str(value).isdigit():
            total += int(value)
    return total


def _release_track_number(release: Dict[str, Any]) -> Optional[int]:
    for medium in release.get("medium-list") or []:
        for track in medium.get("track-list") or []:
            number = parse_track_number(track.get("number") or track.get("position"))
            if number:
                return number
    return None
