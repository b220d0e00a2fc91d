"""
Three-phase reconciliation of scanned files against a metadata provider.

Artists are matched first, then albums using the corrected artist names, then
individual tracks using both corrections.  Each phase hands its results to the
next one as immutable ``Correction`` records; the only mutation between phases
is an explicit review action (``approve``/``reject``/``override``) on a result.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import MatcherSettings
from .models import (
    AUTO_APPROVE,
    MANUAL,
    PHASE_ALBUMS,
    PHASE_ARTISTS,
    PHASE_TRACKS,
    REVIEW,
    SEARCH_ORIGINAL,
    STATUS_ERROR,
    STATUS_MATCHED,
    STATUS_NO_MATCH,
    STATUS_SKIPPED,
    AlbumMatch,
    ArtistMatch,
    MatchCandidate,
    MatchResult,
    MissingRequiredField,
    ProgressEvent,
    ProviderError,
    ReconciliationResult,
    ReleaseInfo,
    ScannedFile,
    TrackMatch,
    album_key,
    is_missing,
)
from .providers.base import KIND_ARTIST, KIND_RECORDING, KIND_RELEASE, QUERY_FIELDS, MetadataProvider
from .romaji import generate_search_variants, is_romaji
from .similarity import categorize, field_similarity, round_half_up

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ThreePhaseMatcher:
    def __init__(
        self,
        provider: MetadataProvider,
        settings: Optional[MatcherSettings] = None,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        search_limit: int = 1,
    ) -> None:
        self.provider = provider
        self.settings = settings or MatcherSettings()
        self.progress = progress
        self.cancel_event = cancel_event or threading.Event()
        self.search_limit = max(1, search_limit)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def run(self, files: Iterable[ScannedFile]) -> ReconciliationResult:
        files = list(files)
        result = ReconciliationResult()
        result.artists = self.match_artists(files)
        if self.cancelled:
            return self._partial(result)
        result.albums = self.match_albums(files, result.artists)
        if self.cancelled:
            return self._partial(result)
        self.canonicalize_albums(result.albums)
        result.tracks = self.match_tracks(files, result.artists, result.albums)
        if self.cancelled:
            return self._partial(result)
        return result

    def _partial(self, result: ReconciliationResult) -> ReconciliationResult:
        logger.info("Matching cancelled; returning partial results")
        result.cancelled = True
        return result

    # Phase 1

    def match_artists(self, files: Iterable[ScannedFile]) -> List[ArtistMatch]:
        groups: Dict[str, List[ScannedFile]] = {}
        originals: Dict[str, str] = {}
        missing: List[ScannedFile] = []
        for scanned in files:
            artist = scanned.effective_artist
            if artist is None:
                missing.append(scanned)
                continue
            key = artist.casefold()
            groups.setdefault(key, []).append(scanned)
            originals.setdefault(key, artist)

        total = len(groups) + (1 if missing else 0)
        logger.info("Phase 1: matching %d unique artist(s)", len(groups))
        results: List[ArtistMatch] = []
        processed = 0
        for key, members in groups.items():
            if self.cancelled:
                return results
            artist = originals[key]
            match = ArtistMatch(
                original=artist,
                file_count=len(members),
                folder_name=_most_common(scanned.folder_artist for scanned in members),
            )
            self._search_into(match, KIND_ARTIST, {"artist": artist})
            results.append(match)
            processed += 1
            self._emit(processed, total, artist, PHASE_ARTISTS)

        if missing and not self.cancelled:
            match = ArtistMatch(original="", file_count=len(missing))
            _mark_skipped(match, MissingRequiredField("artist"))
            results.append(match)
            processed += 1
            self._emit(processed, total, "(missing artist)", PHASE_ARTISTS)
        _log_phase_summary(PHASE_ARTISTS, results)
        return results

    # Phase 2

    def match_albums(
        self, files: Iterable[ScannedFile], artists: Iterable[ArtistMatch]
    ) -> List[AlbumMatch]:
        artist_index = _artist_index(artists)
        groups: Dict[str, List[ScannedFile]] = {}
        details: Dict[str, Tuple[str, str, ArtistMatch]] = {}
        excluded = 0
        for scanned in files:
            artist = scanned.effective_artist
            if artist is None:
                continue
            artist_match = artist_index.get(artist.casefold())
            if artist_match is None or artist_match.rejected:
                excluded += 1
                continue
            album = scanned.effective_album
            if album is None:
                continue
            corrected_artist = artist_match.correction().corrected
            key = album_key(corrected_artist, album)
            groups.setdefault(key, []).append(scanned)
            details.setdefault(key, (album, artist, artist_match))
        if excluded:
            logger.info("Phase 2: %d file(s) excluded because their artist was not matched", excluded)

        total = len(groups)
        logger.info("Phase 2: matching %d album group(s)", total)
        results: List[AlbumMatch] = []
        for processed, (key, members) in enumerate(groups.items(), start=1):
            if self.cancelled:
                return results
            album, original_artist, artist_match = details[key]
            correction = artist_match.correction()
            match = AlbumMatch(
                original=album,
                original_artist=original_artist,
                corrected_artist=correction.corrected,
                artist_correction=correction,
                file_count=len(members),
            )
            self._search_into(match, KIND_RELEASE, {"artist": correction.corrected, "album": album})
            results.append(match)
            self._emit(processed, total, f"{correction.corrected} - {album}", PHASE_ALBUMS)
        _log_phase_summary(PHASE_ALBUMS, results)
        return results

    def canonicalize_albums(self, albums: Iterable[AlbumMatch]) -> Dict[str, AlbumMatch]:
        """Make every album group that resolved to one release share a single match.

        The group backing the most files wins; ties go to the first group seen.
        Returns the canonical match per release id.
        """
        by_release: Dict[str, List[AlbumMatch]] = {}
        for album in albums:
            if album.rejected or not album.provider_id:
                continue
            by_release.setdefault(album.provider_id, []).append(album)

        canonical: Dict[str, AlbumMatch] = {}
        for release_id, members in by_release.items():
            winner = max(members, key=lambda item: item.file_count)
            canonical[release_id] = winner
            for member in members:
                if member is winner:
                    continue
                logger.info(
                    "Album %r (%s) shares release %s with %r; using its match",
                    member.original,
                    member.corrected_artist,
                    release_id,
                    winner.original,
                )
                member.adopt(winner)
        return canonical

    # Phase 3

    def match_tracks(
        self,
        files: Iterable[ScannedFile],
        artists: Iterable[ArtistMatch],
        albums: Iterable[AlbumMatch],
    ) -> List[TrackMatch]:
        files = list(files)
        artist_index = _artist_index(artists)
        album_index = {album.key: album for album in albums}
        total = len(files)
        logger.info("Phase 3: matching %d track(s)", total)
        results: List[TrackMatch] = []
        for processed, scanned in enumerate(files, start=1):
            if self.cancelled:
                return results
            results.append(self._match_track(scanned, artist_index, album_index))
            self._emit(processed, total, scanned.file_name, PHASE_TRACKS)
        _log_phase_summary(PHASE_TRACKS, results)
        return results

    def _match_track(
        self,
        scanned: ScannedFile,
        artist_index: Mapping[str, ArtistMatch],
        album_index: Mapping[str, AlbumMatch],
    ) -> TrackMatch:
        title = scanned.title
        track = TrackMatch(original=title or scanned.file_name, file=scanned, file_count=1)

        artist = scanned.effective_artist
        if artist is None:
            return _mark_skipped(track, MissingRequiredField("artist"))
        artist_match = artist_index.get(artist.casefold())
        if artist_match is None or artist_match.rejected:
            return _mark_skipped(track, f"Artist not matched: {artist}")
        track.artist_correction = artist_match.correction()
        track.corrected_artist = track.artist_correction.corrected

        album = scanned.effective_album
        if album is not None:
            album_match = album_index.get(album_key(track.corrected_artist, album))
            if album_match is None or album_match.rejected:
                return _mark_skipped(track, f"Album not matched: {artist} - {album}")
            track.album_correction = album_match.correction()
            track.corrected_album = track.album_correction.corrected

        if is_missing(title):
            return _mark_skipped(track, MissingRequiredField("title"))

        fields = {
            "artist": track.corrected_artist,
            "album": track.corrected_album or "",
            "title": title.strip(),
        }
        self._search_into(track, KIND_RECORDING, fields)
        if track.candidate is not None:
            track.corrected_title = track.candidate.display_name
            track.release = _pick_release(track.candidate, track.corrected_album)
        else:
            track.corrected_title = title.strip()
        return track

    # Search

    def _search_into(self, match: MatchResult, kind: str, fields: Dict[str, str]) -> None:
        try:
            best, method = self._search_best(kind, fields)
        except ProviderError as exc:
            logger.warning("%s search failed for %s: %s", kind.capitalize(), fields, exc)
            match.status = STATUS_ERROR
            match.reason = str(exc)
            return
        except Exception as exc:
            logger.warning("Unexpected %s search failure for %s: %s", kind, fields, exc)
            match.status = STATUS_ERROR
            match.reason = str(exc)
            return

        if best is None:
            match.status = STATUS_NO_MATCH
            match.reason = "No match found"
            match.category = MANUAL
            return
        match.candidate = best
        match.status = STATUS_MATCHED
        match.confidence = best.confidence
        match.category = categorize(
            best.confidence,
            auto_approve=self.settings.auto_approve_threshold,
            review=self.settings.review_threshold,
        )
        match.search_method = method
        match.accepted = match.category == AUTO_APPROVE

    def _search_best(self, kind: str, fields: Mapping[str, str]) -> Tuple[Optional[MatchCandidate], str]:
        """Search with the original text, retrying alternate-script renderings if that scores low.

        Returns the best candidate seen and the search method that produced it.
        """
        names = QUERY_FIELDS[kind]
        query = {name: fields.get(name) or "" for name in names}
        logger.debug("Searching %s: %s", kind, query)
        best = _first(self.provider.search(kind, query, limit=self.search_limit))
        method = SEARCH_ORIGINAL

        if not self.settings.try_script_variants:
            return best, method
        if best is not None and best.confidence >= self.settings.review_threshold:
            return best, method
        if not any(is_romaji(value) for value in query.values()):
            return best, method

        variants = generate_search_variants(
            artist=query.get("artist"), album=query.get("album"), title=query.get("title")
        )
        seen = {tuple(query.values())}
        for variant in variants[1:]:
            if self.cancelled:
                break
            variant_query = variant.query(names)
            signature = tuple(variant_query.values())
            if signature in seen:
                continue
            seen.add(signature)
            logger.debug("Retrying %s search with %s variant: %s", kind, variant.method, variant_query)
            try:
                hit = _first(self.provider.search(kind, variant_query, limit=self.search_limit))
            except ProviderError as exc:
                logger.warning("Variant %s search failed for %s: %s", kind, variant_query, exc)
                break
            if hit is not None and (best is None or hit.confidence > best.confidence):
                best, method = hit, variant.method
            if best is not None and best.confidence >= self.settings.auto_approve_threshold:
                break
        return best, method

    def _emit(self, processed: int, total: int, label: str, phase: str) -> None:
        if self.progress is None:
            return
        self.progress(
            ProgressEvent(
                processed_count=processed,
                total_count=total,
                current_unit_label=label,
                phase=phase,
            )
        )


def match_statistics(tracks: Iterable[TrackMatch]) -> Dict[str, object]:
    tracks = list(tracks)
    by_status: Counter = Counter(track.status for track in tracks)
    by_category: Counter = Counter(
        track.category for track in tracks if track.status == STATUS_MATCHED
    )
    bands = {"high": 0, "medium": 0, "low": 0}
    for track in tracks:
        if track.status != STATUS_MATCHED:
            continue
        if track.category == AUTO_APPROVE:
            bands["high"] += 1
        elif track.category == REVIEW:
            bands["medium"] += 1
        else:
            bands["low"] += 1
    matched = by_status.get(STATUS_MATCHED, 0)
    average = round_half_up(sum(t.confidence for t in tracks if t.status == STATUS_MATCHED) / matched) if matched else 0
    return {
        "total": len(tracks),
        "matched": matched,
        "no_match": by_status.get(STATUS_NO_MATCH, 0),
        "errors": by_status.get(STATUS_ERROR, 0),
        "skipped": by_status.get(STATUS_SKIPPED, 0),
        "by_category": {name: by_category.get(name, 0) for name in (AUTO_APPROVE, REVIEW, MANUAL)},
        "confidence_bands": bands,
        "average_confidence": average,
    }


def _first(candidates: Optional[List[MatchCandidate]]) -> Optional[MatchCandidate]:
    return candidates[0] if candidates else None


def _mark_skipped(match, reason):
    match.status = STATUS_SKIPPED
    match.skipped = True
    match.reason = str(reason)
    return match


def _artist_index(artists: Iterable[ArtistMatch]) -> Dict[str, ArtistMatch]:
    return {artist.key: artist for artist in artists if artist.original}


def _most_common(values: Iterable[Optional[str]]) -> Optional[str]:
    counts = Counter(value for value in values if value)
    if not counts:
        return None
    # most_common keeps insertion order among equal counts.
    return counts.most_common(1)[0][0]


def _pick_release(candidate: MatchCandidate, album: Optional[str]) -> Optional[ReleaseInfo]:
    releases = candidate.releases
    if not releases:
        return None
    if not album:
        return releases[0]
    return max(releases, key=lambda release: field_similarity(album, release.title))


def _log_phase_summary(phase: str, results: List[MatchResult]) -> None:
    counts = Counter(result.category if result.status == STATUS_MATCHED else result.status for result in results)
    logger.info(
        "Phase %s finished: %s",
        phase,
        ", ".join(f"{name}={count}" for name, count in sorted(counts.items())) or "nothing to match",
    )
