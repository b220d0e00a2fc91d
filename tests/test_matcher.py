import threading
import unittest
from pathlib import Path

from music_reconcile.config import MatcherSettings
from music_reconcile.matcher import ThreePhaseMatcher, match_statistics
from music_reconcile.models import (
    AUTO_APPROVE,
    MANUAL,
    PHASE_ALBUMS,
    PHASE_ARTISTS,
    PHASE_TRACKS,
    REVIEW,
    STATUS_ERROR,
    STATUS_MATCHED,
    STATUS_NO_MATCH,
    STATUS_SKIPPED,
    MatchCandidate,
    ProviderError,
    ScannedFile,
    TrackMatch,
)


def candidate(provider_id, name, confidence, **raw):
    return MatchCandidate(provider_id=provider_id, display_name=name, confidence=confidence, raw_fields=raw)


class FakeProvider:
    """Answers searches from a handler and records every call."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.calls = []

    def search(self, kind, fields, limit=1):
        self.calls.append((kind, dict(fields)))
        return self.handler(kind, dict(fields))

    def kinds(self):
        return [kind for kind, _ in self.calls]


def perfect_handler(kind, fields):
    if kind == "artist":
        return [candidate("artist-" + fields["artist"].lower(), fields["artist"], 100)]
    if kind == "release":
        return [candidate("release-" + fields["album"].lower(), fields["album"], 95, date="2024-03-15")]
    return [
        candidate(
            "rec-" + fields["title"].lower(),
            fields["title"],
            95,
            releases=[{"id": "release-x", "title": fields["album"], "date": "2024-03-15", "track_number": 1}],
        )
    ]


def scanned(path, artist="XG", album="AWE", title="Left Right", **extra):
    return ScannedFile(path=Path(path), artist=artist, album=album, title=title, **extra)


class TestThreePhaseMatcherFlow(unittest.TestCase):
    def test_full_run_cascades_corrections(self) -> None:
        def handler(kind, fields):
            if kind == "artist":
                return [candidate("a1", "XG", 100)]
            if kind == "release":
                return [candidate("r1", "AWE", 95, date="2024-03-15")]
            return [
                candidate(
                    "t1",
                    "LEFT RIGHT",
                    95,
                    releases=[
                        {"id": "r0", "title": "Left Right (Single)", "date": "2023-01-01"},
                        {"id": "r1", "title": "AWE", "date": "2024-03-15", "track_number": 1},
                    ],
                )
            ]

        provider = FakeProvider(handler)
        matcher = ThreePhaseMatcher(provider)
        result = matcher.run([scanned("/music/xg/awe/01 - Left Right.flac", artist="xg")])

        self.assertFalse(result.cancelled)
        artist = result.artists[0]
        self.assertEqual(artist.original, "xg")
        self.assertEqual(artist.corrected, "XG")
        self.assertEqual(artist.category, AUTO_APPROVE)
        self.assertEqual(result.albums[0].corrected_artist, "XG")
        self.assertEqual(result.albums[0].artist_correction.provider_id, "a1")

        track = result.tracks[0]
        self.assertEqual(track.status, STATUS_MATCHED)
        self.assertEqual(track.category, AUTO_APPROVE)
        self.assertEqual(track.corrected_artist, "XG")
        self.assertEqual(track.corrected_album, "AWE")
        self.assertEqual(track.corrected_title, "LEFT RIGHT")
        self.assertEqual(track.recording_id, "t1")
        self.assertEqual(track.release.release_id, "r1")
        self.assertEqual(track.release.year, "2024")
        self.assertEqual(track.album_correction.provider_id, "r1")

        # The album and track searches use the corrected artist.
        self.assertEqual(provider.calls[1], ("release", {"artist": "XG", "album": "AWE"}))
        self.assertEqual(
            provider.calls[2],
            ("recording", {"artist": "XG", "album": "AWE", "title": "Left Right"}),
        )

    def test_unique_artists_are_searched_once(self) -> None:
        provider = FakeProvider(perfect_handler)
        files = [
            scanned("/m/1.flac", artist="XG", title="One"),
            scanned("/m/2.flac", artist="xg", title="Two"),
            scanned("/m/3.flac", artist="Perfume", album="GAME", title="Polyrhythm"),
        ]
        result = ThreePhaseMatcher(provider).run(files)

        self.assertEqual([a.original for a in result.artists], ["XG", "Perfume"])
        self.assertEqual([a.file_count for a in result.artists], [2, 1])
        self.assertEqual(provider.kinds().count("artist"), 2)
        self.assertEqual(provider.kinds().count("release"), 2)
        self.assertEqual(provider.kinds().count("recording"), 3)

    def test_folder_name_is_most_common_spelling(self) -> None:
        provider = FakeProvider(perfect_handler)
        files = [
            scanned("/m/a.flac", folder_artist="XG (Xtraordinary Girls)"),
            scanned("/m/b.flac", folder_artist="XG"),
            scanned("/m/c.flac", folder_artist="XG"),
        ]
        artists = ThreePhaseMatcher(provider).match_artists(files)
        self.assertEqual(artists[0].folder_name, "XG")

    def test_every_file_appears_once_in_track_output(self) -> None:
        def handler(kind, fields):
            # Only XG exists; kana retries for "Nobody" find nothing either.
            if kind == "artist" and fields["artist"] != "XG":
                return []
            return perfect_handler(kind, fields)

        files = [
            scanned("/m/ok.flac"),
            scanned("/m/unknown-title.flac", title="Unknown"),
            scanned("/m/no-artist.flac", artist=None),
            scanned("/m/nobody.flac", artist="Nobody"),
            scanned("/m/no-album.flac", album=None),
        ]
        result = ThreePhaseMatcher(FakeProvider(handler)).run(files)

        self.assertEqual([t.file.path for t in result.tracks], [f.path for f in files])
        statuses = [t.status for t in result.tracks]
        self.assertEqual(
            statuses,
            [STATUS_MATCHED, STATUS_SKIPPED, STATUS_SKIPPED, STATUS_SKIPPED, STATUS_MATCHED],
        )
        self.assertEqual(result.tracks[2].reason, "Missing artist metadata")
        self.assertEqual(result.tracks[3].reason, "Artist not matched: Nobody")

    def test_missing_artist_is_a_skipped_unit_without_provider_call(self) -> None:
        provider = FakeProvider(perfect_handler)
        artists = ThreePhaseMatcher(provider).match_artists([scanned("/m/x.flac", artist=None)])

        self.assertEqual(len(artists), 1)
        self.assertEqual(artists[0].status, STATUS_SKIPPED)
        self.assertEqual(artists[0].reason, "Missing artist metadata")
        self.assertEqual(provider.calls, [])

    def test_folder_artist_is_used_when_tag_is_missing(self) -> None:
        provider = FakeProvider(perfect_handler)
        artists = ThreePhaseMatcher(provider).match_artists(
            [scanned("/m/x.flac", artist="", folder_artist="XG")]
        )
        self.assertEqual(artists[0].original, "XG")
        self.assertEqual(provider.calls, [("artist", {"artist": "XG"})])

    def test_missing_album_searches_recording_with_empty_album(self) -> None:
        provider = FakeProvider(perfect_handler)
        result = ThreePhaseMatcher(provider).run([scanned("/m/x.flac", album=None)])

        self.assertEqual(result.albums, [])
        self.assertEqual(
            provider.calls[-1],
            ("recording", {"artist": "XG", "album": "", "title": "Left Right"}),
        )
        self.assertIsNone(result.tracks[0].corrected_album)


class TestThreePhaseMatcherScenarios(unittest.TestCase):
    def test_unknown_title_is_skipped_without_recording_search(self) -> None:
        provider = FakeProvider(perfect_handler)
        result = ThreePhaseMatcher(provider).run([scanned("/m/x.flac", title="Unknown")])

        track = result.tracks[0]
        self.assertEqual(track.status, STATUS_SKIPPED)
        self.assertEqual(track.reason, "Missing title metadata")
        self.assertNotIn("recording", provider.kinds())

    def test_low_confidence_non_romaji_artist_is_manual_without_retry(self) -> None:
        provider = FakeProvider(lambda kind, fields: [candidate("a1", "Hikaru Utada", 40)])
        artists = ThreePhaseMatcher(provider).match_artists([scanned("/m/x.flac", artist="宇多田ヒカル")])

        self.assertEqual(artists[0].confidence, 40)
        self.assertEqual(artists[0].category, MANUAL)
        self.assertEqual(artists[0].search_method, "original")
        self.assertEqual(len(provider.calls), 1)

    def test_romaji_retry_keeps_best_variant(self) -> None:
        scores = {"Sakura": 30, "さくら": 60, "サクラ": 85}
        provider = FakeProvider(
            lambda kind, fields: [candidate("id-" + fields["artist"], fields["artist"], scores[fields["artist"]])]
        )
        artists = ThreePhaseMatcher(provider).match_artists([scanned("/m/x.flac", artist="Sakura")])

        self.assertEqual([call[1]["artist"] for call in provider.calls], ["Sakura", "さくら", "サクラ"])
        self.assertEqual(artists[0].confidence, 85)
        self.assertEqual(artists[0].category, REVIEW)
        self.assertEqual(artists[0].search_method, "katakana")
        self.assertEqual(artists[0].provider_id, "id-サクラ")

    def test_romaji_retry_stops_at_auto_approve(self) -> None:
        scores = {"Sakura": 30, "さくら": 95, "サクラ": 99}
        provider = FakeProvider(
            lambda kind, fields: [candidate("id", fields["artist"], scores[fields["artist"]])]
        )
        artists = ThreePhaseMatcher(provider).match_artists([scanned("/m/x.flac", artist="Sakura")])

        self.assertEqual(len(provider.calls), 2)
        self.assertEqual(artists[0].confidence, 95)
        self.assertEqual(artists[0].search_method, "hiragana")
        self.assertEqual(artists[0].category, AUTO_APPROVE)

    def test_retry_never_lowers_best_confidence(self) -> None:
        scores = {"Sakura": 50, "さくら": 20}
        provider = FakeProvider(
            lambda kind, fields: [candidate("id", fields["artist"], scores[fields["artist"]])]
            if fields["artist"] in scores
            else []
        )
        artists = ThreePhaseMatcher(provider).match_artists([scanned("/m/x.flac", artist="Sakura")])

        self.assertEqual(len(provider.calls), 3)
        self.assertEqual(artists[0].confidence, 50)
        self.assertEqual(artists[0].search_method, "original")

    def test_no_retry_when_original_reaches_review(self) -> None:
        provider = FakeProvider(lambda kind, fields: [candidate("id", "Sakura", 75)])
        ThreePhaseMatcher(provider).match_artists([scanned("/m/x.flac", artist="Sakura")])
        self.assertEqual(len(provider.calls), 1)

    def test_retry_can_be_disabled(self) -> None:
        provider = FakeProvider(lambda kind, fields: [candidate("id", "Sakura", 10)])
        matcher = ThreePhaseMatcher(provider, settings=MatcherSettings(try_script_variants=False))
        matcher.match_artists([scanned("/m/x.flac", artist="Sakura")])
        self.assertEqual(len(provider.calls), 1)

    def test_empty_results_are_no_match(self) -> None:
        artists = ThreePhaseMatcher(FakeProvider(lambda kind, fields: [])).match_artists(
            [scanned("/m/x.flac", artist="XG")]
        )
        self.assertEqual(artists[0].status, STATUS_NO_MATCH)
        self.assertIsNone(artists[0].correction())


class TestCanonicalization(unittest.TestCase):
    @staticmethod
    def _handler(kind, fields):
        if kind == "artist":
            return [candidate("a1", "Band", 100)]
        if kind == "release":
            if fields["album"] == "Best Of":
                return [candidate("rel-1", "Best Of", 95)]
            return [candidate("rel-1", "Best Of (Japan Edition)", 92)]
        return perfect_handler(kind, fields)

    def _files(self, big_first=True):
        big = [scanned(f"/m/big/{i:02d}.flac", artist="BAND", album="Best Of", title=f"T{i}") for i in range(40)]
        small = [
            scanned(f"/m/jp/{i:02d}.flac", artist="Band", album="Best Of (JP)", title=f"T{i}") for i in range(3)
        ]
        return big + small if big_first else small + big

    def test_largest_group_name_wins(self) -> None:
        for big_first in (True, False):
            with self.subTest(big_first=big_first):
                result = ThreePhaseMatcher(FakeProvider(self._handler)).run(self._files(big_first))
                names = {album.original: album.corrected for album in result.albums}
                self.assertEqual(names, {"Best Of": "Best Of", "Best Of (JP)": "Best Of"})
                self.assertEqual({album.provider_id for album in result.albums}, {"rel-1"})
                corrected = {track.corrected_album for track in result.tracks}
                self.assertEqual(corrected, {"Best Of"})

    def test_adopted_group_records_canonical_key(self) -> None:
        result = ThreePhaseMatcher(FakeProvider(self._handler)).run(self._files())
        big, small = result.albums
        self.assertIsNone(big.canonical_key)
        self.assertEqual(small.canonical_key, big.key)
        self.assertEqual(small.confidence, 95)

    def test_review_matches_share_one_name_per_release(self) -> None:
        def handler(kind, fields):
            if kind == "release":
                return [candidate("rel-1", "Best Of", 80)]
            return self._handler(kind, fields)

        result = ThreePhaseMatcher(FakeProvider(handler)).run(self._files(big_first=False))

        self.assertEqual({album.category for album in result.albums}, {REVIEW})
        self.assertEqual({album.correction().corrected for album in result.albums}, {"Best Of"})
        self.assertEqual({track.corrected_album for track in result.tracks}, {"Best Of"})
        small = next(album for album in result.albums if album.original == "Best Of (JP)")
        self.assertEqual(small.canonical_name, "Best Of")
        self.assertIsNone(small.corrected)

    def test_ties_go_to_first_group(self) -> None:
        files = [
            scanned("/m/a.flac", album="Best Of (JP)"),
            scanned("/m/b.flac", album="Best Of"),
        ]
        result = ThreePhaseMatcher(FakeProvider(self._handler)).run(files)
        self.assertEqual({album.corrected for album in result.albums}, {"Best Of (Japan Edition)"})


class TestReviewActionsAndFailures(unittest.TestCase):
    def test_rejected_artist_excludes_its_files(self) -> None:
        provider = FakeProvider(perfect_handler)
        matcher = ThreePhaseMatcher(provider)
        files = [scanned("/m/a.flac", artist="XG"), scanned("/m/b.flac", artist="Perfume")]
        artists = matcher.match_artists(files)
        artists[0].reject()

        albums = matcher.match_albums(files, artists)
        tracks = matcher.match_tracks(files, artists, albums)

        self.assertEqual([album.corrected_artist for album in albums], ["Perfume"])
        self.assertEqual(tracks[0].status, STATUS_SKIPPED)
        self.assertEqual(tracks[0].reason, "Artist not matched: XG")
        self.assertEqual(tracks[1].status, STATUS_MATCHED)

    def test_rejected_album_excludes_its_files(self) -> None:
        matcher = ThreePhaseMatcher(FakeProvider(perfect_handler))
        files = [scanned("/m/a.flac")]
        artists = matcher.match_artists(files)
        albums = matcher.match_albums(files, artists)
        albums[0].reject()
        tracks = matcher.match_tracks(files, artists, albums)
        self.assertEqual(tracks[0].reason, "Album not matched: XG - AWE")

    def test_override_feeds_next_phase(self) -> None:
        provider = FakeProvider(perfect_handler)
        matcher = ThreePhaseMatcher(provider)
        files = [scanned("/m/a.flac", artist="Ekkusu Jii")]
        artists = matcher.match_artists(files)
        artists[0].override("XG", "mbid-xg")

        albums = matcher.match_albums(files, artists)

        self.assertEqual(provider.calls[-1], ("release", {"artist": "XG", "album": "AWE"}))
        self.assertEqual(albums[0].artist_correction.provider_id, "mbid-xg")
        self.assertTrue(artists[0].manual_override)

    def test_review_artist_keeps_original_name_until_approved(self) -> None:
        def handler(kind, fields):
            if kind == "artist":
                return [candidate("a1", "XG", 80)]
            return perfect_handler(kind, fields)

        provider = FakeProvider(handler)
        matcher = ThreePhaseMatcher(provider)
        files = [scanned("/m/a.flac", artist="X.G.")]
        artists = matcher.match_artists(files)
        self.assertEqual(artists[0].category, REVIEW)
        self.assertEqual(matcher.match_albums(files, artists)[0].corrected_artist, "X.G.")

        artists[0].approve()
        self.assertEqual(matcher.match_albums(files, artists)[0].corrected_artist, "XG")

    def test_provider_error_is_recorded_and_batch_continues(self) -> None:
        def handler(kind, fields):
            if kind == "artist" and fields["artist"] == "Broken":
                raise ProviderError("MusicBrainz artist search failed: timeout", kind, fields)
            return perfect_handler(kind, fields)

        files = [scanned("/m/a.flac", artist="Broken"), scanned("/m/b.flac", artist="XG")]
        result = ThreePhaseMatcher(FakeProvider(handler)).run(files)

        broken, ok = result.artists
        self.assertEqual(broken.status, STATUS_ERROR)
        self.assertIn("timeout", broken.reason)
        self.assertEqual(ok.status, STATUS_MATCHED)
        self.assertEqual(result.tracks[0].status, STATUS_SKIPPED)
        self.assertEqual(result.tracks[1].status, STATUS_MATCHED)

    def test_unexpected_exception_is_recorded_as_error(self) -> None:
        def handler(kind, fields):
            if kind == "recording":
                raise RuntimeError("bad payload")
            return perfect_handler(kind, fields)

        result = ThreePhaseMatcher(FakeProvider(handler)).run([scanned("/m/a.flac")])
        self.assertEqual(result.tracks[0].status, STATUS_ERROR)
        self.assertEqual(result.tracks[0].reason, "bad payload")


class TestProgressAndCancellation(unittest.TestCase):
    def test_progress_reported_for_every_unit(self) -> None:
        events = []
        files = [scanned("/m/a.flac"), scanned("/m/b.flac", title="Other")]
        ThreePhaseMatcher(FakeProvider(perfect_handler), progress=events.append).run(files)

        phases = [event.phase for event in events]
        self.assertEqual(phases, [PHASE_ARTISTS, PHASE_ALBUMS, PHASE_TRACKS, PHASE_TRACKS])
        self.assertEqual((events[-1].processed_count, events[-1].total_count), (2, 2))
        self.assertEqual(events[-1].current_unit_label, "b.flac")

    def test_cancellation_returns_partial_results(self) -> None:
        cancel = threading.Event()
        provider = FakeProvider(perfect_handler)

        def on_progress(event) -> None:
            if event.processed_count == 1:
                cancel.set()

        files = [scanned("/m/a.flac", artist="XG"), scanned("/m/b.flac", artist="Perfume")]
        result = ThreePhaseMatcher(provider, progress=on_progress, cancel_event=cancel).run(files)

        self.assertTrue(result.cancelled)
        self.assertEqual(len(result.artists), 1)
        self.assertEqual(result.albums, [])
        self.assertEqual(result.tracks, [])
        self.assertEqual(provider.kinds(), ["artist"])


class TestMatchStatistics(unittest.TestCase):
    def test_counts_by_status_category_and_band(self) -> None:
        def track(status, category=MANUAL, confidence=0):
            return TrackMatch(
                original="t",
                file=ScannedFile(path=Path("/m/t.flac")),
                status=status,
                category=category,
                confidence=confidence,
            )

        stats = match_statistics(
            [
                track(STATUS_MATCHED, AUTO_APPROVE, 95),
                track(STATUS_MATCHED, REVIEW, 75),
                track(STATUS_MATCHED, MANUAL, 41),
                track(STATUS_NO_MATCH),
                track(STATUS_ERROR),
                track(STATUS_SKIPPED),
            ]
        )
        self.assertEqual(stats["total"], 6)
        self.assertEqual(stats["matched"], 3)
        self.assertEqual(stats["no_match"], 1)
        self.assertEqual(stats["errors"], 1)
        self.assertEqual(stats["skipped"], 1)
        self.assertEqual(stats["by_category"], {AUTO_APPROVE: 1, REVIEW: 1, MANUAL: 1})
        self.assertEqual(stats["confidence_bands"], {"high": 1, "medium": 1, "low": 1})
        self.assertEqual(stats["average_confidence"], 70)

    def test_average_confidence_rounds_half_up(self) -> None:
        tracks = [
            TrackMatch(original="t", file=ScannedFile(path=Path(f"/m/{i}.flac")), confidence=c, category=AUTO_APPROVE)
            for i, c in enumerate((90, 91))
        ]
        self.assertEqual(match_statistics(tracks)["average_confidence"], 91)


if __name__ == "__main__":
    unittest.main()
