import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pydantic import ValidationError

from music_reconcile.config import MatcherSettings, Settings, find_config


class TestSettings(unittest.TestCase):
    def test_load_yaml_with_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp).resolve()
            config = tmp_path / "config.yaml"
            config.write_text(
                "\n".join(
                    [
                        "library:",
                        f"  roots: ['{tmp_path / 'music'}']",
                        "  include_extensions: [FLAC, .Mp3]",
                        "providers:",
                        "  musicbrainz_useragent: me@example.com",
                        "matcher:",
                        "  review_threshold: 60",
                        "cache:",
                        f"  path: '{tmp_path / 'cache.sqlite3'}'",
                    ]
                ),
                encoding="utf-8",
            )
            settings = Settings.load(config)

        self.assertEqual(settings.library.roots, [tmp_path / "music"])
        self.assertEqual(settings.library.include_extensions, [".flac", ".mp3"])
        self.assertEqual(settings.providers.musicbrainz_useragent, "me@example.com")
        self.assertEqual(settings.providers.min_request_interval_seconds, 1.0)
        self.assertEqual(settings.providers.cache_ttl_days, 30)
        self.assertEqual(settings.matcher.review_threshold, 60)
        self.assertEqual(settings.matcher.auto_approve_threshold, 90)
        self.assertEqual(settings.cache.path, tmp_path / "cache.sqlite3")
        self.assertEqual(settings.destination_root(), tmp_path / "music")

    def test_target_root_overrides_destination(self) -> None:
        settings = Settings.model_validate(
            {"library": {"roots": ["/music"]}, "organizer": {"target_root": "/sorted"}}
        )
        self.assertEqual(settings.destination_root(), Path("/sorted").resolve())

    def test_thresholds_must_be_ordered(self) -> None:
        with self.assertRaises(ValidationError):
            MatcherSettings(auto_approve_threshold=60, review_threshold=70)
        with self.assertRaises(ValidationError):
            MatcherSettings(auto_approve_threshold=120)

    def test_library_roots_are_required(self) -> None:
        with self.assertRaises(ValidationError):
            Settings.model_validate({})


class TestFindConfig(unittest.TestCase):
    def test_explicit_path_wins(self) -> None:
        self.assertEqual(find_config(Path("/etc/custom.yaml")), Path("/etc/custom.yaml"))

    def test_searches_working_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            tmp_path = Path(tmp)
            with patch.object(Path, "cwd", return_value=tmp_path):
                with self.assertRaises(FileNotFoundError):
                    find_config(None)
                (tmp_path / "config.yml").write_text("library: {roots: []}\n", encoding="utf-8")
                self.assertEqual(find_config(None), tmp_path / "config.yml")


if __name__ == "__main__":
    unittest.main()
