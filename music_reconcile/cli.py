from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path

from .app import ReconcileApp
from .cache import MetadataCache
from .commands import cache_maintenance as cmd_cache
from .commands import match as cmd_match
from .commands import rename as cmd_rename
from .commands import rollback as cmd_rollback
from .config import Settings, find_config

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

ANSI_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[2m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}


class ShortPathFormatter(logging.Formatter):
    """Prints library paths relative to their root so per-file lines stay readable."""

    def __init__(self, fmt: str, roots: list[Path]) -> None:
        super().__init__(fmt)
        # Longest first so nested roots are stripped before their parents.
        self.prefixes = sorted((f"{root}{os.sep}" for root in roots if root), key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for prefix in self.prefixes:
            message = message.replace(prefix, "")
        return message


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno)
        message = super().format(record)
        return f"{color}{message}{ANSI_RESET}" if color else message


def configure_logging(level_name: str, roots: list[Path]) -> None:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler()
    formatter_cls = ColorFormatter if sys.stderr.isatty() else ShortPathFormatter
    handler.setFormatter(formatter_cls(LOG_FORMAT, roots))
    root_logger.addHandler(handler)

    logging.getLogger("musicbrainzngs").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Reconcile music library metadata against MusicBrainz and plan renames"
    )
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    match_parser = subparsers.add_parser(
        "match", help="Scan the library and match artists, albums and tracks"
    )
    match_parser.add_argument("--output", type=Path, help="Write the full results as JSON to this file")

    rename_parser = subparsers.add_parser(
        "rename", help="Rename matched files into Artist/Album (Year)/NN - Title"
    )
    rename_parser.add_argument(
        "--input", type=Path, help="Use results written by 'match --output' instead of matching again"
    )
    rename_parser.add_argument(
        "--apply", action="store_true", help="Rename files on disk (default is a dry run)"
    )
    rename_parser.add_argument(
        "--include-review",
        action="store_true",
        help="Also rename tracks whose match needs review (confidence 70-89)",
    )
    rename_parser.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Leave emptied source directories in place",
    )

    subparsers.add_parser("rollback", help="Move renamed files back to their original locations")

    cache_parser = subparsers.add_parser("cache", help="Inspect or prune the response cache")
    cache_parser.add_argument("action", choices=["stats", "prune", "clear"])
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    config_path = find_config(args.config)
    settings = Settings.load(config_path)
    configure_logging(args.log_level, [root.resolve() for root in settings.library.roots])

    if args.command == "cache":
        cache = MetadataCache(settings.cache.path)
        try:
            cmd_cache.run(cache, args.action, ttl_days=settings.providers.cache_ttl_days)
        finally:
            cache.close()
        return

    app = ReconcileApp.create(settings)
    # Ctrl-C stops after the current unit and keeps the partial results.
    previous_handler = signal.signal(signal.SIGINT, lambda *_: app.cancel_event.set())
    try:
        match args.command:
            case "match":
                cmd_match.run(app, output=args.output)
            case "rename":
                cmd_rename.run(
                    app,
                    input_path=args.input,
                    apply=args.apply,
                    include_review=args.include_review,
                    cleanup=not args.no_cleanup,
                )
            case "rollback":
                cmd_rollback.run(app)
            case _:
                parser.error("Unknown command")
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        app.close()


if __name__ == "__main__":
    main()
