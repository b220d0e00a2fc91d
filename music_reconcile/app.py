from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from .cache import MetadataCache
from .config import Settings
from .matcher import ThreePhaseMatcher
from .models import ProgressEvent
from .organizer import RenameExecutor
from .providers.musicbrainz import MusicBrainzProvider
from .rate_limiter import RateLimiter
from .renamer import RenamePathBuilder
from .scanner import LibraryScanner


@dataclass
class ReconcileApp:
    """Wires the long-lived collaborators together once per process."""

    settings: Settings
    cache: MetadataCache
    scanner: LibraryScanner
    provider: MusicBrainzProvider
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def create(cls, settings: Settings) -> "ReconcileApp":
        cache = MetadataCache(settings.cache.path)
        limiter = RateLimiter(settings.providers.min_request_interval_seconds)
        provider = MusicBrainzProvider(settings.providers, cache=cache, limiter=limiter)
        return cls(
            settings=settings,
            cache=cache,
            scanner=LibraryScanner(settings.library),
            provider=provider,
        )

    def get_matcher(self, progress: Optional[Callable[[ProgressEvent], None]] = None) -> ThreePhaseMatcher:
        return ThreePhaseMatcher(
            self.provider,
            settings=self.settings.matcher,
            progress=progress,
            cancel_event=self.cancel_event,
        )

    def get_path_builder(self) -> RenamePathBuilder:
        return RenamePathBuilder(
            self.settings.destination_root(),
            max_filename_length=self.settings.organizer.max_filename_length,
        )

    def get_executor(
        self,
        *,
        cleanup_empty_dirs: Optional[bool] = None,
        progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> RenameExecutor:
        organizer = self.settings.organizer
        roots = list(self.settings.library.roots)
        destination = self.settings.destination_root()
        if destination not in roots:
            roots.append(destination)
        return RenameExecutor(
            roots,
            cache=self.cache,
            cleanup_empty_dirs=organizer.cleanup_empty_dirs if cleanup_empty_dirs is None else cleanup_empty_dirs,
            max_cleanup_depth=organizer.max_cleanup_depth,
            progress=progress,
            cancel_event=self.cancel_event,
        )

    def close(self) -> None:
        self.cache.close()
