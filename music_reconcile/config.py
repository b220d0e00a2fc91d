from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_EXTENSIONS = [".flac", ".mp3", ".m4a", ".aac", ".ogg", ".opus", ".wav", ".wma"]


class LibrarySettings(BaseModel):
    roots: List[Path]
    include_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude_patterns: List[str] = Field(default_factory=list)

    @field_validator("roots", mode="before")
    @classmethod
    def _expand_roots(cls, values: List[str]) -> List[Path]:
        return [Path(v).expanduser().resolve() for v in values]

    @field_validator("include_extensions")
    @classmethod
    def _normalize_extensions(cls, values: List[str]) -> List[str]:
        return [v.lower() if v.startswith(".") else f".{v.lower()}" for v in values]


class ProviderSettings(BaseModel):
    musicbrainz_useragent: str = "music-reconcile/0.1 (unknown@example.com)"
    app_name: str = "music-reconcile"
    app_version: str = "0.1"
    min_request_interval_seconds: float = 1.0
    cache_ttl_days: int = 30
    network_retries: int = 1
    network_retry_backoff_seconds: float = 0.5
    search_limit: int = 5


class MatcherSettings(BaseModel):
    auto_approve_threshold: int = 90
    review_threshold: int = 70
    try_script_variants: bool = True

    @model_validator(mode="after")
    def _check_thresholds(self) -> "MatcherSettings":
        if not 0 <= self.review_threshold <= self.auto_approve_threshold <= 100:
            raise ValueError("thresholds must satisfy 0 <= review <= auto_approve <= 100")
        return self


class OrganizerSettings(BaseModel):
    target_root: Optional[Path] = None
    cleanup_empty_dirs: bool = True
    max_cleanup_depth: int = 8
    max_filename_length: int = 255

    @field_validator("target_root", mode="before")
    @classmethod
    def _expand_target(cls, value: Optional[str | Path]) -> Optional[Path]:
        if value is None:
            return None
        return Path(value).expanduser().resolve()


class CacheSettings(BaseModel):
    path: Path = Path("./cache/music-reconcile.sqlite3")

    @field_validator("path", mode="before")
    @classmethod
    def _expand_cache(cls, value: str | Path) -> Path:
        return Path(value).expanduser().resolve()


class Settings(BaseModel):
    library: LibrarySettings
    providers: ProviderSettings = ProviderSettings()
    matcher: MatcherSettings = MatcherSettings()
    organizer: OrganizerSettings = OrganizerSettings()
    cache: CacheSettings = CacheSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})

    def destination_root(self) -> Path:
        if self.organizer.target_root:
            return self.organizer.target_root
        if self.library.roots:
            return self.library.roots[0]
        return Path.cwd()


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml - pass --config explicitly.")
