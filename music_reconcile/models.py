from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

AUTO_APPROVE = "auto_approve"
REVIEW = "review"
MANUAL = "manual"

STATUS_MATCHED = "matched"
STATUS_NO_MATCH = "no_match"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"

SEARCH_ORIGINAL = "original"

PHASE_ARTISTS = "artists"
PHASE_ALBUMS = "albums"
PHASE_TRACKS = "tracks"
PHASE_RENAME = "rename"

RENAME_SKIPPED = "skipped"
RENAME_SUCCESS = "success"
RENAME_SUCCESS_WITH_SUFFIX = "success_with_suffix"
RENAME_DRY_RUN = "success_dry_run"
RENAME_ERROR = "error"

UNKNOWN_VALUES = {"", "unknown", "unknown artist", "unknown album", "unknown title"}


def is_missing(value: Optional[str]) -> bool:
    """True for empty values and the placeholder strings taggers write for them."""
    if value is None:
        return True
    return value.strip().casefold() in UNKNOWN_VALUES


class ReconcileError(Exception):
    """Base class for errors raised by the reconciliation engine."""


class ProviderError(ReconcileError):
    """A metadata provider call failed (network, rate limit, bad response)."""

    def __init__(self, message: str, kind: Optional[str] = None, query: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.query = dict(query or {})


class MissingRequiredField(ReconcileError):
    def __init__(self, field_name: str) -> None:
        super().__init__(f"Missing {field_name} metadata")
        self.field_name = field_name


class FilesystemError(ReconcileError):
    """Raised when a rename fails on disk; the executor records it and moves on."""


@dataclass(frozen=True, slots=True)
class ScannedFile:
    path: Path
    artist: Optional[str] = None
    album: Optional[str] = None
    title: Optional[str] = None
    track_number: Optional[int] = None
    year: Optional[str] = None
    folder_artist: Optional[str] = None
    folder_album: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.path.name

    @property
    def effective_artist(self) -> Optional[str]:
        if not is_missing(self.artist):
            return self.artist.strip()
        if not is_missing(self.folder_artist):
            return self.folder_artist.strip()
        return None

    @property
    def effective_album(self) -> Optional[str]:
        if not is_missing(self.album):
            return self.album.strip()
        if not is_missing(self.folder_album):
            return self.folder_album.strip()
        return None

    def to_record(self) -> Dict[str, object]:
        return {
            "path": str(self.path),
            "artist": self.artist,
            "album": self.album,
            "title": self.title,
            "track_number": self.track_number,
            "year": self.year,
            "folder_artist": self.folder_artist,
            "folder_album": self.folder_album,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ScannedFile":
        return cls(
            path=Path(record["path"]),
            artist=record.get("artist"),
            album=record.get("album"),
            title=record.get("title"),
            track_number=record.get("track_number"),
            year=record.get("year"),
            folder_artist=record.get("folder_artist"),
            folder_album=record.get("folder_album"),
        )


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    release_id: str
    title: Optional[str] = None
    date: Optional[str] = None
    track_number: Optional[int] = None

    @property
    def year(self) -> Optional[str]:
        if self.date and len(self.date) >= 4 and self.date[:4].isdigit():
            return self.date[:4]
        return None

    def to_record(self) -> Dict[str, object]:
        return {
            "id": self.release_id,
            "title": self.title,
            "date": self.date,
            "track_number": self.track_number,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ReleaseInfo":
        return cls(
            release_id=str(record.get("id") or ""),
            title=record.get("title"),
            date=record.get("date") or None,
            track_number=record.get("track_number"),
        )


@dataclass(frozen=True)
class MatchCandidate:
    """A single provider search hit, scored against the query that produced it."""

    provider_id: str
    display_name: str
    confidence: int
    raw_fields: Dict[str, Any] = field(default_factory=dict)
    confidence_inputs: Dict[str, int] = field(default_factory=dict)

    @property
    def releases(self) -> List[ReleaseInfo]:
        return [ReleaseInfo.from_record(entry) for entry in self.raw_fields.get("releases") or []]

    def to_record(self) -> Dict[str, object]:
        return {
            "provider_id": self.provider_id,
            "display_name": self.display_name,
            "confidence": self.confidence,
            "raw_fields": self.raw_fields,
            "confidence_inputs": self.confidence_inputs,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "MatchCandidate":
        return cls(
            provider_id=str(record["provider_id"]),
            display_name=str(record.get("display_name") or ""),
            confidence=int(record.get("confidence") or 0),
            raw_fields=dict(record.get("raw_fields") or {}),
            confidence_inputs=dict(record.get("confidence_inputs") or {}),
        )


@dataclass(frozen=True, slots=True)
class Correction:
    """Read-only outcome of one phase, handed to the phases below it."""

    original: str
    corrected: str
    provider_id: Optional[str] = None
    accepted: bool = False


@dataclass(kw_only=True)
class MatchResult:
    original: str
    status: str = STATUS_MATCHED
    confidence: int = 0
    category: str = MANUAL
    search_method: str = SEARCH_ORIGINAL
    candidate: Optional[MatchCandidate] = None
    reason: Optional[str] = None
    file_count: int = 0
    accepted: bool = False
    skipped: bool = False
    manual_override: bool = False

    @property
    def provider_id(self) -> Optional[str]:
        return self.candidate.provider_id if self.candidate else None

    @property
    def corrected(self) -> Optional[str]:
        if self.rejected or not self.accepted or self.candidate is None:
            return None
        return self.candidate.display_name

    @property
    def rejected(self) -> bool:
        return self.skipped or self.candidate is None or self.status != STATUS_MATCHED

    def correction(self) -> Optional[Correction]:
        if self.rejected:
            return None
        return Correction(
            original=self.original,
            corrected=self.corrected or self.original,
            provider_id=self.provider_id,
            accepted=self.accepted,
        )

    def approve(self) -> None:
        if self.candidate is None:
            raise ValueError(f"Cannot approve {self.original!r}: no provider match")
        self.accepted = True
        self.skipped = False

    def reject(self) -> None:
        self.accepted = False
        self.skipped = True

    def override(self, corrected: str, provider_id: str) -> None:
        self.candidate = MatchCandidate(
            provider_id=provider_id,
            display_name=corrected,
            confidence=self.candidate.confidence if self.candidate else 0,
        )
        self.status = STATUS_MATCHED
        self.accepted = True
        self.skipped = False
        self.manual_override = True

    def to_record(self) -> Dict[str, object]:
        return {
            "original": self.original,
            "corrected": self.corrected,
            "provider_id": self.provider_id,
            "status": self.status,
            "confidence": self.confidence,
            "category": self.category,
            "search_method": self.search_method,
            "reason": self.reason,
            "file_count": self.file_count,
            "accepted": self.accepted,
            "skipped": self.skipped,
            "manual_override": self.manual_override,
            "candidate": self.candidate.to_record() if self.candidate else None,
        }


@dataclass(kw_only=True)
class ArtistMatch(MatchResult):
    folder_name: Optional[str] = None

    @property
    def key(self) -> str:
        return self.original.casefold()

    def to_record(self) -> Dict[str, object]:
        record = super().to_record()
        record["folder_name"] = self.folder_name
        return record


@dataclass(kw_only=True)
class AlbumMatch(MatchResult):
    original_artist: str
    corrected_artist: str
    artist_correction: Optional[Correction] = None
    canonical_key: Optional[str] = None
    canonical_name: Optional[str] = None

    @property
    def key(self) -> str:
        return album_key(self.corrected_artist, self.original)

    def correction(self) -> Optional[Correction]:
        correction = super().correction()
        if correction is None or self.canonical_name is None:
            return correction
        return replace(correction, corrected=self.canonical_name)

    def adopt(self, canonical: "AlbumMatch") -> None:
        """Point this album group at another group's match for the same release.

        The group also takes over the name the canonical group resolves to, so
        every spelling of one release ends up under the same album name even
        when the match is still waiting for review.
        """
        self.candidate = canonical.candidate
        self.status = canonical.status
        self.confidence = canonical.confidence
        self.category = canonical.category
        self.search_method = canonical.search_method
        self.accepted = canonical.accepted
        self.manual_override = canonical.manual_override
        self.canonical_key = canonical.key
        resolved = canonical.correction()
        self.canonical_name = resolved.corrected if resolved else None

    def to_record(self) -> Dict[str, object]:
        record = super().to_record()
        record.update(
            {
                "original_artist": self.original_artist,
                "corrected_artist": self.corrected_artist,
                "canonical_key": self.canonical_key,
                "canonical_name": self.canonical_name,
            }
        )
        return record


@dataclass(kw_only=True)
class TrackMatch(MatchResult):
    file: ScannedFile
    corrected_artist: Optional[str] = None
    corrected_album: Optional[str] = None
    corrected_title: Optional[str] = None
    release: Optional[ReleaseInfo] = None
    artist_correction: Optional[Correction] = None
    album_correction: Optional[Correction] = None

    @property
    def recording_id(self) -> Optional[str]:
        return self.provider_id

    def to_record(self) -> Dict[str, object]:
        record = super().to_record()
        record.update(
            {
                "file": self.file.to_record(),
                "corrected_artist": self.corrected_artist,
                "corrected_album": self.corrected_album,
                "corrected_title": self.corrected_title,
                "release": self.release.to_record() if self.release else None,
            }
        )
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TrackMatch":
        candidate = record.get("candidate")
        release = record.get("release")
        return cls(
            original=record.get("original") or "",
            status=record.get("status") or STATUS_MATCHED,
            confidence=int(record.get("confidence") or 0),
            category=record.get("category") or MANUAL,
            search_method=record.get("search_method") or SEARCH_ORIGINAL,
            candidate=MatchCandidate.from_record(candidate) if candidate else None,
            reason=record.get("reason"),
            file_count=int(record.get("file_count") or 1),
            accepted=bool(record.get("accepted")),
            skipped=bool(record.get("skipped")),
            manual_override=bool(record.get("manual_override")),
            file=ScannedFile.from_record(record["file"]),
            corrected_artist=record.get("corrected_artist"),
            corrected_album=record.get("corrected_album"),
            corrected_title=record.get("corrected_title"),
            release=ReleaseInfo.from_record(release) if release else None,
        )


def album_key(artist: str, album: str) -> str:
    return f"{artist}|||{album}".casefold()


@dataclass
class ReconciliationResult:
    artists: List[ArtistMatch] = field(default_factory=list)
    albums: List[AlbumMatch] = field(default_factory=list)
    tracks: List[TrackMatch] = field(default_factory=list)
    cancelled: bool = False

    def to_record(self) -> Dict[str, object]:
        return {
            "artists": [item.to_record() for item in self.artists],
            "albums": [item.to_record() for item in self.albums],
            "tracks": [item.to_record() for item in self.tracks],
            "cancelled": self.cancelled,
        }


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    processed_count: int
    total_count: int
    current_unit_label: str
    phase: str


@dataclass(frozen=True, slots=True)
class RenamePreview:
    original_path: Path
    proposed_path: Path
    artist: str
    album: str
    filename: str

    @property
    def changed(self) -> bool:
        return self.original_path != self.proposed_path

    def to_record(self) -> Dict[str, object]:
        return {
            "original_path": str(self.original_path),
            "proposed_path": str(self.proposed_path),
            "artist": self.artist,
            "album": self.album,
            "filename": self.filename,
            "changed": self.changed,
        }


@dataclass(frozen=True, slots=True)
class RenameOutcome:
    original_path: Path
    proposed_path: Path
    status: str
    message: str
    dry_run: bool

    def to_record(self) -> Dict[str, object]:
        return {
            "original_path": str(self.original_path),
            "proposed_path": str(self.proposed_path),
            "status": self.status,
            "message": self.message,
            "dry_run": self.dry_run,
        }
