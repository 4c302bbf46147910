"""Shared data models for the Hyde generation system.

This module contains the dataclasses used across the orchestrator, the
persistence layer and the HTTP surface:
- GenerationRequest: what the user asked for
- Track / Playlist: persisted entities
- GenerationData: the orchestrator's view of one in-flight generation

Track, Playlist and GenerationData are frozen. State changes are expressed as
whole-object replacements (``dataclasses.replace``) so a reader never observes
a half-applied step.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Literal

GenerationMode = Literal["single", "playlist"]
TrackStatus = Literal["pending", "generating", "ready", "error"]
PlaylistStatus = Literal["pending", "generating", "ready", "partial", "error"]
LifecycleStatus = Literal["idle", "generating", "completed", "error"]
ImagePurpose = Literal["cover", "thumbnail"]

TRACK_STATUSES: frozenset[str] = frozenset({"pending", "generating", "ready", "error"})
PLAYLIST_STATUSES: frozenset[str] = frozenset(
    {"pending", "generating", "ready", "partial", "error"}
)

DEFAULT_PLAYLIST_TRACK_COUNT = 3
DEFAULT_TRACK_DURATION = 60  # seconds


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class GenerationRequest:
    """User input for one generation.

    Attributes:
        prompt: Free-text description of the music.
        genre: Optional genre, e.g. "Jazz".
        mood: Optional mood, e.g. "Calm".
        mode: "single" for one track, "playlist" for several.
        playlist_track_count: Number of tracks generated in playlist mode.
        track_duration: Requested duration of every track in seconds.
    """

    prompt: str
    genre: str | None = None
    mood: str | None = None
    mode: GenerationMode = "playlist"
    playlist_track_count: int = DEFAULT_PLAYLIST_TRACK_COUNT
    track_duration: int = DEFAULT_TRACK_DURATION

    def __post_init__(self) -> None:
        if self.mode not in ("single", "playlist"):
            raise ValueError(f"Unknown generation mode '{self.mode}'")
        if self.playlist_track_count < 2:
            raise ValueError("Playlists need at least 2 tracks")

    @property
    def track_count(self) -> int:
        """Number of tracks this request produces."""
        return 1 if self.mode == "single" else self.playlist_track_count


@dataclass(frozen=True)
class Track:
    """A single generated track inside a playlist."""

    id: str
    playlist_id: str
    title: str
    prompt: str
    duration: int
    track_order: int
    created_at: datetime
    status: TrackStatus = "pending"
    genre: str | None = None
    mood: str | None = None
    audio_url: str | None = None
    image_url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "playlist_id": self.playlist_id,
            "title": self.title,
            "prompt": self.prompt,
            "genre": self.genre,
            "mood": self.mood,
            "duration": self.duration,
            "track_order": self.track_order,
            "audio_url": self.audio_url,
            "image_url": self.image_url,
            "status": self.status,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Track":
        """Deserialize from dictionary."""
        return cls(
            id=data["id"],
            playlist_id=data["playlist_id"],
            title=data["title"],
            prompt=data["prompt"],
            genre=data.get("genre"),
            mood=data.get("mood"),
            duration=int(data.get("duration", DEFAULT_TRACK_DURATION)),
            track_order=int(data.get("track_order", 0)),
            audio_url=data.get("audio_url"),
            image_url=data.get("image_url"),
            status=data.get("status", "pending"),
            error=data.get("error"),
            created_at=_parse_datetime(data["created_at"]),
        )


@dataclass(frozen=True)
class Playlist:
    """Ordered collection of tracks sharing one originating prompt."""

    id: str
    name: str
    prompt: str
    created_at: datetime
    updated_at: datetime
    status: PlaylistStatus = "pending"
    description: str | None = None
    genre: str | None = None
    mood: str | None = None
    cover_image_url: str | None = None
    owner_id: str | None = None
    tracks: tuple[Track, ...] = field(default_factory=tuple)

    @property
    def ready_count(self) -> int:
        """Number of tracks that finished successfully."""
        return sum(1 for t in self.tracks if t.status == "ready")

    def with_track(self, index: int, **changes: Any) -> "Playlist":
        """Return a copy with the track at ``index`` replaced."""
        tracks = list(self.tracks)
        tracks[index] = replace(tracks[index], **changes)
        return replace(self, tracks=tuple(tracks))

    def aggregate_status(self) -> PlaylistStatus:
        """Derive the playlist status from its tracks.

        ``ready`` when every track is ready, ``partial`` when some are,
        ``error`` when none are.
        """
        ready = self.ready_count
        if self.tracks and ready == len(self.tracks):
            return "ready"
        if ready > 0:
            return "partial"
        return "error"

    def to_dict(self, include_tracks: bool = True) -> dict:
        """Serialize to dictionary for JSON responses."""
        data = {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "prompt": self.prompt,
            "genre": self.genre,
            "mood": self.mood,
            "cover_image_url": self.cover_image_url,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_tracks:
            data["tracks"] = [t.to_dict() for t in self.tracks]
        return data

    @classmethod
    def from_dict(cls, data: dict, tracks: list[Track] | None = None) -> "Playlist":
        """Deserialize from dictionary.

        Tracks are taken from ``tracks`` when given, otherwise from an embedded
        ``tracks`` list. They are always ordered by ``track_order``.
        """
        if tracks is None:
            tracks = [Track.from_dict(t) for t in data.get("tracks", [])]
        return cls(
            id=data["id"],
            owner_id=data.get("owner_id"),
            name=data["name"],
            description=data.get("description"),
            prompt=data["prompt"],
            genre=data.get("genre"),
            mood=data.get("mood"),
            cover_image_url=data.get("cover_image_url"),
            status=data.get("status", "pending"),
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]),
            tracks=tuple(sorted(tracks, key=lambda t: t.track_order)),
        )


@dataclass(frozen=True)
class GenerationData:
    """The orchestrator's state for one generation.

    ``playlist`` is only ``None`` when creating the playlist records failed;
    in that case ``status`` is ``error`` and ``error`` holds the reason.
    """

    playlist: Playlist | None
    mode: GenerationMode
    status: LifecycleStatus
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON responses."""
        return {
            "playlist": self.playlist.to_dict() if self.playlist else None,
            "mode": self.mode,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }
