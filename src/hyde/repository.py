"""Playlist and track persistence on top of an object store.

Layout:
    playlists/{playlist_id}.json   playlist fields + ordered track ids
    tracks/{track_id}.json         track fields (playlist_id, track_order, ...)

All writes are serialized through one asyncio.Lock so concurrent partial
updates (e.g. a background cover-image patch racing a status patch) never
lose each other's fields.
"""

import asyncio
import logging
import uuid
from datetime import datetime

from hyde.errors import NotFoundError, ValidationError
from hyde.models import PLAYLIST_STATUSES, TRACK_STATUSES, Playlist, Track
from hyde.prompts import truncate_name
from hyde.storage import ObjectStore

logger = logging.getLogger(__name__)

PLAYLIST_PREFIX = "playlists/"
TRACK_PREFIX = "tracks/"

PLAYLIST_UPDATABLE_FIELDS = frozenset(
    {"owner_id", "name", "description", "prompt", "genre", "mood", "status", "cover_image_url"}
)
TRACK_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "prompt",
        "genre",
        "mood",
        "duration",
        "audio_url",
        "image_url",
        "status",
        "error",
        "track_order",
    }
)


def _playlist_key(playlist_id: str) -> str:
    return f"{PLAYLIST_PREFIX}{playlist_id}.json"


def _track_key(track_id: str) -> str:
    return f"{TRACK_PREFIX}{track_id}.json"


def _now_iso() -> str:
    return datetime.now().isoformat()


def playlist_records(
    prompt: str,
    genre: str | None = None,
    mood: str | None = None,
    track_count: int = 3,
    track_duration: int = 60,
    owner_id: str | None = None,
) -> tuple[dict, list[dict]]:
    """Build the field sets for a new playlist and its pending tracks.

    A single-track playlist names its track after the prompt; playlist tracks
    are numbered ("Track 1", "Track 2", ...).

    Returns:
        Tuple of (playlist_fields, track_fields_list).
    """
    if not prompt:
        raise ValidationError("Prompt is required")
    if track_count < 1:
        raise ValidationError("track_count must be at least 1")

    name = truncate_name(prompt)
    playlist_fields = {
        "owner_id": owner_id,
        "name": name,
        "prompt": prompt,
        "genre": genre or None,
        "mood": mood or None,
        "status": "generating",
    }
    track_fields = [
        {
            "title": name if track_count == 1 else f"Track {i + 1}",
            "prompt": prompt,
            "genre": genre or None,
            "mood": mood or None,
            "duration": track_duration,
            "status": "pending",
        }
        for i in range(track_count)
    ]
    return playlist_fields, track_fields


def _check_fields(fields: dict, allowed: frozenset[str], statuses: frozenset[str]) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    status = fields.get("status")
    if status is not None and status not in statuses:
        raise ValidationError(f"Invalid status '{status}'")


class PlaylistRepository:
    """CRUD access to playlists and their tracks."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store
        self._write_lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Low-level document access
    # -------------------------------------------------------------------------

    async def _read(self, key: str) -> dict | None:
        return await asyncio.to_thread(self._store.read_json, key)

    async def _write(self, key: str, data: dict) -> None:
        await asyncio.to_thread(self._store.write_json, key, data)

    async def _delete(self, key: str) -> None:
        await asyncio.to_thread(self._store.delete, key)

    async def _keys(self, prefix: str) -> list[str]:
        keys = await asyncio.to_thread(self._store.list_keys, prefix)
        return [k for k in keys if k.endswith(".json")]

    async def _load_playlist(self, doc: dict) -> Playlist:
        track_docs = await asyncio.gather(
            *(self._read(_track_key(tid)) for tid in doc.get("track_ids", []))
        )
        tracks = [Track.from_dict(t) for t in track_docs if t is not None]
        return Playlist.from_dict(doc, tracks=tracks)

    # -------------------------------------------------------------------------
    # Playlists
    # -------------------------------------------------------------------------

    async def create_playlist_with_tracks(
        self,
        playlist_fields: dict,
        track_fields_list: list[dict],
    ) -> Playlist:
        """Create a playlist and its tracks as one unit.

        Track ``i`` gets ``track_order = i``. If any track write fails, every
        record written so far is removed and the error is re-raised.
        """
        _check_fields(playlist_fields, PLAYLIST_UPDATABLE_FIELDS, PLAYLIST_STATUSES)
        for fields in track_fields_list:
            _check_fields(fields, TRACK_UPDATABLE_FIELDS - {"track_order"}, TRACK_STATUSES)

        now = _now_iso()
        playlist_id = str(uuid.uuid4())
        track_docs = [
            {
                "status": "pending",
                **fields,
                "id": str(uuid.uuid4()),
                "playlist_id": playlist_id,
                "track_order": index,
                "created_at": now,
            }
            for index, fields in enumerate(track_fields_list)
        ]
        playlist_doc = {
            "status": "pending",
            **playlist_fields,
            "id": playlist_id,
            "created_at": now,
            "updated_at": now,
            "track_ids": [t["id"] for t in track_docs],
        }

        async with self._write_lock:
            await self._write(_playlist_key(playlist_id), playlist_doc)
            written: list[str] = []
            try:
                for doc in track_docs:
                    await self._write(_track_key(doc["id"]), doc)
                    written.append(doc["id"])
            except Exception as e:
                logger.error(f"Error creating tracks for playlist {playlist_id}: {e}")
                # Clean up the playlist if tracks failed
                for track_id in written:
                    await self._delete(_track_key(track_id))
                await self._delete(_playlist_key(playlist_id))
                raise

        logger.info(f"Created playlist {playlist_id} with {len(track_docs)} tracks")
        return Playlist.from_dict(playlist_doc, tracks=[Track.from_dict(d) for d in track_docs])

    async def get_playlist(self, playlist_id: str) -> Playlist | None:
        """Get a playlist by ID with its tracks ordered by ``track_order``."""
        doc = await self._read(_playlist_key(playlist_id))
        if doc is None:
            return None
        return await self._load_playlist(doc)

    async def list_playlists(self, owner_id: str | None = None) -> list[Playlist]:
        """List playlists, newest first, optionally filtered by owner."""
        keys = await self._keys(PLAYLIST_PREFIX)
        docs = await asyncio.gather(*(self._read(k) for k in keys))
        playlists = [
            await self._load_playlist(doc)
            for doc in docs
            if doc is not None and (owner_id is None or doc.get("owner_id") == owner_id)
        ]
        playlists.sort(key=lambda p: p.created_at, reverse=True)
        return playlists

    async def update_playlist(self, playlist_id: str, fields: dict) -> Playlist:
        """Apply a partial update to a playlist. Safe to retry."""
        _check_fields(fields, PLAYLIST_UPDATABLE_FIELDS, PLAYLIST_STATUSES)
        async with self._write_lock:
            doc = await self._read(_playlist_key(playlist_id))
            if doc is None:
                raise NotFoundError(f"Playlist not found: {playlist_id}")
            doc.update(fields)
            doc["updated_at"] = _now_iso()
            await self._write(_playlist_key(playlist_id), doc)
        return await self._load_playlist(doc)

    async def delete_playlist(self, playlist_id: str) -> None:
        """Delete a playlist and all of its tracks."""
        async with self._write_lock:
            doc = await self._read(_playlist_key(playlist_id))
            if doc is None:
                raise NotFoundError(f"Playlist not found: {playlist_id}")
            for track_id in doc.get("track_ids", []):
                await self._delete(_track_key(track_id))
            await self._delete(_playlist_key(playlist_id))

    # -------------------------------------------------------------------------
    # Tracks
    # -------------------------------------------------------------------------

    async def get_track(self, track_id: str) -> Track | None:
        doc = await self._read(_track_key(track_id))
        return Track.from_dict(doc) if doc is not None else None

    async def update_track(self, track_id: str, fields: dict) -> Track:
        """Apply a partial update to a track. Safe to retry."""
        _check_fields(fields, TRACK_UPDATABLE_FIELDS, TRACK_STATUSES)
        async with self._write_lock:
            doc = await self._read(_track_key(track_id))
            if doc is None:
                raise NotFoundError(f"Track not found: {track_id}")
            doc.update(fields)
            await self._write(_track_key(track_id), doc)
        return Track.from_dict(doc)

    async def delete_track(self, track_id: str) -> None:
        async with self._write_lock:
            doc = await self._read(_track_key(track_id))
            if doc is None:
                raise NotFoundError(f"Track not found: {track_id}")
            playlist_doc = await self._read(_playlist_key(doc["playlist_id"]))
            if playlist_doc is not None:
                playlist_doc["track_ids"] = [
                    tid for tid in playlist_doc.get("track_ids", []) if tid != track_id
                ]
                playlist_doc["updated_at"] = _now_iso()
                await self._write(_playlist_key(doc["playlist_id"]), playlist_doc)
            await self._delete(_track_key(track_id))

    # -------------------------------------------------------------------------
    # Discover feed
    # -------------------------------------------------------------------------

    async def recent_tracks(self, limit: int = 20) -> list[Track]:
        """Most recently created ready tracks across all playlists."""
        keys = await self._keys(TRACK_PREFIX)
        docs = await asyncio.gather(*(self._read(k) for k in keys))
        tracks = [Track.from_dict(d) for d in docs if d is not None and d.get("status") == "ready"]
        tracks.sort(key=lambda t: t.created_at, reverse=True)
        return tracks[:limit]

    async def featured_playlists(self, limit: int = 12) -> list[Playlist]:
        """Most recent playlists with at least one playable track."""
        playlists = await self.list_playlists()
        return [p for p in playlists if p.status in ("ready", "partial")][:limit]
