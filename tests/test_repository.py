"""Tests for playlist persistence."""
import pytest

from hyde.errors import NotFoundError, ValidationError
from hyde.repository import PlaylistRepository, playlist_records
from hyde.storage import MemoryStore


class FailingTrackStore(MemoryStore):
    """Fails the Nth track write."""

    def __init__(self, fail_on=2):
        super().__init__()
        self.fail_on = fail_on
        self.track_writes = 0

    def write_json(self, key, data):
        if key.startswith("tracks/"):
            self.track_writes += 1
            if self.track_writes == self.fail_on:
                raise OSError("disk full")
        super().write_json(key, data)


async def create(repository, prompt="focus music", **kwargs):
    playlist_fields, track_fields = playlist_records(prompt, **kwargs)
    return await repository.create_playlist_with_tracks(playlist_fields, track_fields)


class TestPlaylistRecords:
    def test_playlist_tracks_are_numbered(self):
        playlist, tracks = playlist_records("focus", genre="Jazz", track_count=3, track_duration=45)
        assert playlist["name"] == "focus"
        assert playlist["status"] == "generating"
        assert playlist["genre"] == "Jazz"
        assert playlist["mood"] is None
        assert [t["title"] for t in tracks] == ["Track 1", "Track 2", "Track 3"]
        assert all(t["status"] == "pending" and t["duration"] == 45 for t in tracks)

    def test_single_track_named_after_prompt(self):
        long_prompt = "a" * 70
        playlist, tracks = playlist_records(long_prompt, track_count=1)
        assert playlist["name"] == "a" * 50 + "..."
        assert tracks[0]["title"] == playlist["name"]
        assert playlist["prompt"] == long_prompt

    def test_empty_prompt_rejected(self):
        with pytest.raises(ValidationError):
            playlist_records("")


class TestPlaylistRepository:
    @pytest.mark.asyncio
    async def test_create_assigns_ids_and_order(self, repository):
        playlist = await create(repository, track_count=3)

        assert playlist.id
        assert playlist.status == "generating"
        assert [t.track_order for t in playlist.tracks] == [0, 1, 2]
        assert len({t.id for t in playlist.tracks}) == 3
        assert all(t.playlist_id == playlist.id for t in playlist.tracks)

        loaded = await repository.get_playlist(playlist.id)
        assert loaded == playlist

    @pytest.mark.asyncio
    async def test_create_rolls_back_on_track_failure(self):
        store = FailingTrackStore(fail_on=2)
        repository = PlaylistRepository(store)

        with pytest.raises(OSError):
            await create(repository, track_count=3)

        assert store.list_keys() == []
        assert await repository.list_playlists() == []

    @pytest.mark.asyncio
    async def test_update_track_is_partial_and_idempotent(self, repository):
        playlist = await create(repository)
        track_id = playlist.tracks[0].id
        fields = {"status": "ready", "audio_url": "https://cdn.example.com/a.mp3"}

        first = await repository.update_track(track_id, fields)
        second = await repository.update_track(track_id, fields)

        assert first == second
        assert second.title == "Track 1"
        assert second.audio_url == "https://cdn.example.com/a.mp3"

    @pytest.mark.asyncio
    async def test_update_playlist_bumps_updated_at(self, repository):
        playlist = await create(repository)

        updated = await repository.update_playlist(playlist.id, {"status": "partial"})

        assert updated.status == "partial"
        assert updated.updated_at >= playlist.updated_at
        assert updated.created_at == playlist.created_at
        assert [t.id for t in updated.tracks] == [t.id for t in playlist.tracks]

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_fields_and_statuses(self, repository):
        playlist = await create(repository)

        with pytest.raises(ValidationError):
            await repository.update_playlist(playlist.id, {"id": "hijack"})
        with pytest.raises(ValidationError):
            await repository.update_playlist(playlist.id, {"status": "done"})
        with pytest.raises(ValidationError):
            await repository.update_track(playlist.tracks[0].id, {"status": "partial"})

    @pytest.mark.asyncio
    async def test_missing_records(self, repository):
        assert await repository.get_playlist("missing") is None
        assert await repository.get_track("missing") is None
        with pytest.raises(NotFoundError):
            await repository.update_playlist("missing", {"status": "ready"})
        with pytest.raises(NotFoundError):
            await repository.update_track("missing", {"status": "ready"})
        with pytest.raises(NotFoundError):
            await repository.delete_playlist("missing")

    @pytest.mark.asyncio
    async def test_delete_playlist_cascades(self, repository, store):
        playlist = await create(repository)

        await repository.delete_playlist(playlist.id)

        assert await repository.get_playlist(playlist.id) is None
        assert store.list_keys("tracks/") == []

    @pytest.mark.asyncio
    async def test_delete_track_updates_playlist(self, repository):
        playlist = await create(repository)

        await repository.delete_track(playlist.tracks[1].id)

        loaded = await repository.get_playlist(playlist.id)
        assert [t.id for t in loaded.tracks] == [playlist.tracks[0].id, playlist.tracks[2].id]

    @pytest.mark.asyncio
    async def test_list_filters_by_owner_newest_first(self, repository):
        mine_old = await create(repository, "old", owner_id="me")
        await create(repository, "theirs", owner_id="them")
        mine_new = await create(repository, "new", owner_id="me")

        mine = await repository.list_playlists("me")
        assert [p.id for p in mine] == [mine_new.id, mine_old.id]
        assert len(await repository.list_playlists()) == 3

    @pytest.mark.asyncio
    async def test_discover_feed(self, repository):
        ready = await create(repository, "ready one", track_count=2)
        await create(repository, "still generating", track_count=2)
        await repository.update_track(ready.tracks[0].id, {"status": "ready", "audio_url": "u"})
        await repository.update_playlist(ready.id, {"status": "partial"})

        recent = await repository.recent_tracks()
        featured = await repository.featured_playlists()

        assert [t.id for t in recent] == [ready.tracks[0].id]
        assert [p.id for p in featured] == [ready.id]
