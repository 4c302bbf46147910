"""Tests for the object stores and media uploads."""
import base64
import io
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from hyde.config import Settings
from hyde.errors import StorageError
from hyde.storage import MemoryStore, R2Storage, media_key, to_data_url, upload_media


def client_error(code, operation="GetObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def r2_settings():
    return Settings(
        R2_ACCESS_KEY_ID="key",
        R2_SECRET_ACCESS_KEY="secret",
        R2_ENDPOINT_URL="https://account.r2.cloudflarestorage.com",
        R2_BUCKET_NAME="hyde-test",
        R2_PUBLIC_BASE_URL="https://media.example.com/",
    )


class BrokenStore(MemoryStore):
    def put_bytes(self, key, data, content_type):
        raise StorageError("R2 unavailable")


class TestMemoryStore:
    def test_json_round_trip_is_isolated(self):
        store = MemoryStore()
        doc = {"id": "1", "tags": ["a"]}
        store.write_json("playlists/1.json", doc)
        doc["tags"].append("b")

        assert store.read_json("playlists/1.json") == {"id": "1", "tags": ["a"]}
        assert store.read_json("playlists/2.json") is None

    def test_list_and_delete(self):
        store = MemoryStore()
        store.write_json("playlists/1.json", {})
        store.write_json("tracks/1.json", {})
        store.put_bytes("audio/1.mp3", b"abc", "audio/mpeg")

        assert store.list_keys("playlists/") == ["playlists/1.json"]
        assert store.get_bytes("audio/1.mp3") == (b"abc", "audio/mpeg")

        store.delete("audio/1.mp3")
        assert store.get_bytes("audio/1.mp3") is None


class TestMedia:
    def test_media_key_shape(self):
        key = media_key("audio", "audio/mpeg")
        assert key.startswith("audio/")
        assert key.endswith(".mp3")

    def test_data_url(self):
        assert to_data_url(b"hi", "image/png") == "data:image/png;base64,aGk="

    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self):
        store = MemoryStore()
        url = await upload_media(store, b"png-bytes", "image/png", "images")

        assert url.startswith("memory://images/")
        key = url.removeprefix("memory://")
        assert store.get_bytes(key) == (b"png-bytes", "image/png")

    @pytest.mark.asyncio
    async def test_upload_failure_falls_back_to_data_url(self, caplog):
        url = await upload_media(BrokenStore(), b"mp3-bytes", "audio/mpeg", "audio")

        assert url == "data:audio/mpeg;base64," + base64.b64encode(b"mp3-bytes").decode()
        assert any("falling back" in r.getMessage() for r in caplog.records)


class TestR2Storage:
    def test_requires_credentials(self):
        with pytest.raises(StorageError):
            R2Storage(Settings())

    def test_read_json(self, r2_settings):
        client = MagicMock()
        client.get_object.return_value = {"Body": io.BytesIO(json.dumps({"id": "p1"}).encode())}
        storage = R2Storage(r2_settings, client=client)

        assert storage.read_json("playlists/p1.json") == {"id": "p1"}
        client.get_object.assert_called_once_with(Bucket="hyde-test", Key="playlists/p1.json")

    def test_read_missing_key_returns_none(self, r2_settings):
        client = MagicMock()
        client.get_object.side_effect = client_error("NoSuchKey")

        assert R2Storage(r2_settings, client=client).read_json("playlists/x.json") is None

    def test_read_other_errors_propagate(self, r2_settings):
        client = MagicMock()
        client.get_object.side_effect = client_error("AccessDenied")

        with pytest.raises(ClientError):
            R2Storage(r2_settings, client=client).read_json("playlists/x.json")

    def test_put_bytes_and_public_url(self, r2_settings):
        client = MagicMock()
        storage = R2Storage(r2_settings, client=client)

        storage.put_bytes("audio/1.mp3", b"abc", "audio/mpeg")

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "hyde-test"
        assert kwargs["ContentType"] == "audio/mpeg"
        assert storage.public_url("audio/1.mp3") == "https://media.example.com/audio/1.mp3"

    def test_public_url_needs_base(self):
        settings = Settings(
            R2_ACCESS_KEY_ID="key",
            R2_SECRET_ACCESS_KEY="secret",
            R2_ENDPOINT_URL="https://account.r2.cloudflarestorage.com",
        )
        with pytest.raises(StorageError):
            R2Storage(settings, client=MagicMock()).public_url("audio/1.mp3")

    def test_list_keys_paginates(self, r2_settings):
        client = MagicMock()
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "tracks/1.json"}]},
            {"Contents": [{"Key": "tracks/2.json"}]},
            {},
        ]

        keys = R2Storage(r2_settings, client=client).list_keys("tracks/")

        assert keys == ["tracks/1.json", "tracks/2.json"]
