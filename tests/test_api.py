"""Tests for the HTTP API."""
import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeImageProvider, FakeMusicProvider
from hyde.api import create_app
from hyde.backend import Backend
from hyde.config import Settings
from hyde.errors import ContentPolicyError
from hyde.session import SESSION_COOKIE_NAME
from hyde.storage import MemoryStore


def make_settings(**overrides):
    values = {
        "HYDE_STORAGE_BACKEND": "memory",
        "HYDE_RETRY_BASE_DELAY_MS": 0,
        "HYDE_RETRY_JITTER_MS": 0,
        "ELEVENLABS_API_KEY": None,
        "OPENROUTER_API_KEY": None,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def backend(music, images):
    return Backend(make_settings(), store=MemoryStore(), music=music, images=images)


@pytest.fixture
def client(backend):
    with TestClient(create_app(backend)) as client:
        yield client


def start_session(client):
    response = client.post("/api/session")
    assert response.status_code == 200
    return response.json()


def wait_for_generation(client, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        snapshot = client.get("/api/generations/current").json()
        generation = snapshot["generation"]
        if generation and generation["status"] != "generating":
            return snapshot
        time.sleep(0.05)
    raise AssertionError("generation did not finish")


class TestSession:
    def test_creates_then_reuses_session(self, client):
        first = start_session(client)
        assert first["success"] is True
        assert first["is_new_session"] is True
        assert client.cookies.get(SESSION_COOKIE_NAME)

        second = start_session(client)
        assert second["is_new_session"] is False
        assert second["session"]["id"] == first["session"]["id"]

        info = client.get("/api/session").json()
        assert info["authenticated"] is True
        assert info["user"]["id"] == first["user"]["id"]

    def test_get_without_cookie(self, client):
        response = client.get("/api/session")
        assert response.status_code == 401
        assert response.json()["authenticated"] is False


class TestPlaylists:
    def test_create_get_update_delete(self, client):
        created = client.post(
            "/api/playlists", json={"prompt": "sunday morning", "genre": "Jazz", "track_count": 2}
        )
        assert created.status_code == 200
        playlist = created.json()["playlist"]
        assert playlist["status"] == "generating"
        assert [t["title"] for t in playlist["tracks"]] == ["Track 1", "Track 2"]

        track_id = playlist["tracks"][0]["id"]
        patched = client.patch(f"/api/tracks/{track_id}", json={"status": "ready", "audio_url": "u"})
        assert patched.json()["track"]["status"] == "ready"

        patched = client.patch(f"/api/playlists/{playlist['id']}", json={"status": "partial"})
        assert patched.json()["playlist"]["status"] == "partial"

        fetched = client.get(f"/api/playlists/{playlist['id']}").json()["playlist"]
        assert fetched["tracks"][0]["audio_url"] == "u"

        assert client.delete(f"/api/playlists/{playlist['id']}").json() == {"success": True}
        assert client.get(f"/api/playlists/{playlist['id']}").status_code == 404
        assert client.get(f"/api/tracks/{track_id}").status_code == 404

    def test_prompt_required(self, client):
        response = client.post("/api/playlists", json={"genre": "Jazz"})
        assert response.status_code == 400
        assert response.json() == {"error": "Prompt is required"}

    def test_invalid_update(self, client):
        playlist = client.post("/api/playlists", json={"prompt": "x"}).json()["playlist"]
        response = client.patch(f"/api/playlists/{playlist['id']}", json={"status": "done"})
        assert response.status_code == 400
        assert "Invalid status" in response.json()["error"]

    def test_list_is_owner_filtered(self, client):
        client.post("/api/playlists", json={"prompt": "anonymous"})
        start_session(client)
        client.post("/api/playlists", json={"prompt": "mine"})

        mine = client.get("/api/playlists").json()["playlists"]
        assert [p["prompt"] for p in mine] == ["mine"]

    def test_discover(self, client):
        playlist = client.post("/api/playlists", json={"prompt": "x", "track_count": 2}).json()["playlist"]
        client.patch(f"/api/tracks/{playlist['tracks'][0]['id']}", json={"status": "ready"})
        client.patch(f"/api/playlists/{playlist['id']}", json={"status": "partial"})

        feed = client.get("/api/discover").json()
        assert [t["id"] for t in feed["recent_tracks"]] == [playlist["tracks"][0]["id"]]
        assert [p["id"] for p in feed["featured_playlists"]] == [playlist["id"]]


class TestProviderProxies:
    def test_generate_track(self, client, music):
        response = client.post("/api/generate-track", json={"prompt": "calm piano", "duration": 30})
        assert response.status_code == 200
        assert response.json()["audio_url"].startswith("https://cdn.example.com/audio/")
        assert music.calls == ["calm piano"]

    def test_generate_track_content_policy(self, images):
        music = FakeMusicProvider(
            fail=lambda prompt: ContentPolicyError(
                "Prompt contains copyrighted material", suggestion="an original ballad"
            )
        )
        backend = Backend(make_settings(), store=MemoryStore(), music=music, images=images)
        with TestClient(create_app(backend)) as client:
            response = client.post("/api/generate-track", json={"prompt": "a cover of Yesterday"})

        assert response.status_code == 400
        assert response.json() == {
            "error": "Prompt contains copyrighted material",
            "suggestion": "an original ballad",
        }

    def test_generate_track_without_key(self):
        backend = Backend(make_settings(), store=MemoryStore())
        with TestClient(create_app(backend)) as client:
            response = client.post("/api/generate-track", json={"prompt": "beat"})

        assert response.status_code == 500
        assert response.json() == {"error": "ElevenLabs API key not configured"}

    def test_generate_image(self, client, images):
        response = client.post("/api/generate-image", json={"prompt": "night", "purpose": "thumbnail"})
        assert response.status_code == 200
        assert response.json()["image_url"].endswith(".png")
        assert images.calls[0][0] == "thumbnail"

    def test_generate_image_failure(self):
        backend = Backend(
            make_settings(), store=MemoryStore(), music=FakeMusicProvider(), images=FakeImageProvider(fail=True)
        )
        with TestClient(create_app(backend)) as client:
            response = client.post("/api/generate-image", json={"prompt": "night"})

        assert response.status_code == 500
        assert response.json()["error"].startswith("Failed to generate image:")


class TestGenerations:
    def test_requires_session(self, client):
        response = client.get("/api/generations/current")
        assert response.status_code == 401
        assert response.json() == {"error": "No session found"}

    def test_generation_runs_in_background(self, client, backend):
        session = start_session(client)

        response = client.post("/api/generations", json={"prompt": "deep focus", "genre": "Lo-fi"})
        assert response.status_code == 202

        snapshot = wait_for_generation(client)
        generation = snapshot["generation"]
        assert generation["status"] == "completed"
        assert generation["playlist"]["status"] == "ready"
        assert len(generation["playlist"]["tracks"]) == 3
        assert generation["playlist"]["owner_id"] == session["user"]["id"]

        mine = client.get("/api/playlists").json()["playlists"]
        assert [p["id"] for p in mine] == [generation["playlist"]["id"]]

    def test_dismiss_and_clear(self, client):
        start_session(client)
        client.post("/api/generations", json={"prompt": "focus", "mode": "single"})
        wait_for_generation(client)

        dismissed = client.post("/api/generations/current/dismiss").json()
        assert dismissed["is_dismissed"] is True
        assert dismissed["generation"] is not None

        cleared = client.delete("/api/generations/current").json()
        assert cleared["generation"] is None
        assert cleared["is_dismissed"] is False

    def test_empty_prompt_rejected(self, client):
        start_session(client)
        response = client.post("/api/generations", json={"prompt": ""})
        assert response.status_code == 400

    def test_clear_releases_session_orchestrator(self, client):
        start_session(client)
        client.post("/api/generations", json={"prompt": "focus", "mode": "single"})
        wait_for_generation(client)
        assert len(client.app.state.orchestrators) == 1

        client.delete("/api/generations/current")
        assert client.app.state.orchestrators == {}

        client.post("/api/generations", json={"prompt": "again", "mode": "single"})
        snapshot = wait_for_generation(client)
        assert snapshot["generation"]["playlist"]["prompt"] == "again"
