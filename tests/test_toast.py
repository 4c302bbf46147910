"""Tests for the rich generation status surface."""
from datetime import datetime

from rich.console import Console

from hyde.models import GenerationData, Playlist, Track
from hyde.orchestrator import GenerationSnapshot
from hyde.toast import render_generation, status_line

NOW = datetime(2026, 1, 1, 12, 0, 0)


def make_generation(statuses, status="generating", mode="playlist", playlist_status="generating"):
    tracks = tuple(
        Track(
            id=f"t{i}",
            playlist_id="p1",
            title=f"Track {i + 1}",
            prompt="focus",
            duration=60,
            track_order=i,
            created_at=NOW,
            status=s,
            error="Prompt rejected" if s == "error" else None,
        )
        for i, s in enumerate(statuses)
    )
    playlist = Playlist(
        id="p1",
        name="focus",
        prompt="focus",
        created_at=NOW,
        updated_at=NOW,
        status=playlist_status,
        tracks=tracks,
    )
    return GenerationData(playlist=playlist, mode=mode, status=status, started_at=NOW)


def render(snapshot):
    console = Console(record=True, width=100)
    console.print(render_generation(snapshot))
    return console.export_text()


def test_status_lines():
    generating = GenerationSnapshot(make_generation(["ready", "generating", "pending"]))
    assert status_line(generating) == "Generating playlist... 1/3 ready"

    partial = GenerationSnapshot(
        make_generation(["ready", "error"], status="completed", playlist_status="partial")
    )
    assert status_line(partial) == "Playlist ready with some failed tracks (1/2 ready)"

    single = GenerationSnapshot(
        make_generation(["ready"], status="completed", mode="single", playlist_status="ready")
    )
    assert status_line(single) == "Track ready! 1/1 ready"

    failed = GenerationSnapshot(
        GenerationData(playlist=None, mode="playlist", status="error", started_at=NOW, error="boom")
    )
    assert status_line(failed) == "Generation failed: boom"


def test_collapsed_shows_only_summary():
    text = render(GenerationSnapshot(make_generation(["ready", "generating", "pending"])))
    assert "Generating playlist... 1/3 ready" in text
    assert "Track 2" not in text


def test_expanded_shows_tracks_and_errors():
    snapshot = GenerationSnapshot(
        make_generation(["ready", "error", "ready"], status="completed", playlist_status="partial"),
        is_expanded=True,
    )
    text = render(snapshot)
    assert "Track 2" in text
    assert "Prompt rejected" in text


def test_dismissed_and_empty_render_nothing():
    dismissed = GenerationSnapshot(make_generation(["pending"]), is_dismissed=True)
    assert render(dismissed).strip() == ""
    assert render(GenerationSnapshot(None)).strip() == ""
