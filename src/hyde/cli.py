"""CLI interface for Hyde playlist generation."""

import asyncio
import logging

import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from hyde.backend import Backend
from hyde.config import get_settings
from hyde.errors import HydeError
from hyde.models import GenerationRequest, Playlist
from hyde.orchestrator import GenerationSnapshot
from hyde.toast import render_generation

app = typer.Typer(
    name="hyde",
    help="Generate AI music playlists from a text prompt.",
    no_args_is_help=True,
)

console = Console()
logger = logging.getLogger(__name__)

COVER_WAIT_SECONDS = 60

_STATUS_STYLES = {
    "pending": "dim",
    "generating": "yellow",
    "ready": "green",
    "partial": "yellow",
    "error": "red",
}


def _configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _styled(status: str) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def _format_duration(seconds: int) -> str:
    return f"{seconds // 60}:{seconds % 60:02d}"


def _display_playlist(playlist: Playlist) -> None:
    """Display a playlist and its tracks in a formatted table."""
    table = Table(title=playlist.name)
    table.add_column("#", style="cyan", width=3)
    table.add_column("Title", style="white", width=30)
    table.add_column("Duration", width=8)
    table.add_column("Status", width=10)
    table.add_column("Audio", style="magenta", overflow="fold")

    for track in playlist.tracks:
        audio = track.audio_url or track.error or ""
        if audio.startswith("data:"):
            audio = "(inline data URL)"
        table.add_row(
            str(track.track_order + 1),
            track.title,
            _format_duration(track.duration),
            _styled(track.status),
            audio,
        )

    console.print(table)
    console.print(f"[bold]ID:[/bold] {playlist.id}")
    console.print(f"[bold]Status:[/bold] {_styled(playlist.status)}")
    if playlist.genre or playlist.mood:
        console.print(f"[bold]Genre/Mood:[/bold] {playlist.genre or '-'} / {playlist.mood or '-'}")
    if playlist.cover_image_url and not playlist.cover_image_url.startswith("data:"):
        console.print(f"[bold]Cover:[/bold] {playlist.cover_image_url}")


def _exit_on_error(e: Exception, what: str) -> None:
    console.print(f"[red]Error {what}: {e}[/red]")
    raise typer.Exit(1)


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Describe the music, e.g. 'late night coding session'"),
    genre: str = typer.Option(None, "--genre", "-g", help="Genre, e.g. 'Lo-fi'"),
    mood: str = typer.Option(None, "--mood", "-m", help="Mood, e.g. 'Calm'"),
    single: bool = typer.Option(False, "--single", help="Generate one track instead of a playlist"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
) -> None:
    """Generate a playlist (or a single track) and store it."""
    _configure_logging(verbose)
    settings = get_settings()

    if not prompt.strip():
        console.print("[red]Prompt is required[/red]")
        raise typer.Exit(1)

    request = GenerationRequest(
        prompt=prompt.strip(),
        genre=genre or None,
        mood=mood or None,
        mode="single" if single else "playlist",
        playlist_track_count=settings.playlist_track_count,
        track_duration=settings.track_duration,
    )

    console.print(Panel(
        f"[bold]Prompt:[/bold] {request.prompt}\n"
        f"[bold]Mode:[/bold] {request.mode} ({request.track_count} x {request.track_duration}s)",
        title="Hyde",
    ))

    try:
        backend = Backend(settings)
        orchestrator = backend.create_orchestrator()
    except HydeError as e:
        _exit_on_error(e, "configuring backend")

    async def run() -> GenerationSnapshot:
        with Live(console=console, refresh_per_second=4, transient=True) as live:
            def show(snapshot: GenerationSnapshot) -> None:
                live.update(render_generation(snapshot))

            unsubscribe = orchestrator.subscribe(show)
            orchestrator.set_expanded(True)
            try:
                await orchestrator.start_generation(request)
                # The cover image runs in the background; give it a chance to land.
                if not await orchestrator.wait_idle(timeout=COVER_WAIT_SECONDS):
                    logger.warning("Cover image still pending; continuing without it")
            finally:
                unsubscribe()
        snapshot = orchestrator.snapshot()
        await orchestrator.aclose()
        return snapshot

    snapshot = asyncio.run(run())
    generation = snapshot.generation

    console.print()
    if generation is None or generation.playlist is None:
        reason = generation.error if generation else "no generation"
        console.print(f"[red]Generation failed: {reason}[/red]")
        raise typer.Exit(1)

    _display_playlist(generation.playlist)
    if generation.status == "error":
        raise typer.Exit(1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from hyde.api import create_app

    _configure_logging()
    uvicorn.run(create_app(), host=host, port=port, log_level=get_settings().log_level.lower())


@app.command()
def playlists() -> None:
    """List stored playlists, newest first."""
    _configure_logging()
    try:
        items = asyncio.run(Backend().repository.list_playlists())
    except Exception as e:
        _exit_on_error(e, "listing playlists")

    if not items:
        console.print("[yellow]No playlists yet.[/yellow]")
        return

    table = Table(title="Playlists")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white", width=40)
    table.add_column("Tracks", justify="right")
    table.add_column("Status", width=10)
    table.add_column("Created", style="dim")
    for p in items:
        table.add_row(
            p.id,
            p.name,
            f"{p.ready_count}/{len(p.tracks)}",
            _styled(p.status),
            p.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def show(playlist_id: str = typer.Argument(..., help="Playlist ID")) -> None:
    """Show a playlist and its tracks."""
    _configure_logging()
    try:
        playlist = asyncio.run(Backend().repository.get_playlist(playlist_id))
    except Exception as e:
        _exit_on_error(e, "loading playlist")

    if playlist is None:
        console.print(f"[red]Playlist not found: {playlist_id}[/red]")
        raise typer.Exit(1)
    _display_playlist(playlist)


@app.command()
def discover() -> None:
    """Show recent tracks and featured playlists."""
    _configure_logging()
    repository = Backend().repository

    async def fetch():
        return await asyncio.gather(repository.recent_tracks(20), repository.featured_playlists(12))

    try:
        recent_tracks, featured = asyncio.run(fetch())
    except Exception as e:
        _exit_on_error(e, "loading discover feed")

    table = Table(title="Featured playlists")
    table.add_column("Name", style="white", width=40)
    table.add_column("Tracks", justify="right")
    table.add_column("Status", width=10)
    for p in featured:
        table.add_row(p.name, f"{p.ready_count}/{len(p.tracks)}", _styled(p.status))
    console.print(table)

    table = Table(title="Recent tracks")
    table.add_column("Title", style="white", width=30)
    table.add_column("Genre", style="magenta")
    table.add_column("Mood", style="magenta")
    table.add_column("Created", style="dim")
    for t in recent_tracks:
        table.add_row(t.title, t.genre or "-", t.mood or "-", t.created_at.strftime("%Y-%m-%d %H:%M"))
    console.print(table)


if __name__ == "__main__":
    app()
