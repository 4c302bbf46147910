"""Floating generation status rendered with rich.

Collapsed: one status line with the ready/total count.
Expanded: a per-track table (order, title, status, error).

This module only reads snapshots; the only actions a surface may take on the
orchestrator are dismiss and clear.
"""

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from hyde.orchestrator import GenerationSnapshot

_TRACK_STATUS_STYLES = {
    "pending": "dim",
    "generating": "yellow",
    "ready": "green",
    "error": "red",
}


def status_line(snapshot: GenerationSnapshot) -> str:
    """One-line summary, e.g. ``Generating playlist... 1/3 ready``."""
    generation = snapshot.generation
    if generation is None:
        return ""
    playlist = generation.playlist
    if playlist is None:
        return f"Generation failed: {generation.error or 'Unknown error'}"

    noun = "track" if generation.mode == "single" else "playlist"
    total = len(playlist.tracks)
    progress = f"{playlist.ready_count}/{total} ready"
    if generation.status == "generating":
        return f"Generating {noun}... {progress}"
    if generation.status == "completed":
        if playlist.status == "partial":
            return f"{noun.capitalize()} ready with some failed tracks ({progress})"
        return f"{noun.capitalize()} ready! {progress}"
    return f"Generation failed ({progress})"


def _track_table(snapshot: GenerationSnapshot) -> Table:
    table = Table(show_header=True, header_style="bold", box=None, pad_edge=False)
    table.add_column("#", style="cyan", width=3)
    table.add_column("Title", style="white")
    table.add_column("Status", width=10)
    table.add_column("Error", style="red")

    playlist = snapshot.generation.playlist if snapshot.generation else None
    for track in playlist.tracks if playlist else ():
        style = _TRACK_STATUS_STYLES.get(track.status, "white")
        table.add_row(
            str(track.track_order + 1),
            track.title,
            f"[{style}]{track.status}[/{style}]",
            track.error or "",
        )
    return table


def render_generation(snapshot: GenerationSnapshot) -> RenderableType:
    """Render the status surface for ``snapshot``.

    Dismissed or empty snapshots render as empty text.
    """
    if not snapshot.visible:
        return Text("")
    generation = snapshot.generation

    border = {"generating": "yellow", "completed": "green"}.get(generation.status, "red")
    title = generation.playlist.name if generation.playlist else "Generation"
    line = Text(status_line(snapshot), style="bold")

    if not snapshot.is_expanded or generation.playlist is None:
        return Panel(line, title=title, border_style=border, expand=False)
    return Panel(Group(line, _track_table(snapshot)), title=title, border_style=border)
