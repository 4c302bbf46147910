"""Generation orchestrator: drives one playlist (or single track) generation.

Flow for one generation:
    1. Create the playlist and its pending track records (all or nothing)
    2. Spawn the cover image in the background (never gates the tracks)
    3. For each track, in order:
         mark generating -> audio + thumbnail concurrently -> mark ready/error
    4. Derive the playlist status from its tracks and persist it

The orchestrator owns exactly one :class:`GenerationData`. Every step replaces
it wholesale and notifies subscribers, so readers only ever see whole steps.
Starting a new generation (or clearing/closing) cancels the previous one's
:class:`CancellationToken`; a cancelled run stops at its next checkpoint and
performs no further writes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable

from hyde.errors import GenerationError, OperationCancelledError, describe_error
from hyde.models import GenerationData, GenerationRequest, ImagePurpose, Playlist
from hyde.prompts import build_track_prompt
from hyde.providers.base import ImageProvider, MusicProvider
from hyde.repository import PlaylistRepository, playlist_records
from hyde.retry import AUDIO_POLICY, DEFAULT_POLICY, RetryPolicy, retry_with_policy

logger = logging.getLogger(__name__)

Subscriber = Callable[["GenerationSnapshot"], None]


class CancellationToken:
    """Cooperative cancellation flag handed to one generation run."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def active(self) -> bool:
        """Retry guard: False once the run is cancelled."""
        return not self._cancelled


@dataclass(frozen=True)
class GenerationSnapshot:
    """Read-only view of the orchestrator for presentation layers."""

    generation: GenerationData | None
    is_expanded: bool = False
    is_dismissed: bool = False

    @property
    def is_generating(self) -> bool:
        return self.generation is not None and self.generation.status == "generating"

    @property
    def visible(self) -> bool:
        """Whether a status surface should currently be shown."""
        return self.generation is not None and not self.is_dismissed

    def to_dict(self) -> dict:
        return {
            "generation": self.generation.to_dict() if self.generation else None,
            "is_generating": self.is_generating,
            "is_expanded": self.is_expanded,
            "is_dismissed": self.is_dismissed,
        }


def _patch_track(generation: GenerationData, index: int, **changes: Any) -> GenerationData:
    playlist = generation.playlist
    if playlist is None or index >= len(playlist.tracks):
        return generation
    return replace(generation, playlist=playlist.with_track(index, **changes))


def _patch_playlist(generation: GenerationData, **changes: Any) -> GenerationData:
    if generation.playlist is None:
        return generation
    return replace(generation, playlist=replace(generation.playlist, **changes))


class GenerationOrchestrator:
    """Single-owner state machine for the current generation.

    Args:
        repository: Playlist persistence.
        music: Audio generation provider.
        images: Cover/thumbnail generation provider.
        owner_id: User the created playlists are attributed to.
        policy: Retry budget for persistence and image calls.
        audio_policy: Retry budget for audio generation.
    """

    def __init__(
        self,
        repository: PlaylistRepository,
        music: MusicProvider,
        images: ImageProvider,
        *,
        owner_id: str | None = None,
        policy: RetryPolicy = DEFAULT_POLICY,
        audio_policy: RetryPolicy = AUDIO_POLICY,
    ) -> None:
        self._repository = repository
        self._music = music
        self._images = images
        self._owner_id = owner_id
        self._policy = policy
        self._audio_policy = audio_policy

        self._generation: GenerationData | None = None
        self._is_expanded = False
        self._is_dismissed = False
        self._token: CancellationToken | None = None
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Read-only state
    # -------------------------------------------------------------------------

    @property
    def generation(self) -> GenerationData | None:
        return self._generation

    @property
    def is_generating(self) -> bool:
        return self._generation is not None and self._generation.status == "generating"

    @property
    def is_expanded(self) -> bool:
        return self._is_expanded

    @property
    def is_dismissed(self) -> bool:
        return self._is_dismissed

    def snapshot(self) -> GenerationSnapshot:
        return GenerationSnapshot(self._generation, self._is_expanded, self._is_dismissed)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback fired after every state change.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Generation subscriber failed")

    def _set(self, generation: GenerationData | None) -> None:
        self._generation = generation
        self._notify()

    def _commit(
        self,
        token: CancellationToken,
        change: Callable[[GenerationData], GenerationData],
    ) -> bool:
        """Apply ``change`` to the state if ``token``'s run still owns it."""
        if token is not self._token or token.cancelled or self._generation is None:
            return False
        self._set(change(self._generation))
        return True

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _cancel_current(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def update_playlist(self, playlist: Playlist) -> None:
        """Replace the playlist snapshot of the current generation."""
        if self._generation is None:
            return
        self._set(replace(self._generation, playlist=playlist))

    def clear_generation(self) -> None:
        """Cancel any in-flight run and forget the current generation."""
        self._cancel_current()
        self._is_expanded = False
        self._is_dismissed = False
        self._set(None)

    def dismiss_generation(self) -> None:
        """Hide the generation from presentation without stopping it."""
        self._is_dismissed = True
        self._is_expanded = False
        self._notify()

    def set_expanded(self, expanded: bool) -> None:
        self._is_expanded = expanded
        self._notify()

    def launch(self, request: GenerationRequest) -> asyncio.Task:
        """Run :meth:`start_generation` as a background task."""
        task = asyncio.create_task(self.start_generation(request))
        self._track_task(task)
        return task

    def _track_task(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background generation task failed: {task.exception()!r}")

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for background tasks (e.g. a pending cover image) to finish.

        Returns:
            True if every task finished within ``timeout`` seconds.
        """
        tasks = list(self._tasks)
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def aclose(self) -> None:
        """Cancel the current run and every background task. Never raises."""
        self._cancel_current()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._subscribers.clear()

    async def start_generation(self, request: GenerationRequest) -> None:
        """Generate a playlist (or single track) for ``request``.

        Any generation still running is cancelled first. Failures never
        propagate: they end up in the exposed state and the logs.
        """
        if not request.prompt:
            return

        self._cancel_current()
        token = CancellationToken()
        self._token = token
        self._is_dismissed = False

        started_at = datetime.now()
        logger.info(
            f"Starting {request.mode} generation ({request.track_count} tracks): "
            f"{request.prompt[:80]}"
        )

        try:
            playlist = await self._create_playlist(token, request)
        except OperationCancelledError:
            return
        except Exception as e:
            message = describe_error(e)
            logger.error(f"Error creating playlist: {message}")
            if token is not self._token:
                return
            previous = self._generation
            if previous is not None and previous.playlist is not None:
                # Keep showing the earlier playlist, flagged with this failure.
                self._set(
                    replace(previous, status="error", completed_at=datetime.now(), error=message)
                )
            else:
                self._set(
                    GenerationData(
                        playlist=None,
                        mode=request.mode,
                        status="error",
                        started_at=started_at,
                        completed_at=datetime.now(),
                        error=message,
                    )
                )
            return

        if token.cancelled:
            logger.debug(f"Generation for playlist {playlist.id} cancelled before start")
            return

        self._set(
            GenerationData(
                playlist=playlist,
                mode=request.mode,
                status="generating",
                started_at=started_at,
            )
        )

        cover = asyncio.create_task(self._generate_cover(token, playlist.id, request))
        self._track_task(cover)

        for index, track in enumerate(playlist.tracks):
            if token.cancelled:
                logger.debug(f"Generation for playlist {playlist.id} cancelled at track {index + 1}")
                return
            await self._generate_track(token, request, index, track.id)

        if token.cancelled or self._generation is None or self._generation.playlist is None:
            return

        current = self._generation.playlist
        final_status = current.aggregate_status()
        await self._best_effort(
            token,
            lambda: self._repository.update_playlist(playlist.id, {"status": final_status}),
            f"Playlist {playlist.id} status update",
        )

        ready = current.ready_count
        self._commit(
            token,
            lambda g: replace(
                _patch_playlist(g, status=final_status, updated_at=datetime.now()),
                status="completed" if ready > 0 else "error",
                completed_at=datetime.now(),
            ),
        )
        logger.info(
            f"Generation finished: playlist {playlist.id} is {final_status} "
            f"({ready}/{len(current.tracks)} tracks ready)"
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def _create_playlist(self, token: CancellationToken, request: GenerationRequest) -> Playlist:
        playlist_fields, track_fields = playlist_records(
            request.prompt,
            genre=request.genre,
            mood=request.mood,
            track_count=request.track_count,
            track_duration=request.track_duration,
            owner_id=self._owner_id,
        )
        return await retry_with_policy(
            lambda: self._repository.create_playlist_with_tracks(playlist_fields, track_fields),
            self._policy,
            description="Playlist creation",
            should_continue=token.active,
        )

    async def _best_effort(
        self,
        token: CancellationToken,
        operation: Callable[[], Awaitable[Any]],
        description: str,
    ) -> bool:
        """Run a persistence write with retry; log instead of raising.

        The token is checked before every attempt, so a run cancelled while a
        retry is backing off never reaches the store again.
        """
        try:
            await retry_with_policy(
                operation, self._policy, description=description, should_continue=token.active
            )
            return True
        except OperationCancelledError:
            return False
        except Exception as e:
            logger.warning(f"{description} failed: {describe_error(e)}")
            return False

    async def _generate_audio(self, token: CancellationToken, prompt: str, duration: int) -> str:
        result = await retry_with_policy(
            lambda: self._music.generate(prompt, duration, instrumental=True),
            self._audio_policy,
            description="Audio generation",
            should_continue=token.active,
        )
        if not result.audio_url:
            raise GenerationError("Failed to generate track")
        return result.audio_url

    async def _generate_image(
        self,
        token: CancellationToken,
        prompt: str,
        purpose: ImagePurpose,
        genre: str | None,
        mood: str | None,
    ) -> str | None:
        """Generate an image, returning None on any failure."""
        try:
            result = await retry_with_policy(
                lambda: self._images.generate(prompt, purpose, genre, mood),
                self._policy,
                description=f"{purpose.capitalize()} image generation",
                should_continue=token.active,
            )
        except OperationCancelledError:
            return None
        except Exception as e:
            logger.warning(f"Failed to generate {purpose} image: {describe_error(e)}")
            return None
        return result.image_url or None

    async def _generate_cover(
        self,
        token: CancellationToken,
        playlist_id: str,
        request: GenerationRequest,
    ) -> None:
        cover_url = await self._generate_image(
            token, request.prompt, "cover", request.genre, request.mood
        )
        if cover_url is None or token.cancelled:
            return
        await self._best_effort(
            token,
            lambda: self._repository.update_playlist(playlist_id, {"cover_image_url": cover_url}),
            f"Playlist {playlist_id} cover update",
        )
        self._commit(token, lambda g: _patch_playlist(g, cover_image_url=cover_url))

    async def _generate_track(
        self,
        token: CancellationToken,
        request: GenerationRequest,
        index: int,
        track_id: str,
    ) -> None:
        label = f"Track {index + 1}"
        self._commit(token, lambda g: _patch_track(g, index, status="generating"))
        await self._best_effort(
            token,
            lambda: self._repository.update_track(track_id, {"status": "generating"}),
            f"{label} status update",
        )

        track_prompt = build_track_prompt(
            request.prompt, request.genre, request.mood, request.mode, index
        )
        audio_result, image_result = await asyncio.gather(
            self._generate_audio(token, track_prompt, request.track_duration),
            self._generate_image(token, track_prompt, "thumbnail", request.genre, request.mood),
            return_exceptions=True,
        )
        for result in (audio_result, image_result):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        if token.cancelled:
            logger.debug(f"{label} finished after cancellation; discarding result")
            return

        image_url = image_result if isinstance(image_result, str) else None
        error: Exception | None = audio_result if isinstance(audio_result, Exception) else None

        if error is None:
            fields = {"audio_url": audio_result, "image_url": image_url, "status": "ready"}
            try:
                await retry_with_policy(
                    lambda: self._repository.update_track(track_id, fields),
                    self._policy,
                    description=f"{label} result update",
                    should_continue=token.active,
                )
            except OperationCancelledError:
                logger.debug(f"{label} result update abandoned after cancellation")
                return
            except Exception as e:
                error = e
            else:
                if self._commit(
                    token,
                    lambda g: _patch_track(
                        g, index, audio_url=audio_result, image_url=image_url, status="ready"
                    ),
                ):
                    logger.info(f"{label} ready")
                return

        message = describe_error(error)
        logger.error(f"Error generating track {index + 1}: {message}")
        await self._best_effort(
            token,
            lambda: self._repository.update_track(track_id, {"status": "error", "error": message}),
            f"{label} error status update",
        )
        self._commit(token, lambda g: _patch_track(g, index, status="error", error=message))
