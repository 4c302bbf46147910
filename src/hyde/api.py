"""JSON HTTP API for playlists, sessions, discover and generations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from hyde import __version__
from hyde.backend import Backend
from hyde.errors import (
    ConfigurationError,
    ContentPolicyError,
    HydeError,
    NotFoundError,
    ValidationError,
    describe_error,
)
from hyde.models import GenerationRequest
from hyde.orchestrator import GenerationOrchestrator, GenerationSnapshot
from hyde.repository import playlist_records
from hyde.session import (
    SESSION_COOKIE_MAX_AGE,
    SESSION_COOKIE_NAME,
    SessionInfo,
    get_client_ip,
)

logger = logging.getLogger(__name__)


class CreatePlaylistBody(BaseModel):
    prompt: str = ""
    genre: Optional[str] = None
    mood: Optional[str] = None
    track_count: int = Field(default=3, ge=1)
    track_duration: int = Field(default=60, ge=1)


class GenerateTrackBody(BaseModel):
    prompt: str = ""
    duration: int = 60
    instrumental: bool = True


class GenerateImageBody(BaseModel):
    prompt: str = ""
    purpose: Literal["cover", "thumbnail"] = "cover"
    genre: Optional[str] = None
    mood: Optional[str] = None


class StartGenerationBody(BaseModel):
    prompt: str = ""
    genre: Optional[str] = None
    mood: Optional[str] = None
    mode: Literal["single", "playlist"] = "playlist"


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def create_app(backend: Backend | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    backend = backend or Backend()
    # One orchestrator per session: each browser owns its current generation.
    orchestrators: dict[str, GenerationOrchestrator] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if orchestrators:
            logger.info(f"Closing {len(orchestrators)} generation orchestrator(s)")
        await asyncio.gather(*(o.aclose() for o in orchestrators.values()))
        orchestrators.clear()

    app = FastAPI(
        title="Hyde",
        description="AI playlist generation API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.backend = backend
    app.state.orchestrators = orchestrators

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(HydeError)
    async def handle_hyde_error(request: Request, exc: HydeError) -> JSONResponse:
        if isinstance(exc, NotFoundError):
            return _error(404, str(exc))
        if isinstance(exc, ContentPolicyError):
            return _error(400, exc.message, suggestion=exc.suggestion)
        if isinstance(exc, ValidationError):
            return _error(400, str(exc))
        if not isinstance(exc, ConfigurationError):
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error(500, str(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        return _error(400, f"{location}: {message}" if location else message)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def current_session(request: Request) -> SessionInfo | None:
        return await backend.sessions.resolve(request.cookies.get(SESSION_COOKIE_NAME))

    async def require_session(
        session: SessionInfo | None = Depends(current_session),
    ) -> SessionInfo:
        if session is None:
            raise HTTPException(status_code=401, detail="No session found")
        return session

    @app.post("/api/session")
    async def init_session(request: Request, response: Response) -> dict:
        """Validate the session cookie, or create a user + session."""
        info, is_new = await backend.sessions.init_session(
            request.cookies.get(SESSION_COOKIE_NAME),
            get_client_ip(request.headers),
            request.headers.get("user-agent"),
        )
        response.set_cookie(
            SESSION_COOKIE_NAME,
            info.token,
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
            path="/",
        )
        return {"success": True, **info.to_dict(), "is_new_session": is_new}

    @app.get("/api/session")
    async def get_session(request: Request) -> JSONResponse:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if not token:
            return _error(401, "No session found", success=False, authenticated=False)
        info = await backend.sessions.resolve(token)
        if info is None:
            return _error(401, "Invalid session", success=False, authenticated=False)
        await backend.sessions.touch(token)
        return JSONResponse({"success": True, "authenticated": True, **info.to_dict()})

    # -------------------------------------------------------------------------
    # Playlists and tracks
    # -------------------------------------------------------------------------

    @app.get("/api/playlists")
    async def list_playlists(session: SessionInfo | None = Depends(current_session)) -> dict:
        playlists = await backend.repository.list_playlists(session.user_id if session else None)
        return {"playlists": [p.to_dict() for p in playlists]}

    @app.post("/api/playlists")
    async def create_playlist(
        body: CreatePlaylistBody,
        session: SessionInfo | None = Depends(current_session),
    ) -> dict:
        playlist_fields, track_fields = playlist_records(
            body.prompt,
            genre=body.genre,
            mood=body.mood,
            track_count=body.track_count,
            track_duration=body.track_duration,
            owner_id=session.user_id if session else None,
        )
        playlist = await backend.repository.create_playlist_with_tracks(playlist_fields, track_fields)
        return {"playlist": playlist.to_dict()}

    @app.get("/api/playlists/{playlist_id}")
    async def get_playlist(playlist_id: str) -> dict:
        playlist = await backend.repository.get_playlist(playlist_id)
        if playlist is None:
            raise NotFoundError("Playlist not found")
        return {"playlist": playlist.to_dict()}

    @app.patch("/api/playlists/{playlist_id}")
    async def update_playlist(playlist_id: str, fields: dict[str, Any] = Body(...)) -> dict:
        playlist = await backend.repository.update_playlist(playlist_id, fields)
        return {"playlist": playlist.to_dict()}

    @app.delete("/api/playlists/{playlist_id}")
    async def delete_playlist(playlist_id: str) -> dict:
        await backend.repository.delete_playlist(playlist_id)
        return {"success": True}

    @app.get("/api/tracks/{track_id}")
    async def get_track(track_id: str) -> dict:
        track = await backend.repository.get_track(track_id)
        if track is None:
            raise NotFoundError("Track not found")
        return {"track": track.to_dict()}

    @app.patch("/api/tracks/{track_id}")
    async def update_track(track_id: str, fields: dict[str, Any] = Body(...)) -> dict:
        track = await backend.repository.update_track(track_id, fields)
        return {"track": track.to_dict()}

    @app.delete("/api/tracks/{track_id}")
    async def delete_track(track_id: str) -> dict:
        await backend.repository.delete_track(track_id)
        return {"success": True}

    @app.get("/api/discover")
    async def discover() -> dict:
        recent_tracks, featured_playlists = await asyncio.gather(
            backend.repository.recent_tracks(20),
            backend.repository.featured_playlists(12),
        )
        return {
            "recent_tracks": [t.to_dict() for t in recent_tracks],
            "featured_playlists": [p.to_dict() for p in featured_playlists],
        }

    # -------------------------------------------------------------------------
    # Provider proxies
    # -------------------------------------------------------------------------

    @app.post("/api/generate-track")
    async def generate_track(body: GenerateTrackBody) -> dict:
        if not body.prompt:
            raise ValidationError("Prompt is required")
        music = backend.music
        try:
            result = await music.generate(body.prompt, body.duration, instrumental=body.instrumental)
        except HydeError as e:
            if not e.retryable:
                raise
            raise HTTPException(status_code=500, detail=f"Failed to generate track: {e}") from e
        except Exception as e:
            logger.error(f"Error generating track: {e}")
            raise HTTPException(
                status_code=500, detail=f"Failed to generate track: {describe_error(e)}"
            ) from e
        return {
            "audio_url": result.audio_url,
            "duration": result.duration_seconds,
            "prompt": result.prompt,
        }

    @app.post("/api/generate-image")
    async def generate_image(body: GenerateImageBody) -> dict:
        if not body.prompt:
            raise ValidationError("Prompt is required")
        images = backend.images
        try:
            result = await images.generate(body.prompt, body.purpose, body.genre, body.mood)
        except Exception as e:
            logger.error(f"Error generating image: {e}")
            raise HTTPException(
                status_code=500, detail=f"Failed to generate image: {describe_error(e)}"
            ) from e
        return {"image_url": result.image_url, "success": True}

    # -------------------------------------------------------------------------
    # Generations (server-side orchestrator per session)
    # -------------------------------------------------------------------------

    def _orchestrator_for(session: SessionInfo, create: bool = False) -> GenerationOrchestrator | None:
        orchestrator = orchestrators.get(session.session_id)
        if orchestrator is None and create:
            orchestrator = backend.create_orchestrator(owner_id=session.user_id)
            orchestrators[session.session_id] = orchestrator
        return orchestrator

    def _snapshot(orchestrator: GenerationOrchestrator | None) -> dict:
        if orchestrator is None:
            return GenerationSnapshot(None).to_dict()
        return orchestrator.snapshot().to_dict()

    @app.post("/api/generations", status_code=202)
    async def start_generation(
        body: StartGenerationBody,
        session: SessionInfo = Depends(require_session),
    ) -> dict:
        if not body.prompt:
            raise ValidationError("Prompt is required")
        settings = backend.settings
        request = GenerationRequest(
            prompt=body.prompt,
            genre=body.genre or None,
            mood=body.mood or None,
            mode=body.mode,
            playlist_track_count=settings.playlist_track_count,
            track_duration=settings.track_duration,
        )
        orchestrator = _orchestrator_for(session, create=True)
        orchestrator.launch(request)
        return _snapshot(orchestrator)

    @app.get("/api/generations/current")
    async def current_generation(session: SessionInfo = Depends(require_session)) -> dict:
        return _snapshot(_orchestrator_for(session))

    @app.post("/api/generations/current/dismiss")
    async def dismiss_generation(session: SessionInfo = Depends(require_session)) -> dict:
        orchestrator = _orchestrator_for(session)
        if orchestrator is not None:
            orchestrator.dismiss_generation()
        return _snapshot(orchestrator)

    @app.delete("/api/generations/current")
    async def clear_generation(session: SessionInfo = Depends(require_session)) -> dict:
        # Clearing releases the session's orchestrator; the next start creates a fresh one.
        orchestrator = orchestrators.pop(session.session_id, None)
        if orchestrator is not None:
            orchestrator.clear_generation()
            await orchestrator.aclose()
        return _snapshot(None)

    return app
