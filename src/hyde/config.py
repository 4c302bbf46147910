"""Configuration settings for Hyde."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ElevenLabs (music generation)
    elevenlabs_api_key: str | None = Field(default=None, alias="ELEVENLABS_API_KEY")

    # OpenRouter (OpenAI-compatible API, used for cover/thumbnail images)
    openrouter_api_key: str | None = Field(default=None, alias="OPENROUTER_API_KEY")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    openrouter_image_model: str = Field(
        default="google/gemini-3-pro-image-preview",
        alias="OPENROUTER_IMAGE_MODEL",
    )

    # Object storage: "r2" for Cloudflare R2, "memory" for throwaway local runs
    storage_backend: Literal["r2", "memory"] = Field(
        default="r2",
        alias="HYDE_STORAGE_BACKEND",
    )

    # Cloudflare R2 Storage
    r2_access_key_id: str | None = Field(default=None, alias="R2_ACCESS_KEY_ID")
    r2_secret_access_key: str | None = Field(default=None, alias="R2_SECRET_ACCESS_KEY")
    r2_bucket_name: str = Field(default="hyde", alias="R2_BUCKET_NAME")
    r2_endpoint_url: str | None = Field(default=None, alias="R2_ENDPOINT_URL")
    # Public bucket domain used to build playable/displayable media URLs.
    r2_public_base_url: str | None = Field(default=None, alias="R2_PUBLIC_BASE_URL")

    # Sessions
    session_secret: str = Field(
        default="hyde-playlist-default-salt",
        alias="SESSION_SECRET",
    )

    # Generation defaults
    playlist_track_count: int = Field(default=3, ge=2, alias="HYDE_PLAYLIST_TRACK_COUNT")
    track_duration: int = Field(default=60, alias="HYDE_TRACK_DURATION")  # seconds

    # Retry budgets for collaborator calls
    retry_max_attempts: int = Field(default=3, ge=1, alias="HYDE_RETRY_MAX_ATTEMPTS")
    retry_base_delay_ms: int = Field(default=1000, ge=0, alias="HYDE_RETRY_BASE_DELAY_MS")
    retry_jitter_ms: int = Field(default=500, ge=0, alias="HYDE_RETRY_JITTER_MS")
    audio_max_attempts: int = Field(default=2, ge=1, alias="HYDE_AUDIO_MAX_ATTEMPTS")

    log_level: str = Field(default="INFO", alias="HYDE_LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get settings instance (lazy-loaded, cached)."""
    return Settings()  # type: ignore[call-arg]
