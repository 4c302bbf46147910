"""Base protocols and types for music and image generation providers."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from hyde.models import ImagePurpose


@dataclass(frozen=True)
class ProviderCapabilities:
    """Limits of a music generation provider."""

    name: str
    max_duration_seconds: int
    min_duration_seconds: int

    def clamp_duration(self, duration_seconds: int) -> int:
        """Clamp a requested duration to what the provider accepts."""
        return max(self.min_duration_seconds, min(duration_seconds, self.max_duration_seconds))


@dataclass(frozen=True)
class GeneratedAudio:
    """Result of generating a single track from any provider."""

    audio_url: str
    prompt: str  # Full prompt sent to the provider
    duration_seconds: int
    provider: str


@dataclass(frozen=True)
class GeneratedImage:
    """Result of generating a cover or thumbnail image."""

    image_url: str
    purpose: ImagePurpose
    prompt: str
    model_used: str


@runtime_checkable
class MusicProvider(Protocol):
    """Protocol that all music generation providers must implement."""

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return the capabilities of this provider."""
        ...

    async def generate(
        self,
        prompt: str,
        duration_seconds: int,
        instrumental: bool = True,
    ) -> GeneratedAudio:
        """Generate a track from a prompt.

        Args:
            prompt: The text prompt describing the music to generate.
            duration_seconds: Target duration; providers clamp to their limits.
            instrumental: Ask for music without vocals.

        Returns:
            GeneratedAudio with a playable URL.

        Raises:
            ContentPolicyError: If the provider rejects the prompt.
        """
        ...


@runtime_checkable
class ImageProvider(Protocol):
    """Protocol that all image generation providers must implement."""

    async def generate(
        self,
        prompt: str,
        purpose: ImagePurpose,
        genre: str | None = None,
        mood: str | None = None,
    ) -> GeneratedImage:
        """Generate a playlist cover or track thumbnail for a music prompt."""
        ...
