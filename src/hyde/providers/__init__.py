"""Music and image generation providers."""

from hyde.providers.base import (
    GeneratedAudio,
    GeneratedImage,
    ImageProvider,
    MusicProvider,
    ProviderCapabilities,
)

__all__ = [
    "GeneratedAudio",
    "GeneratedImage",
    "ImageProvider",
    "MusicProvider",
    "ProviderCapabilities",
]
