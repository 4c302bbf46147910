"""Wiring from settings to the store, repository, sessions and providers."""

import logging

from hyde.config import Settings, get_settings
from hyde.errors import ConfigurationError
from hyde.orchestrator import GenerationOrchestrator
from hyde.providers.base import ImageProvider, MusicProvider
from hyde.repository import PlaylistRepository
from hyde.retry import RetryPolicy
from hyde.session import SessionManager
from hyde.storage import MemoryStore, ObjectStore, R2Storage

logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> ObjectStore:
    """Create the object store selected by ``HYDE_STORAGE_BACKEND``."""
    if settings.storage_backend == "memory":
        logger.warning("Using in-memory storage: playlists are lost on exit")
        return MemoryStore()
    return R2Storage(settings)


class Backend:
    """Everything the HTTP surface and the CLI need, built once.

    Providers are created on first use so commands that never generate
    (listing playlists, discover) work without API keys.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: ObjectStore | None = None,
        music: MusicProvider | None = None,
        images: ImageProvider | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store if store is not None else create_store(self.settings)
        self.repository = PlaylistRepository(self.store)
        self.sessions = SessionManager(self.store, self.settings.session_secret)
        self._music = music
        self._images = images

    @property
    def music(self) -> MusicProvider:
        if self._music is None:
            if not self.settings.elevenlabs_api_key:
                raise ConfigurationError("ElevenLabs API key not configured")
            from hyde.providers.elevenlabs import ElevenLabsProvider

            self._music = ElevenLabsProvider(self.store, self.settings)
        return self._music

    @property
    def images(self) -> ImageProvider:
        if self._images is None:
            if not self.settings.openrouter_api_key:
                raise ConfigurationError("OpenRouter API key not configured")
            from hyde.providers.openrouter_image import OpenRouterImageProvider

            self._images = OpenRouterImageProvider(self.store, self.settings)
        return self._images

    @property
    def policy(self) -> RetryPolicy:
        s = self.settings
        return RetryPolicy(s.retry_max_attempts, s.retry_base_delay_ms, s.retry_jitter_ms)

    @property
    def audio_policy(self) -> RetryPolicy:
        s = self.settings
        return RetryPolicy(s.audio_max_attempts, s.retry_base_delay_ms, s.retry_jitter_ms)

    def create_orchestrator(self, owner_id: str | None = None) -> GenerationOrchestrator:
        """Create an orchestrator attributing playlists to ``owner_id``."""
        return GenerationOrchestrator(
            self.repository,
            self.music,
            self.images,
            owner_id=owner_id,
            policy=self.policy,
            audio_policy=self.audio_policy,
        )
