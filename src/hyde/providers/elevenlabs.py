"""ElevenLabs music generation provider using the ElevenLabs SDK."""

import asyncio
import logging
from typing import Any

from elevenlabs.client import ElevenLabs

from hyde.config import Settings, get_settings
from hyde.errors import ContentPolicyError, GenerationError
from hyde.prompts import INSTRUMENTAL_SUFFIX
from hyde.providers.base import GeneratedAudio, MusicProvider, ProviderCapabilities
from hyde.storage import ObjectStore, upload_media

logger = logging.getLogger(__name__)


def _bad_prompt_suggestion(error: Exception) -> tuple[bool, str | None]:
    """Detect a ``bad_prompt`` rejection and pull out the suggested prompt."""
    error_body: dict[str, Any] | None = getattr(error, "body", None)
    if not isinstance(error_body, dict):
        return False, None
    detail = error_body.get("detail", {})
    if isinstance(detail, dict) and detail.get("status") == "bad_prompt":
        data = detail.get("data") or {}
        return True, data.get("prompt_suggestion")
    return False, None


class ElevenLabsProvider:
    """Music generation using the ElevenLabs SDK.

    Composes one track per call, uploads the MP3 through the object store and
    returns a playable URL. No internal retry: callers wrap ``generate`` in
    :func:`hyde.retry.execute_with_retry`.

    Max duration: 5 minutes (300 s). Min duration: 10 s.
    """

    def __init__(
        self,
        store: ObjectStore,
        settings: Settings | None = None,
        client: Any | None = None,
    ) -> None:
        self._store = store
        if client is None:
            s = settings or get_settings()
            client = ElevenLabs(api_key=s.elevenlabs_api_key)
        self._client = client
        self._capabilities = ProviderCapabilities(
            name="elevenlabs",
            max_duration_seconds=300,
            min_duration_seconds=10,
        )

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return provider capabilities."""
        return self._capabilities

    def _compose(self, prompt: str, duration_ms: int) -> bytes:
        # SDK returns an iterator, collect all chunks into bytes
        audio_iter = self._client.music.compose(
            prompt=prompt,
            music_length_ms=duration_ms,
        )
        return b"".join(audio_iter)

    async def generate(
        self,
        prompt: str,
        duration_seconds: int,
        instrumental: bool = True,
    ) -> GeneratedAudio:
        """Generate a track using the ElevenLabs SDK.

        Raises:
            ContentPolicyError: If ElevenLabs rejects the prompt (bad_prompt),
                carrying its suggested alternative.
            GenerationError: If the SDK returned no audio.
        """
        full_prompt = prompt + INSTRUMENTAL_SUFFIX if instrumental else prompt
        duration_seconds = self._capabilities.clamp_duration(duration_seconds)

        logger.info(f"Generating {duration_seconds}s track via ElevenLabs: {full_prompt[:80]}")
        try:
            audio_bytes = await asyncio.to_thread(
                self._compose, full_prompt, duration_seconds * 1000
            )
        except Exception as e:
            rejected, suggestion = _bad_prompt_suggestion(e)
            if rejected:
                logger.warning(f"Prompt rejected by ElevenLabs (suggestion: {suggestion})")
                raise ContentPolicyError(
                    "Prompt contains copyrighted material",
                    suggestion=suggestion,
                    raw=getattr(e, "body", None),
                ) from e
            raise

        if not audio_bytes:
            raise GenerationError("ElevenLabs returned no audio")

        audio_url = await upload_media(self._store, audio_bytes, "audio/mpeg", "audio")
        return GeneratedAudio(
            audio_url=audio_url,
            prompt=full_prompt,
            duration_seconds=duration_seconds,
            provider="elevenlabs",
        )


# Type assertion to verify protocol compliance
def _check_protocol(store: ObjectStore) -> MusicProvider:
    return ElevenLabsProvider(store)
