"""
Pytest configuration and shared fixtures for Hyde tests.
"""
import asyncio

import pytest

from hyde.errors import GenerationError
from hyde.providers.base import GeneratedAudio, GeneratedImage, ProviderCapabilities
from hyde.repository import PlaylistRepository
from hyde.retry import RetryPolicy
from hyde.storage import MemoryStore

# No backoff sleeps in tests.
FAST_POLICY = RetryPolicy(max_attempts=3, base_delay_ms=0, jitter_ms=0)
FAST_AUDIO_POLICY = RetryPolicy(max_attempts=2, base_delay_ms=0, jitter_ms=0)


class RecordingStore(MemoryStore):
    """MemoryStore that remembers the order of every JSON write."""

    def __init__(self):
        super().__init__()
        self.writes = []

    def write_json(self, key, data):
        self.writes.append(key)
        super().write_json(key, data)


class FakeMusicProvider:
    """Music provider double.

    ``fail`` maps a prompt to an exception to raise (or None to succeed).
    Prompts containing ``block_on`` wait for ``release`` before returning.
    """

    def __init__(self, fail=None, block_on=None):
        self.calls = []
        self._fail = fail
        self.block_on = block_on
        self.release = asyncio.Event()

    @property
    def capabilities(self):
        return ProviderCapabilities(name="fake", max_duration_seconds=300, min_duration_seconds=10)

    async def generate(self, prompt, duration_seconds, instrumental=True):
        self.calls.append(prompt)
        if self.block_on and self.block_on in prompt:
            await self.release.wait()
        error = self._fail(prompt) if self._fail else None
        if error is not None:
            raise error
        return GeneratedAudio(
            audio_url=f"https://cdn.example.com/audio/{len(self.calls)}.mp3",
            prompt=prompt,
            duration_seconds=duration_seconds,
            provider="fake",
        )


class FakeImageProvider:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def generate(self, prompt, purpose, genre=None, mood=None):
        self.calls.append((purpose, prompt))
        if self.fail:
            raise GenerationError("image model returned nothing")
        return GeneratedImage(
            image_url=f"https://cdn.example.com/images/{purpose}-{len(self.calls)}.png",
            purpose=purpose,
            prompt=prompt,
            model_used="fake-image",
        )


@pytest.fixture
def store():
    """Provide an in-memory object store that records writes."""
    return RecordingStore()


@pytest.fixture
def repository(store):
    return PlaylistRepository(store)


@pytest.fixture
def music():
    return FakeMusicProvider()


@pytest.fixture
def images():
    return FakeImageProvider()
