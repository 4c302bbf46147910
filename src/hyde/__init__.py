"""Hyde - AI playlist generation from a text prompt.

- orchestrator: Drives one playlist (or single track) generation
- retry: Transient-failure classification and retry with backoff
- repository: Playlist and track persistence on an object store
- providers: ElevenLabs music and OpenRouter image generation
"""

__version__ = "0.1.0"

from hyde.config import Settings, get_settings
from hyde.errors import ContentPolicyError, HydeError
from hyde.models import GenerationData, GenerationRequest, Playlist, Track
from hyde.orchestrator import GenerationOrchestrator, GenerationSnapshot
from hyde.retry import RetryPolicy, execute_with_retry, is_transient

__all__ = [
    "__version__",
    "ContentPolicyError",
    "GenerationData",
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationSnapshot",
    "HydeError",
    "Playlist",
    "RetryPolicy",
    "Settings",
    "Track",
    "execute_with_retry",
    "get_settings",
    "is_transient",
]
