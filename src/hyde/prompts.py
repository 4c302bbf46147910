"""Prompt construction for tracks, covers and thumbnails."""

from hyde.models import GenerationMode, ImagePurpose

# Rotated across playlist tracks so sibling tracks do not sound identical.
TRACK_VARIATIONS = (
    "",
    " With an intro buildup.",
    " With dynamic changes and energy shifts.",
)

INSTRUMENTAL_SUFFIX = " Instrumental only, no vocals."

NAME_MAX_LENGTH = 50

_IMAGE_STYLE_GUIDE = (
    "Digital art, vibrant neon colors, dark moody background with purple and "
    "blue gradients, atmospheric lighting, modern aesthetic, album cover art style"
)


def truncate_name(prompt: str, max_length: int = NAME_MAX_LENGTH) -> str:
    """Derive a display name from a prompt."""
    if len(prompt) > max_length:
        return prompt[:max_length] + "..."
    return prompt


def build_track_prompt(
    prompt: str,
    genre: str | None,
    mood: str | None,
    mode: GenerationMode,
    index: int,
) -> str:
    """Build the effective prompt for the track at ``index``.

    Order is genre, mood, base prompt, then (playlist mode only) a variation
    phrase picked by ``index % len(TRACK_VARIATIONS)``.

    Example:
        >>> build_track_prompt("study session", "Jazz", "Calm", "playlist", 1)
        'Jazz genre. Calm mood. study session With an intro buildup.'
    """
    parts: list[str] = []
    if genre:
        parts.append(f"{genre} genre. ")
    if mood:
        parts.append(f"{mood} mood. ")
    parts.append(prompt)
    if mode == "playlist":
        parts.append(TRACK_VARIATIONS[index % len(TRACK_VARIATIONS)])
    return "".join(parts)


def build_image_prompt(
    prompt: str,
    purpose: ImagePurpose,
    genre: str | None = None,
    mood: str | None = None,
) -> str:
    """Build the image-model prompt for a playlist cover or track thumbnail."""
    context: list[str] = []
    if genre:
        context.append(f"{genre} music inspired")
    if mood:
        context.append(f"{mood} atmosphere")
    context_str = ", ".join(context)

    if purpose == "cover":
        return (
            f"{_IMAGE_STYLE_GUIDE}. A stunning album cover artwork representing: {prompt}. "
            f"{context_str}. Artistic portrait or abstract visualization, "
            "cinematic quality, high detail."
        )
    return (
        f"{_IMAGE_STYLE_GUIDE}. A small album thumbnail artwork for a track about: {prompt}. "
        f"{context_str}. Artistic and evocative, suitable for music streaming app."
    )
