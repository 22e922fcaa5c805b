"""System prompt assembly."""

import logging
from datetime import UTC, datetime
from pathlib import Path

from src.config import settings

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent.parent / "config"


def _read_config(filename: str) -> str:
    """Contents of ``config/<filename>``, or "" when the file is absent."""
    path = CONFIG_DIR / filename
    if path.exists():
        return path.read_text(encoding="utf-8")
    logger.warning("Prompt file %s not found", path)
    return ""


def build_system_prompt() -> list[dict]:
    """Assemble the system prompt.

    The static part (SYSTEM.md, plus MUSIC.md when Spotify is configured)
    gets ``cache_control`` so it's cached across tool-calling rounds. The
    current date is appended as a separate, uncached block so relative
    requests ("last 10 years") resolve correctly.

    Returns:
        The two text blocks passed as ``system`` to every Messages call.
    """
    sections = [_read_config("SYSTEM.md")]
    if settings.spotify_enabled:
        sections.append(_read_config("MUSIC.md"))
    static_text = "\n\n---\n\n".join(s for s in sections if s)

    today = datetime.now(UTC)
    return [
        {
            "type": "text",
            "text": static_text,
            "cache_control": {"type": "ephemeral"},
        },
        {
            "type": "text",
            "text": f"Today's date: {today.strftime('%A, %B %d, %Y')}",
        },
    ]
