"""Assistant tools. Importing a tool module registers its tools."""

# Catalog and history tools are always on; each module's @registry.tool()
# decorators run at import time.
from src.config import settings
from src.tools import catalog_tools, history_tools  # noqa: F401
from src.tools.registry import registry

# Track search needs Spotify client credentials.
if settings.spotify_enabled:
    from src.tools import music_tools  # noqa: F401

__all__ = ["registry"]
