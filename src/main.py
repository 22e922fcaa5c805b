"""Gleni entry point."""

import asyncio
import logging

from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def _serve() -> None:
    from src.web.server import ChatServer

    server = ChatServer()
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    """Check credentials and start the HTTP API."""
    settings.require("anthropic_api_key", "tmdb_api_key")
    if not (settings.supabase_url and settings.openai_api_key):
        logger.warning("Semantic search not configured, using TMDB recommendations only")
    if settings.spotify_enabled:
        logger.info("Spotify configured, music tools enabled")

    logger.info("Starting Gleni with model %s...", settings.chat_model)
    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
