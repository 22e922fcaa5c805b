#!/usr/bin/env python3
"""Populate the Supabase movie embedding index from TMDB lists.

Pulls pages of TMDB's popular and top-rated lists, skips movies already in
``movie_embeddings``, embeds the rest with OpenAI and inserts them.

Usage examples:
    # Default: 5 pages each of popular and top_rated
    uv run python scripts/backfill_embeddings.py

    # More pages, one list only
    uv run python scripts/backfill_embeddings.py --lists popular --pages 20

    # See what would be indexed without writing anything
    uv run python scripts/backfill_embeddings.py --dry-run
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import ConfigurationError, settings
from src.integrations import tmdb
from src.integrations.http import CatalogError, RequestTimeoutError
from src.recommendations.filters import dedupe_by_id
from src.recommendations.semantic import SemanticRecommender

logger = logging.getLogger("backfill_embeddings")

BATCH_SIZE = 50


async def backfill(lists: list[str], pages: int, *, dry_run: bool = False) -> int:
    """Index every not-yet-indexed movie from the given lists. Returns rows written."""
    recommender = SemanticRecommender.get()
    known = await recommender.indexed_movie_ids()
    logger.info("%d movies already indexed", len(known))

    movies = []
    for kind in lists:
        for page in range(1, pages + 1):
            try:
                movies.extend(await tmdb.get_movie_list(kind, page=page))
            except (CatalogError, RequestTimeoutError) as exc:
                logger.warning("Skipping %s page %d: %s", kind, page, exc)

    pending = [m for m in dedupe_by_id(movies) if m.id not in known and m.title]
    logger.info("%d new movies to index", len(pending))
    if dry_run:
        for m in pending:
            print(f"{m.id}\t{m.release_year}\t{m.title}")
        return 0

    written = 0
    for start in range(0, len(pending), BATCH_SIZE):
        batch = pending[start : start + BATCH_SIZE]
        written += await recommender.index_movies(batch)
        logger.info("Indexed %d/%d", written, len(pending))
    return written


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill the movie embedding index")
    parser.add_argument(
        "--lists",
        nargs="+",
        default=["popular", "top_rated"],
        choices=["popular", "top_rated", "now_playing", "upcoming"],
        help="TMDB lists to pull from (default: popular top_rated)",
    )
    parser.add_argument("--pages", type=int, default=5, help="Pages per list (default: 5)")
    parser.add_argument("--dry-run", action="store_true", help="List movies, write nothing")
    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level),
    )

    try:
        settings.require("tmdb_api_key", "openai_api_key", "supabase_url", "supabase_service_role_key")
    except ConfigurationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    written = asyncio.run(backfill(args.lists, args.pages, dry_run=args.dry_run))
    print(f"Done: {written} movie(s) indexed")


if __name__ == "__main__":
    main()
