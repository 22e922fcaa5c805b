"""Music catalog tools (Spotify). Loaded only when credentials are configured."""

from pydantic import Field

from src.integrations.spotify import SpotifyClient
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry


class SearchTracksParams(ToolParams):
    query: str = Field(description="Track title, artist, or soundtrack name")
    limit: int = Field(default=10, ge=1, le=50, description="Maximum number of tracks")


@registry.tool(
    name="search_tracks",
    description=(
        "Search Spotify for tracks, e.g. a movie's soundtrack or songs by an "
        "artist. Put results in the 'songs' array of your answer."
    ),
    category="music",
    params_model=SearchTracksParams,
)
async def search_tracks(query: str, limit: int = 10) -> ToolResult:
    tracks = await SpotifyClient.get().search_tracks(query, limit=limit)
    return ToolResult(data={"tracks": [t.to_json_dict() for t in tracks]})
