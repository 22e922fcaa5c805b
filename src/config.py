"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class ConfigurationError(Exception):
    """Raised when a required credential or setting is missing."""


class Settings(BaseSettings):
    """Gleni configuration. All values come from environment variables."""

    # Anthropic (chat)
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="claude-sonnet-4-5-20250929")
    chat_max_tokens: int = Field(default=2048)
    llm_timeout_seconds: float = Field(default=20.0)

    # OpenAI (embeddings)
    openai_api_key: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")

    # TMDB
    tmdb_api_key: str = Field(default="")

    # Supabase (pgvector similarity search)
    supabase_url: str = Field(default="")
    supabase_service_role_key: str = Field(default="")
    semantic_match_count: int = Field(default=12)
    semantic_similarity_threshold: float = Field(default=0.7)

    # Spotify (optional music catalog)
    spotify_client_id: str = Field(default="")
    spotify_client_secret: str = Field(default="")

    # Database
    database_path: Path = Field(default=Path("data/gleni.db"))

    # Turso (hosted libSQL). When set it overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Outbound HTTP
    http_timeout_seconds: float = Field(default=8.0)

    # Recommendations
    sticky_genres: str = Field(default="Science Fiction")

    # HTTP server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=8080)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_file=_env_file(), env_file_encoding="utf-8", extra="forbid"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_sticky_genres(self) -> set[str]:
        """Parse STICKY_GENRES into a set of canonical genre names."""
        if not self.sticky_genres.strip():
            return set()
        return {name.strip() for name in self.sticky_genres.split(",") if name.strip()}

    @property
    def spotify_enabled(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)

    def require(self, *names: str) -> None:
        """Fail fast when any of the named settings is empty.

        Raises ConfigurationError listing the missing environment variables.
        """
        missing = [name.upper() for name in names if not getattr(self, name)]
        if missing:
            msg = f"Missing required environment variable(s): {', '.join(missing)}"
            raise ConfigurationError(msg)


settings = Settings()
