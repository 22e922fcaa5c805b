"""Tests for Settings configuration model."""

import pytest

from src.config import ConfigurationError, Settings


class TestGetStickyGenres:
    def test_default_is_science_fiction(self):
        s = Settings()
        assert s.get_sticky_genres() == {"Science Fiction"}

    def test_parses_comma_separated(self):
        s = Settings(sticky_genres="Science Fiction, Animation")
        assert s.get_sticky_genres() == {"Science Fiction", "Animation"}

    def test_empty_string_returns_empty_set(self):
        s = Settings(sticky_genres="  ")
        assert s.get_sticky_genres() == set()


class TestSpotifyEnabled:
    def test_disabled_without_credentials(self):
        assert Settings().spotify_enabled is False

    def test_needs_both_id_and_secret(self):
        assert Settings(spotify_client_id="id").spotify_enabled is False
        assert Settings(spotify_client_id="id", spotify_client_secret="s").spotify_enabled


class TestRequire:
    def test_passes_when_set(self):
        Settings(tmdb_api_key="k").require("tmdb_api_key")

    def test_names_missing_env_vars(self):
        s = Settings(tmdb_api_key="k")
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY, SUPABASE_URL"):
            s.require("tmdb_api_key", "anthropic_api_key", "supabase_url")


class TestDefaults:
    def test_timeouts(self):
        s = Settings()
        assert s.http_timeout_seconds == 8.0
        assert s.llm_timeout_seconds == 20.0

    def test_semantic_match_parameters(self):
        s = Settings()
        assert s.semantic_match_count == 12
        assert s.semantic_similarity_threshold == 0.7

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValueError):
            Settings(not_a_setting="x")
