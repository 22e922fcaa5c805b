"""Candidate item models shared by the catalog clients, merger and payloads."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Confidence = Literal["high", "medium", "low"]

CONFIDENCE_ORDER: dict[str | None, int] = {"high": 3, "medium": 2, "low": 1, None: 0}


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class CandidateItem(CamelModel):
    """A transient recommendation result, never persisted directly."""

    id: int | str
    title: str
    overview: str | None = None
    release_year: int | None = None
    poster_url: str | None = None
    genres: list[str] = Field(default_factory=list)
    match_confidence: Confidence | None = None

    @field_validator("match_confidence", mode="before")
    @classmethod
    def _known_confidence(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower() in ("high", "medium", "low"):
            return value.lower()
        return None

    @field_validator("genres", mode="before")
    @classmethod
    def _genres_list(cls, value: Any) -> Any:
        return [] if value is None else value


class MovieDetails(CandidateItem):
    """Full catalog record for a single movie."""

    vote_average: float | None = None
    runtime: int | None = None
    top_cast: list[str] = Field(default_factory=list)


class TrackItem(CamelModel):
    """A track from the music catalog."""

    id: str
    name: str
    artists: list[str] = Field(default_factory=list)
    album: str | None = None
    release_year: int | None = None
    preview_url: str | None = None
    popularity: int | None = None
