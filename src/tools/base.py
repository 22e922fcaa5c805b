"""Shared types for assistant tools: parameter models, results, stateful tools."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict


@dataclass
class ToolResult:
    """Outcome of one tool invocation: ``data`` on success, ``error`` otherwise.

    Handlers report expected failures (catalog down, movie not found) by
    returning an error result; the registry turns anything they raise into
    one as well, so the LLM loop only ever sees this type.
    """

    data: dict[str, Any] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        # The tool_result block carries a JSON string, not an object.
        payload = {"result": None, "error": self.error} if self.error else (self.data or {})
        return json.dumps(payload)


class ToolParams(BaseModel):
    """Arguments the LLM may pass to a tool.

    Only primitive fields (``str``, ``int``, ``float``, ``bool``, optional or
    in a ``list``) are allowed, since the model's JSON schema is handed to
    Claude as-is. Unknown keys are dropped rather than rejected.
    """

    model_config = ConfigDict(extra="ignore")


class BaseTool(ABC):
    """A tool that carries its own collaborators.

    Plain functions registered with ``@registry.tool()`` cover most catalog
    lookups. Subclass this instead when the handler needs an object built
    up front, e.g. the semantic recommender::

        class SemanticRecommendationsTool(BaseTool):
            name = "get_semantic_movie_recommendations"
            params_model = RecommendationParams

            def __init__(self, recommender=None):
                self._recommender = recommender

        registry.register(SemanticRecommendationsTool())
    """

    name: str = ""
    description: str = ""
    category: str = ""
    params_model: type[ToolParams] | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult: ...
