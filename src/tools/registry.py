"""The closed set of tools Claude may call during a chat turn.

Each tool is a name, a description, a flat pydantic parameter model and an
async handler. ``execute`` is the single boundary between the LLM loop and
the handlers: it validates arguments, supplies the caller's ``user_id`` to
tools that touch per-user state, and converts every failure into a
``ToolResult`` error.
"""

from __future__ import annotations

import inspect
import logging
import re
import time
import types
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union, get_args, get_origin

from pydantic import ValidationError

from src.tools.base import BaseTool, ToolParams, ToolResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

# Names of tools that read or write per-user rows. They get user_id from the
# request, never from the LLM.
USER_SCOPED_PATTERN = re.compile(r"save|get_user|from_history")

_PRIMITIVES = (str, int, float, bool)
_EMPTY_SCHEMA = {"type": "object", "properties": {}}


@dataclass
class ToolDef:
    name: str
    description: str
    category: str
    handler: Callable[..., Awaitable[ToolResult]]
    params_model: type[ToolParams] | None = None

    @property
    def user_scoped(self) -> bool:
        return USER_SCOPED_PATTERN.search(self.name) is not None

    def schema(self) -> dict[str, Any]:
        if self.params_model is None:
            input_schema = dict(_EMPTY_SCHEMA)
        else:
            input_schema = self.params_model.model_json_schema()
        return {"name": self.name, "description": self.description, "input_schema": input_schema}


class ToolRegistry:
    """Name -> ToolDef table with validation and dispatch.

    Functions register through the decorator::

        @registry.tool(name="search_movies", description="...", category="catalog",
                       params_model=SearchMoviesParams)
        async def search_movies(query: str) -> ToolResult: ...

    and stateful tools through ``registry.register(SomeTool())``.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        category: str,
        params_model: type[ToolParams] | None = None,
    ) -> Callable:
        def decorator(fn: Callable[..., Awaitable[ToolResult]]) -> Callable:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{name}' must be an async function"
                raise TypeError(msg)
            self._add(ToolDef(name, description, category, fn, params_model))
            return fn

        return decorator

    def register(self, tool_instance: BaseTool) -> None:
        t = tool_instance
        self._add(ToolDef(t.name, t.description, t.category, t.execute, t.params_model))

    def _add(self, tool_def: ToolDef) -> None:
        if tool_def.params_model is not None:
            _check_flat(tool_def.name, tool_def.params_model)
        if tool_def.name in self._tools:
            logger.debug("Replacing tool '%s'", tool_def.name)
        self._tools[tool_def.name] = tool_def

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_schemas(self) -> list[dict[str, Any]]:
        """Tool definitions in the shape the Messages API expects."""
        return [t.schema() for t in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        user_id: str | None = None,
    ) -> ToolResult:
        """Run ``name`` with LLM-supplied ``arguments``. Never raises."""
        tool_def = self._tools.get(name)
        if tool_def is None:
            return ToolResult(error=f"Unknown tool: {name}")

        # A user_id coming from the model is ignored; only the caller's counts.
        arguments = {k: v for k, v in (arguments or {}).items() if k != "user_id"}
        logger.info("Tool '%s' [%s] called with %s", name, tool_def.category, arguments)

        try:
            kwargs = _bind(tool_def, arguments)
        except ValidationError as exc:
            logger.warning("Tool '%s' got invalid arguments: %s", name, exc)
            return ToolResult(error=f"Invalid arguments for {name}: {_first_error(exc)}")

        if tool_def.user_scoped:
            if not user_id:
                return ToolResult(error=f"Tool '{name}' requires a user id")
            kwargs["user_id"] = user_id

        started = time.monotonic()
        try:
            result = await tool_def.handler(**kwargs)
        except Exception as exc:
            logger.exception("Tool '%s' raised after %.2fs", name, time.monotonic() - started)
            return ToolResult(error=str(exc) or f"Tool '{name}' failed.")

        elapsed = time.monotonic() - started
        if result.success:
            logger.info("Tool '%s' ok in %.2fs", name, elapsed)
        else:
            logger.warning("Tool '%s' error in %.2fs: %s", name, elapsed, result.error)
        return result


def _bind(tool_def: ToolDef, arguments: dict[str, Any]) -> dict[str, Any]:
    if tool_def.params_model is None:
        return dict(arguments)
    return tool_def.params_model(**arguments).model_dump()


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))


def _is_primitive(annotation: Any) -> bool:
    if annotation in _PRIMITIVES or annotation is type(None):
        return True
    if get_origin(annotation) in (Union, types.UnionType):
        return all(_is_primitive(a) for a in get_args(annotation))
    return False


def _check_flat(name: str, params_model: type[ToolParams]) -> None:
    for field_name, info in params_model.model_fields.items():
        annotation = info.annotation
        if get_origin(annotation) in (Union, types.UnionType):
            args = [a for a in get_args(annotation) if a is not type(None)]
            annotation = args[0] if len(args) == 1 else annotation
        if get_origin(annotation) is list:
            ok = all(_is_primitive(a) for a in get_args(annotation))
        else:
            ok = _is_primitive(annotation)
        if not ok:
            msg = f"Tool '{name}' parameter '{field_name}' must be a primitive or list of primitives"
            raise TypeError(msg)


registry = ToolRegistry()
