"""HTTP API for the chat client.

Routes::

    POST   /api/chat       {userId, conversationId?, message}
    POST   /api/history    {userId, conversationId?}
    DELETE /api/history    {userId, conversationId?, clearAll?}
    GET    /api/feedback   ?userId=
    POST   /api/feedback   {userId, itemType, itemId, rating}
    GET    /health

Requests are validated before anything is written. Uses aiohttp's
AppRunner/TCPSite for non-blocking start/stop.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from src.chat.service import ChatService
from src.config import ConfigurationError, settings
from src.history.store import ConversationNotFoundError, InvalidFeedbackError
from src.integrations.http import RequestTimeoutError

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, something went wrong on my side. Please try again in a moment."

SERVICE_KEY = web.AppKey("chat_service", ChatService)


# -- Request models ----------------------------------------------------------


class _Request(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    user_id: str = Field(min_length=1)


class ChatRequest(_Request):
    conversation_id: str | None = None
    message: str = Field(min_length=1)


class HistoryRequest(_Request):
    conversation_id: str | None = None


class ClearRequest(HistoryRequest):
    clear_all: bool = False


class FeedbackRequest(_Request):
    item_type: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    rating: Literal[1, -1]


class FeedbackQuery(_Request):
    pass


# -- Error handling ----------------------------------------------------------


def _error(status: int, error: str, error_type: str, **extra: Any) -> web.Response:
    return web.json_response({"error": error, "errorType": error_type, **extra}, status=status)


def _apology(status: int, error_type: str) -> web.Response:
    return _error(
        status,
        APOLOGY,
        error_type,
        assistantMessage={"message": APOLOGY, "reasoning": None, "movies": [], "songs": []},
    )


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as exc:
        details = [
            {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
            for e in exc.errors()
        ]
        return _error(400, "Invalid request", "validation", details=details)
    except InvalidFeedbackError as exc:
        return _error(400, str(exc), "validation")
    except ConversationNotFoundError as exc:
        return _error(404, str(exc), "not_found")
    except ConfigurationError:
        logger.exception("Configuration error handling %s", request.path)
        return _apology(500, "configuration")
    except RequestTimeoutError:
        logger.exception("Upstream timeout handling %s", request.path)
        return _apology(504, "timeout")
    except Exception:
        logger.exception("Unhandled error handling %s", request.path)
        return _apology(500, "internal")


async def _body(request: web.Request) -> dict[str, Any]:
    if not request.can_read_body:
        return dict(request.query)
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "invalid JSON", "errorType": "validation"}),
            content_type="application/json",
        ) from exc
    if not isinstance(payload, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "expected a JSON object", "errorType": "validation"}),
            content_type="application/json",
        )
    return payload


# -- Handlers ----------------------------------------------------------------


async def _chat(request: web.Request) -> web.Response:
    """POST /api/chat: Run one conversational turn."""
    body = ChatRequest.model_validate(await _body(request))
    reply = await request.app[SERVICE_KEY].send_message(
        body.user_id, body.conversation_id, body.message
    )
    return web.json_response(reply.to_dict())


async def _history(request: web.Request) -> web.Response:
    """POST /api/history: Replay a transcript."""
    body = HistoryRequest.model_validate(await _body(request))
    result = await request.app[SERVICE_KEY].get_history(body.user_id, body.conversation_id)
    return web.json_response(result)


async def _clear_history(request: web.Request) -> web.Response:
    """DELETE /api/history: Clear one conversation or everything."""
    body = ClearRequest.model_validate(await _body(request))
    result = await request.app[SERVICE_KEY].clear(
        body.user_id, body.conversation_id, clear_all=body.clear_all
    )
    return web.json_response(result)


async def _get_feedback(request: web.Request) -> web.Response:
    """GET /api/feedback?userId=: List ratings."""
    query = FeedbackQuery.model_validate(dict(request.query))
    return web.json_response(await request.app[SERVICE_KEY].get_feedback(query.user_id))


async def _toggle_feedback(request: web.Request) -> web.Response:
    """POST /api/feedback: Toggle a thumbs up/down."""
    body = FeedbackRequest.model_validate(await _body(request))
    result = await request.app[SERVICE_KEY].toggle_feedback(
        body.user_id, body.item_type, body.item_id, body.rating
    )
    return web.json_response(result)


async def _health(request: web.Request) -> web.Response:
    """GET /health: Basic liveness check."""
    return web.json_response({"status": "ok"})


def _create_web_app(service: ChatService | None = None) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_error_middleware])
    app[SERVICE_KEY] = service or ChatService()
    app.router.add_get("/health", _health)
    app.router.add_post("/api/chat", _chat)
    app.router.add_post("/api/history", _history)
    app.router.add_delete("/api/history", _clear_history)
    app.router.add_get("/api/feedback", _get_feedback)
    app.router.add_post("/api/feedback", _toggle_feedback)
    return app


class ChatServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, host: str | None = None, port: int | None = None) -> None:
        self.host = host or settings.server_host
        self.port = port or settings.server_port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        app = _create_web_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Chat API listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Chat API stopped")
