"""Client-facing HTTP surface.

Transport authentication happens upstream; the authenticated family id
arrives in the ``X-Family-Id`` header.  Engine failures map to their status
with body ``{error, cause, requiresSubscription?, feature?}``.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from aiohttp import web

from sprout.config import settings
from sprout.results import Failure

if TYPE_CHECKING:
    from sprout.engine.realtime import RealtimeEventRouter
    from sprout.engine.turn import SessionEngine
    from sprout.results import Result

logger = logging.getLogger(__name__)

FAMILY_HEADER = "X-Family-Id"

ENGINE_KEY: web.AppKey[SessionEngine] = web.AppKey("engine")
ROUTER_KEY: web.AppKey[RealtimeEventRouter] = web.AppKey("realtime_router")


def _error(message: str, cause: str, status: int) -> web.Response:
    return web.json_response({"error": message, "cause": cause}, status=status)


def _family_id(request: web.Request) -> str | None:
    return request.headers.get(FAMILY_HEADER, "").strip() or None


def _respond(result: Result[Any], render) -> web.Response:  # noqa: ANN001
    if isinstance(result, Failure):
        return web.json_response(result.to_dict(), status=result.status or 500)
    return web.json_response(render(result.value))


async def _json_body(request: web.Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def _history(raw: Any) -> list[dict[str, Any]] | None:
    """Accept a list or a JSON-encoded list; None when malformed."""
    if raw in (None, ""):
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return None
    if not isinstance(raw, list):
        return None
    return [entry for entry in raw if isinstance(entry, dict)]


def _int_param(value: Any, default: int) -> int | None:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# -- Handlers --------------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok"})


async def _chat(request: web.Request) -> web.Response:
    """POST /api/chat: ``{childId, message, history?}``."""
    family_id = _family_id(request)
    if family_id is None:
        return _error("unauthorized", "unauthorized", 401)
    body = await _json_body(request)
    if body is None:
        return _error("invalid JSON", "invalid_payload", 400)
    child_id = body.get("childId") or body.get("child_id")
    message = body.get("message")
    history = _history(body.get("history"))
    if not child_id or not isinstance(message, str) or history is None:
        return _error("childId and message are required", "invalid_payload", 400)

    engine = request.app[ENGINE_KEY]
    result = await engine.process_turn(family_id, child_id, message, history)
    return _respond(result, lambda reply: reply.to_dict())


async def _voice(request: web.Request) -> web.Response:
    """POST /api/chat/voice: multipart form.

    Fields: ``audio`` (file), ``childId``, ``history`` (JSON list, optional),
    ``sessionId`` (optional client correlation id).
    """
    family_id = _family_id(request)
    if family_id is None:
        return _error("unauthorized", "unauthorized", 401)
    try:
        form = await request.post()
    except ValueError:
        return _error("expected multipart form data", "invalid_payload", 400)

    child_id = form.get("childId")
    upload = form.get("audio")
    history = _history(form.get("history"))
    if not isinstance(child_id, str) or not child_id or history is None:
        return _error("childId is required", "invalid_payload", 400)
    if not isinstance(upload, web.FileField):
        return _error("audio file is required", "invalid_payload", 400)
    audio = upload.file.read()
    session_id = form.get("sessionId")

    engine = request.app[ENGINE_KEY]
    result = await engine.process_voice_turn(
        family_id,
        child_id,
        audio,
        history,
        session_id if isinstance(session_id, str) and session_id else None,
    )
    return _respond(result, lambda reply: reply.to_dict())


async def _realtime(request: web.Request) -> web.Response:
    """POST /api/chat/realtime: ``{event, childId, data?}``."""
    family_id = _family_id(request)
    if family_id is None:
        return _error("unauthorized", "unauthorized", 401)
    body = await _json_body(request)
    if body is None:
        return _error("invalid JSON", "invalid_payload", 400)
    event = body.get("event")
    child_id = body.get("childId") or body.get("child_id")
    data = body.get("data") or {}
    if not isinstance(event, str) or not child_id or not isinstance(data, dict):
        return _error("event and childId are required", "invalid_payload", 400)

    router = request.app[ROUTER_KEY]
    result = await router.dispatch(family_id, child_id, event, data)
    return _respond(result, lambda value: {"event": event, **value})


async def _sessions(request: web.Request) -> web.Response:
    """GET /api/chat/sessions?childId=&page=&pageSize="""
    family_id = _family_id(request)
    if family_id is None:
        return _error("unauthorized", "unauthorized", 401)
    child_id = request.query.get("childId")
    page = _int_param(request.query.get("page"), 1)
    page_size = _int_param(request.query.get("pageSize"), 5)
    if not child_id or page is None or page_size is None:
        return _error(
            "childId is required; page and pageSize must be integers", "invalid_payload", 400
        )

    engine = request.app[ENGINE_KEY]
    result = await engine.list_sessions(family_id, child_id, page, page_size)
    return _respond(result, lambda listing: listing.to_dict())


async def _complete(request: web.Request) -> web.Response:
    """POST /api/chat/sessions/complete: ``{childId, sessionDuration?}``."""
    family_id = _family_id(request)
    if family_id is None:
        return _error("unauthorized", "unauthorized", 401)
    body = await _json_body(request)
    if body is None:
        return _error("invalid JSON", "invalid_payload", 400)
    child_id = body.get("childId") or body.get("child_id")
    if not child_id:
        return _error("childId is required", "invalid_payload", 400)
    duration: int | None = None
    if body.get("sessionDuration") not in (None, ""):
        duration = _int_param(body["sessionDuration"], 0)
        if duration is None or duration < 0:
            return _error("sessionDuration must be whole minutes", "invalid_payload", 400)

    engine = request.app[ENGINE_KEY]
    result = await engine.complete_session(family_id, child_id, duration)
    return _respond(
        result,
        lambda session: {"ok": True, "sessionId": session.id if session else None},
    )


async def _child_context(request: web.Request) -> web.Response:
    """GET /api/chat/child-context?childId="""
    family_id = _family_id(request)
    if family_id is None:
        return _error("unauthorized", "unauthorized", 401)
    child_id = request.query.get("childId")
    if not child_id:
        return _error("childId is required", "invalid_payload", 400)

    engine = request.app[ENGINE_KEY]
    result = await engine.child_context(family_id, child_id)
    return _respond(result, lambda context: context)


def create_app(engine: SessionEngine, router: RealtimeEventRouter) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(client_max_size=25 * 1024 * 1024)
    app[ENGINE_KEY] = engine
    app[ROUTER_KEY] = router
    app.router.add_get("/health", _health)
    app.router.add_post("/api/chat", _chat)
    app.router.add_post("/api/chat/voice", _voice)
    app.router.add_post("/api/chat/realtime", _realtime)
    app.router.add_get("/api/chat/sessions", _sessions)
    app.router.add_post("/api/chat/sessions/complete", _complete)
    app.router.add_get("/api/chat/child-context", _child_context)
    return app


class ApiServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        engine: SessionEngine,
        router: RealtimeEventRouter,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.host = host or settings.server_host
        self.port = port or settings.server_port
        self._app = create_app(engine, router)
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("API server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("API server stopped")
