from __future__ import annotations

import functools
import os
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from ...config import Settings, load_settings
from ...domain.models import ChatSession, iso_from_epoch
from ...errors import NotFound, TransportFailure, ValidationFailure, VersionConflict
from ...logging import get_logger
from ...paths import find_project_root
from ..cache import TTLCache
from ..db import ChecklistDatabase
from ..extraction import ChecklistModel, ModelConfig, OpenAIChecklistModel
from ..parser import parse_image_urls
from ..service import ChecklistExtractionService, lookup_checklist, render_checklist_text, summarize_items
from ..streaming import encode_fragment, encode_stream


LOG = get_logger("checklist-frontend")

DEFAULT_STATIC_SUBDIR = os.path.join("frontend", "dist")
INTERNAL_ERROR = "Internal server error"

Endpoint = Callable[[Request], Awaitable[Response]]


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _guarded(action: str) -> Callable[[Endpoint], Endpoint]:
    """Map failures to the public error contract.

    Version conflicts become 409; every other failure is logged and
    flattened to a generic 500 so no internal detail reaches the client.
    Handlers answer their own 404s.
    """

    def wrap(endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def run(request: Request) -> Response:
            try:
                return await endpoint(request)
            except VersionConflict as exc:
                LOG.warning("Rejected stale save while trying to %s: %s", action, exc)
                return _error("Chat session was modified by another client", 409)
            except Exception:
                LOG.exception("Error while trying to %s", action)
                return _error(INTERNAL_ERROR, 500)

        return run

    return wrap


async def _json_object(request: Request) -> dict:
    body = await request.json()
    if not isinstance(body, dict):
        raise ValidationFailure("request body must be a JSON object")
    return body


def create_app(
    root_dir: Optional[str] = None,
    *,
    db: Optional[ChecklistDatabase] = None,
    model: Optional[ChecklistModel] = None,
    cache: Optional[TTLCache] = None,
    clock: Callable[[], float] = time.time,
    settings: Optional[Settings] = None,
    static_dir: Optional[str] = None,
    allow_origins: Optional[List[str]] = None,
    serve_static: bool = False,
) -> Starlette:
    """Create a Starlette app exposing the chat-session and checklist API.

    Collaborators can be injected for tests; otherwise they are built from
    the project root and environment. The model client is created on first
    use so the session endpoints work without an API key.
    """

    project_root = find_project_root(root_dir)
    settings = settings or load_settings(project_root)
    if db is None:
        db = ChecklistDatabase(root_dir=project_root, db_path=settings.db_path, clock=clock)
    if cache is None:
        cache = TTLCache(clock=clock)
    service_holder: dict = {}

    def get_service() -> ChecklistExtractionService:
        svc = service_holder.get("service")
        if svc is None:
            chat_model = model if model is not None else OpenAIChecklistModel(ModelConfig.from_settings(settings))
            svc = ChecklistExtractionService(chat_model, cache, db, clock=clock)
            service_holder["service"] = svc
        return svc

    def now_parts() -> tuple:
        epoch = clock()
        return iso_from_epoch(epoch), datetime.fromtimestamp(epoch, tz=timezone.utc).date()

    resolved_static_dir: Optional[str] = None
    if serve_static:
        candidate = os.path.abspath(os.path.join(project_root, static_dir or DEFAULT_STATIC_SUBDIR))
        if os.path.isdir(candidate):
            resolved_static_dir = candidate
            LOG.info("Serving static frontend from %s", resolved_static_dir)
        else:
            LOG.warning("Frontend build not found at %s; API will run without static assets.", candidate)

    async def health(_: Request) -> JSONResponse:
        return JSONResponse({"status": "ok", "db_path": db.db_path})

    # ---------- chat sessions ----------
    @_guarded("fetch chat sessions")
    async def list_sessions(_: Request) -> Response:
        return JSONResponse([s.to_dict() for s in db.list_sessions()])

    @_guarded("save chat session")
    async def save_session(request: Request) -> Response:
        now, today = now_parts()
        session = ChatSession.from_dict(await _json_object(request), now=now, today=today)
        stored = db.upsert_session(session)
        return JSONResponse({"success": True, "version": stored.version})

    @_guarded("clear chat sessions")
    async def clear_sessions(_: Request) -> Response:
        db.delete_all_sessions()
        return JSONResponse({"success": True})

    @_guarded("fetch chat session")
    async def get_session(request: Request) -> Response:
        try:
            session = db.get_session(request.path_params["session_id"])
        except NotFound:
            return _error("Chat session not found", 404)
        return JSONResponse(session.to_dict())

    @_guarded("update chat session")
    async def update_session(request: Request) -> Response:
        body = await _json_object(request)
        body["id"] = request.path_params["session_id"]
        now, today = now_parts()
        stored = db.upsert_session(ChatSession.from_dict(body, now=now, today=today))
        return JSONResponse({"success": True, "version": stored.version})

    @_guarded("delete chat session")
    async def delete_session(request: Request) -> Response:
        db.delete_session(request.path_params["session_id"])
        return JSONResponse({"success": True})

    # ---------- chat + extraction ----------
    @_guarded("answer chat request")
    async def chat(request: Request) -> Response:
        body = await _json_object(request)
        image_urls = parse_image_urls(body.get("imageUrls"))
        svc = get_service()

        if image_urls:
            result = await run_in_threadpool(svc.extract, image_urls)
            payload: dict[str, Any] = result.to_dict()
            payload["summary"] = summarize_items(result.items)
            return JSONResponse(payload)

        fragments = await run_in_threadpool(svc.stream_chat, body.get("messages"))
        # Pull the first fragment here so upstream failures still map to a 500.
        first = await run_in_threadpool(next, fragments, None)

        def body_lines():
            if first is None:
                return
            yield encode_fragment(first)
            try:
                yield from encode_stream(fragments)
            except TransportFailure:
                LOG.error("Chat stream ended early; response truncated")

        return StreamingResponse(body_lines(), media_type="text/plain; charset=utf-8")

    # ---------- shared checklists ----------
    @_guarded("fetch checklist")
    async def get_checklist(request: Request) -> Response:
        try:
            checklist = lookup_checklist(cache, db, request.path_params["checklist_id"])
        except NotFound:
            return _error("Checklist not found or expired", 404)
        return JSONResponse(checklist.to_dict())

    @_guarded("export checklist")
    async def export_checklist(request: Request) -> Response:
        checklist_id = request.path_params["checklist_id"]
        try:
            checklist = lookup_checklist(cache, db, checklist_id)
        except NotFound:
            return _error("Checklist not found or expired", 404)
        return PlainTextResponse(
            render_checklist_text(checklist),
            headers={"Content-Disposition": f'attachment; filename="checklist-{checklist_id}.txt"'},
        )

    api_routes = [
        Route("/health", health, methods=["GET"]),
        Route("/chat-sessions", list_sessions, methods=["GET"]),
        Route("/chat-sessions", save_session, methods=["POST"]),
        Route("/chat-sessions", clear_sessions, methods=["DELETE"]),
        Route("/chat-sessions/{session_id:str}", get_session, methods=["GET"]),
        Route("/chat-sessions/{session_id:str}", update_session, methods=["PUT"]),
        Route("/chat-sessions/{session_id:str}", delete_session, methods=["DELETE"]),
        Route("/chat", chat, methods=["POST"]),
        Route("/checklist/{checklist_id:str}", get_checklist, methods=["GET"]),
        Route("/checklist/{checklist_id:str}/text", export_checklist, methods=["GET"]),
    ]
    routes = [Mount("/api", routes=api_routes), *api_routes]

    app = Starlette(debug=False, routes=routes)
    app.state.db = db
    app.state.cache = cache

    origins = allow_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if "*" in origins else origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if resolved_static_dir:
        app.mount("/", StaticFiles(directory=resolved_static_dir, html=True), name="frontend")

    return app


__all__ = ["create_app"]
