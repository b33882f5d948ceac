"""HTTP application for the Markpad editor."""

from __future__ import annotations

import logging
import math
import os
import signal
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

import anyio
import uvicorn
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from markpad import __version__
from markpad.admission import (
    AccessPolicy,
    AdmissionDecision,
    DenyReason,
    Intent,
    evaluate,
    sanitize_content,
    validate_content_size,
    validate_path_input,
)
from markpad.audit import log_security_event
from markpad.config import MarkpadConfig
from markpad.ratelimit import RateLimiter

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1024 * 1024
MAX_SCAN_DEPTH = 5

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net",
        "style-src 'self' 'unsafe-inline'",
        "img-src 'self' data:",
    ]
)
SECURITY_HEADERS = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "0",
    "Referrer-Policy": "no-referrer",
}


class FileReadRequest(BaseModel):
    """Body of ``POST /api/file/read``."""

    model_config = ConfigDict(extra="ignore")

    file_path: Any = Field(default=None, alias="filePath")


class FileSaveRequest(FileReadRequest):
    """Body of ``POST /api/file/save``."""

    content: Any = None


@dataclass
class AppState:
    """Per-process counters reported by ``/api/info``."""

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    request_count: int = 0
    last_request_time: float = field(default_factory=time.time)


@dataclass
class ServerContext:
    """Everything the route handlers need, attached to ``app.state``."""

    config: MarkpadConfig
    policy: AccessPolicy
    limiter: RateLimiter
    state: AppState = field(default_factory=AppState)


def _context(request: Request) -> ServerContext:
    return request.app.state.markpad


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


ModelT = TypeVar("ModelT", bound=BaseModel)


async def _parse_body(request: Request, model: type[ModelT]) -> ModelT:
    body = await request.body()
    if len(body) > MAX_BODY_BYTES:
        raise HTTPException(status_code=413, detail="Request entity too large")
    try:
        return model.model_validate_json(body or b"{}")
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid request body") from exc


def _denial_response(decision: AdmissionDecision, failure_message: str) -> JSONResponse:
    if decision.reason is DenyReason.VALIDATION_ERROR:
        log_security_event("Path validation error", error=decision.cause)
        return _error(500, failure_message)
    log_security_event(
        "Invalid file path access attempt",
        error=decision.message,
        reason=decision.reason.value if decision.reason else None,
    )
    return _error(403, "Access denied")


async def _admit(file_path: str, policy: AccessPolicy, intent: Intent) -> AdmissionDecision:
    return await anyio.to_thread.run_sync(evaluate, file_path, policy, intent)


async def health(_: Request) -> JSONResponse:
    return JSONResponse(
        {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
    )


async def read_file(request: Request) -> JSONResponse:
    context = _context(request)
    body = await _parse_body(request, FileReadRequest)

    file_path = validate_path_input(body.file_path)
    if file_path is None:
        return _error(400, "Invalid file path format")

    decision = await _admit(file_path, context.policy, Intent.READ)
    if not decision.allowed:
        return _denial_response(decision, "Failed to read file")
    target = decision.path or file_path

    if not await anyio.to_thread.run_sync(os.access, target, os.R_OK):
        return _error(403, "File is not readable")

    try:
        raw = await anyio.Path(target).read_bytes()
        content = raw.decode("utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        log_security_event("File read error", error=type(exc).__name__)
        return _error(500, "Failed to read file")

    return JSONResponse(
        {
            "content": sanitize_content(content),
            "name": os.path.basename(target),
            "path": target,
        }
    )


async def save_file(request: Request) -> JSONResponse:
    context = _context(request)
    body = await _parse_body(request, FileSaveRequest)

    file_path = validate_path_input(body.file_path)
    if file_path is None:
        return _error(400, "Invalid file path format")

    decision = await _admit(file_path, context.policy, Intent.WRITE)
    if not decision.allowed:
        return _denial_response(decision, "Failed to save file")
    target = decision.path or file_path

    if not isinstance(body.content, str):
        return _error(400, "Content must be a string")

    content = sanitize_content(body.content)
    size_check = validate_content_size(content, context.policy.max_file_size)
    if not size_check.allowed:
        return _error(400, size_check.cause or size_check.message)

    if not await anyio.to_thread.run_sync(os.access, target, os.W_OK):
        return _error(403, "File is not writable")

    try:
        await anyio.Path(target).write_bytes(content.encode("utf-8"))
    except OSError as exc:
        log_security_event("File save error", error=type(exc).__name__)
        return _error(500, "Failed to save file")

    return JSONResponse(
        {"success": True, "message": "File saved successfully", "path": target}
    )


def scan_allowed_files(
    policy: AccessPolicy, max_depth: int = MAX_SCAN_DEPTH
) -> list[dict[str, Any]]:
    """Collect editable files under every allowed directory, sorted by path."""
    found: dict[str, dict[str, Any]] = {}

    def scan(dir_path: str, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            with os.scandir(dir_path) as iterator:
                entries = list(iterator)
        except OSError:
            logger.debug("Skipping unreadable directory")
            return

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    scan(entry.path, depth + 1)
                elif entry.is_file(follow_symlinks=False):
                    _, ext = os.path.splitext(entry.name)
                    if ext[1:].lower() in policy.allowed_extensions:
                        found[entry.path] = {
                            "path": entry.path,
                            "name": entry.name,
                            "isDir": False,
                        }
            except OSError:
                continue

    for directory in policy.allowed_directories:
        scan(directory, 0)

    return [found[path] for path in sorted(found)]


async def list_files(request: Request) -> JSONResponse:
    context = _context(request)
    files = await anyio.to_thread.run_sync(scan_allowed_files, context.policy)
    return JSONResponse({"files": files})


async def info(request: Request) -> JSONResponse:
    context = _context(request)
    return JSONResponse(
        {
            "version": __version__,
            "environment": context.config.environment,
            "sessionId": context.state.session_id,
            "requestCount": context.state.request_count,
        }
    )


async def _security_headers(request: Request, call_next: RequestResponseEndpoint) -> Response:
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if not _context(request).config.enable_cors:
        response.headers["Access-Control-Allow-Origin"] = ""
    return response


async def _rate_limit(request: Request, call_next: RequestResponseEndpoint) -> Response:
    client = request.client.host if request.client else "unknown"
    if not _context(request).limiter.hit(client):
        log_security_event("Rate limit exceeded", ip=client)
        return _error(429, "Too many requests")
    return await call_next(request)


async def _count_requests(request: Request, call_next: RequestResponseEndpoint) -> Response:
    state = _context(request).state
    state.request_count += 1
    state.last_request_time = time.time()
    logger.info("[%s] %s", request.method, request.url.path)
    return await call_next(request)


async def _http_error(_: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, HTTPException)
    if exc.status_code == 404:
        return _error(404, "Not found")
    return _error(exc.status_code, str(exc.detail))


async def _internal_error(_: Request, exc: Exception) -> JSONResponse:
    log_security_event("Unhandled error", error=type(exc).__name__)
    return _error(500, "Internal server error")


def build_app(config: MarkpadConfig, policy: AccessPolicy) -> Starlette:
    """Create the Starlette application bound to ``policy``."""
    routes: list[Route | Mount] = [
        Route("/api/health", endpoint=health, methods=["GET"]),
        Route("/api/file/read", endpoint=read_file, methods=["POST"]),
        Route("/api/file/save", endpoint=save_file, methods=["POST"]),
        Route("/api/files/list", endpoint=list_files, methods=["GET"]),
        Route("/api/info", endpoint=info, methods=["GET"]),
    ]
    if config.static_dir.is_dir():
        routes.append(Mount("/", app=StaticFiles(directory=config.static_dir, html=True)))

    middleware = [
        Middleware(BaseHTTPMiddleware, dispatch=_security_headers),
        Middleware(BaseHTTPMiddleware, dispatch=_rate_limit),
        Middleware(BaseHTTPMiddleware, dispatch=_count_requests),
    ]
    if config.enable_cors:
        middleware.insert(1, Middleware(CORSMiddleware, allow_origins=["*"]))

    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={HTTPException: _http_error, Exception: _internal_error},
    )
    app.state.markpad = ServerContext(
        config=config,
        policy=policy,
        limiter=RateLimiter(config.rate_limit_max_requests, config.rate_limit_window),
    )
    return app


def _note_signal(signum: int, _frame: object) -> None:
    logger.info("%s received, shutting down gracefully", signal.Signals(signum).name)


def serve(app: Starlette, sock: socket.socket, config: MarkpadConfig) -> None:
    """Serve ``app`` on an already-listening socket until a stop signal.

    Open connections get ``shutdown_grace_seconds`` to drain before they
    are cancelled.
    """
    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _note_signal)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            log_config=None,
            timeout_graceful_shutdown=math.ceil(config.shutdown_grace_seconds),
        )
    )
    server.run(sockets=[sock])
