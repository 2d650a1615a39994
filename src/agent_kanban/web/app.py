"""Starlette app with route assembly, error mapping and lifespan."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from ..config import Config
from ..executor import ExecutorError
from ..orchestrator import (
	ConflictError,
	InvalidStateError,
	NotFoundError,
	NoWorkspaceError,
	PreviewNotConfiguredError,
	ResourceExhaustedError,
)
from ..state import AppState
from ..worktree import MergeConflictError, WorktreeError
from . import api, ws

logger = logging.getLogger(__name__)


def _error(status: int, message: str, **extra) -> JSONResponse:
	return JSONResponse({"error": message, **extra}, status_code=status)


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
	return _error(404, str(exc))


async def _conflict(request: Request, exc: Exception) -> JSONResponse:
	extra = {}
	if isinstance(exc, InvalidStateError) and exc.actual is not None:
		extra["status"] = exc.actual
	return _error(409, str(exc), **extra)


async def _merge_conflict(request: Request, exc: Exception) -> JSONResponse:
	return _error(409, "Merge conflict: resolve it on the branch and merge again", details=str(exc))


async def _exhausted(request: Request, exc: Exception) -> JSONResponse:
	return _error(503, str(exc))


async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
	return _error(400, str(exc))


async def _tool_failure(request: Request, exc: Exception) -> JSONResponse:
	# Full details go to the log, callers get a generic message
	logger.error(f"{request.method} {request.url.path} failed: {exc}")
	return _error(500, f"{type(exc).__name__}: external tool failure, see server log")


EXCEPTION_HANDLERS = {
	NotFoundError: _not_found,
	ConflictError: _conflict,
	MergeConflictError: _merge_conflict,
	ResourceExhaustedError: _exhausted,
	NoWorkspaceError: _bad_request,
	PreviewNotConfiguredError: _bad_request,
	ValueError: _bad_request,
	WorktreeError: _tool_failure,
	ExecutorError: _tool_failure,
}


def build_app(config: Optional[Config] = None, state: Optional[AppState] = None) -> Starlette:
	"""Build and return the Starlette ASGI app."""
	app_state = state or AppState(config)

	@asynccontextmanager
	async def lifespan(app: Starlette):
		await app_state.startup()
		try:
			yield
		finally:
			await app_state.shutdown()

	routes = [
		Route("/api/health", api.health),
		Route("/api/server/info", api.server_info),
		# Tasks
		Route("/api/tasks", api.list_tasks, methods=["GET"]),
		Route("/api/tasks", api.create_task, methods=["POST"]),
		Route("/api/tasks/{id}", api.get_task, methods=["GET"]),
		Route("/api/tasks/{id}", api.update_task, methods=["PATCH", "PUT"]),
		Route("/api/tasks/{id}", api.delete_task, methods=["DELETE"]),
		Route("/api/tasks/{id}/start", api.start_task, methods=["POST"]),
		Route("/api/tasks/{id}/cancel", api.cancel_task, methods=["POST"]),
		Route("/api/tasks/{id}/complete", api.complete_task, methods=["POST"]),
		Route("/api/tasks/{id}/merge", api.merge_task, methods=["POST"]),
		Route("/api/tasks/{id}/diff", api.task_diff, methods=["GET"]),
		Route("/api/tasks/{id}/preview", api.start_preview, methods=["POST"]),
		Route("/api/tasks/{id}/preview", api.preview_status, methods=["GET"]),
		Route("/api/tasks/{id}/preview", api.stop_preview, methods=["DELETE"]),
		# Plan sessions
		Route("/api/plan/start", api.start_plan, methods=["POST"]),
		Route("/api/plan/sessions", api.list_plans, methods=["GET"]),
		Route("/api/plan/{id}", api.get_plan, methods=["GET"]),
		Route("/api/plan/{id}", api.cancel_plan, methods=["DELETE"]),
		Route("/api/plan/{id}/answer", api.answer_plan, methods=["POST"]),
		Route("/api/plan/{id}/execute", api.execute_plan, methods=["POST"]),
		Route("/api/plan/{id}/redo", api.redo_plan, methods=["POST"]),
		Route("/api/plan/{id}/resume", api.resume_plan, methods=["POST"]),
		# Chat
		Route("/api/chat/history", api.chat_history, methods=["GET"]),
		Route("/api/chat/history", api.clear_chat, methods=["DELETE"]),
		Route("/api/chat/message", api.send_chat, methods=["POST"]),
		WebSocketRoute("/api/ws", ws.websocket_endpoint),
	]

	app = Starlette(routes=routes, exception_handlers=EXCEPTION_HANDLERS, lifespan=lifespan)
	app.state.app_state = app_state
	return app
