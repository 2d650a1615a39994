"""JSON API endpoints for tasks, plan sessions, chat and previews.

Handlers raise the orchestration errors directly; app.py maps them to
HTTP status codes.
"""

from __future__ import annotations

import shutil
from typing import Any

from pydantic import BaseModel, Field
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .. import __version__
from ..orchestrator import PlanAnswer
from ..state import AppState


def get_state(request: Request) -> AppState:
	"""Get the AppState from app state."""
	return request.app.state.app_state


async def _body(request: Request) -> dict[str, Any]:
	body = await request.body()
	if not body:
		return {}
	data = await request.json()
	if not isinstance(data, dict):
		raise ValueError("Request body must be a JSON object")
	return data


def _task_json(state: AppState, task) -> dict[str, Any]:
	return {**task.model_dump(mode="json"), "running": state.tasks.is_running(task.id)}


class CreateTaskRequest(BaseModel):
	title: str
	description: str | None = None


class UpdateTaskRequest(BaseModel):
	title: str | None = None
	description: str | None = None


class StartPlanRequest(BaseModel):
	title: str = ""
	prompt: str
	ask_questions: bool = True


class AnswerPlanRequest(BaseModel):
	answers: list[PlanAnswer] = Field(default_factory=list)


class ExecutePlanRequest(BaseModel):
	title: str | None = None
	description: str | None = None


class SendMessageRequest(BaseModel):
	content: str
	image: str | None = None


# =============================================================================
# Server
# =============================================================================

async def health(request: Request) -> JSONResponse:
	return JSONResponse({"status": "ok"})


async def server_info(request: Request) -> JSONResponse:
	"""Version, project and agent availability."""
	state = get_state(request)
	return JSONResponse({
		"version": __version__,
		"project_path": str(state.project_path),
		"is_git_repo": await state.tasks.workspaces().is_git_repo(),
		"main_branch": state.config.main_branch,
		"agent_binary": state.config.agent_binary,
		"agent_found": shutil.which(state.config.agent_binary) is not None,
		"preview_enabled": state.previews.enabled,
		"running_tasks": state.tasks.running_task_ids(),
	})


# =============================================================================
# Tasks
# =============================================================================

async def list_tasks(request: Request) -> JSONResponse:
	state = get_state(request)
	tasks = await state.tasks.list_tasks()
	status = request.query_params.get("status")
	if status:
		tasks = [t for t in tasks if t.status.value == status]
	return JSONResponse([_task_json(state, t) for t in tasks])


async def create_task(request: Request) -> JSONResponse:
	state = get_state(request)
	req = CreateTaskRequest.model_validate(await _body(request))
	task = await state.tasks.create(req.title, req.description)
	return JSONResponse(_task_json(state, task), status_code=201)


async def get_task(request: Request) -> JSONResponse:
	state = get_state(request)
	task = await state.tasks.get(request.path_params["id"])
	return JSONResponse(_task_json(state, task))


async def update_task(request: Request) -> JSONResponse:
	state = get_state(request)
	req = UpdateTaskRequest.model_validate(await _body(request))
	task = await state.tasks.update(request.path_params["id"], req.title, req.description)
	return JSONResponse(_task_json(state, task))


async def delete_task(request: Request) -> Response:
	state = get_state(request)
	await state.tasks.delete(request.path_params["id"])
	return Response(status_code=204)


async def start_task(request: Request) -> JSONResponse:
	state = get_state(request)
	task = await state.tasks.start(request.path_params["id"])
	return JSONResponse(_task_json(state, task))


async def cancel_task(request: Request) -> JSONResponse:
	state = get_state(request)
	task = await state.tasks.cancel(request.path_params["id"])
	return JSONResponse(_task_json(state, task))


async def complete_task(request: Request) -> JSONResponse:
	state = get_state(request)
	task = await state.tasks.complete(request.path_params["id"])
	return JSONResponse(_task_json(state, task))


async def merge_task(request: Request) -> JSONResponse:
	state = get_state(request)
	task = await state.tasks.merge(request.path_params["id"])
	return JSONResponse(_task_json(state, task))


async def task_diff(request: Request) -> JSONResponse:
	state = get_state(request)
	diff = await state.tasks.diff(request.path_params["id"])
	return JSONResponse(diff.model_dump(mode="json"))


# =============================================================================
# Previews
# =============================================================================

async def start_preview(request: Request) -> JSONResponse:
	state = get_state(request)
	task = await state.tasks.get(request.path_params["id"])
	info = await state.previews.start(task)
	return JSONResponse(info.model_dump(mode="json"), status_code=201)


async def preview_status(request: Request) -> JSONResponse:
	state = get_state(request)
	info = state.previews.status(request.path_params["id"])
	if info is None:
		return JSONResponse({"error": "No preview running for this task"}, status_code=404)
	return JSONResponse(info.model_dump(mode="json"))


async def stop_preview(request: Request) -> Response:
	state = get_state(request)
	if not await state.previews.stop(request.path_params["id"]):
		return JSONResponse({"error": "No preview running for this task"}, status_code=404)
	return Response(status_code=204)


# =============================================================================
# Plan sessions
# =============================================================================

def _session_json(state: AppState, session) -> dict[str, Any]:
	return {
		**session.to_info().model_dump(mode="json"),
		"processing": state.plans.is_processing(session.id),
	}


async def start_plan(request: Request) -> JSONResponse:
	state = get_state(request)
	req = StartPlanRequest.model_validate(await _body(request))
	session = await state.plans.start(req.title, req.prompt, req.ask_questions)
	return JSONResponse(_session_json(state, session), status_code=201)


async def list_plans(request: Request) -> JSONResponse:
	state = get_state(request)
	return JSONResponse([_session_json(state, s) for s in state.plans.list_sessions()])


async def get_plan(request: Request) -> JSONResponse:
	state = get_state(request)
	session = state.plans.get(request.path_params["id"])
	return JSONResponse(_session_json(state, session))


async def answer_plan(request: Request) -> JSONResponse:
	state = get_state(request)
	req = AnswerPlanRequest.model_validate(await _body(request))
	session = await state.plans.answer(request.path_params["id"], req.answers)
	return JSONResponse(_session_json(state, session))


async def execute_plan(request: Request) -> JSONResponse:
	state = get_state(request)
	req = ExecutePlanRequest.model_validate(await _body(request))
	task = await state.plans.execute(request.path_params["id"], req.title, req.description)
	return JSONResponse(_task_json(state, task), status_code=201)


async def redo_plan(request: Request) -> JSONResponse:
	state = get_state(request)
	session = await state.plans.redo(request.path_params["id"])
	return JSONResponse(_session_json(state, session), status_code=201)


async def resume_plan(request: Request) -> JSONResponse:
	state = get_state(request)
	session = await state.plans.resume(request.path_params["id"])
	return JSONResponse(_session_json(state, session))


async def cancel_plan(request: Request) -> Response:
	state = get_state(request)
	await state.plans.cancel(request.path_params["id"])
	return Response(status_code=204)


# =============================================================================
# Chat
# =============================================================================

async def chat_history(request: Request) -> JSONResponse:
	state = get_state(request)
	limit = int(request.query_params.get("limit", "100"))
	messages = await state.chat.history(limit)
	return JSONResponse({"messages": [m.model_dump(mode="json") for m in messages]})


async def clear_chat(request: Request) -> JSONResponse:
	state = get_state(request)
	deleted = await state.chat.clear()
	return JSONResponse({"deleted_count": deleted})


async def send_chat(request: Request) -> JSONResponse:
	state = get_state(request)
	req = SendMessageRequest.model_validate(await _body(request))
	message = await state.chat.send(req.content, req.image)
	return JSONResponse({"user_message": message.model_dump(mode="json")}, status_code=202)
