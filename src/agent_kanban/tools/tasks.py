"""Task lifecycle tools: CRUD plus start, cancel, complete and merge."""

import json

from mcp.server.fastmcp import FastMCP

from ..state import AppState
from .core import EXPECTED_ERRORS, error_response


def register_task_tools(mcp: FastMCP, state: AppState) -> None:
	"""Register task tools."""

	def _task_result(task, **extra) -> str:
		return json.dumps({"success": True, "task": task.model_dump(mode="json"), **extra}, indent=2)

	@mcp.tool()
	async def list_tasks(status: str = "") -> str:
		"""
		List tasks for the current project, newest first.

		Args:
			status: Optional filter (todo, in_progress, review, done)
		"""
		await state.startup()
		tasks = await state.tasks.list_tasks()
		if status:
			tasks = [t for t in tasks if t.status.value == status]
		return json.dumps({
			"tasks": [
				{**t.model_dump(mode="json"), "running": state.tasks.is_running(t.id)}
				for t in tasks
			],
			"count": len(tasks),
		}, indent=2)

	@mcp.tool()
	async def create_task(title: str, description: str = "") -> str:
		"""
		Create a task in the todo column.

		Args:
			title: Short task title (also used for the branch name)
			description: What the agent should do. Defaults to the title.
		"""
		await state.startup()
		try:
			task = await state.tasks.create(title, description or None)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _task_result(task)

	@mcp.tool()
	async def get_task(task_id: str) -> str:
		"""
		Get a task by ID.

		Args:
			task_id: The task ID
		"""
		await state.startup()
		try:
			task = await state.tasks.get(task_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _task_result(task, running=state.tasks.is_running(task_id))

	@mcp.tool()
	async def update_task(task_id: str, title: str = "", description: str = "") -> str:
		"""
		Edit a task's title and/or description. Empty arguments are left unchanged.

		Args:
			task_id: The task ID
			title: New title
			description: New description
		"""
		await state.startup()
		try:
			task = await state.tasks.update(task_id, title=title or None, description=description or None)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _task_result(task)

	@mcp.tool()
	async def delete_task(task_id: str) -> str:
		"""
		Delete a task. Cancels a running agent and removes the task's workspace.

		Args:
			task_id: The task ID
		"""
		await state.startup()
		try:
			await state.tasks.delete(task_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return json.dumps({"success": True, "deleted": task_id}, indent=2)

	@mcp.tool()
	async def start_task(task_id: str) -> str:
		"""
		Start the agent on a todo task in its own branch and worktree.
		Returns immediately; the task moves to review when the agent finishes.

		Args:
			task_id: The task ID
		"""
		await state.startup()
		try:
			task = await state.tasks.start(task_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _task_result(task)

	@mcp.tool()
	async def cancel_task(task_id: str) -> str:
		"""
		Stop a running task. Its workspace is discarded and it returns to todo.

		Args:
			task_id: The task ID
		"""
		await state.startup()
		try:
			task = await state.tasks.cancel(task_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _task_result(task)

	@mcp.tool()
	async def complete_task(task_id: str) -> str:
		"""
		Merge a reviewed task into the main branch and mark it done.

		Args:
			task_id: The task ID
		"""
		await state.startup()
		try:
			task = await state.tasks.complete(task_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _task_result(task)

	@mcp.tool()
	async def merge_task(task_id: str) -> str:
		"""
		Merge a reviewed task, reporting progress events to connected dashboards.
		On conflict the merge is aborted and the task stays in review.

		Args:
			task_id: The task ID
		"""
		await state.startup()
		try:
			task = await state.tasks.merge(task_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _task_result(task)
