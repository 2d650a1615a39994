"""Plan session tools - interview-driven planning that ends in a task."""

import json

from mcp.server.fastmcp import FastMCP

from ..orchestrator import PlanAnswer
from ..state import AppState
from .core import EXPECTED_ERRORS, error_response


def register_plan_tools(mcp: FastMCP, state: AppState) -> None:
	"""Register plan session tools."""

	def _session_result(session) -> str:
		return json.dumps({
			"success": True,
			"session": session.to_info().model_dump(mode="json"),
			"processing": state.plans.is_processing(session.id),
		}, indent=2)

	@mcp.tool()
	async def start_plan(title: str, prompt: str, ask_questions: bool = True) -> str:
		"""
		Start a planning session. The agent explores the project read-only and
		either asks questions or produces a plan; poll get_plan_session.

		Args:
			title: Plan title (becomes the task title)
			prompt: What should be planned
			ask_questions: Let the agent interview you before writing the plan
		"""
		await state.startup()
		try:
			session = await state.plans.start(title, prompt, ask_questions)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _session_result(session)

	@mcp.tool()
	async def answer_plan(session_id: str, answers: str) -> str:
		"""
		Answer the pending questions of a plan session.

		Args:
			session_id: The plan session ID
			answers: JSON object mapping question index to an answer string or
				list of strings, e.g. {"0": "PostgreSQL", "1": ["Web", "CLI"]}
		"""
		await state.startup()
		try:
			raw = json.loads(answers)
		except json.JSONDecodeError as e:
			return error_response(ValueError(f"answers must be a JSON object: {e}"))
		if not isinstance(raw, dict):
			return error_response(ValueError("answers must be a JSON object"))

		try:
			parsed = [
				PlanAnswer(
					question_index=int(index),
					answers=value if isinstance(value, list) else [str(value)],
				)
				for index, value in raw.items()
			]
			session = await state.plans.answer(session_id, parsed)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _session_result(session)

	@mcp.tool()
	async def get_plan_session(session_id: str) -> str:
		"""
		Get a plan session: status, pending questions, summary and plan text.

		Args:
			session_id: The plan session ID
		"""
		await state.startup()
		try:
			session = state.plans.get(session_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _session_result(session)

	@mcp.tool()
	async def list_plan_sessions() -> str:
		"""List live plan sessions."""
		await state.startup()
		sessions = state.plans.list_sessions()
		return json.dumps({
			"sessions": [
				{
					"id": s.id,
					"title": s.title,
					"status": s.status.value,
					"questions": len(s.questions),
					"answers": len(s.answers),
				}
				for s in sessions
			],
			"count": len(sessions),
		}, indent=2)

	@mcp.tool()
	async def execute_plan(session_id: str, title: str = "", description: str = "") -> str:
		"""
		Create a todo task from a finished plan and close the session.

		Args:
			session_id: The plan session ID
			title: Optional task title (defaults to the plan title)
			description: Optional task description (defaults to the plan text)
		"""
		await state.startup()
		try:
			task = await state.plans.execute(session_id, title or None, description or None)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return json.dumps({"success": True, "task": task.model_dump(mode="json")}, indent=2)

	@mcp.tool()
	async def redo_plan(session_id: str) -> str:
		"""
		Discard a session's questions and answers and start planning again.

		Args:
			session_id: The plan session ID
		"""
		await state.startup()
		try:
			session = await state.plans.redo(session_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _session_result(session)

	@mcp.tool()
	async def resume_plan(session_id: str) -> str:
		"""
		Retry a failed plan session, keeping the conversation so far.

		Args:
			session_id: The plan session ID
		"""
		await state.startup()
		try:
			session = await state.plans.resume(session_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return _session_result(session)

	@mcp.tool()
	async def cancel_plan(session_id: str) -> str:
		"""
		Cancel a plan session.

		Args:
			session_id: The plan session ID
		"""
		await state.startup()
		try:
			await state.plans.cancel(session_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)
		return json.dumps({"success": True, "cancelled": session_id}, indent=2)
