"""Review tools - inspect what an agent changed in its workspace."""

import json

from mcp.server.fastmcp import FastMCP

from ..state import AppState
from .core import EXPECTED_ERRORS, error_response


def register_review_tools(mcp: FastMCP, state: AppState) -> None:
	"""Register review tools."""

	@mcp.tool()
	async def get_task_diff(task_id: str, include_content: bool = True) -> str:
		"""
		Get the changes made in a task's workspace.

		Args:
			task_id: The task ID
			include_content: Include the raw diff text for each file
		"""
		await state.startup()
		try:
			diff = await state.tasks.diff(task_id)
		except EXPECTED_ERRORS as e:
			return error_response(e)

		data = diff.model_dump(mode="json")
		if not include_content:
			for f in data["files"]:
				f.pop("content", None)
		return json.dumps({"success": True, **data}, indent=2)
