"""Core health check tool and shared result helpers."""

import json
import logging
import shutil

from mcp.server.fastmcp import FastMCP

from ..executor import ExecutorError
from ..orchestrator import OrchestratorError
from ..state import AppState
from ..worktree import WorktreeError

logger = logging.getLogger(__name__)

# Failures that are ordinary results for a tool caller
EXPECTED_ERRORS = (OrchestratorError, WorktreeError, ExecutorError, ValueError)


def error_response(error: Exception) -> str:
	"""JSON failure result, tagged with the error class for callers that branch on it."""
	logger.info(f"Tool call failed: {error}")
	return json.dumps({
		"success": False,
		"error": str(error),
		"error_type": type(error).__name__,
	}, indent=2)


def register_core_tools(mcp: FastMCP, state: AppState) -> None:
	"""Register core tools."""

	@mcp.tool()
	async def health_check() -> str:
		"""
		Check the health of the agent-kanban server.
		Returns status of all components.
		"""
		await state.startup()
		config = state.config
		status = {
			"server": "running",
			"project_path": str(state.project_path),
			"is_git_repo": await state.tasks.workspaces().is_git_repo(),
			"agent_binary": config.agent_binary,
			"agent_found": shutil.which(config.agent_binary) is not None,
			"config_dir": str(config.config_dir),
			"data_dir": str(config.data_dir),
			"db_exists": config.db_path.exists(),
			"running_tasks": state.tasks.running_task_ids(),
			"plan_sessions": len(state.plans.list_sessions()),
			"subscribers": state.broadcaster.subscriber_count,
		}
		return json.dumps(status, indent=2)
