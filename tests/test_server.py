"""Tests for MCP tool registration."""

from pathlib import Path

from mcp.server.fastmcp import FastMCP

from agent_kanban.state import AppState
from agent_kanban.tools import register_all_tools

from .helpers import FakeAgent, make_config

EXPECTED_TOOLS = {
	"health_check",
	"list_tasks", "create_task", "get_task", "update_task", "delete_task",
	"start_task", "cancel_task", "complete_task", "merge_task",
	"get_task_diff",
	"start_plan", "answer_plan", "get_plan_session", "list_plan_sessions",
	"execute_plan", "redo_plan", "resume_plan", "cancel_plan",
}


def test_server_tool_names(tmp_path: Path):
	"""Every tool is registered exactly once under its expected name."""
	mcp = FastMCP("agent-kanban-test")
	state = AppState(make_config(tmp_path, tmp_path), executor_factory=FakeAgent())
	register_all_tools(mcp, state)

	tool_names = set(mcp._tool_manager._tools.keys())
	missing = EXPECTED_TOOLS - tool_names
	assert not missing, f"Missing tools: {missing}"
	assert tool_names == EXPECTED_TOOLS
