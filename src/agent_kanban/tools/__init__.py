"""MCP tool registration - modular tool definitions."""

import logging

from mcp.server.fastmcp import FastMCP

from ..state import AppState
from .core import register_core_tools
from .plans import register_plan_tools
from .review import register_review_tools
from .tasks import register_task_tools

logger = logging.getLogger(__name__)


def register_all_tools(mcp: FastMCP, state: AppState) -> None:
	"""Register all MCP tools."""
	register_core_tools(mcp, state)
	register_task_tools(mcp, state)
	register_review_tools(mcp, state)
	register_plan_tools(mcp, state)
