"""agent-kanban MCP server."""

from mcp.server.fastmcp import FastMCP

from .config import load_config
from .logging_config import setup_logging
from .state import AppState
from .tools import register_all_tools

config = load_config()
setup_logging(log_dir=config.log_dir)

mcp = FastMCP("agent-kanban")
state = AppState(config)
register_all_tools(mcp, state)
