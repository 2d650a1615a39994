"""Web API (REST + WebSocket) for agent-kanban dashboards."""

from __future__ import annotations

import webbrowser
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
	from ..config import Config
	from ..state import AppState


def create_app(config: Optional["Config"] = None, state: Optional["AppState"] = None) -> object:
	"""Create the Starlette ASGI application."""
	from .app import build_app

	return build_app(config=config, state=state)


def run_web_server(config: "Config", port: int = 0, open_browser: bool = True) -> None:
	"""Run the web API server."""
	try:
		import uvicorn
	except ImportError:
		raise SystemExit(
			"Web extras not installed. Install with: pip install -e '.[web]'"
		)

	port = port or config.web_port
	app = create_app(config=config)

	if open_browser:
		import threading

		def _open():
			import time
			time.sleep(0.8)
			webbrowser.open(f"http://localhost:{port}/api/server/info")

		threading.Thread(target=_open, daemon=True).start()

	print(f"agent-kanban API running at http://localhost:{port}")
	print("Press Ctrl+C to stop.")
	uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")
