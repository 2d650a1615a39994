"""WebSocket endpoint forwarding broadcast events to the browser."""

from __future__ import annotations

import asyncio
import json
import logging

from starlette.websockets import WebSocket, WebSocketDisconnect

from ..events import EventBroadcaster

logger = logging.getLogger(__name__)


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
	while True:
		event = await queue.get()
		await websocket.send_text(event.model_dump_json())


async def websocket_endpoint(websocket: WebSocket) -> None:
	"""Stream every event to the client; answer pings with pongs."""
	await websocket.accept()
	broadcaster: EventBroadcaster = websocket.app.state.app_state.broadcaster

	async with broadcaster.subscription() as queue:
		sender = asyncio.create_task(_forward(websocket, queue))
		try:
			while True:
				message = await websocket.receive_text()
				try:
					data = json.loads(message)
				except json.JSONDecodeError:
					logger.debug(f"Ignoring non-JSON websocket message: {message[:100]}")
					continue
				if isinstance(data, dict) and data.get("type") == "ping":
					await websocket.send_json({"type": "pong"})
		except WebSocketDisconnect:
			logger.debug("WebSocket client disconnected")
		finally:
			sender.cancel()
			await asyncio.gather(sender, return_exceptions=True)
