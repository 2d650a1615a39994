"""Read-only chat about the project, answered by the agent in the background."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from ..database import Database
from ..events import ChatChunk, ChatError, EventBroadcaster
from ..executor import ClaudeExecutor, ExecutionMode, ExecutorError, ExecutorEventType
from ..models import ChatMessage, ChatRole
from .tasks import ExecutorFactory

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20

CHAT_PREAMBLE = (
	"You are a helpful assistant integrated into a Kanban task management app. "
	"You are running in READ-ONLY mode - you can read and analyze code, "
	"but you cannot modify files or execute commands that change the codebase. "
	"Help the user understand their code, debug issues, and plan implementations.\n\n"
)


def build_chat_prompt(history: list[ChatMessage], content: str, has_image: bool = False) -> str:
	"""Preamble, prior messages, then the new message."""
	parts = [CHAT_PREAMBLE]
	if history:
		parts.append("## Previous conversation\n\n")
		for message in history:
			role = "User" if message.role == ChatRole.USER else "Assistant"
			parts.append(f"**{role}**: {message.content}\n\n")
	parts.append("## Current message\n\n")
	parts.append(f"**User**: {content}")
	if has_image:
		parts.append("\n\n[User has attached an image]")
	return "".join(parts)


class ChatService:
	"""Stores the conversation and streams agent replies as chat events."""

	def __init__(
		self,
		db: Database,
		broadcaster: EventBroadcaster,
		project_path: Path | str,
		executor_factory: Optional[ExecutorFactory] = None,
	):
		self.db = db
		self.broadcaster = broadcaster
		self.project_path = str(project_path)
		self.executor_factory = executor_factory or (lambda working_dir: ClaudeExecutor(working_dir))
		self._replies: set[asyncio.Task] = set()

	async def history(self, limit: int = 100) -> list[ChatMessage]:
		return await self.db.list_chat_messages(self.project_path, limit)

	async def clear(self) -> int:
		count = await self.db.delete_chat_messages(self.project_path)
		logger.info(f"Cleared {count} chat message(s) for {self.project_path}")
		return count

	async def send(self, content: str, image: Optional[str] = None) -> ChatMessage:
		"""Store the user's message and answer it in the background."""
		if not content or not content.strip():
			raise ValueError("Message must not be empty")

		history = await self.db.list_chat_messages(self.project_path, HISTORY_LIMIT)
		message = await self.db.create_chat_message(
			self.project_path, ChatRole.USER, content, image_data=image,
		)
		prompt = build_chat_prompt(history, content, has_image=image is not None)

		reply = asyncio.create_task(self._reply(prompt))
		self._replies.add(reply)
		reply.add_done_callback(self._replies.discard)
		return message

	async def _reply(self, prompt: str) -> Optional[ChatMessage]:
		try:
			executor = self.executor_factory(Path(self.project_path))
			stream, process = await executor.spawn(prompt, ExecutionMode.CHAT)
		except ExecutorError as e:
			logger.error(f"Failed to start chat agent: {e}")
			self.broadcaster.publish(ChatError(error=f"Failed to start agent: {e}"))
			return None

		lines: list[str] = []
		try:
			async for event in stream:
				if event.type != ExecutorEventType.STDOUT:
					continue
				# Skip leading blank lines
				if not lines and not event.content.strip():
					continue
				lines.append(event.content)
				self.broadcaster.publish(ChatChunk(content=event.content))
		except asyncio.CancelledError:
			await process.kill()
			raise

		response = "\n".join(lines).strip()
		if not response:
			logger.warning("Chat agent returned an empty response")
			self.broadcaster.publish(ChatError(error="Agent returned an empty response"))
			return None

		reply = await self.db.create_chat_message(self.project_path, ChatRole.ASSISTANT, response)
		self.broadcaster.publish(ChatChunk(content="", is_complete=True))
		return reply

	async def wait_idle(self) -> None:
		"""Wait for every in-flight reply."""
		if self._replies:
			await asyncio.gather(*list(self._replies), return_exceptions=True)

	async def shutdown(self) -> None:
		for reply in list(self._replies):
			reply.cancel()
		await self.wait_idle()
