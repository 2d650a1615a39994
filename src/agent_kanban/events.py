"""
Event models and best-effort broadcast to connected observers.

Each subscriber owns a bounded queue. Publishing never blocks and never
fails: a subscriber whose queue is full misses the event.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Literal, Optional, Union

from pydantic import BaseModel, Field

from .models import Task

logger = logging.getLogger(__name__)


class TaskUpdated(BaseModel):
	type: Literal["task_updated"] = "task_updated"
	task: Task


class TaskDeleted(BaseModel):
	type: Literal["task_deleted"] = "task_deleted"
	task_id: str


class LogLine(BaseModel):
	"""One line of agent output, or a system notice about the run."""
	type: Literal["log"] = "log"
	task_id: str
	content: str
	stream: Literal["stdout", "stderr", "system"] = "stdout"


class ExecutionComplete(BaseModel):
	type: Literal["execution_complete"] = "execution_complete"
	task_id: str
	success: bool


class MergeStarted(BaseModel):
	type: Literal["merge_started"] = "merge_started"
	task_id: str


class MergeProgress(BaseModel):
	type: Literal["merge_progress"] = "merge_progress"
	task_id: str
	status: str


class MergeComplete(BaseModel):
	type: Literal["merge_complete"] = "merge_complete"
	task_id: str
	commit: Optional[str] = None
	message: str = ""


class MergeFailed(BaseModel):
	type: Literal["merge_failed"] = "merge_failed"
	task_id: str
	error: str


class PlanQuestions(BaseModel):
	type: Literal["plan_questions"] = "plan_questions"
	session_id: str
	questions: list[dict[str, Any]] = Field(default_factory=list)


class PlanSummary(BaseModel):
	type: Literal["plan_summary"] = "plan_summary"
	session_id: str
	summary: str
	plan_content: Optional[str] = None


class PlanError(BaseModel):
	type: Literal["plan_error"] = "plan_error"
	session_id: str
	error: str


class PlanOutput(BaseModel):
	type: Literal["plan_output"] = "plan_output"
	session_id: str
	content: str


class ChatChunk(BaseModel):
	type: Literal["chat_chunk"] = "chat_chunk"
	content: str
	is_complete: bool = False


class ChatError(BaseModel):
	type: Literal["chat_error"] = "chat_error"
	error: str


class PreviewStarted(BaseModel):
	type: Literal["preview_started"] = "preview_started"
	task_id: str
	port: int
	url: str


class PreviewStopped(BaseModel):
	type: Literal["preview_stopped"] = "preview_stopped"
	task_id: str


Event = Union[
	TaskUpdated, TaskDeleted, LogLine, ExecutionComplete,
	MergeStarted, MergeProgress, MergeComplete, MergeFailed,
	PlanQuestions, PlanSummary, PlanError, PlanOutput,
	ChatChunk, ChatError, PreviewStarted, PreviewStopped,
]


class EventBroadcaster:
	"""Multi-producer, multi-consumer fan-out of events."""

	def __init__(self, queue_size: int = 100):
		self.queue_size = queue_size
		self._subscribers: set[asyncio.Queue] = set()

	@property
	def subscriber_count(self) -> int:
		return len(self._subscribers)

	def subscribe(self) -> asyncio.Queue:
		queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
		self._subscribers.add(queue)
		return queue

	def unsubscribe(self, queue: asyncio.Queue) -> None:
		self._subscribers.discard(queue)

	@asynccontextmanager
	async def subscription(self) -> AsyncIterator[asyncio.Queue]:
		queue = self.subscribe()
		try:
			yield queue
		finally:
			self.unsubscribe(queue)

	def publish(self, event: Event) -> None:
		"""Deliver an event to every current subscriber without waiting."""
		for queue in list(self._subscribers):
			try:
				queue.put_nowait(event)
			except asyncio.QueueFull:
				logger.debug(f"Dropping {event.type} event for a slow subscriber")
