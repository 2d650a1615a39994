"""
Plan Session Engine - drives interview rounds for plan sessions.

Each round spawns the agent in read-only plan mode with structured output.
Questions from the round put the session in waiting_for_answer; a final
result puts it in summary. Answering re-spawns the agent with the whole
conversation replayed in the prompt.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..events import EventBroadcaster, PlanError, PlanOutput, PlanQuestions, PlanSummary
from ..executor import ClaudeExecutor, ExecutionMode, ExecutorError, ExecutorEventType
from ..models import Task
from .errors import InvalidStateError, PlanSessionNotFoundError
from .plan_session import (
	TERMINAL_STATUSES,
	PlanAnswer,
	PlanSession,
	PlanStatus,
	RoundResult,
	parse_stream_line,
)
from .tasks import ExecutorFactory

logger = logging.getLogger(__name__)

TaskCreator = Callable[[str, Optional[str]], Awaitable[Task]]


class PlanSessionEngine:
	"""
	Owns every live plan session and its in-flight round.

	Usage:
		engine = PlanSessionEngine(broadcaster, create_task=orchestrator.create)
		session = await engine.start("Auth", "Add OAuth login")
		# ... plan_questions event arrives
		await engine.answer(session.id, [PlanAnswer(question_index=0, answers=["GitHub"])])
		# ... plan_summary event arrives
		task = await engine.execute(session.id)
	"""

	def __init__(
		self,
		broadcaster: EventBroadcaster,
		create_task: TaskCreator,
		project_path: Path | str | None = None,
		executor_factory: Optional[ExecutorFactory] = None,
		session_timeout: float = 3600,
		eviction_interval: float = 60,
	):
		self.broadcaster = broadcaster
		self.create_task = create_task
		self.project_path = Path(project_path or Path.cwd())
		self.executor_factory = executor_factory or (lambda working_dir: ClaudeExecutor(working_dir))
		self.session_timeout = session_timeout
		self.eviction_interval = eviction_interval

		self._sessions: dict[str, PlanSession] = {}
		self._rounds: dict[str, asyncio.Task] = {}
		self._lock = asyncio.Lock()

	# =========================================================================
	# Registry
	# =========================================================================

	def get(self, session_id: str) -> PlanSession:
		session = self._sessions.get(session_id)
		if session is None:
			raise PlanSessionNotFoundError(session_id)
		return session

	def list_sessions(self) -> list[PlanSession]:
		return sorted(self._sessions.values(), key=lambda s: s.created_at)

	def is_processing(self, session_id: str) -> bool:
		return session_id in self._rounds

	async def wait(self, session_id: str) -> None:
		"""Wait for the session's in-flight round (if any) to finish."""
		round_task = self._rounds.get(session_id)
		if round_task is not None:
			await asyncio.gather(round_task, return_exceptions=True)

	async def _add(self, session: PlanSession) -> None:
		async with self._lock:
			self._sessions[session.id] = session

	async def _remove(self, session_id: str) -> Optional[PlanSession]:
		async with self._lock:
			return self._sessions.pop(session_id, None)

	async def _stop_round(self, session_id: str) -> None:
		round_task = self._rounds.get(session_id)
		if round_task is not None and not round_task.done():
			round_task.cancel()
			await asyncio.gather(round_task, return_exceptions=True)

	# =========================================================================
	# Operations
	# =========================================================================

	async def start(self, title: str, prompt: str, ask_questions: bool = True) -> PlanSession:
		"""Create a session and run its first round in the background."""
		if not prompt or not prompt.strip():
			raise ValueError("Plan prompt must not be empty")
		session = PlanSession(title=title.strip() or "Untitled plan", prompt=prompt, ask_questions=ask_questions)
		await self._add(session)
		logger.info(f"Started plan session {session.id}: {session.title}")
		self._launch_round(session)
		return session

	async def answer(self, session_id: str, answers: list[PlanAnswer]) -> PlanSession:
		"""
		Submit answers to the pending questions and continue planning.

		Raises:
			PlanSessionNotFoundError: If the session does not exist
			InvalidStateError: If the session is not waiting for answers
			ValueError: If an answer refers to a question that is not pending
		"""
		session = self.get(session_id)
		if session.status != PlanStatus.WAITING_FOR_ANSWER:
			raise InvalidStateError("Plan session is not waiting for answers", session.status.value)
		if not answers:
			raise ValueError("At least one answer is required")
		pending = {q.index for q in session.pending_questions}
		unknown = [a.question_index for a in answers if a.question_index not in pending]
		if unknown:
			raise ValueError(f"Answers refer to questions that are not pending: {unknown}")

		session.record_answers(answers)
		self._launch_round(session)
		return session

	async def cancel(self, session_id: str) -> PlanSession:
		session = self.get(session_id)
		session.mark(PlanStatus.CANCELLED)
		await self._stop_round(session_id)
		await self._remove(session_id)
		logger.info(f"Cancelled plan session {session_id}")
		return session

	async def redo(self, session_id: str) -> PlanSession:
		"""Throw away the conversation and start over under a new session."""
		old = await self.cancel(session_id)
		return await self.start(old.title, old.prompt, old.ask_questions)

	async def resume(self, session_id: str) -> PlanSession:
		"""Retry after an error, keeping the questions and answers so far."""
		session = self.get(session_id)
		if session.status != PlanStatus.ERROR:
			raise InvalidStateError("Only failed plan sessions can be resumed", session.status.value)
		session.error = None
		self._launch_round(session)
		return session

	async def execute(
		self,
		session_id: str,
		title: Optional[str] = None,
		description: Optional[str] = None,
	) -> Task:
		"""Turn a finished plan into a todo task and close the session."""
		session = self.get(session_id)
		if session.status != PlanStatus.SUMMARY:
			raise InvalidStateError("Plan session has no final plan yet", session.status.value)

		task = await self.create_task(
			title or session.title,
			description or session.plan_content or session.summary,
		)
		session.mark(PlanStatus.COMPLETED)
		await self._remove(session_id)
		logger.info(f"Plan session {session_id} executed as task {task.id}")
		return task

	# =========================================================================
	# Rounds
	# =========================================================================

	def _launch_round(self, session: PlanSession) -> None:
		prompt = session.next_prompt()
		session.mark(PlanStatus.PROCESSING)
		round_task = asyncio.create_task(self._run_round(session, prompt))
		self._rounds[session.id] = round_task

		def _done(t: asyncio.Task, session_id: str = session.id) -> None:
			if self._rounds.get(session_id) is t:
				del self._rounds[session_id]

		round_task.add_done_callback(_done)

	async def _run_round(self, session: PlanSession, prompt: str) -> None:
		result = RoundResult()
		exit_code: Optional[int] = None
		try:
			executor = self.executor_factory(self.project_path)
			stream, process = await executor.spawn(prompt, ExecutionMode.PLAN)
		except ExecutorError as e:
			self._fail(session, str(e))
			return

		try:
			async for event in stream:
				if event.type == ExecutorEventType.STDOUT:
					session.append_output(event.content)
					parse_stream_line(event.content, result)
					self.broadcaster.publish(PlanOutput(session_id=session.id, content=event.content))
				elif event.type == ExecutorEventType.STDERR:
					logger.debug(f"Plan {session.id} stderr: {event.content}")
				elif event.type == ExecutorEventType.COMPLETED:
					exit_code = event.exit_code
		except asyncio.CancelledError:
			await process.kill()
			raise

		if session.status in TERMINAL_STATUSES:
			return

		if result.questions:
			asked = session.record_questions(result.questions)
			logger.info(f"Plan {session.id} asked {len(asked)} question(s)")
			self.broadcaster.publish(PlanQuestions(
				session_id=session.id,
				questions=[q.model_dump() for q in asked],
			))
		elif not result.is_error and (result.summary or result.plan_content):
			session.record_summary(result.summary or result.plan_content, result.plan_content)
			logger.info(f"Plan {session.id} produced a summary")
			self.broadcaster.publish(PlanSummary(
				session_id=session.id,
				summary=session.summary,
				plan_content=session.plan_content,
			))
		elif result.is_error and result.summary:
			self._fail(session, result.summary)
		elif exit_code not in (None, 0):
			self._fail(session, f"Agent exited with code {exit_code}")
		else:
			self._fail(session, "Agent produced neither questions nor a plan")

	def _fail(self, session: PlanSession, message: str) -> None:
		logger.warning(f"Plan session {session.id} failed: {message}")
		session.record_error(message)
		self.broadcaster.publish(PlanError(session_id=session.id, error=message))

	# =========================================================================
	# Eviction
	# =========================================================================

	async def evict_expired(self) -> list[str]:
		"""Drop idle sessions. Sessions with a round in flight are never evicted."""
		expired = [
			s.id for s in list(self._sessions.values())
			if not self.is_processing(s.id) and s.is_expired(self.session_timeout)
		]
		for session_id in expired:
			await self._remove(session_id)
			logger.info(f"Evicted idle plan session {session_id}")
		return expired

	async def run_eviction_loop(self) -> None:
		while True:
			await asyncio.sleep(self.eviction_interval)
			try:
				await self.evict_expired()
			except Exception:
				logger.exception("Plan session eviction failed")

	async def shutdown(self) -> None:
		for session_id in list(self._rounds):
			await self._stop_round(session_id)
