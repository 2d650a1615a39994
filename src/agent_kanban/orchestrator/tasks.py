"""
Task Orchestrator - owns in-flight executions and the task lifecycle.

Lifecycle:
	todo --start--> in_progress --agent ok--> review --merge/complete--> done
	in_progress --agent failed--> review (with error_message)
	in_progress --cancel--> todo

Each started task gets its own branch + worktree (when the project is a git
repository) and a supervisor coroutine that races the agent's event stream
against a cancellation signal. The registry of running executions is guarded
by a lock held only while the map is mutated.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol

from ..database import Database
from ..events import (
	EventBroadcaster,
	ExecutionComplete,
	LogLine,
	MergeComplete,
	MergeFailed,
	MergeProgress,
	MergeStarted,
	TaskDeleted,
	TaskUpdated,
)
from ..executor import (
	AgentProcess,
	ClaudeExecutor,
	EventStream,
	ExecutionMode,
	ExecutorError,
	ExecutorEventType,
)
from ..models import CreateTask, Task, TaskStatus, UpdateTask
from ..worktree import DiffResponse, WorktreeError, WorktreeManager, get_worktree_diff
from .errors import (
	AlreadyRunningError,
	InvalidStateError,
	NoBranchError,
	NotRunningError,
	NoWorkspaceError,
	TaskNotFoundError,
)
from .preview import PreviewManager

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20
INTERRUPTED_MESSAGE = "Execution was interrupted (server restarted while the agent was running)"


class Executor(Protocol):
	async def spawn(
		self, prompt: str, mode: ExecutionMode = ExecutionMode.TASK,
	) -> tuple[EventStream, AgentProcess]: ...


ExecutorFactory = Callable[[Path], Executor]
MergeHook = Callable[[Task], Awaitable[None]]


async def best_effort(description: str, awaitable: Awaitable) -> None:
	"""Await a secondary cleanup step, logging and swallowing its failure."""
	try:
		await awaitable
	except Exception as e:
		logger.warning(f"{description} failed (ignored): {e}")


@dataclass
class RunningExecution:
	"""In-memory handles tying a task to its live agent process."""
	task_id: str
	cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
	finished: asyncio.Event = field(default_factory=asyncio.Event)
	process: Optional[AgentProcess] = None
	supervisor: Optional[asyncio.Task] = None


class TaskOrchestrator:
	"""
	Starts, cancels, completes and merges tasks.

	Usage:
		orchestrator = TaskOrchestrator(db, broadcaster, worktrees_dir=config.worktrees_dir)
		task = await orchestrator.create("Add login page")
		await orchestrator.start(task.id)      # returns immediately
		...
		await orchestrator.merge(task.id)      # once the task is in review
	"""

	def __init__(
		self,
		db: Database,
		broadcaster: EventBroadcaster,
		worktrees_dir: Path | str,
		project_path: Path | str | None = None,
		main_branch: str = "main",
		executor_factory: Optional[ExecutorFactory] = None,
		previews: Optional[PreviewManager] = None,
		on_merged: Optional[MergeHook] = None,
	):
		self.db = db
		self.broadcaster = broadcaster
		self.worktrees_dir = Path(worktrees_dir)
		self.project_path = str(Path(project_path or Path.cwd()).expanduser().resolve())
		self.main_branch = main_branch
		self.executor_factory = executor_factory or (lambda working_dir: ClaudeExecutor(working_dir))
		self.previews = previews or PreviewManager()
		self.on_merged = on_merged

		self._running: dict[str, RunningExecution] = {}
		self._lock = asyncio.Lock()
		self._managers: dict[str, WorktreeManager] = {}
		self._merge_locks: dict[str, asyncio.Lock] = {}
		self._background: set[asyncio.Task] = set()

	# =========================================================================
	# Helpers
	# =========================================================================

	def workspaces(self, project_path: str | None = None) -> WorktreeManager:
		"""Workspace manager for a project (defaults to the orchestrator's project)."""
		key = project_path or self.project_path
		if key not in self._managers:
			self._managers[key] = WorktreeManager(key, self.worktrees_dir, self.main_branch)
		return self._managers[key]

	async def _get(self, task_id: str) -> Task:
		task = await self.db.get_task(task_id)
		if task is None:
			raise TaskNotFoundError(task_id)
		return task

	def _publish_task(self, task: Optional[Task]) -> None:
		if task is not None:
			self.broadcaster.publish(TaskUpdated(task=task))

	def _spawn_background(self, coro: Awaitable) -> asyncio.Task:
		bg = asyncio.create_task(coro)
		self._background.add(bg)
		bg.add_done_callback(self._background.discard)
		return bg

	def is_running(self, task_id: str) -> bool:
		return task_id in self._running

	def running_task_ids(self) -> list[str]:
		return list(self._running)

	# =========================================================================
	# CRUD
	# =========================================================================

	async def create(self, title: str, description: Optional[str] = None) -> Task:
		if not title or not title.strip():
			raise ValueError("Task title must not be empty")
		task = await self.db.create_task(CreateTask(
			title=title.strip(),
			description=description,
			project_path=self.project_path,
		))
		logger.info(f"Created task {task.id}: {task.title}")
		self._publish_task(task)
		return task

	async def get(self, task_id: str) -> Task:
		return await self._get(task_id)

	async def list_tasks(self, project_path: Optional[str] = None) -> list[Task]:
		return await self.db.list_tasks(project_path or self.project_path)

	async def update(
		self,
		task_id: str,
		title: Optional[str] = None,
		description: Optional[str] = None,
	) -> Task:
		"""Edit a task's text. Status only changes through the lifecycle operations."""
		fields = {}
		if title is not None:
			if not title.strip():
				raise ValueError("Task title must not be empty")
			fields["title"] = title.strip()
		if description is not None:
			fields["description"] = description
		task = await self.db.update_task(task_id, UpdateTask(**fields))
		if task is None:
			raise TaskNotFoundError(task_id)
		self._publish_task(task)
		return task

	async def delete(self, task_id: str) -> None:
		"""Delete a task, cancelling its execution and removing its workspace."""
		await self._get(task_id)
		if self.is_running(task_id):
			try:
				await self.cancel(task_id)
			except NotRunningError:
				pass

		task = await self._get(task_id)
		await best_effort(f"Stopping preview for {task_id}", self.previews.stop(task_id))
		if task.has_workspace:
			await self._discard_workspace(task)

		await self.db.delete_task(task_id)
		logger.info(f"Deleted task {task_id}")
		self.broadcaster.publish(TaskDeleted(task_id=task_id))

	async def diff(self, task_id: str) -> DiffResponse:
		task = await self._get(task_id)
		if not task.worktree_path or not Path(task.worktree_path).is_dir():
			raise NoWorkspaceError(task_id)
		return await get_worktree_diff(task.worktree_path, self.main_branch)

	# =========================================================================
	# Execution
	# =========================================================================

	async def start(self, task_id: str) -> Task:
		"""
		Start a task's agent in its own workspace.

		Returns the in-progress task immediately; the agent runs in the
		background until it completes or is cancelled.

		Raises:
			AlreadyRunningError: If the task already has a running execution
			TaskNotFoundError: If the task does not exist
			InvalidStateError: If the task is not in todo
		"""
		# Reserve the slot before any await so concurrent starts can't both pass
		async with self._lock:
			if task_id in self._running:
				raise AlreadyRunningError(task_id)
			execution = RunningExecution(task_id=task_id)
			self._running[task_id] = execution

		allocated: Optional[Task] = None
		try:
			task = await self._get(task_id)
			if task.status != TaskStatus.TODO:
				raise InvalidStateError("Only tasks in todo can be started", task.status.value)

			working_dir = Path(task.project_path)
			update = UpdateTask(status=TaskStatus.IN_PROGRESS, error_message=None)
			workspace = await self._allocate_workspace(task)
			if workspace is not None:
				branch_name, working_dir = workspace
				update = UpdateTask(
					status=TaskStatus.IN_PROGRESS,
					error_message=None,
					branch_name=branch_name,
					worktree_path=str(working_dir),
				)
				allocated = task.model_copy(update={
					"branch_name": branch_name,
					"worktree_path": str(working_dir),
				})

			task = await self.db.update_task(task_id, update)
			if task is None:
				raise TaskNotFoundError(task_id)
			self._publish_task(task)

			execution.supervisor = asyncio.create_task(
				self._supervise(execution, task, working_dir)
			)
		except BaseException:
			if allocated is not None:
				await self._discard_workspace(allocated)
			await self._unregister(execution)
			raise

		logger.info(f"Started task {task_id} in {working_dir}")
		return task

	async def _allocate_workspace(self, task: Task) -> Optional[tuple[str, Path]]:
		"""Create the task's workspace, or None to run in the project directory."""
		manager = self.workspaces(task.project_path)
		if not await manager.is_git_repo():
			logger.info(f"{task.project_path} is not a git repository, running task {task.id} in place")
			return None
		try:
			return await manager.create_workspace(task.title, task.id)
		except WorktreeError as e:
			message = f"Workspace allocation failed, running without isolation in {task.project_path}: {e}"
			logger.warning(f"Task {task.id}: {message}")
			self.broadcaster.publish(LogLine(task_id=task.id, content=message, stream="system"))
			return None

	async def _supervise(self, execution: RunningExecution, task: Task, working_dir: Path) -> None:
		"""Run the agent until it completes or the task is cancelled. Runs exactly once per start."""
		task_id = task.id
		try:
			try:
				executor = self.executor_factory(working_dir)
				stream, process = await executor.spawn(task.prompt, ExecutionMode.TASK)
			except ExecutorError as e:
				logger.error(f"Failed to start agent for task {task_id}: {e}")
				if execution.cancel_event.is_set():
					await self._finish_cancelled(task_id)
				else:
					await self._finish_failed(task_id, str(e))
				return

			execution.process = process
			consume = asyncio.create_task(self._consume(task_id, stream))
			cancelled = asyncio.create_task(execution.cancel_event.wait())
			done, _ = await asyncio.wait({consume, cancelled}, return_when=asyncio.FIRST_COMPLETED)

			if consume in done:
				cancelled.cancel()
				await asyncio.gather(cancelled, return_exceptions=True)
				outcome = consume.result()
				if outcome is None and execution.cancel_event.is_set():
					await process.kill()
					await self._finish_cancelled(task_id)
				elif outcome is None:
					await self._finish_failed(task_id, "Agent process ended without reporting completion")
				else:
					success, exit_code, stderr_tail = outcome
					if success:
						await self._finish_succeeded(task_id)
					else:
						message = f"Agent exited with code {exit_code}"
						if stderr_tail:
							message += ":\n" + "\n".join(stderr_tail)
						await self._finish_failed(task_id, message)
			else:
				consume.cancel()
				await asyncio.gather(consume, return_exceptions=True)
				await process.kill()
				await self._finish_cancelled(task_id)
		except asyncio.CancelledError:
			if execution.process is not None:
				await best_effort(f"Killing agent for {task_id}", execution.process.kill())
			raise
		except Exception as e:
			logger.exception(f"Supervisor for task {task_id} crashed")
			await best_effort(
				f"Recording failure of {task_id}",
				self._finish_failed(task_id, f"Internal error: {e}"),
			)
		finally:
			await self._unregister(execution)

	async def _consume(self, task_id: str, stream: EventStream) -> Optional[tuple[bool, Optional[int], list[str]]]:
		"""Re-publish output lines; return (success, exit_code, stderr tail) or None if the stream just ended."""
		stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
		async for event in stream:
			if event.type == ExecutorEventType.STDOUT:
				self.broadcaster.publish(LogLine(task_id=task_id, content=event.content, stream="stdout"))
			elif event.type == ExecutorEventType.STDERR:
				stderr_tail.append(event.content)
				self.broadcaster.publish(LogLine(task_id=task_id, content=event.content, stream="stderr"))
			elif event.type == ExecutorEventType.COMPLETED:
				return bool(event.success), event.exit_code, list(stderr_tail)
		return None

	async def _unregister(self, execution: RunningExecution) -> None:
		async with self._lock:
			if self._running.get(execution.task_id) is execution:
				del self._running[execution.task_id]
		execution.finished.set()

	async def _finish_succeeded(self, task_id: str) -> None:
		task = await self.db.update_task(
			task_id, UpdateTask(status=TaskStatus.REVIEW, error_message=None)
		)
		logger.info(f"Task {task_id} completed, ready for review")
		self._publish_task(task)
		self.broadcaster.publish(ExecutionComplete(task_id=task_id, success=True))

	async def _finish_failed(self, task_id: str, message: str) -> None:
		task = await self.db.set_error(task_id, message)
		logger.warning(f"Task {task_id} failed: {message}")
		self._publish_task(task)
		self.broadcaster.publish(ExecutionComplete(task_id=task_id, success=False))

	async def _finish_cancelled(self, task_id: str) -> None:
		"""Discard the workspace and put the task back in todo."""
		task = await self.db.get_task(task_id)
		if task is None:
			return
		await best_effort(f"Stopping preview for {task_id}", self.previews.stop(task_id))
		if task.has_workspace:
			await self._discard_workspace(task)
		task = await self.db.update_task(task_id, UpdateTask(
			status=TaskStatus.TODO,
			error_message=None,
			branch_name=None,
			worktree_path=None,
		))
		logger.info(f"Task {task_id} cancelled")
		self._publish_task(task)

	async def _discard_workspace(self, task: Task) -> None:
		"""Force-remove a task's worktree and branch, ignoring failures."""
		manager = self.workspaces(task.project_path)
		if task.worktree_path:
			await best_effort(
				f"Removing worktree {task.worktree_path}",
				manager.remove_workspace(task.worktree_path),
			)
		if task.branch_name:
			await best_effort(
				f"Deleting branch {task.branch_name}",
				manager.delete_branch(task.branch_name, force=True),
			)

	async def cancel(self, task_id: str) -> Task:
		"""
		Cancel a running task and wait until it is back in todo.

		Raises:
			NotRunningError: If the task has no running execution
		"""
		async with self._lock:
			execution = self._running.get(task_id)
		if execution is None:
			raise NotRunningError(task_id)

		logger.info(f"Cancelling task {task_id}")
		execution.cancel_event.set()
		await execution.finished.wait()
		return await self._get(task_id)

	async def wait(self, task_id: str) -> None:
		"""Wait for a task's running execution (if any) to finish."""
		execution = self._running.get(task_id)
		if execution is not None:
			await execution.finished.wait()

	# =========================================================================
	# Completion
	# =========================================================================

	async def complete(self, task_id: str) -> Task:
		"""Merge a reviewed task and mark it done."""
		return await self._merge(task_id, report=False)

	async def merge(self, task_id: str) -> Task:
		"""Like complete, but also emits merge progress events."""
		return await self._merge(task_id, report=True)

	async def _merge(self, task_id: str, report: bool) -> Task:
		task = await self._get(task_id)
		self._check_mergeable(task)

		lock = self._merge_locks.setdefault(task.project_path, asyncio.Lock())
		async with lock:
			# Another merge may have finished while we waited
			task = await self._get(task_id)
			self._check_mergeable(task)

			manager = self.workspaces(task.project_path)
			branch_name = task.branch_name

			def progress(status: str) -> None:
				logger.info(f"Merge {task_id}: {status}")
				if report:
					self.broadcaster.publish(MergeProgress(task_id=task_id, status=status))

			if report:
				self.broadcaster.publish(MergeStarted(task_id=task_id))

			progress("Stopping preview")
			await best_effort(f"Stopping preview for {task_id}", self.previews.stop(task_id))

			progress(f"Merging {branch_name} into {self.main_branch}")
			try:
				await manager.merge_branch(branch_name)
			except WorktreeError as e:
				if report:
					self.broadcaster.publish(MergeFailed(task_id=task_id, error=str(e)))
				raise

			commit = None
			try:
				commit = await manager.get_head_commit(self.main_branch)
			except WorktreeError as e:
				logger.warning(f"Could not read merge commit for {task_id}: {e}")

			progress("Removing workspace")
			if task.worktree_path:
				await best_effort(
					f"Removing worktree {task.worktree_path}",
					manager.remove_workspace(task.worktree_path),
				)

			progress(f"Deleting branch {branch_name}")
			await best_effort(f"Deleting branch {branch_name}", manager.delete_branch(branch_name))

			task = await self.db.update_task(task_id, UpdateTask(
				status=TaskStatus.DONE,
				error_message=None,
				branch_name=None,
				worktree_path=None,
			))
			if task is None:
				raise TaskNotFoundError(task_id)

		self._publish_task(task)
		if report:
			self.broadcaster.publish(MergeComplete(
				task_id=task_id,
				commit=commit,
				message=f"Merged {branch_name} into {self.main_branch}",
			))
		if self.on_merged is not None:
			self._spawn_background(best_effort(f"Post-merge hook for {task_id}", self.on_merged(task)))
		return task

	def _check_mergeable(self, task: Task) -> None:
		if task.status != TaskStatus.REVIEW:
			raise InvalidStateError("Only tasks in review can be merged", task.status.value)
		if not task.branch_name:
			raise NoBranchError(task.id)

	# =========================================================================
	# Startup / shutdown reconciliation
	# =========================================================================

	async def recover_interrupted(self) -> list[Task]:
		"""Move tasks left in progress by a previous process to review with an error."""
		recovered = []
		for task in await self.db.list_tasks():
			if task.status == TaskStatus.IN_PROGRESS and not self.is_running(task.id):
				updated = await self.db.set_error(task.id, INTERRUPTED_MESSAGE)
				if updated is not None:
					logger.warning(f"Task {task.id} was interrupted, moved to review")
					recovered.append(updated)
		return recovered

	async def sweep_orphans(self) -> list[Path]:
		"""Remove on-disk workspaces that no task record refers to."""
		tasks = await self.db.list_tasks()
		valid = {t.worktree_path for t in tasks if t.worktree_path}
		projects = {t.project_path for t in tasks} | {self.project_path}

		removed: list[Path] = []
		for project in sorted(projects):
			manager = self.workspaces(project)
			try:
				removed.extend(await manager.cleanup_orphans(valid))
			except (WorktreeError, OSError) as e:
				logger.warning(f"Orphan sweep failed for {project}: {e}")
		if removed:
			logger.info(f"Removed {len(removed)} orphan worktree(s)")
		return removed

	async def shutdown(self) -> None:
		"""Cancel every running execution."""
		for task_id in self.running_task_ids():
			await best_effort(f"Cancelling {task_id}", self.cancel(task_id))
		if self._background:
			await asyncio.gather(*self._background, return_exceptions=True)
