"""Application state - builds and owns every component for one process."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from .config import Config, get_config
from .database import Database
from .events import EventBroadcaster
from .executor import ClaudeExecutor
from .orchestrator import ChatService, PlanSessionEngine, PreviewManager, TaskOrchestrator
from .orchestrator.tasks import ExecutorFactory, MergeHook

logger = logging.getLogger(__name__)


class AppState:
	"""
	Wiring for the record store, broadcaster, orchestrator, planner, chat and previews.

	Usage:
		state = AppState(config)
		await state.startup()
		...
		await state.shutdown()
	"""

	def __init__(
		self,
		config: Optional[Config] = None,
		executor_factory: Optional[ExecutorFactory] = None,
		on_merged: Optional[MergeHook] = None,
	):
		self.config = config or get_config()
		self.project_path = Path(self.config.project_path).expanduser().resolve()

		if executor_factory is None:
			binary = self.config.agent_binary

			def executor_factory(working_dir: Path) -> ClaudeExecutor:
				return ClaudeExecutor(working_dir, binary=binary)

		self.db = Database(self.config.db_path)
		self.broadcaster = EventBroadcaster(queue_size=self.config.event_queue_size)
		self.previews = PreviewManager(
			command=self.config.preview_command,
			port_start=self.config.preview_port_start,
			port_range=self.config.preview_port_range,
			broadcaster=self.broadcaster,
		)
		self.tasks = TaskOrchestrator(
			self.db,
			self.broadcaster,
			worktrees_dir=self.config.worktrees_dir,
			project_path=self.project_path,
			main_branch=self.config.main_branch,
			executor_factory=executor_factory,
			previews=self.previews,
			on_merged=on_merged,
		)
		self.plans = PlanSessionEngine(
			self.broadcaster,
			create_task=self.tasks.create,
			project_path=self.project_path,
			executor_factory=executor_factory,
			session_timeout=self.config.plan_session_timeout,
			eviction_interval=self.config.plan_eviction_interval,
		)
		self.chat = ChatService(
			self.db,
			self.broadcaster,
			project_path=self.project_path,
			executor_factory=executor_factory,
		)
		self._eviction_task: Optional[asyncio.Task] = None
		self._started = False

	async def startup(self) -> None:
		"""Open the store, reconcile leftovers from a previous run, start housekeeping."""
		if self._started:
			return
		await self.db.init()
		await self.tasks.recover_interrupted()
		removed = await self.tasks.sweep_orphans()
		for path in removed:
			logger.info(f"Removed orphan worktree {path}")
		self._eviction_task = asyncio.create_task(self.plans.run_eviction_loop())
		self._started = True
		logger.info(f"agent-kanban ready for {self.project_path}")

	async def shutdown(self) -> None:
		if self._eviction_task is not None:
			self._eviction_task.cancel()
			await asyncio.gather(self._eviction_task, return_exceptions=True)
			self._eviction_task = None
		await self.plans.shutdown()
		await self.chat.shutdown()
		await self.tasks.shutdown()
		await self.previews.stop_all()
		await self.db.close()
		self._started = False
