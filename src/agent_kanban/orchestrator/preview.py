"""
Preview processes - run a task's workspace on a local port for review.

The preview command is a shell-style string; ``{port}`` is replaced by the
allocated port, which is also exported as PORT.
"""

import asyncio
import logging
import os
import shlex
import signal
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from ..events import EventBroadcaster, PreviewStarted, PreviewStopped
from ..executor import ProcessError
from ..models import Task, now_iso
from .errors import (
	NoPortAvailableError,
	NoWorkspaceError,
	PreviewAlreadyRunningError,
	PreviewNotConfiguredError,
)

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 5.0


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
	with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
		try:
			sock.bind((host, port))
		except OSError:
			return False
	return True


def find_available_port(start: int, count: int, exclude: set[int] | None = None) -> Optional[int]:
	"""First bindable port in [start, start + count), or None."""
	exclude = exclude or set()
	for port in range(start, start + count):
		if port not in exclude and is_port_free(port):
			return port
	return None


class PreviewInfo(BaseModel):
	task_id: str
	port: int
	url: str
	pid: Optional[int] = None
	started_at: str
	running: bool = True


@dataclass
class _Preview:
	task_id: str
	port: int
	proc: Optional[asyncio.subprocess.Process] = None
	started_at: str = field(default_factory=now_iso)

	@property
	def alive(self) -> bool:
		# A reservation without a process yet counts as running
		return self.proc is None or self.proc.returncode is None

	def info(self) -> PreviewInfo:
		return PreviewInfo(
			task_id=self.task_id,
			port=self.port,
			url=f"http://localhost:{self.port}",
			pid=self.proc.pid if self.proc else None,
			started_at=self.started_at,
			running=self.alive,
		)


class PreviewManager:
	"""
	Per-task registry of preview processes.

	The lock guards registry mutation only. A slot is reserved before the
	process is spawned so concurrent starts cannot claim the same task or port.
	"""

	def __init__(
		self,
		command: str = "",
		port_start: int = 9900,
		port_range: int = 100,
		broadcaster: Optional[EventBroadcaster] = None,
	):
		self.command = command
		self.port_start = port_start
		self.port_range = port_range
		self.broadcaster = broadcaster
		self._previews: dict[str, _Preview] = {}
		self._lock = asyncio.Lock()

	@property
	def enabled(self) -> bool:
		return bool(self.command.strip())

	async def start(self, task: Task) -> PreviewInfo:
		"""
		Start a preview in the task's workspace.

		Raises:
			PreviewNotConfiguredError: If no preview command is configured
			NoWorkspaceError: If the task has no workspace on disk
			PreviewAlreadyRunningError: If a preview is already running
			NoPortAvailableError: If every port in the range is taken
			ProcessError: If the preview command cannot be started
		"""
		if not self.enabled:
			raise PreviewNotConfiguredError()
		if not task.worktree_path or not Path(task.worktree_path).is_dir():
			raise NoWorkspaceError(task.id)

		async with self._lock:
			existing = self._previews.get(task.id)
			if existing and existing.alive:
				raise PreviewAlreadyRunningError(task.id, existing.port)
			taken = {p.port for p in self._previews.values()}
			port = find_available_port(self.port_start, self.port_range, exclude=taken)
			if port is None:
				raise NoPortAvailableError(self.port_start, self.port_range)
			preview = _Preview(task_id=task.id, port=port)
			self._previews[task.id] = preview

		args = [arg.replace("{port}", str(port)) for arg in shlex.split(self.command)]
		env = {**os.environ, "PORT": str(port)}
		try:
			preview.proc = await asyncio.create_subprocess_exec(
				*args,
				stdin=asyncio.subprocess.DEVNULL,
				stdout=asyncio.subprocess.DEVNULL,
				stderr=asyncio.subprocess.DEVNULL,
				cwd=task.worktree_path,
				env=env,
				start_new_session=True,
			)
		except OSError as e:
			async with self._lock:
				if self._previews.get(task.id) is preview:
					del self._previews[task.id]
			logger.error(f"Failed to start preview for task {task.id}: {e}")
			raise ProcessError(f"Failed to start preview: {e}") from e

		info = preview.info()
		logger.info(f"Started preview for task {task.id} on port {port} (pid {info.pid})")
		if self.broadcaster:
			self.broadcaster.publish(PreviewStarted(task_id=task.id, port=port, url=info.url))
		return info

	async def stop(self, task_id: str) -> bool:
		"""Stop a task's preview. Returns False if none was registered."""
		async with self._lock:
			preview = self._previews.pop(task_id, None)
		if preview is None:
			return False

		if preview.proc is not None:
			await _terminate(preview.proc)
		logger.info(f"Stopped preview for task {task_id}")
		if self.broadcaster:
			self.broadcaster.publish(PreviewStopped(task_id=task_id))
		return True

	def status(self, task_id: str) -> Optional[PreviewInfo]:
		preview = self._previews.get(task_id)
		return preview.info() if preview else None

	async def stop_all(self) -> None:
		for task_id in list(self._previews):
			await self.stop(task_id)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
	"""SIGTERM the preview's process group, escalating to SIGKILL."""
	if proc.returncode is not None:
		return
	try:
		os.killpg(proc.pid, signal.SIGTERM)
	except ProcessLookupError:
		pass
	try:
		await asyncio.wait_for(proc.wait(), timeout=STOP_TIMEOUT)
	except asyncio.TimeoutError:
		try:
			os.killpg(proc.pid, signal.SIGKILL)
		except ProcessLookupError:
			pass
		await proc.wait()
