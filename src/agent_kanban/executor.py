"""
Agent process supervisor.

Spawns the agent CLI in a working directory with a prompt and exposes its
output as an ordered event stream: STARTED, interleaved STDOUT/STDERR lines,
then exactly one COMPLETED. A killed process ends the stream without a
COMPLETED event.
"""

import asyncio
import logging
import os
import shutil
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# stream-json lines can be large (tool inputs carry whole files)
STREAM_LIMIT = 16 * 1024 * 1024

# How long kill() waits for the output pipes to reach EOF
KILL_DRAIN_TIMEOUT = 5.0


class ExecutorError(Exception):
	"""Base exception for agent process errors."""
	pass


class AgentNotFoundError(ExecutorError):
	"""Raised when the agent binary cannot be located."""

	def __init__(self, binary: str):
		self.binary = binary
		super().__init__(
			f"Agent binary '{binary}' not found. Install it or set AGENT_KANBAN_AGENT_BINARY."
		)


class ProcessError(ExecutorError):
	"""Raised when the agent process cannot be started or fails."""
	pass


class ExecutionMode(str, Enum):
	"""How the agent is invoked."""
	TASK = "task"  # autonomous, may edit files
	PLAN = "plan"  # read-only planning, structured stream output
	CHAT = "chat"  # plain text answers


MODE_ARGS: dict[ExecutionMode, list[str]] = {
	ExecutionMode.TASK: ["--print", "--dangerously-skip-permissions"],
	ExecutionMode.PLAN: [
		"--print",
		"--output-format", "stream-json",
		"--verbose",
		"--permission-mode", "plan",
	],
	ExecutionMode.CHAT: ["--print", "--permission-mode", "bypassPermissions"],
}


class ExecutorEventType(str, Enum):
	STARTED = "started"
	STDOUT = "stdout"
	STDERR = "stderr"
	COMPLETED = "completed"


@dataclass
class ExecutorEvent:
	"""A lifecycle or output event from an agent process."""
	type: ExecutorEventType
	content: str = ""
	success: Optional[bool] = None
	exit_code: Optional[int] = None

	@classmethod
	def started(cls) -> "ExecutorEvent":
		return cls(ExecutorEventType.STARTED)

	@classmethod
	def stdout(cls, line: str) -> "ExecutorEvent":
		return cls(ExecutorEventType.STDOUT, content=line)

	@classmethod
	def stderr(cls, line: str) -> "ExecutorEvent":
		return cls(ExecutorEventType.STDERR, content=line)

	@classmethod
	def completed(cls, success: bool, exit_code: Optional[int] = None) -> "ExecutorEvent":
		return cls(ExecutorEventType.COMPLETED, success=success, exit_code=exit_code)


class EventStream:
	"""Async iterator over executor events, ended by a None sentinel."""

	def __init__(self, queue: Optional[asyncio.Queue] = None):
		self._queue: asyncio.Queue = queue or asyncio.Queue()
		self._closed = False

	def put(self, event: ExecutorEvent) -> None:
		if not self._closed:
			self._queue.put_nowait(event)

	def close(self) -> None:
		if not self._closed:
			self._closed = True
			self._queue.put_nowait(None)

	def __aiter__(self) -> "EventStream":
		return self

	async def __anext__(self) -> ExecutorEvent:
		event = await self._queue.get()
		if event is None:
			# Keep the sentinel so repeated iteration also stops
			self._queue.put_nowait(None)
			raise StopAsyncIteration
		return event


class AgentProcess:
	"""Handle to a running agent process."""

	def __init__(self, proc: asyncio.subprocess.Process, drain_timeout: float = KILL_DRAIN_TIMEOUT):
		self._proc = proc
		self.drain_timeout = drain_timeout
		self._killed = False
		self._watcher: Optional[asyncio.Task] = None

	@property
	def pid(self) -> int:
		return self._proc.pid

	@property
	def returncode(self) -> Optional[int]:
		return self._proc.returncode

	@property
	def killed(self) -> bool:
		return self._killed

	async def kill(self) -> None:
		"""Kill the process. Safe to call repeatedly or after exit."""
		self._killed = True
		if self._proc.returncode is None:
			try:
				# The agent runs in its own session; take its tool subprocesses down too
				os.killpg(self._proc.pid, signal.SIGKILL)
			except ProcessLookupError:
				pass
		try:
			await asyncio.wait_for(self._drain(), timeout=self.drain_timeout)
		except asyncio.TimeoutError:
			# A descendant outside the process group still holds the pipes
			logger.warning(
				f"Agent process {self.pid} output still open {self.drain_timeout}s after kill, abandoning it"
			)
			if self._watcher:
				self._watcher.cancel()
				await asyncio.gather(self._watcher, return_exceptions=True)

	async def _drain(self) -> None:
		await self._proc.wait()
		if self._watcher:
			await asyncio.gather(asyncio.shield(self._watcher), return_exceptions=True)

	async def wait(self) -> int:
		return await self._proc.wait()


class ClaudeExecutor:
	"""
	Runs the agent CLI non-interactively in a working directory.

	stdin is always closed: the CLI blocks on an open empty stdin, and
	follow-up turns are handled by re-spawning with the full history.
	"""

	def __init__(self, working_dir: Path | str, binary: str = "claude"):
		self.working_dir = Path(working_dir)
		self.binary = binary

	def build_args(self, prompt: str, mode: ExecutionMode = ExecutionMode.TASK) -> list[str]:
		return [*MODE_ARGS[mode], prompt]

	def _resolve_binary(self) -> str:
		resolved = shutil.which(self.binary)
		if resolved is None:
			raise AgentNotFoundError(self.binary)
		return resolved

	async def spawn(
		self,
		prompt: str,
		mode: ExecutionMode = ExecutionMode.TASK,
	) -> tuple[EventStream, AgentProcess]:
		"""
		Start the agent and return its event stream and process handle.

		Raises:
			AgentNotFoundError: If the binary cannot be located
			ProcessError: If the process cannot be started
		"""
		binary = self._resolve_binary()
		if not self.working_dir.is_dir():
			raise ProcessError(f"Working directory does not exist: {self.working_dir}")

		logger.info(
			f"Spawning {self.binary} ({mode.value}) in {self.working_dir}, "
			f"prompt length {len(prompt)}"
		)
		logger.debug(f"Full prompt: {prompt}")
		try:
			proc = await asyncio.create_subprocess_exec(
				binary, *self.build_args(prompt, mode),
				stdin=asyncio.subprocess.DEVNULL,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=str(self.working_dir),
				limit=STREAM_LIMIT,
				start_new_session=True,
			)
		except FileNotFoundError:
			raise AgentNotFoundError(self.binary)
		except OSError as e:
			logger.error(f"Failed to spawn {self.binary}: {e}")
			raise ProcessError(f"Failed to start {self.binary}: {e}") from e

		logger.info(f"Agent process started, pid {proc.pid}")
		stream = EventStream()
		stream.put(ExecutorEvent.started())
		process = AgentProcess(proc)
		process._watcher = asyncio.create_task(self._pump(proc, process, stream))
		return stream, process

	async def _pump(
		self,
		proc: asyncio.subprocess.Process,
		process: AgentProcess,
		stream: EventStream,
	) -> None:
		"""Forward output lines, then the exit status unless the process was killed."""

		async def read(reader: asyncio.StreamReader, make_event) -> None:
			while True:
				try:
					line = await reader.readline()
				except ValueError:
					logger.warning("Dropping oversized output line from agent")
					continue
				if not line:
					break
				stream.put(make_event(line.decode(errors="replace").rstrip("\r\n")))

		try:
			await asyncio.gather(
				read(proc.stdout, ExecutorEvent.stdout),
				read(proc.stderr, ExecutorEvent.stderr),
			)
			exit_code = await proc.wait()
			if not process.killed:
				logger.info(f"Agent process {proc.pid} exited with {exit_code}")
				stream.put(ExecutorEvent.completed(exit_code == 0, exit_code))
		finally:
			stream.close()
