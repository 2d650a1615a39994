"""Shared test fixtures and helpers for agent-kanban tests."""

import asyncio
import json
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from agent_kanban.config import Config
from agent_kanban.executor import EventStream, ExecutionMode, ExecutorError, ExecutorEvent


def git(path: Path, *args: str) -> str:
	"""Run a git command in path and return its stdout."""
	result = subprocess.run(["git", *args], cwd=str(path), capture_output=True, text=True, check=True)
	return result.stdout.strip()


def init_git_repo(path: Path) -> None:
	"""Create a real git repo on main with an initial commit."""
	path.mkdir(parents=True, exist_ok=True)
	subprocess.run(["git", "init", "-b", "main"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "config", "user.email", "test@test.com"], cwd=str(path), capture_output=True)
	subprocess.run(["git", "config", "user.name", "Test"], cwd=str(path), capture_output=True)
	(path / "README.md").write_text("# Test\n")
	subprocess.run(["git", "add", "README.md"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "commit", "-m", "init"], cwd=str(path), capture_output=True, check=True)


def commit_file(path: Path, name: str, content: str, message: str = "change") -> None:
	"""Write a file in a repo or worktree and commit it."""
	(path / name).write_text(content)
	git(path, "add", name)
	git(path, "commit", "-m", message)


def make_config(tmp_path: Path, project_path: Path, **overrides) -> Config:
	"""Config rooted in tmp_path so tests never touch real user dirs."""
	config = Config(
		config_dir=tmp_path / "config",
		data_dir=tmp_path / "data",
		project_path=project_path,
	)
	for key, val in overrides.items():
		setattr(config, key, val)
	config.ensure_dirs()
	return config


def drain(queue: asyncio.Queue) -> list:
	"""Everything currently sitting in a subscriber queue."""
	events = []
	while not queue.empty():
		events.append(queue.get_nowait())
	return events


def event_types(events: list) -> list[str]:
	return [e.type for e in events]


# ---------------------------------------------------------------------------
# Fake agent
# ---------------------------------------------------------------------------

@dataclass
class Round:
	"""Scripted behaviour for one agent invocation."""
	stdout: list[str] = field(default_factory=list)
	stderr: list[str] = field(default_factory=list)
	exit_code: int = 0
	hang: bool = False
	on_run: Optional[Callable[[Path], None]] = None
	spawn_error: Optional[ExecutorError] = None


@dataclass
class AgentCall:
	prompt: str
	mode: ExecutionMode
	working_dir: Path


class FakeProcess:
	"""Stands in for AgentProcess."""

	def __init__(self, stream: EventStream):
		self.stream = stream
		self.pid = 4242
		self.killed = False
		self._killed_event = asyncio.Event()

	async def kill(self) -> None:
		self.killed = True
		self._killed_event.set()
		self.stream.close()

	async def wait(self) -> int:
		await self._killed_event.wait()
		return -9


class FakeAgent:
	"""
	Executor factory that replays scripted rounds instead of spawning a process.

	Each spawn consumes the next round; the last round repeats once the
	script runs out.
	"""

	def __init__(self, *rounds: Round):
		self.rounds = list(rounds) or [Round()]
		self.calls: list[AgentCall] = []
		self.processes: list[FakeProcess] = []

	def __call__(self, working_dir: Path) -> "FakeExecutor":
		return FakeExecutor(self, Path(working_dir))

	def next_round(self) -> Round:
		index = min(len(self.calls) - 1, len(self.rounds) - 1)
		return self.rounds[index]


class FakeExecutor:
	def __init__(self, agent: FakeAgent, working_dir: Path):
		self.agent = agent
		self.working_dir = working_dir

	async def spawn(self, prompt: str, mode: ExecutionMode = ExecutionMode.TASK):
		self.agent.calls.append(AgentCall(prompt, mode, self.working_dir))
		script = self.agent.next_round()
		if script.spawn_error is not None:
			raise script.spawn_error

		stream = EventStream()
		process = FakeProcess(stream)
		self.agent.processes.append(process)
		stream.put(ExecutorEvent.started())
		process.player = asyncio.create_task(self._play(script, stream, process))
		return stream, process

	async def _play(self, script: Round, stream: EventStream, process: FakeProcess) -> None:
		await asyncio.sleep(0)
		if script.on_run is not None:
			script.on_run(self.working_dir)
		for line in script.stdout:
			stream.put(ExecutorEvent.stdout(line))
		for line in script.stderr:
			stream.put(ExecutorEvent.stderr(line))
		if script.hang:
			await process._killed_event.wait()
			return
		if not process.killed:
			stream.put(ExecutorEvent.completed(script.exit_code == 0, script.exit_code))
		stream.close()


# ---------------------------------------------------------------------------
# stream-json lines for plan rounds
# ---------------------------------------------------------------------------

def question_line(*questions: dict, tool_use_id: str = "toolu_1") -> str:
	return json.dumps({
		"type": "assistant",
		"message": {"content": [{
			"type": "tool_use",
			"id": tool_use_id,
			"name": "AskUserQuestion",
			"input": {"questions": list(questions)},
		}]},
	})


def write_plan_line(file_path: str, content: str) -> str:
	return json.dumps({
		"type": "assistant",
		"message": {"content": [{
			"type": "tool_use",
			"id": "toolu_w",
			"name": "Write",
			"input": {"file_path": file_path, "content": content},
		}]},
	})


def result_line(text: str, is_error: bool = False) -> str:
	return json.dumps({"type": "result", "subtype": "success", "is_error": is_error, "result": text})


# ---------------------------------------------------------------------------
# MCP tools
# ---------------------------------------------------------------------------

def capture_tools(state, register_fn: Callable) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		state: AppState to pass to the registration function
		register_fn: The registration function (e.g., register_task_tools)

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), state)
	return captured
