"""CLI for agent-kanban: serve, web, tasks, cleanup, and doctor commands."""

import argparse
import asyncio
import os
import platform
import shutil
import subprocess
import sys
import tomllib
from pathlib import Path

from importlib.metadata import version as pkg_version

from .config import ENV_PREFIX, Config, load_config


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the MCP server over stdio."""
	from .server import mcp

	mcp.run()


def cmd_web(args: argparse.Namespace) -> None:
	"""Run the REST + WebSocket API."""
	from .logging_config import setup_logging
	from .web import run_web_server

	config = load_config()
	setup_logging(log_dir=config.log_dir)
	run_web_server(config, port=args.port, open_browser=not args.no_open)


async def _load_board(config: Config, show_all: bool):
	from .database import Database

	db = Database(config.db_path)
	await db.init()
	try:
		project = None if show_all else str(Path(config.project_path).expanduser().resolve())
		return await db.list_tasks(project)
	finally:
		await db.close()


def cmd_tasks(args: argparse.Namespace) -> None:
	"""Print the task board for the current project."""
	from .visualizer import render_board

	config = load_config()
	tasks = asyncio.run(_load_board(config, args.all))
	render_board(tasks)


async def _load_task(config: Config, task_id: str):
	from .database import Database
	from .worktree import get_worktree_diff

	db = Database(config.db_path)
	await db.init()
	try:
		task = await db.get_task(task_id)
		if task is None:
			# Accept the short id shown on the board
			matches = [t for t in await db.list_tasks() if t.id.startswith(task_id)]
			task = matches[0] if len(matches) == 1 else None
	finally:
		await db.close()
	if task is None:
		return None, None
	diff = None
	if task.worktree_path and Path(task.worktree_path).is_dir():
		diff = await get_worktree_diff(task.worktree_path, config.main_branch)
	return task, diff


def cmd_show(args: argparse.Namespace) -> None:
	"""Print one task and the changes in its workspace."""
	from .visualizer import render_diff_summary, render_task_detail

	config = load_config()
	task, diff = asyncio.run(_load_task(config, args.task_id))
	if task is None:
		print(f"Task '{args.task_id}' not found.")
		sys.exit(1)
	render_task_detail(task)
	if diff is not None:
		render_diff_summary(diff)


async def _cleanup(config: Config) -> list[Path]:
	from .state import AppState

	state = AppState(config)
	await state.db.init()
	try:
		return await state.tasks.sweep_orphans()
	finally:
		await state.db.close()


def cmd_cleanup(args: argparse.Namespace) -> None:
	"""Remove worktree directories that no task refers to."""
	config = load_config()
	removed = asyncio.run(_cleanup(config))
	if not removed:
		print("No orphan worktrees found.")
		return
	for path in removed:
		print(f"  removed {path}")
	print(f"Removed {len(removed)} orphan worktree(s).")


def _check_web_extras() -> str:
	installed = []
	for pkg in ("starlette", "uvicorn"):
		try:
			installed.append(f"{pkg} {pkg_version(pkg)}")
		except Exception:
			pass
	if len(installed) == 2:
		return ", ".join(installed)
	return "NOT INSTALLED (pip install agent-kanban[web])"


def _check_config_toml(config_dir: Path) -> tuple[str, str | None]:
	"""Validate config.toml. Returns (status, issue_or_none)."""
	toml_path = config_dir / "config.toml"
	if not toml_path.exists():
		return "not found (optional)", None
	try:
		with open(toml_path, "rb") as f:
			tomllib.load(f)
		return "valid", None
	except tomllib.TOMLDecodeError as e:
		return f"INVALID ({e})", f"config.toml parse error: {e}"


def _check_git_repo(project: Path) -> tuple[str, str | None]:
	if shutil.which("git") is None:
		return "git NOT FOUND", "git executable not found on PATH"
	result = subprocess.run(
		["git", "rev-parse", "--show-toplevel"],
		cwd=project,
		capture_output=True,
		text=True,
	)
	if result.returncode != 0:
		return "not a git repository (tasks run without isolation)", None
	if Path(result.stdout.strip()).resolve() != project.resolve():
		return "inside a larger repository, not its root (tasks run without isolation)", None
	return "git repository", None


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation and configuration."""
	print("agent-kanban doctor")
	print(f"{'=' * 40}")

	issues: list[str] = []

	config_dir = os.getenv(ENV_PREFIX + "CONFIG_DIR")
	try:
		config = load_config()
	except tomllib.TOMLDecodeError:
		config = Config()
		if config_dir:
			config.config_dir = Path(os.path.expanduser(config_dir))

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in ["mcp", "aiosqlite", "pydantic", "platformdirs", "rich"]:
		try:
			print(f"    {dep:22s} {pkg_version(dep)}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	print("  Optional extras:")
	print(f"    {'web':22s} {_check_web_extras()}")
	print()

	print("  Config:")
	toml_status, toml_issue = _check_config_toml(config.config_dir)
	print(f"    config.toml:         {toml_status}")
	if toml_issue:
		issues.append(toml_issue)
	print(f"    database:            {config.db_path}")
	print(f"    worktrees:           {config.worktrees_dir}")
	print()

	print("  Agent:")
	agent = shutil.which(config.agent_binary)
	if agent:
		print(f"    {config.agent_binary:22s} {agent}")
	else:
		print(f"    {config.agent_binary:22s} NOT FOUND")
		issues.append(f"agent binary '{config.agent_binary}' not found on PATH")
	print()

	print("  Project:")
	project = Path(config.project_path).expanduser().resolve()
	repo_status, repo_issue = _check_git_repo(project)
	print(f"    {str(project):22s} {repo_status}")
	if repo_issue:
		issues.append(repo_issue)
	print()

	if issues:
		print(f"Issues found ({len(issues)}):")
		for issue in issues:
			print(f"  - {issue}")
		sys.exit(1)
	else:
		print("All checks passed.")


def main() -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="agent-kanban",
		description="Kanban board that runs coding agents in isolated git worktrees",
	)
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run MCP server (stdio)")
	serve_parser.set_defaults(func=cmd_serve)

	# web
	web_parser = subparsers.add_parser("web", help="Run the REST + WebSocket API")
	web_parser.add_argument("--port", type=int, default=0, help="Server port (default: from config)")
	web_parser.add_argument("--no-open", action="store_true", help="Don't auto-open browser")
	web_parser.set_defaults(func=cmd_web)

	# tasks
	tasks_parser = subparsers.add_parser("tasks", help="Show the task board")
	tasks_parser.add_argument("--all", action="store_true", help="Include tasks from every project")
	tasks_parser.set_defaults(func=cmd_tasks)

	# show
	show_parser = subparsers.add_parser("show", help="Show a task and its changes")
	show_parser.add_argument("task_id", help="Task ID (or unique prefix)")
	show_parser.set_defaults(func=cmd_show)

	# cleanup
	cleanup_parser = subparsers.add_parser("cleanup", help="Remove orphan worktrees")
	cleanup_parser.set_defaults(func=cmd_cleanup)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	args = parser.parse_args()

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
