"""Tests for the CLI module."""

import asyncio
import sys
from pathlib import Path

import pytest

from agent_kanban.cli import _check_config_toml, _check_git_repo, _check_web_extras, main
from agent_kanban.database import Database
from agent_kanban.models import CreateTask
from agent_kanban.worktree import WorktreeManager

from .helpers import init_git_repo


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
	"""A git project with all agent-kanban dirs redirected under tmp_path."""
	repo = tmp_path / "repo"
	init_git_repo(repo)
	monkeypatch.setenv("AGENT_KANBAN_CONFIG_DIR", str(tmp_path / "config"))
	monkeypatch.setenv("AGENT_KANBAN_DATA_DIR", str(tmp_path / "data"))
	monkeypatch.setenv("AGENT_KANBAN_PROJECT_PATH", str(repo))
	return repo


def _run(monkeypatch: pytest.MonkeyPatch, *argv: str) -> None:
	monkeypatch.setattr(sys, "argv", ["agent-kanban", *argv])
	main()


def _seed(db_path: Path, project: Path, title: str) -> str:
	async def _create() -> str:
		db = Database(db_path)
		await db.init()
		try:
			task = await db.create_task(CreateTask(title=title, project_path=str(project.resolve())))
			return task.id
		finally:
			await db.close()

	return asyncio.run(_create())


def test_no_command_exits(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	with pytest.raises(SystemExit) as exc:
		_run(monkeypatch)
	assert exc.value.code == 1
	assert "agent-kanban" in capsys.readouterr().out


def test_tasks_board(project: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	_seed(tmp_path / "data" / "agent_kanban.db", project, "Write the README")
	_seed(tmp_path / "data" / "agent_kanban.db", tmp_path / "elsewhere", "Other project")

	_run(monkeypatch, "tasks")
	output = capsys.readouterr().out
	assert "Write the README" in output
	assert "Other project" not in output

	_run(monkeypatch, "tasks", "--all")
	assert "Other project" in capsys.readouterr().out


def test_tasks_empty_board(project: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	_run(monkeypatch, "tasks")
	assert "No tasks yet" in capsys.readouterr().out


def test_show_by_prefix(project: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	task_id = _seed(tmp_path / "data" / "agent_kanban.db", project, "Fix the crash")

	_run(monkeypatch, "show", task_id[:8])
	output = capsys.readouterr().out
	assert "Fix the crash" in output
	assert task_id in output


def test_show_missing_exits(project: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	with pytest.raises(SystemExit) as exc:
		_run(monkeypatch, "show", "does-not-exist")
	assert exc.value.code == 1
	assert "not found" in capsys.readouterr().out


def test_cleanup_nothing_to_do(project: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	_run(monkeypatch, "cleanup")
	assert "No orphan worktrees found." in capsys.readouterr().out


def test_cleanup_removes_orphans(project: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	manager = WorktreeManager(project.resolve(), tmp_path / "data" / "worktrees")
	orphan = manager.project_dir / "stale-workspace"
	orphan.mkdir(parents=True)

	_run(monkeypatch, "cleanup")
	output = capsys.readouterr().out
	assert "Removed 1 orphan worktree(s)." in output
	assert not orphan.exists()


# --- Doctor command tests ---

class TestCheckConfigToml:
	"""Tests for config.toml validation."""

	def test_missing_toml(self, tmp_path: Path):
		status, issue = _check_config_toml(tmp_path)
		assert "not found" in status
		assert issue is None

	def test_valid_toml(self, tmp_path: Path):
		(tmp_path / "config.toml").write_text('main_branch = "trunk"\n')
		status, issue = _check_config_toml(tmp_path)
		assert status == "valid"
		assert issue is None

	def test_invalid_toml(self, tmp_path: Path):
		(tmp_path / "config.toml").write_text("this is [not valid toml\n")
		status, issue = _check_config_toml(tmp_path)
		assert "INVALID" in status
		assert issue is not None


class TestCheckGitRepo:
	def test_git_repo(self, tmp_path: Path):
		init_git_repo(tmp_path / "repo")
		status, issue = _check_git_repo(tmp_path / "repo")
		assert status == "git repository"
		assert issue is None

	def test_subdirectory_of_repository(self, tmp_path: Path):
		init_git_repo(tmp_path / "repo")
		(tmp_path / "repo" / "pkg").mkdir()
		status, issue = _check_git_repo(tmp_path / "repo" / "pkg")
		assert "not its root" in status
		assert issue is None

	def test_plain_directory(self, tmp_path: Path):
		status, issue = _check_git_repo(tmp_path)
		assert "not a git repository" in status
		assert issue is None


def test_web_extras_reported():
	result = _check_web_extras()
	assert "starlette" in result or "NOT INSTALLED" in result


def test_doctor_reports_missing_agent(project: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture):
	monkeypatch.setenv("AGENT_KANBAN_AGENT_BINARY", "definitely-not-an-agent-binary")
	with pytest.raises(SystemExit) as exc:
		_run(monkeypatch, "doctor")
	assert exc.value.code == 1
	output = capsys.readouterr().out
	assert "agent binary 'definitely-not-an-agent-binary' not found" in output
	assert "git repository" in output
