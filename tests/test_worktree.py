"""Tests for the workspace manager.

Uses real git repos (no mocked git commands) to verify actual behavior.
"""

from pathlib import Path

import pytest

from agent_kanban.worktree import (
	BranchExistsError,
	GitError,
	MergeConflictError,
	NotARepositoryError,
	WorkspaceExistsError,
	WorktreeManager,
	generate_branch_name,
	slugify,
)

from .helpers import commit_file, git, init_git_repo

TASK_ID = "3f2a9c1e-0000-4000-8000-000000000001"


@pytest.fixture
def repo(tmp_path: Path) -> Path:
	path = tmp_path / "repo"
	init_git_repo(path)
	return path


@pytest.fixture
def manager(repo: Path, tmp_path: Path) -> WorktreeManager:
	return WorktreeManager(repo, tmp_path / "worktrees")


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------

class TestNaming:
	def test_slugify_basic(self):
		assert slugify("Add OAuth Login!") == "add-oauth-login"

	def test_slugify_collapses_separators(self):
		assert slugify("  fix   the__bug -- now ") == "fix-the-bug-now"

	def test_slugify_empty_falls_back(self):
		assert slugify("") == "task"
		assert slugify("!!!") == "task"

	def test_slugify_truncates_without_trailing_dash(self):
		slug = slugify("a" * 49 + " tail of the title")
		assert len(slug) <= 50
		assert not slug.endswith("-")

	def test_branch_name_uses_short_id(self):
		assert generate_branch_name("Fix bug", TASK_ID) == "task/fix-bug-3f2a9c1e"

	def test_same_title_different_ids_never_collide(self):
		other = "77777777-0000-4000-8000-000000000002"
		assert generate_branch_name("Same", TASK_ID) != generate_branch_name("Same", other)

	def test_repositories_get_separate_namespaces(self, tmp_path: Path):
		a = WorktreeManager(tmp_path / "a", tmp_path / "wt")
		b = WorktreeManager(tmp_path / "b", tmp_path / "wt")
		assert a.project_dir != b.project_dir
		assert a.project_dir.parent == b.project_dir.parent


# ---------------------------------------------------------------------------
# Create / remove
# ---------------------------------------------------------------------------

class TestCreateWorkspace:
	@pytest.mark.asyncio
	async def test_creates_branch_and_worktree(self, manager: WorktreeManager):
		branch, path = await manager.create_workspace("Add login", TASK_ID)

		assert branch == "task/add-login-3f2a9c1e"
		assert path.is_dir()
		assert path.parent == manager.project_dir
		assert (path / "README.md").exists()
		assert await manager.branch_exists(branch)
		assert git(path, "rev-parse", "--abbrev-ref", "HEAD") == branch

	@pytest.mark.asyncio
	async def test_existing_directory_rejected(self, manager: WorktreeManager):
		await manager.create_workspace("Add login", TASK_ID)
		with pytest.raises(WorkspaceExistsError):
			await manager.create_workspace("Add login", TASK_ID)

	@pytest.mark.asyncio
	async def test_existing_branch_rejected(self, manager: WorktreeManager, repo: Path):
		git(repo, "branch", generate_branch_name("Add login", TASK_ID))
		with pytest.raises(BranchExistsError):
			await manager.create_workspace("Add login", TASK_ID)

	@pytest.mark.asyncio
	async def test_not_a_repository(self, tmp_path: Path):
		plain = tmp_path / "plain"
		plain.mkdir()
		manager = WorktreeManager(plain, tmp_path / "worktrees")
		assert not await manager.is_git_repo()
		with pytest.raises(NotARepositoryError):
			await manager.create_workspace("Anything", TASK_ID)

	@pytest.mark.asyncio
	async def test_subdirectory_of_repository_is_not_a_repository(self, repo: Path, tmp_path: Path):
		pkg = repo / "pkg"
		pkg.mkdir()
		manager = WorktreeManager(pkg, tmp_path / "worktrees")

		assert not await manager.is_git_repo()
		with pytest.raises(NotARepositoryError):
			await manager.create_workspace("Anything", TASK_ID)
		assert git(repo, "worktree", "list").count("\n") == 0

	@pytest.mark.asyncio
	async def test_remove_workspace(self, manager: WorktreeManager, repo: Path):
		_, path = await manager.create_workspace("Add login", TASK_ID)
		await manager.remove_workspace(path)

		assert not path.exists()
		assert str(path) not in git(repo, "worktree", "list")

	@pytest.mark.asyncio
	async def test_remove_missing_workspace_is_noop(self, manager: WorktreeManager, tmp_path: Path):
		await manager.remove_workspace(tmp_path / "never-existed")


# ---------------------------------------------------------------------------
# Merge / branches
# ---------------------------------------------------------------------------

class TestMerge:
	@pytest.mark.asyncio
	async def test_merge_brings_changes_to_main(self, manager: WorktreeManager, repo: Path):
		branch, path = await manager.create_workspace("Add feature", TASK_ID)
		commit_file(path, "feature.py", "print('hi')\n")

		await manager.merge_branch(branch)

		assert (repo / "feature.py").exists()
		assert git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"

	@pytest.mark.asyncio
	async def test_conflict_aborts_and_leaves_repo_clean(self, manager: WorktreeManager, repo: Path):
		branch, path = await manager.create_workspace("Edit readme", TASK_ID)
		commit_file(path, "README.md", "# From the task\n")
		commit_file(repo, "README.md", "# From main\n")

		with pytest.raises(MergeConflictError):
			await manager.merge_branch(branch)

		assert git(repo, "status", "--porcelain") == ""
		assert not (repo / ".git" / "MERGE_HEAD").exists()
		assert (repo / "README.md").read_text() == "# From main\n"
		assert git(repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"

		# The repository is usable for the next task
		_, other = await manager.create_workspace("Next task", "4b1d7e22-0000-4000-8000-000000000002")
		assert other.is_dir()

	@pytest.mark.asyncio
	async def test_delete_missing_branch_is_success(self, manager: WorktreeManager):
		await manager.delete_branch("task/does-not-exist")

	@pytest.mark.asyncio
	async def test_delete_unmerged_branch_needs_force(self, manager: WorktreeManager):
		branch, path = await manager.create_workspace("Unmerged", TASK_ID)
		commit_file(path, "wip.txt", "wip\n")
		await manager.remove_workspace(path)

		with pytest.raises(GitError):
			await manager.delete_branch(branch)
		await manager.delete_branch(branch, force=True)
		assert not await manager.branch_exists(branch)

	@pytest.mark.asyncio
	async def test_head_commit(self, manager: WorktreeManager, repo: Path):
		assert await manager.get_head_commit() == git(repo, "rev-parse", "HEAD")
		with pytest.raises(GitError):
			await manager.get_head_commit("no-such-ref")


# ---------------------------------------------------------------------------
# Orphans
# ---------------------------------------------------------------------------

class TestCleanupOrphans:
	@pytest.mark.asyncio
	async def test_removes_only_unreferenced_workspaces(self, manager: WorktreeManager):
		paths = []
		for i in range(3):
			_, path = await manager.create_workspace(f"Task {i}", f"{i}{i}{i}{i}{i}{i}{i}{i}-rest")
			paths.append(path)

		removed = await manager.cleanup_orphans({str(paths[0])})

		assert sorted(removed) == sorted(paths[1:])
		assert paths[0].exists()
		assert not paths[1].exists()
		assert not paths[2].exists()
		assert await manager.list_workspaces() == [paths[0]]

	@pytest.mark.asyncio
	async def test_no_namespace_directory(self, manager: WorktreeManager):
		assert await manager.cleanup_orphans(set()) == []
