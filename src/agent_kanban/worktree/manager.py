"""
Workspace manager - one git branch + worktree per task.

Workspaces live under ``<base_dir>/<repo hash>/<slug>-<short id>`` so that
unrelated repositories never share a namespace, and branch names carry the
same short id so that two tasks can never collide.
"""

import asyncio
import hashlib
import logging
import re
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "task"
SLUG_MAX_LEN = 50
SHORT_ID_LEN = 8


class WorktreeError(Exception):
	"""Base exception for workspace operations."""
	pass


class NotARepositoryError(WorktreeError):
	"""Raised when the project directory is not a git repository."""
	pass


class WorkspaceExistsError(WorktreeError):
	"""Raised when the target workspace directory already exists."""
	pass


class BranchExistsError(WorktreeError):
	"""Raised when the task branch already exists."""
	pass


class MergeConflictError(WorktreeError):
	"""Raised when a merge conflicts. The merge has been aborted."""
	pass


class GitError(WorktreeError):
	"""Raised when a git command fails for any other reason."""
	pass


async def _run_git(
	args: list[str],
	cwd: Path,
	timeout: int = 30,
	strip: bool = True,
) -> tuple[str, str, int]:
	"""
	Run a git command and return (stdout, stderr, returncode).

	With strip=False stdout is returned verbatim; diff output needs its
	trailing context lines.
	"""
	proc = await asyncio.create_subprocess_exec(
		"git", *args,
		stdout=asyncio.subprocess.PIPE,
		stderr=asyncio.subprocess.PIPE,
		cwd=str(cwd),
	)
	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError:
		proc.kill()
		await proc.wait()
		return ("", f"git {args[0]} timed out after {timeout}s", -1)
	out = stdout.decode(errors="replace")
	return (
		out.strip() if strip else out,
		stderr.decode(errors="replace").strip(),
		proc.returncode or 0,
	)


def slugify(text: str, max_len: int = SLUG_MAX_LEN) -> str:
	"""Convert text to a branch- and filesystem-safe slug."""
	slug = text.lower()
	slug = re.sub(r"[^a-z0-9]+", "-", slug)
	slug = slug.strip("-")
	if len(slug) > max_len:
		slug = slug[:max_len].rstrip("-")
	return slug or "task"


def short_id(task_id: str) -> str:
	return task_id[:SHORT_ID_LEN]


def workspace_slug(title: str, task_id: str) -> str:
	return f"{slugify(title)}-{short_id(task_id)}"


def generate_branch_name(title: str, task_id: str) -> str:
	"""Deterministic branch name for a task, unique through its id."""
	return f"{BRANCH_PREFIX}/{workspace_slug(title, task_id)}"


class WorktreeManager:
	"""
	Creates, merges and removes task workspaces for one repository.

	All git work happens in subprocesses awaited on the event loop, so a
	slow checkout never blocks unrelated orchestration calls.
	"""

	def __init__(self, repo_path: Path | str, base_dir: Path | str, main_branch: str = "main"):
		self.repo_path = Path(repo_path).expanduser().resolve()
		self.base_dir = Path(base_dir).expanduser()
		self.main_branch = main_branch

	@property
	def project_hash(self) -> str:
		return hashlib.sha256(str(self.repo_path).encode()).hexdigest()[:8]

	@property
	def project_dir(self) -> Path:
		"""Directory holding this repository's workspaces."""
		return self.base_dir / self.project_hash

	def workspace_path(self, title: str, task_id: str) -> Path:
		return self.project_dir / workspace_slug(title, task_id)

	async def is_git_repo(self) -> bool:
		"""True only at the top of a work tree; a subdirectory of a repository is not one."""
		if not self.repo_path.is_dir():
			return False
		stdout, _, rc = await _run_git(["rev-parse", "--show-toplevel"], self.repo_path)
		if rc != 0:
			return False
		return Path(stdout).resolve() == self.repo_path

	async def branch_exists(self, branch_name: str) -> bool:
		_, _, rc = await _run_git(
			["rev-parse", "--verify", "--quiet", f"refs/heads/{branch_name}"],
			self.repo_path,
		)
		return rc == 0

	async def create_workspace(self, title: str, task_id: str) -> tuple[str, Path]:
		"""
		Create a branch at HEAD and check it out in a fresh worktree.

		Args:
			title: Task title, used for the slug
			task_id: Task id, its prefix makes names unique

		Returns:
			(branch_name, workspace_path)

		Raises:
			NotARepositoryError: If the project is not a git repository
			WorkspaceExistsError: If the workspace directory already exists
			BranchExistsError: If the branch already exists
			GitError: If git fails
		"""
		if not await self.is_git_repo():
			raise NotARepositoryError(f"Not a git repository: {self.repo_path}")

		branch_name = generate_branch_name(title, task_id)
		path = self.workspace_path(title, task_id)

		if path.exists():
			raise WorkspaceExistsError(f"Workspace already exists: {path}")
		if await self.branch_exists(branch_name):
			raise BranchExistsError(f"Branch already exists: {branch_name}")

		head = await self.get_head_commit()
		_, stderr, rc = await _run_git(["branch", branch_name, head], self.repo_path)
		if rc != 0:
			raise GitError(f"Failed to create branch {branch_name}: {stderr}")

		path.parent.mkdir(parents=True, exist_ok=True)
		_, stderr, rc = await _run_git(
			["worktree", "add", str(path), branch_name],
			self.repo_path,
			timeout=120,
		)
		if rc != 0:
			logger.error(f"git worktree add failed for {branch_name}: {stderr}")
			# Don't leave a dangling branch behind
			await _run_git(["branch", "-D", branch_name], self.repo_path)
			raise GitError(f"Failed to create worktree: {stderr}")

		logger.info(f"Created worktree at {path} with branch {branch_name}")
		return branch_name, path

	async def remove_workspace(self, path: Path | str) -> None:
		"""Force-remove a worktree. Removing an absent workspace is a no-op."""
		path = Path(path)
		_, stderr, rc = await _run_git(
			["worktree", "remove", "--force", str(path)],
			self.repo_path,
			timeout=120,
		)
		if rc != 0:
			logger.debug(f"git worktree remove failed for {path}: {stderr}")
			if path.exists():
				await asyncio.to_thread(shutil.rmtree, path)

		_, stderr, rc = await _run_git(["worktree", "prune"], self.repo_path)
		if rc != 0:
			logger.warning(f"git worktree prune failed: {stderr}")
		logger.info(f"Removed worktree at {path}")

	async def merge_branch(self, branch_name: str) -> None:
		"""
		Merge a task branch into the main branch.

		Raises:
			MergeConflictError: On conflicts. The merge is aborted and the
				repository is left on the main branch with a clean state.
			GitError: On any other failure
		"""
		_, stderr, rc = await _run_git(["checkout", self.main_branch], self.repo_path, timeout=120)
		if rc != 0:
			raise GitError(f"Failed to checkout {self.main_branch}: {stderr}")

		stdout, stderr, rc = await _run_git(
			["merge", branch_name, "--no-edit"],
			self.repo_path,
			timeout=120,
		)
		if rc != 0:
			output = f"{stdout}\n{stderr}".strip()
			if "CONFLICT" in output or "conflict" in output:
				_, abort_err, abort_rc = await _run_git(["merge", "--abort"], self.repo_path)
				if abort_rc != 0:
					logger.error(f"git merge --abort failed: {abort_err}")
				logger.warning(f"Merge conflict merging {branch_name}: {output}")
				raise MergeConflictError(output)
			logger.error(f"Failed to merge {branch_name}: {output}")
			raise GitError(f"Failed to merge branch: {output}")

		logger.info(f"Merged branch {branch_name} into {self.main_branch}")

	async def delete_branch(self, branch_name: str, force: bool = False) -> None:
		"""
		Delete a branch. A branch that does not exist counts as deleted.

		Without force, git refuses to delete unmerged branches.
		"""
		_, stderr, rc = await _run_git(
			["branch", "-D" if force else "-d", branch_name],
			self.repo_path,
		)
		if rc != 0:
			if "not found" in stderr:
				return
			raise GitError(f"Failed to delete branch {branch_name}: {stderr}")
		logger.info(f"Deleted branch {branch_name}")

	def _scan_workspaces(self) -> list[Path]:
		if not self.project_dir.is_dir():
			return []
		return sorted(
			p for p in self.project_dir.iterdir()
			if p.is_dir() and (p / ".git").exists()
		)

	async def list_workspaces(self) -> list[Path]:
		"""On-disk workspaces under this repository's namespace."""
		return await asyncio.to_thread(self._scan_workspaces)

	async def cleanup_orphans(self, valid_paths: set[str] | list[str]) -> list[Path]:
		"""
		Remove every workspace not listed in valid_paths.

		Returns:
			The workspaces that were removed
		"""
		valid = {str(Path(p)) for p in valid_paths}
		removed = []
		for path in await self.list_workspaces():
			if str(path) in valid:
				continue
			logger.info(f"Removing orphan worktree: {path}")
			try:
				await self.remove_workspace(path)
			except OSError as e:
				logger.warning(f"Failed to remove orphan worktree {path}: {e}")
				continue
			removed.append(path)
		return removed

	async def get_head_commit(self, ref: str = "HEAD") -> str:
		stdout, stderr, rc = await _run_git(["rev-parse", ref], self.repo_path)
		if rc != 0:
			raise GitError(f"Failed to resolve {ref}: {stderr}")
		return stdout
