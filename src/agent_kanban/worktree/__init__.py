"""Git workspace isolation: per-task branches and worktrees, plus diffs."""

from .diff import DiffChangeType, DiffFile, DiffResponse, get_worktree_diff, parse_diff
from .manager import (
	BRANCH_PREFIX,
	BranchExistsError,
	GitError,
	MergeConflictError,
	NotARepositoryError,
	WorkspaceExistsError,
	WorktreeError,
	WorktreeManager,
	generate_branch_name,
	slugify,
)

__all__ = [
	"BRANCH_PREFIX",
	"BranchExistsError",
	"DiffChangeType",
	"DiffFile",
	"DiffResponse",
	"GitError",
	"MergeConflictError",
	"NotARepositoryError",
	"WorkspaceExistsError",
	"WorktreeError",
	"WorktreeManager",
	"generate_branch_name",
	"get_worktree_diff",
	"parse_diff",
	"slugify",
]
