"""Structured change summaries for a workspace, parsed from unified diffs."""

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from .manager import _run_git

logger = logging.getLogger(__name__)


class DiffChangeType(str, Enum):
	ADDED = "added"
	MODIFIED = "modified"
	DELETED = "deleted"
	RENAMED = "renamed"


class DiffFile(BaseModel):
	"""Changes to a single file."""
	path: str
	change_type: DiffChangeType = DiffChangeType.MODIFIED
	additions: int = 0
	deletions: int = 0
	content: str = ""


class DiffResponse(BaseModel):
	"""All changes in a workspace with aggregated line counts."""
	files: list[DiffFile] = Field(default_factory=list)
	total_additions: int = 0
	total_deletions: int = 0

	@classmethod
	def from_files(cls, files: list[DiffFile]) -> "DiffResponse":
		return cls(
			files=files,
			total_additions=sum(f.additions for f in files),
			total_deletions=sum(f.deletions for f in files),
		)


def parse_diff(text: str) -> list[DiffFile]:
	"""
	Parse unified diff text into per-file records.

	A ``diff --git`` header starts a new file (path from the b/ side).
	Mode and rename markers set the change type; every other line is kept
	verbatim in the file's content, and +/- lines outside the ---/+++
	headers are counted.
	"""
	files: list[DiffFile] = []
	current: DiffFile | None = None
	content: list[str] = []

	def flush() -> None:
		if current is not None:
			current.content = "".join(f"{line}\n" for line in content)
			files.append(current)

	for line in text.splitlines():
		if line.startswith("diff --git"):
			flush()
			content = []
			parts = line.split()
			current = None
			if len(parts) >= 4:
				current = DiffFile(path=parts[3].removeprefix("b/"))
		elif current is None:
			continue
		elif line.startswith("new file mode"):
			current.change_type = DiffChangeType.ADDED
		elif line.startswith("deleted file mode"):
			current.change_type = DiffChangeType.DELETED
		elif line.startswith("rename from") or line.startswith("rename to"):
			current.change_type = DiffChangeType.RENAMED
		else:
			if line.startswith("+") and not line.startswith("+++"):
				current.additions += 1
			elif line.startswith("-") and not line.startswith("---"):
				current.deletions += 1
			content.append(line)

	flush()
	return files


async def get_worktree_diff(worktree_path: Path | str, main_branch: str = "main") -> DiffResponse:
	"""
	Diff a workspace against its parent commit, falling back to the main branch.

	A repository without history, or with nothing to compare, yields an
	empty response.
	"""
	worktree_path = Path(worktree_path)
	for base in ("HEAD~1", main_branch):
		stdout, stderr, rc = await _run_git(["diff", base], worktree_path, timeout=60, strip=False)
		if rc == 0:
			return DiffResponse.from_files(parse_diff(stdout))
		logger.debug(f"git diff {base} failed in {worktree_path}: {stderr}")
	return DiffResponse()
