"""Tests for unified diff parsing and workspace diffs."""

import subprocess
from pathlib import Path

import pytest

from agent_kanban.worktree import DiffChangeType, DiffResponse, WorktreeManager, get_worktree_diff, parse_diff

from .helpers import commit_file, init_git_repo

TWO_FILE_DIFF = """\
diff --git a/src/app.py b/src/app.py
index 83db48f..bf269f4 100644
--- a/src/app.py
+++ b/src/app.py
@@ -1,2 +1,3 @@
 import os
+import sys
 print(os.name)
diff --git a/src/new.py b/src/new.py
new file mode 100644
index 0000000..e69de29
--- /dev/null
+++ b/src/new.py
@@ -0,0 +1,2 @@
+def main():
+    pass
"""


class TestParseDiff:
	def test_modified_and_added(self):
		files = parse_diff(TWO_FILE_DIFF)

		assert len(files) == 2
		app, new = files
		assert app.path == "src/app.py"
		assert app.change_type == DiffChangeType.MODIFIED
		assert (app.additions, app.deletions) == (1, 0)
		assert new.path == "src/new.py"
		assert new.change_type == DiffChangeType.ADDED
		assert new.additions == 2

	def test_header_lines_are_not_counted(self):
		app = parse_diff(TWO_FILE_DIFF)[0]
		assert "--- a/src/app.py" in app.content
		assert "+import sys" in app.content
		assert app.additions == 1

	def test_mode_markers_are_not_content(self):
		new = parse_diff(TWO_FILE_DIFF)[1]
		assert "new file mode" not in new.content
		assert "+def main():" in new.content

	def test_deleted_and_renamed(self):
		text = (
			"diff --git a/old.txt b/old.txt\n"
			"deleted file mode 100644\n"
			"--- a/old.txt\n"
			"+++ /dev/null\n"
			"@@ -1 +0,0 @@\n"
			"-bye\n"
			"diff --git a/a.txt b/b.txt\n"
			"similarity index 100%\n"
			"rename from a.txt\n"
			"rename to b.txt\n"
		)
		deleted, renamed = parse_diff(text)
		assert deleted.change_type == DiffChangeType.DELETED
		assert deleted.deletions == 1
		assert renamed.change_type == DiffChangeType.RENAMED
		assert renamed.path == "b.txt"

	def test_trailing_blank_context_line_is_content(self):
		text = (
			"diff --git a/a.txt b/a.txt\n"
			"--- a/a.txt\n"
			"+++ b/a.txt\n"
			"@@ -1,3 +1,3 @@\n"
			" x\n"
			"-y\n"
			"+Y\n"
			" \n"
		)
		[f] = parse_diff(text)
		assert f.content.endswith("+Y\n \n")

	def test_empty(self):
		assert parse_diff("") == []

	def test_response_totals(self):
		response = DiffResponse.from_files(parse_diff(TWO_FILE_DIFF))
		assert response.total_additions == 3
		assert response.total_deletions == 0


class TestWorktreeDiff:
	@pytest.mark.asyncio
	async def test_uncommitted_change_in_fresh_workspace(self, tmp_path: Path):
		repo = tmp_path / "repo"
		init_git_repo(repo)
		manager = WorktreeManager(repo, tmp_path / "worktrees")
		_, path = await manager.create_workspace("Edit", "abcdef12-0000")
		with open(path / "README.md", "a") as f:
			f.write("more\n")

		diff = await get_worktree_diff(path)

		assert [f.path for f in diff.files] == ["README.md"]
		assert diff.total_additions == 1
		assert diff.total_deletions == 0

	@pytest.mark.asyncio
	async def test_trailing_blank_context_line_survives(self, tmp_path: Path):
		repo = tmp_path / "repo"
		init_git_repo(repo)
		commit_file(repo, "a.txt", "x\ny\n\n")
		manager = WorktreeManager(repo, tmp_path / "worktrees")
		_, path = await manager.create_workspace("Edit", "abcdef12-0001")
		commit_file(path, "a.txt", "x\nY\n\n")

		diff = await get_worktree_diff(path)

		[f] = diff.files
		hunk = f.content[f.content.index("@@"):].splitlines()
		assert hunk == ["@@ -1,3 +1,3 @@", " x", "-y", "+Y", " "]

	@pytest.mark.asyncio
	async def test_repository_without_history_is_empty(self, tmp_path: Path):
		empty = tmp_path / "empty"
		empty.mkdir()
		subprocess.run(["git", "init", "-b", "main"], cwd=str(empty), capture_output=True, check=True)

		diff = await get_worktree_diff(empty)

		assert diff.files == []
		assert diff.total_additions == 0
