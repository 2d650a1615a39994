"""
Record store - SQLite-backed persistence for tasks and chat messages.

A single long-lived aiosqlite connection is opened lazily on first use.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

import aiosqlite

from .models import ChatMessage, ChatRole, CreateTask, Task, TaskStatus, UpdateTask, now_iso

logger = logging.getLogger(__name__)


class Database:
	"""
	Task and chat message storage.

	Usage:
		db = Database("data/agent_kanban.db")
		await db.init()

		task = await db.create_task(CreateTask(title="Fix login", project_path="/repo"))
		await db.set_status(task.id, TaskStatus.IN_PROGRESS)
	"""

	# Allowlist of columns that can be updated (prevents SQL injection via column names)
	ALLOWED_UPDATE_COLUMNS = frozenset({
		"title", "description", "status", "error_message",
		"branch_name", "worktree_path",
	})

	def __init__(self, db_path: str | Path):
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self) -> None:
		"""Open the connection and create the schema."""
		if self._db:
			return
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS tasks (
				id TEXT PRIMARY KEY,
				title TEXT NOT NULL,
				description TEXT,
				status TEXT NOT NULL DEFAULT 'todo',
				error_message TEXT,
				branch_name TEXT,
				worktree_path TEXT,
				project_path TEXT NOT NULL,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
		""")
		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_path)
		""")
		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS chat_messages (
				id TEXT PRIMARY KEY,
				project_path TEXT NOT NULL,
				role TEXT NOT NULL,
				content TEXT NOT NULL,
				image_data TEXT,
				created_at TEXT NOT NULL
			)
		""")
		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_chat_project ON chat_messages(project_path, created_at)
		""")
		await self._db.commit()
		logger.info(f"Database initialized: {self.db_path}")

	async def close(self) -> None:
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def _conn(self) -> aiosqlite.Connection:
		if not self._db:
			await self.init()
		return self._db

	# =========================================================================
	# Tasks
	# =========================================================================

	@staticmethod
	def _row_to_task(row: aiosqlite.Row) -> Task:
		return Task(
			id=row["id"],
			title=row["title"],
			description=row["description"],
			status=TaskStatus(row["status"]),
			error_message=row["error_message"],
			branch_name=row["branch_name"],
			worktree_path=row["worktree_path"],
			project_path=row["project_path"],
			created_at=row["created_at"],
			updated_at=row["updated_at"],
		)

	async def create_task(self, data: CreateTask) -> Task:
		"""Insert a new task in the todo state."""
		db = await self._conn()
		task = Task(
			id=str(uuid.uuid4()),
			title=data.title,
			description=data.description,
			project_path=data.project_path,
		)
		await db.execute(
			"""INSERT INTO tasks
			(id, title, description, status, project_path, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?, ?, ?)""",
			(
				task.id, task.title, task.description, task.status.value,
				task.project_path, task.created_at, task.updated_at,
			),
		)
		await db.commit()
		return task

	async def get_task(self, task_id: str) -> Optional[Task]:
		db = await self._conn()
		async with db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)) as cursor:
			row = await cursor.fetchone()
		return self._row_to_task(row) if row else None

	async def list_tasks(self, project_path: Optional[str] = None) -> list[Task]:
		"""List tasks newest first, optionally restricted to one project."""
		db = await self._conn()
		if project_path is None:
			query, params = "SELECT * FROM tasks ORDER BY created_at DESC", ()
		else:
			query = "SELECT * FROM tasks WHERE project_path = ? ORDER BY created_at DESC"
			params = (project_path,)
		async with db.execute(query, params) as cursor:
			rows = await cursor.fetchall()
		return [self._row_to_task(row) for row in rows]

	async def update_task(self, task_id: str, update: UpdateTask) -> Optional[Task]:
		"""
		Apply a partial update.

		Args:
			task_id: Task to update
			update: Fields to write; unset fields are left unchanged

		Returns:
			The updated task, or None if it does not exist
		"""
		changes = update.changes()
		invalid = set(changes) - self.ALLOWED_UPDATE_COLUMNS
		if invalid:
			raise ValueError(f"Invalid columns for update: {invalid}")

		db = await self._conn()
		changes["updated_at"] = now_iso()
		set_clause = ", ".join(f"{col} = ?" for col in changes)
		cursor = await db.execute(
			f"UPDATE tasks SET {set_clause} WHERE id = ?",
			(*changes.values(), task_id),
		)
		await db.commit()
		if cursor.rowcount == 0:
			return None
		return await self.get_task(task_id)

	async def delete_task(self, task_id: str) -> bool:
		db = await self._conn()
		cursor = await db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
		await db.commit()
		return cursor.rowcount > 0

	async def set_status(self, task_id: str, status: TaskStatus) -> Optional[Task]:
		return await self.update_task(task_id, UpdateTask(status=status))

	async def set_error(self, task_id: str, message: str) -> Optional[Task]:
		"""Record a failure. A failed task lands in review with its error."""
		return await self.update_task(
			task_id, UpdateTask(status=TaskStatus.REVIEW, error_message=message)
		)

	async def set_worktree(self, task_id: str, branch_name: str, worktree_path: str) -> Optional[Task]:
		return await self.update_task(
			task_id, UpdateTask(branch_name=branch_name, worktree_path=worktree_path)
		)

	async def clear_worktree(self, task_id: str) -> Optional[Task]:
		return await self.update_task(
			task_id, UpdateTask(branch_name=None, worktree_path=None)
		)

	# =========================================================================
	# Chat messages
	# =========================================================================

	async def create_chat_message(
		self,
		project_path: str,
		role: ChatRole,
		content: str,
		image_data: Optional[str] = None,
	) -> ChatMessage:
		db = await self._conn()
		message = ChatMessage(
			id=str(uuid.uuid4()),
			project_path=project_path,
			role=role,
			content=content,
			image_data=image_data,
		)
		await db.execute(
			"""INSERT INTO chat_messages
			(id, project_path, role, content, image_data, created_at)
			VALUES (?, ?, ?, ?, ?, ?)""",
			(
				message.id, message.project_path, message.role.value,
				message.content, message.image_data, message.created_at,
			),
		)
		await db.commit()
		return message

	async def list_chat_messages(self, project_path: str, limit: int = 100) -> list[ChatMessage]:
		"""Most recent messages for a project, oldest first."""
		db = await self._conn()
		async with db.execute(
			"""SELECT * FROM (
				SELECT rowid AS seq, * FROM chat_messages WHERE project_path = ?
				ORDER BY created_at DESC, seq DESC LIMIT ?
			) ORDER BY created_at ASC, seq ASC""",
			(project_path, limit),
		) as cursor:
			rows = await cursor.fetchall()
		return [
			ChatMessage(
				id=row["id"],
				project_path=row["project_path"],
				role=ChatRole(row["role"]),
				content=row["content"],
				image_data=row["image_data"],
				created_at=row["created_at"],
			)
			for row in rows
		]

	async def delete_chat_messages(self, project_path: str) -> int:
		db = await self._conn()
		cursor = await db.execute(
			"DELETE FROM chat_messages WHERE project_path = ?", (project_path,)
		)
		await db.commit()
		return cursor.rowcount
