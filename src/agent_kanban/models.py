"""
Task Models - Pydantic schemas for persisted records.

Tasks move through a fixed lifecycle (todo -> in_progress -> review -> done)
and carry an optional workspace (branch + worktree directory) while they
are being worked on.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


def now_iso() -> str:
	return datetime.now().isoformat()


class TaskStatus(str, Enum):
	"""Lifecycle status of a task."""
	TODO = "todo"
	IN_PROGRESS = "in_progress"
	REVIEW = "review"
	DONE = "done"


class Task(BaseModel):
	"""A unit of work executed by an agent in its own workspace."""
	id: str = Field(description="Unique task identifier")
	title: str
	description: Optional[str] = None
	status: TaskStatus = Field(default=TaskStatus.TODO)
	error_message: Optional[str] = None
	branch_name: Optional[str] = None
	worktree_path: Optional[str] = None
	project_path: str = Field(description="Repository the task belongs to")
	created_at: str = Field(default_factory=now_iso)
	updated_at: str = Field(default_factory=now_iso)

	@model_validator(mode="after")
	def _workspace_pair(self) -> "Task":
		if (self.branch_name is None) != (self.worktree_path is None):
			raise ValueError("branch_name and worktree_path must be set together")
		return self

	@property
	def prompt(self) -> str:
		"""Prompt sent to the agent: description, or the title when there is none."""
		if self.description and self.description.strip():
			return self.description
		return self.title

	@property
	def has_workspace(self) -> bool:
		return self.branch_name is not None and self.worktree_path is not None


class CreateTask(BaseModel):
	"""Fields accepted when creating a task."""
	title: str
	description: Optional[str] = None
	project_path: str


class UpdateTask(BaseModel):
	"""
	Partial update of a task.

	Only fields explicitly supplied are written; an explicit None clears
	the column.
	"""
	title: Optional[str] = None
	description: Optional[str] = None
	status: Optional[TaskStatus] = None
	error_message: Optional[str] = None
	branch_name: Optional[str] = None
	worktree_path: Optional[str] = None

	@model_validator(mode="after")
	def _workspace_pair(self) -> "UpdateTask":
		fields = self.model_fields_set
		has_branch = "branch_name" in fields
		has_path = "worktree_path" in fields
		if has_branch != has_path:
			raise ValueError("branch_name and worktree_path must be updated together")
		if has_branch and (self.branch_name is None) != (self.worktree_path is None):
			raise ValueError("branch_name and worktree_path must both be set or both cleared")
		return self

	def changes(self) -> dict:
		"""Columns this update writes."""
		data = self.model_dump(exclude_unset=True)
		if "status" in data and data["status"] is not None:
			data["status"] = TaskStatus(data["status"]).value
		return data


class ChatRole(str, Enum):
	USER = "user"
	ASSISTANT = "assistant"


class ChatMessage(BaseModel):
	"""A message in the per-project chat."""
	id: str
	project_path: str
	role: ChatRole
	content: str
	image_data: Optional[str] = None
	created_at: str = Field(default_factory=now_iso)
