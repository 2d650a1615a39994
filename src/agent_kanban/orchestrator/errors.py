"""Errors raised by the orchestration layer, grouped by how callers react."""

from typing import Optional


class OrchestratorError(Exception):
	"""Base exception for orchestration errors."""
	pass


class NotFoundError(OrchestratorError):
	"""The requested task or session does not exist."""
	pass


class ConflictError(OrchestratorError):
	"""The operation conflicts with the current state."""
	pass


class ResourceExhaustedError(OrchestratorError):
	"""A finite resource (ports, disk) is used up."""
	pass


class TaskNotFoundError(NotFoundError):
	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Task not found: {task_id}")


class PlanSessionNotFoundError(NotFoundError):
	def __init__(self, session_id: str):
		self.session_id = session_id
		super().__init__(f"Plan session not found: {session_id}")


class AlreadyRunningError(ConflictError):
	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Task {task_id} is already running")


class NotRunningError(ConflictError):
	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Task {task_id} is not running")


class InvalidStateError(ConflictError):
	"""Carries the actual state so callers can decide whether to retry."""

	def __init__(self, message: str, actual: Optional[str] = None):
		self.actual = actual
		if actual is not None:
			message = f"{message} (current status: {actual})"
		super().__init__(message)


class NoBranchError(ConflictError):
	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Task {task_id} has no branch to merge")


class PreviewAlreadyRunningError(ConflictError):
	def __init__(self, task_id: str, port: int):
		self.task_id = task_id
		self.port = port
		super().__init__(f"Preview for task {task_id} already running on port {port}")


class NoWorkspaceError(OrchestratorError):
	"""The task has no workspace on disk."""

	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Task {task_id} has no workspace")


class NoPortAvailableError(ResourceExhaustedError):
	def __init__(self, start: int, count: int):
		super().__init__(f"No free port in range {start}-{start + count - 1}")


class PreviewNotConfiguredError(OrchestratorError):
	def __init__(self):
		super().__init__("No preview command configured (set preview_command)")
