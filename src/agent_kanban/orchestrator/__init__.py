"""Task orchestration, plan sessions, project chat and previews."""

from .chat import ChatService
from .errors import (
	AlreadyRunningError,
	ConflictError,
	InvalidStateError,
	NoBranchError,
	NoPortAvailableError,
	NotFoundError,
	NotRunningError,
	NoWorkspaceError,
	OrchestratorError,
	PlanSessionNotFoundError,
	PreviewAlreadyRunningError,
	PreviewNotConfiguredError,
	ResourceExhaustedError,
	TaskNotFoundError,
)
from .plan_session import PlanAnswer, PlanQuestion, PlanSession, PlanStatus
from .planner import PlanSessionEngine
from .preview import PreviewInfo, PreviewManager
from .tasks import RunningExecution, TaskOrchestrator, best_effort

__all__ = [
	"AlreadyRunningError",
	"ChatService",
	"ConflictError",
	"InvalidStateError",
	"NoBranchError",
	"NoPortAvailableError",
	"NotFoundError",
	"NotRunningError",
	"NoWorkspaceError",
	"OrchestratorError",
	"PlanAnswer",
	"PlanQuestion",
	"PlanSession",
	"PlanSessionEngine",
	"PlanSessionNotFoundError",
	"PlanStatus",
	"PreviewAlreadyRunningError",
	"PreviewInfo",
	"PreviewManager",
	"PreviewNotConfiguredError",
	"ResourceExhaustedError",
	"RunningExecution",
	"TaskNotFoundError",
	"TaskOrchestrator",
	"best_effort",
]
