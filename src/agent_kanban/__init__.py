"""agent-kanban - isolated, cancellable agent tasks on git worktrees."""

__version__ = "0.1.0"
