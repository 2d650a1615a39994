"""Kanban board and task views."""

from typing import Optional

from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..models import Task, TaskStatus
from ..worktree import DiffChangeType, DiffResponse
from .utils import STATUS_STYLES, STATUS_TITLES, format_timestamp, truncate

CHANGE_STYLES = {
	DiffChangeType.ADDED: "green",
	DiffChangeType.MODIFIED: "yellow",
	DiffChangeType.DELETED: "red",
	DiffChangeType.RENAMED: "cyan",
}


def _card(task: Task, running: bool) -> str:
	lines = [f"[bold]{truncate(task.title, 40)}[/bold]"]
	if task.branch_name:
		lines.append(f"[dim]{task.branch_name}[/dim]")
	if running:
		lines.append("[yellow]running[/yellow]")
	if task.error_message:
		lines.append(f"[red]{truncate(task.error_message, 40)}[/red]")
	lines.append(f"[dim]{task.id[:8]} - {format_timestamp(task.updated_at)}[/dim]")
	return "\n".join(lines)


def render_board(
	tasks: list[Task],
	running: Optional[set[str]] = None,
	console: Optional[Console] = None,
) -> None:
	"""Render tasks as four status columns."""
	console = console or Console()
	running = running or set()

	console.print()
	console.rule("[bold cyan]Task Board[/bold cyan]")
	console.print()

	if not tasks:
		console.print("[dim]No tasks yet. Create one with the create_task tool or the web API.[/dim]")
		console.print()
		return

	columns = []
	for status in TaskStatus:
		column_tasks = [t for t in tasks if t.status == status]
		table = Table(show_header=False, box=None, padding=(0, 0, 1, 0))
		table.add_column()
		for task in column_tasks:
			table.add_row(_card(task, task.id in running))
		if not column_tasks:
			table.add_row("[dim]-[/dim]")
		columns.append(Panel(
			table,
			title=f"{STATUS_TITLES[status]} ({len(column_tasks)})",
			border_style=STATUS_STYLES[status],
			width=46,
		))

	console.print(Columns(columns))
	console.print()


def render_task_detail(task: Task, console: Optional[Console] = None) -> None:
	"""Render a panel with every field of a task."""
	console = console or Console()

	lines = [
		f"[bold]Title:[/bold] {task.title}",
		f"[bold]Status:[/bold] [{STATUS_STYLES[task.status]}]{task.status.value}[/]",
		f"[bold]Project:[/bold] {task.project_path}",
	]
	if task.branch_name:
		lines.append(f"[bold]Branch:[/bold] {task.branch_name}")
		lines.append(f"[bold]Worktree:[/bold] {task.worktree_path}")
	lines.append(f"[bold]Created:[/bold] {format_timestamp(task.created_at)}")
	lines.append(f"[bold]Updated:[/bold] {format_timestamp(task.updated_at)}")
	if task.description:
		lines.append("")
		lines.append(task.description)
	if task.error_message:
		lines.append("")
		lines.append(f"[red]{task.error_message}[/red]")

	console.print(Panel("\n".join(lines), title=f"Task: {task.id}", border_style="cyan"))


def render_diff_summary(diff: DiffResponse, console: Optional[Console] = None) -> None:
	"""Render per-file change counts."""
	console = console or Console()

	if not diff.files:
		console.print("[dim]No changes.[/dim]")
		return

	table = Table(title="Changes")
	table.add_column("File", style="cyan")
	table.add_column("Change", justify="center")
	table.add_column("+", justify="right", style="green")
	table.add_column("-", justify="right", style="red")
	for f in diff.files:
		style = CHANGE_STYLES.get(f.change_type, "white")
		table.add_row(f.path, f"[{style}]{f.change_type.value}[/{style}]", str(f.additions), str(f.deletions))
	table.add_row("[bold]Total[/bold]", "", f"[bold]{diff.total_additions}[/bold]", f"[bold]{diff.total_deletions}[/bold]")
	console.print(table)
