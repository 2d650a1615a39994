"""Visualizer package - Rich terminal views of the task board."""

from .board import render_board, render_diff_summary, render_task_detail

__all__ = [
	"render_board",
	"render_diff_summary",
	"render_task_detail",
]
