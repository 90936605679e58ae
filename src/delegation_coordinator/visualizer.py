"""Rich terminal views for tasks, verdicts and workers."""

import json
from datetime import datetime
from typing import Any, Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .models import Task, TaskStatus, Worker

STATUS_ICONS = {
	TaskStatus.PENDING: "[dim][ ][/dim]",
	TaskStatus.IN_PROGRESS: "[yellow][~][/yellow]",
	TaskStatus.AWAITING_REVIEW: "[cyan][?][/cyan]",
	TaskStatus.AWAITING_APPROVAL: "[magenta]\\[h][/magenta]",
	TaskStatus.APPROVED: "[green]\\[x][/green]",
	TaskStatus.REJECTED: "[red][-][/red]",
	TaskStatus.FAILED: "[red][!][/red]",
}

STATUS_STYLES = {
	TaskStatus.IN_PROGRESS: "yellow",
	TaskStatus.AWAITING_REVIEW: "cyan",
	TaskStatus.AWAITING_APPROVAL: "magenta",
	TaskStatus.APPROVED: "green",
	TaskStatus.FAILED: "red",
}


def format_duration(seconds: float) -> str:
	"""Format a duration for display. e.g. '45s', '12m 3s', '2h 5m'."""
	if seconds < 60:
		return f"{seconds:.0f}s"
	minutes = int(seconds // 60)
	if minutes < 60:
		return f"{minutes}m {seconds % 60:.0f}s"
	return f"{minutes // 60}h {minutes % 60}m"


def format_timestamp(iso_str: Optional[str]) -> str:
	"""Format an ISO timestamp as relative time (e.g. '2m ago') or absolute."""
	if not iso_str:
		return ""
	try:
		dt = datetime.fromisoformat(iso_str)
		total_secs = int((datetime.now() - dt).total_seconds())

		if total_secs < 0:
			return iso_str[:19]
		if total_secs < 60:
			return f"{total_secs}s ago"
		if total_secs < 3600:
			return f"{total_secs // 60}m ago"
		if total_secs < 86400:
			return f"{total_secs // 3600}h ago"
		return f"{total_secs // 86400}d ago"
	except (ValueError, TypeError):
		return str(iso_str)[:19]


def truncate(value: Any, max_len: int = 60) -> str:
	"""Shorten a payload or result for table display."""
	if value is None:
		return ""
	text = value if isinstance(value, str) else json.dumps(value, default=str)
	text = " ".join(text.split())
	if len(text) <= max_len:
		return text
	return text[:max_len - 3] + "..."


def render_task_table(tasks: Iterable[Task], console: Optional[Console] = None) -> None:
	"""Render a table of task summaries."""
	console = console or Console()
	tasks = list(tasks)
	if not tasks:
		console.print("[dim]No tasks.[/dim]")
		return

	table = Table(title=f"Tasks ({len(tasks)})")
	table.add_column("ID", style="bold", no_wrap=True)
	table.add_column("Capability")
	table.add_column("Status")
	table.add_column("Attempts", justify="right")
	table.add_column("Payload")
	table.add_column("Updated", style="dim")

	for task in tasks:
		style = STATUS_STYLES.get(task.status, "")
		table.add_row(
			task.id,
			task.capability.value,
			f"[{style}]{task.status.value}[/{style}]" if style else task.status.value,
			str(task.attempt_count),
			escape(truncate(task.payload, 40)),
			format_timestamp(task.updated_at),
		)

	console.print(table)


def render_task_detail(task: Task, console: Optional[Console] = None) -> None:
	"""Render one task as a summary panel plus a tree of its history and verdicts."""
	console = console or Console()

	lines = []
	lines.append(f"[bold]Capability:[/bold] {task.capability.value}")
	lines.append(f"[bold]Status:[/bold] {task.status.value}")
	lines.append(f"[bold]Category:[/bold] {task.category}")
	lines.append(f"[bold]Attempts:[/bold] {task.attempt_count}")
	lines.append(
		f"[bold]Review:[/bold] {'required' if task.review_required else 'exempt'}"
		f"   [bold]Approval:[/bold] {'required' if task.approval_required else 'no'}"
	)
	lines.append(f"[bold]Payload:[/bold] {escape(truncate(task.payload, 200))}")
	if task.result is not None:
		lines.append(f"[bold]Result:[/bold] {escape(truncate(task.result, 200))}")
	if task.failure_reason:
		lines.append(f"[bold red]Failure:[/bold red] {task.failure_reason.value}")
	if task.error:
		lines.append(f"[bold red]Error:[/bold red] {escape(task.error)}")

	console.print(Panel("\n".join(lines), title=f"Task: {task.id}", border_style="cyan"))

	tree = Tree("[bold]History[/bold]")
	for change in task.history:
		icon = STATUS_ICONS.get(change.to_status, "[ ]")
		note = f" [dim]- {escape(change.note)}[/dim]" if change.note else ""
		tree.add(f"{icon} {change.to_status.value} [dim]{format_timestamp(change.at)}[/dim]{note}")

	if task.verdicts:
		verdict_branch = tree.add(f"[bold]Verdicts ({len(task.verdicts)})[/bold]")
		for i, verdict in enumerate(task.verdicts, 1):
			if verdict.approved:
				verdict_branch.add(f"[green]{i}. approved[/green] [dim]by {verdict.reviewer}[/dim]")
			else:
				node = verdict_branch.add(f"[red]{i}. needs improvement[/red] [dim]by {verdict.reviewer}[/dim]")
				node.add(escape(truncate(verdict.feedback, 120)))

	console.print(tree)


def render_workers(workers: Iterable[Worker], console: Optional[Console] = None) -> None:
	"""Render the worker roster."""
	console = console or Console()
	workers = list(workers)
	if not workers:
		console.print("[dim]No workers registered. Add \\[workers.<capability>] tables to config.toml.[/dim]")
		return

	table = Table(title="Workers")
	table.add_column("Capability", style="bold")
	table.add_column("Identity")
	table.add_column("Available", justify="center")

	for worker in workers:
		table.add_row(
			worker.capability.value,
			worker.identity,
			"[green]yes[/green]" if worker.available else "[red]no[/red]",
		)

	console.print(table)
