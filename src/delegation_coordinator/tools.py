"""MCP tools - task submission, status and approval for agent runtimes."""

import json
import logging
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .coordinator import DelegationCoordinator
from .errors import InvalidTransition, TaskNotFoundError, UnknownCapability
from .models import TaskStatus
from .store import TaskStore

logger = logging.getLogger(__name__)


def _error(error: str, message: str) -> str:
	return json.dumps({"error": error, "message": message})


def register_coordinator_tools(
	mcp: FastMCP,
	coordinator: DelegationCoordinator,
	store: Optional[TaskStore] = None,
) -> None:
	"""Register coordinator tools on an MCP server."""

	@mcp.tool()
	async def submit_task(
		capability: str,
		payload: str,
		review_required: bool = True,
		approval_required: bool = False,
		category: str = "",
	) -> str:
		"""
		Delegate a task to the worker registered for a capability.

		Every result goes through the plan-reviewer unless review_required
		is false (trivial fixes, documentation-only changes).

		Args:
			capability: frontend, backend, devops, qa, knowledge-manager or plan-reviewer
			payload: What the worker should do
			review_required: Route the result through the plan-reviewer
			approval_required: Hold the reviewed result for human approval
			category: Duration-budget category (default from capability)
		"""
		try:
			task_id = await coordinator.submit(
				capability,
				payload,
				review_required=review_required,
				approval_required=approval_required,
				category=category or None,
			)
		except UnknownCapability as e:
			return _error("unknown_capability", str(e))
		return json.dumps({"taskId": task_id})

	@mcp.tool()
	async def get_task(task_id: str) -> str:
		"""
		Get status, attempt count, result and verdict history of a task.

		Args:
			task_id: Task ID returned by submit_task
		"""
		task = coordinator.get_task(task_id)
		if task is None and store is not None:
			task = await store.get_task(task_id)
		if task is None:
			return _error("task_not_found", f"Task not found: {task_id}")
		return json.dumps(task.to_api(), indent=2, default=str)

	@mcp.tool()
	async def list_tasks(status: str = "") -> str:
		"""
		List known tasks.

		Args:
			status: Optional status filter (e.g. in_progress, awaiting_approval)
		"""
		try:
			status_filter = TaskStatus(status) if status else None
		except ValueError:
			return _error("invalid_status", f"Unknown status: {status}")
		tasks = coordinator.list_tasks(status=status_filter)
		return json.dumps([t.summary() for t in tasks], indent=2)

	@mcp.tool()
	async def cancel_task(task_id: str) -> str:
		"""
		Cancel a task. Calling it again is harmless.

		Args:
			task_id: Task ID
		"""
		try:
			task = await coordinator.cancel(task_id)
		except TaskNotFoundError as e:
			return _error("task_not_found", str(e))
		return json.dumps({"taskId": task.id, "status": task.status.value})

	@mcp.tool()
	async def resolve_approval(task_id: str, approved: bool, note: str = "") -> str:
		"""
		Approve or deny a reviewed result that is waiting for a human.

		Args:
			task_id: Task ID in awaiting_approval
			approved: True to finalize, False to fail the task
			note: Optional reason
		"""
		try:
			task = await coordinator.resolve_approval(task_id, approved, note=note)
		except TaskNotFoundError as e:
			return _error("task_not_found", str(e))
		except InvalidTransition as e:
			return _error("no_pending_approval", str(e))
		return json.dumps({"taskId": task.id, "status": task.status.value})

	@mcp.tool()
	async def list_workers() -> str:
		"""List registered workers and their capabilities."""
		return json.dumps(
			[w.model_dump(mode="json") for w in coordinator.registry.workers()],
			indent=2,
		)
