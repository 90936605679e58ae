"""JSON API endpoints and SSE event stream for the coordinator."""

from __future__ import annotations

import asyncio
import json
from typing import AsyncGenerator, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse

from ..coordinator import DelegationCoordinator
from ..errors import InvalidTransition, TaskNotFoundError, UnknownCapability
from ..events import EventBus
from ..models import Task, TaskStatus
from ..store import TaskStore

HEARTBEAT_SECONDS = 15


def get_coordinator(request: Request) -> DelegationCoordinator:
	"""Get the coordinator from app state."""
	return request.app.state.coordinator


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
	return JSONResponse({"error": error, "message": message, **extra}, status_code=status_code)


async def _read_json(request: Request) -> Optional[dict]:
	try:
		body = await request.json()
	except json.JSONDecodeError:
		return None
	return body if isinstance(body, dict) else None


async def _find_task(request: Request, task_id: str) -> Optional[Task]:
	"""Live task, falling back to the store for tasks from earlier runs."""
	task = get_coordinator(request).get_task(task_id)
	if task is None:
		store: Optional[TaskStore] = request.app.state.store
		if store is not None:
			task = await store.get_task(task_id)
	return task


async def health(request: Request) -> JSONResponse:
	coordinator = get_coordinator(request)
	monitor = request.app.state.monitor
	return JSONResponse({
		"status": "ok",
		"tasks": len(coordinator.list_tasks()),
		"openTasks": len(coordinator.list_tasks(open_only=True)),
		"monitorRunning": bool(monitor and monitor.running),
	})


async def create_task(request: Request) -> JSONResponse:
	"""POST /tasks {capability, payload, reviewRequired?, approvalRequired?, category?}"""
	body = await _read_json(request)
	if body is None or not body.get("capability"):
		return _error(400, "invalid_request", "Body must be a JSON object with a capability")

	try:
		task_id = await get_coordinator(request).submit(
			body["capability"],
			body.get("payload"),
			review_required=bool(body.get("reviewRequired", True)),
			approval_required=bool(body.get("approvalRequired", False)),
			category=body.get("category"),
		)
	except UnknownCapability as e:
		return _error(400, "unknown_capability", str(e), capability=e.capability)

	return JSONResponse({"taskId": task_id}, status_code=201)


async def list_tasks(request: Request) -> JSONResponse:
	"""GET /tasks?status=..."""
	status = None
	status_param = request.query_params.get("status")
	if status_param:
		try:
			status = TaskStatus(status_param)
		except ValueError:
			return _error(400, "invalid_status", f"Unknown status: {status_param}")

	tasks = get_coordinator(request).list_tasks(status=status)
	return JSONResponse([t.summary() for t in tasks])


async def get_task(request: Request) -> JSONResponse:
	"""GET /tasks/{task_id}"""
	task_id = request.path_params["task_id"]
	task = await _find_task(request, task_id)
	if task is None:
		return _error(404, "task_not_found", f"Task not found: {task_id}")
	return JSONResponse(task.to_api())


async def cancel_task(request: Request) -> JSONResponse:
	"""POST /tasks/{task_id}/cancel"""
	task_id = request.path_params["task_id"]
	try:
		task = await get_coordinator(request).cancel(task_id)
	except TaskNotFoundError as e:
		return _error(404, "task_not_found", str(e))
	return JSONResponse({"taskId": task.id, "status": task.status.value})


async def resolve_approval(request: Request) -> JSONResponse:
	"""POST /tasks/{task_id}/approval {approved, note?}"""
	task_id = request.path_params["task_id"]
	body = await _read_json(request)
	if body is None or not isinstance(body.get("approved"), bool):
		return _error(400, "invalid_request", "Body must be a JSON object with a boolean 'approved'")

	try:
		task = await get_coordinator(request).resolve_approval(
			task_id, body["approved"], note=str(body.get("note", ""))
		)
	except TaskNotFoundError as e:
		return _error(404, "task_not_found", str(e))
	except InvalidTransition as e:
		return _error(409, "no_pending_approval", str(e))

	return JSONResponse({"taskId": task.id, "status": task.status.value})


async def list_workers(request: Request) -> JSONResponse:
	"""GET /workers"""
	coordinator = get_coordinator(request)
	return JSONResponse([w.model_dump(mode="json") for w in coordinator.registry.workers()])


async def recent_events(request: Request) -> JSONResponse:
	"""GET /events/recent?task_id=...&limit=..."""
	coordinator = get_coordinator(request)
	limit = int(request.query_params.get("limit", "50"))
	task_id = request.query_params.get("task_id")
	events = coordinator.events.recent(limit=limit, task_id=task_id)
	return JSONResponse([e.model_dump(mode="json") for e in events])


async def _sse_generator(events: EventBus) -> AsyncGenerator[str, None]:
	"""Yield coordinator events as SSE messages until the client goes away."""
	queue = events.subscribe()
	try:
		# Send an initial event so the client fires onopen reliably
		yield "event: connected\ndata: {}\n\n"
		while True:
			try:
				event = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_SECONDS)
			except asyncio.TimeoutError:
				# Heartbeat to keep connection alive
				yield ": heartbeat\n\n"
				continue
			yield f"event: {event.type.value}\ndata: {event.model_dump_json()}\n\n"
	finally:
		events.unsubscribe(queue)


async def event_stream(request: Request) -> StreamingResponse:
	"""GET /events - streams coordinator events as they are published."""
	return StreamingResponse(
		_sse_generator(get_coordinator(request).events),
		media_type="text/event-stream",
		headers={
			"Cache-Control": "no-cache",
			"Connection": "keep-alive",
			"X-Accel-Buffering": "no",
		},
	)
