"""Starlette app with route assembly."""

from __future__ import annotations

import contextlib
import logging
from typing import AsyncIterator, Optional

from starlette.applications import Starlette
from starlette.routing import Route

from ..coordinator import DelegationCoordinator
from ..monitor import ProgressMonitor
from ..store import TaskStore
from .api import (
	cancel_task,
	create_task,
	event_stream,
	get_task,
	health,
	list_tasks,
	list_workers,
	recent_events,
	resolve_approval,
)

logger = logging.getLogger(__name__)


def build_app(
	coordinator: DelegationCoordinator,
	monitor: Optional[ProgressMonitor] = None,
	store: Optional[TaskStore] = None,
) -> Starlette:
	"""Build and return the Starlette ASGI app."""

	@contextlib.asynccontextmanager
	async def lifespan(app: Starlette) -> AsyncIterator[None]:
		if store is not None:
			await store.init()
		if monitor is not None:
			await monitor.start()
		logger.info("Coordinator API started")
		try:
			yield
		finally:
			if monitor is not None:
				await monitor.stop()
			await coordinator.shutdown()
			if store is not None:
				await store.close()
			logger.info("Coordinator API stopped")

	routes = [
		Route("/health", health),
		Route("/tasks", create_task, methods=["POST"]),
		Route("/tasks", list_tasks, methods=["GET"]),
		Route("/tasks/{task_id}", get_task, methods=["GET"]),
		Route("/tasks/{task_id}/cancel", cancel_task, methods=["POST"]),
		Route("/tasks/{task_id}/approval", resolve_approval, methods=["POST"]),
		Route("/workers", list_workers),
		Route("/events", event_stream),
		Route("/events/recent", recent_events),
	]

	app = Starlette(routes=routes, lifespan=lifespan)
	app.state.coordinator = coordinator
	app.state.monitor = monitor
	app.state.store = store
	return app
