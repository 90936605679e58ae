"""
Event bus - fan-out of coordinator events.

Events are advisory: listeners and subscribers observe them, nothing in
the bus mutates task state. Listener failures are logged, never raised
back into the publisher.
"""

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Optional

from .models import CoordinatorEvent

logger = logging.getLogger(__name__)

Listener = Callable[[CoordinatorEvent], Awaitable[None]]


class EventBus:
	"""In-process publisher for CoordinatorEvent."""

	HISTORY_SIZE = 500

	def __init__(self, history_size: int = HISTORY_SIZE):
		self._listeners: list[Listener] = []
		self._queues: list[asyncio.Queue] = []
		self._history: deque[CoordinatorEvent] = deque(maxlen=history_size)

	def add_listener(self, listener: Listener) -> None:
		"""Register an async callback invoked for every event."""
		self._listeners.append(listener)

	def remove_listener(self, listener: Listener) -> None:
		if listener in self._listeners:
			self._listeners.remove(listener)

	def subscribe(self, maxsize: int = 100) -> asyncio.Queue:
		"""Get a queue that receives every event published from now on."""
		queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
		self._queues.append(queue)
		return queue

	def unsubscribe(self, queue: asyncio.Queue) -> None:
		if queue in self._queues:
			self._queues.remove(queue)

	async def publish(self, event: CoordinatorEvent) -> None:
		"""Deliver an event to every queue and listener."""
		self._history.append(event)
		logger.debug(f"Event {event.type.value} for task {event.task_id}")

		for queue in list(self._queues):
			if queue.full():
				# Slow consumer: drop its oldest event
				try:
					queue.get_nowait()
				except asyncio.QueueEmpty:
					pass
			queue.put_nowait(event)

		for listener in list(self._listeners):
			try:
				await listener(event)
			except Exception as e:
				logger.error(f"Event listener failed for {event.type.value}: {e}")

	def recent(self, limit: int = 50, task_id: Optional[str] = None) -> list[CoordinatorEvent]:
		"""Most recent events, oldest first."""
		events = [e for e in self._history if task_id is None or e.task_id == task_id]
		return events[-limit:] if limit else events
