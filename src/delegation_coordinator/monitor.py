"""
Progress Monitor - Watches in-flight tasks against duration budgets.

Responsibilities:
- Poll open tasks independently of submission
- Compare time since the last status change with the category budget
- Emit one PROGRESS_CHECK_IN past check_in_factor x the upper bound
- Emit one HARD_TIMEOUT past hard_timeout_factor x the upper bound

The monitor only observes. What happens on a hard timeout is up to the
coordinator's timeout policy or an external supervisor.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from .coordinator import DelegationCoordinator
from .events import EventBus
from .models import (
	CoordinatorEvent,
	DurationBudget,
	EventType,
	ProgressCheckpoint,
	Task,
	TaskStatus,
)

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY = "implementation"
REVIEW_CATEGORY = "review"

DEFAULT_BUDGETS: dict[str, DurationBudget] = {
	"implementation": DurationBudget(category="implementation", min_minutes=30, max_minutes=120),
	"review": DurationBudget(
		category="review", min_minutes=5, max_minutes=40, hard_timeout_factor=2.5
	),
	"planning": DurationBudget(category="planning", min_minutes=15, max_minutes=60),
	"testing": DurationBudget(category="testing", min_minutes=15, max_minutes=60),
	"documentation": DurationBudget(category="documentation", min_minutes=10, max_minutes=45),
}

MONITORED_STATUSES = (TaskStatus.IN_PROGRESS, TaskStatus.AWAITING_REVIEW)


class ProgressMonitor:
	"""
	Polls the coordinator's open tasks and raises check-in signals.

	Usage:
		monitor = ProgressMonitor(coordinator)
		await monitor.start()
		...
		await monitor.stop()
	"""

	DEFAULT_POLL_INTERVAL = 60

	def __init__(
		self,
		coordinator: DelegationCoordinator,
		budgets: Optional[dict[str, DurationBudget]] = None,
		events: Optional[EventBus] = None,
		poll_interval: float = DEFAULT_POLL_INTERVAL,
	):
		"""
		Initialize the monitor.

		Args:
			coordinator: Coordinator whose tasks are watched (read-only)
			budgets: Category -> budget table (default: DEFAULT_BUDGETS)
			events: Bus to publish on (default: the coordinator's)
			poll_interval: Seconds between polls
		"""
		self.coordinator = coordinator
		self.budgets = dict(DEFAULT_BUDGETS)
		if budgets:
			self.budgets.update(budgets)
		self.events = events or coordinator.events
		self.poll_interval = poll_interval

		self._checkpoints: dict[str, ProgressCheckpoint] = {}
		self._loop_task: Optional[asyncio.Task] = None

	@property
	def running(self) -> bool:
		return self._loop_task is not None and not self._loop_task.done()

	async def start(self) -> None:
		"""Start the polling loop."""
		if self.running:
			return
		self._loop_task = asyncio.create_task(self._poll_loop(), name="progress-monitor")
		logger.info(f"Progress monitor started (every {self.poll_interval}s)")

	async def stop(self) -> None:
		"""Stop the polling loop."""
		if self._loop_task:
			self._loop_task.cancel()
			try:
				await self._loop_task
			except asyncio.CancelledError:
				pass
			self._loop_task = None
			logger.info("Progress monitor stopped")

	def budget_for(self, task: Task) -> Optional[DurationBudget]:
		"""Budget that applies to the task's current status phase."""
		category = REVIEW_CATEGORY if task.status == TaskStatus.AWAITING_REVIEW else task.category
		return self.budgets.get(category) or self.budgets.get(FALLBACK_CATEGORY)

	async def check(self, now: Optional[datetime] = None) -> list[CoordinatorEvent]:
		"""
		Run one poll.

		Args:
			now: Reference time (default: current time)

		Returns:
			Events emitted by this poll
		"""
		now = now or datetime.now()
		emitted: list[CoordinatorEvent] = []

		for task in self.coordinator.list_tasks():
			if task.is_terminal:
				self._checkpoints.pop(task.id, None)
				continue
			if task.status not in MONITORED_STATUSES:
				continue

			budget = self.budget_for(task)
			if budget is None:
				logger.debug(f"No duration budget for task {task.id} ({task.category})")
				continue

			checkpoint = self._checkpoint_for(task, budget)
			elapsed = (now - datetime.fromisoformat(task.status_changed_at)).total_seconds()
			checkpoint.elapsed_seconds = max(elapsed, 0.0)
			checkpoint.last_checked_at = now.isoformat()

			if elapsed > budget.check_in_after and not checkpoint.check_in_emitted:
				checkpoint.check_in_emitted = True
				emitted.append(self._event(EventType.PROGRESS_CHECK_IN, task, checkpoint))

			if elapsed > budget.hard_timeout_after and not checkpoint.escalated:
				checkpoint.escalated = True
				emitted.append(self._event(EventType.HARD_TIMEOUT, task, checkpoint))

		for event in emitted:
			level = logging.WARNING if event.type == EventType.HARD_TIMEOUT else logging.INFO
			logger.log(
				level,
				f"{event.type.value} for task {event.task_id}: "
				f"{event.data['elapsedMinutes']:.0f}m in {event.data['status']}",
			)
			await self.events.publish(event)

		return emitted

	def get_checkpoint(self, task_id: str) -> Optional[ProgressCheckpoint]:
		"""Current checkpoint for a task."""
		checkpoint = self._checkpoints.get(task_id)
		return checkpoint.model_copy() if checkpoint else None

	def list_checkpoints(self) -> list[ProgressCheckpoint]:
		return [c.model_copy() for c in self._checkpoints.values()]

	def _checkpoint_for(self, task: Task, budget: DurationBudget) -> ProgressCheckpoint:
		checkpoint = self._checkpoints.get(task.id)
		if (
			checkpoint is None
			or checkpoint.phase_started_at != task.status_changed_at
			or checkpoint.status != task.status
		):
			checkpoint = ProgressCheckpoint(
				task_id=task.id,
				status=task.status,
				budget=budget,
				phase_started_at=task.status_changed_at,
			)
			self._checkpoints[task.id] = checkpoint
		return checkpoint

	def _event(
		self,
		event_type: EventType,
		task: Task,
		checkpoint: ProgressCheckpoint,
	) -> CoordinatorEvent:
		worker = None
		if task.status == TaskStatus.AWAITING_REVIEW and self.coordinator.reviewer:
			worker = self.coordinator.reviewer.identity
		elif task.capability in self.coordinator.registry:
			worker = self.coordinator.registry.resolve(task.capability).identity

		return CoordinatorEvent(
			type=event_type,
			task_id=task.id,
			worker=worker,
			data={
				"status": task.status.value,
				"category": checkpoint.budget.category,
				"elapsedMinutes": checkpoint.elapsed_seconds / 60,
				"expectedMaxMinutes": checkpoint.budget.max_minutes,
				"attemptCount": task.attempt_count,
			},
		)

	async def _poll_loop(self) -> None:
		while True:
			try:
				await asyncio.sleep(self.poll_interval)
				await self.check()
			except asyncio.CancelledError:
				break
			except Exception as e:
				logger.error(f"Progress monitor poll failed: {e}")
