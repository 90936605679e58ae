"""
Delegation Coordinator - Owns the task table and drives every task's lifecycle.

Responsibilities:
- Accept submissions and delegate to the single worker for the capability
- Route every result through the reviewer gate before it is final
- Re-invoke the same worker with feedback on rejection, up to a retry limit
- Hold reviewed results for human approval when a task asks for it
- Apply caller-supplied policy to hard-timeout signals

Lifecycle (per task, strictly sequential):
	pending -> in_progress -> awaiting_review -> (in_progress | approved | failed)

Different tasks progress concurrently. Workers and the reviewer never
write task state; they return results that the coordinator applies.
"""

import asyncio
import copy
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .errors import (
	CoordinatorError,
	InvalidTransition,
	ReviewCycleConflict,
	TaskNotFoundError,
	UnknownCapability,
)
from .events import EventBus
from .models import (
	ALLOWED_TRANSITIONS,
	Assignment,
	Capability,
	CoordinatorEvent,
	EventType,
	FailureReason,
	ReviewVerdict,
	StatusChange,
	Task,
	TaskStatus,
	default_category,
)
from .registry import RegisteredWorker, WorkerRegistry
from .reviewer import ReviewerGate
from .store import TaskStore

logger = logging.getLogger(__name__)


class TimeoutAction(str, Enum):
	"""What to do with a task that hit its hard timeout."""
	IGNORE = "ignore"
	REASSIGN = "reassign"
	FAIL = "fail"


TimeoutPolicy = Callable[[CoordinatorEvent, Task], Awaitable[TimeoutAction]]
EscalationCallback = Callable[[Task], Awaitable[None]]


class DelegationCoordinator:
	"""
	Single authority that creates, assigns and finalizes tasks.

	Usage:
		registry = WorkerRegistry()
		registry.register("backend", backend_worker)
		registry.register("plan-reviewer", reviewer)

		coordinator = DelegationCoordinator(registry)
		task_id = await coordinator.submit("backend", {"goal": "Add /health endpoint"})
		task = await coordinator.wait_for(task_id)
	"""

	DEFAULT_RETRY_LIMIT = 3

	def __init__(
		self,
		registry: WorkerRegistry,
		reviewer: Optional[ReviewerGate] = None,
		retry_limit: int = DEFAULT_RETRY_LIMIT,
		store: Optional[TaskStore] = None,
		events: Optional[EventBus] = None,
		timeout_policy: Optional[TimeoutPolicy] = None,
		on_escalate: Optional[EscalationCallback] = None,
	):
		"""
		Initialize the coordinator.

		Args:
			registry: Worker registry; frozen here, start-up is over
			reviewer: Reviewer gate (default: the registered plan-reviewer)
			retry_limit: Rejections after which a task fails
			store: Optional persistence for task snapshots
			events: Event bus (default: a private one)
			timeout_policy: Callback(event, task) -> TimeoutAction for HARD_TIMEOUT
			on_escalate: Callback(task) when a task exhausts its retries
		"""
		if retry_limit < 1:
			raise ValueError("retry_limit must be at least 1")

		registry.freeze()
		self.registry = registry
		self.reviewer = reviewer or ReviewerGate.from_registry(registry)
		self.retry_limit = retry_limit
		self.store = store
		self.events = events or EventBus()
		self.timeout_policy = timeout_policy
		self.on_escalate = on_escalate

		self._tasks: dict[str, Task] = {}
		self._finished: dict[str, asyncio.Event] = {}
		self._running: dict[str, asyncio.Task] = {}
		self._outbox: list[CoordinatorEvent] = []
		self._settled: list[str] = []
		self._lock = asyncio.Lock()

		if timeout_policy:
			self.events.add_listener(self._handle_hard_timeout)

	# ------------------------------------------------------------------
	# Public operations
	# ------------------------------------------------------------------

	async def submit(
		self,
		capability: "str | Capability",
		payload: Any,
		review_required: bool = True,
		approval_required: bool = False,
		category: Optional[str] = None,
	) -> str:
		"""
		Create a task and delegate it.

		Args:
			capability: Target capability tag
			payload: Opaque work description handed to the worker
			review_required: Route the result through the plan-reviewer
			approval_required: Hold the reviewed result for human approval
			category: Duration-budget category (default from capability)

		Returns:
			Task ID

		Raises:
			UnknownCapability: No worker for the tag (no task is created), or
				review required but no plan-reviewer registered
		"""
		registered = self.registry.resolve(capability)
		if review_required and self.reviewer is None:
			raise UnknownCapability(
				Capability.PLAN_REVIEWER.value,
				"Review required but no plan-reviewer is registered",
			)

		async with self._lock:
			task = Task(
				capability=registered.capability,
				payload=payload,
				review_required=review_required,
				approval_required=approval_required,
				category=category or default_category(registered.capability),
			)
			task.history.append(StatusChange(to_status=TaskStatus.PENDING, at=task.created_at))
			self._tasks[task.id] = task
			self._finished[task.id] = asyncio.Event()

			self._queue_event(
				EventType.TASK_SUBMITTED,
				task,
				data={
					"capability": task.capability.value,
					"reviewRequired": review_required,
					"approvalRequired": approval_required,
					"category": task.category,
				},
			)
			self._transition(task, TaskStatus.IN_PROGRESS, note=f"delegated to {registered.identity}")
			self._dispatch_worker(task, registered)
			await self._persist(task)

		await self._flush_events()
		logger.info(f"Submitted task {task.id} to {registered.identity}")
		return task.id

	async def on_worker_result(
		self,
		task_id: str,
		result: Any,
		invocation: Optional[int] = None,
	) -> Task:
		"""
		Apply a worker result: move to review and forward to the reviewer gate.

		Results for terminal tasks or superseded invocations are discarded.

		Raises:
			TaskNotFoundError: Unknown task
			ReviewCycleConflict: A result is already under review
			InvalidTransition: The task is not in progress
		"""
		async with self._lock:
			task = self._require(task_id)
			if self._is_stale(task, invocation, "worker result"):
				return self._snapshot(task)

			if task.status == TaskStatus.AWAITING_REVIEW:
				raise ReviewCycleConflict(
					f"Task {task_id} already has a result under review"
				)
			if task.status != TaskStatus.IN_PROGRESS:
				raise InvalidTransition(
					f"Task {task_id} is {task.status.value}; not expecting a worker result"
				)

			task.result = result
			self._transition(task, TaskStatus.AWAITING_REVIEW)

			if task.review_required:
				self._dispatch_review(task)
			else:
				logger.info(f"Task {task_id} is review-exempt; skipping plan-reviewer")
				self._finalize(task, note="review exempt")

			await self._persist(task)
			snapshot = self._snapshot(task)

		await self._flush_events()
		return snapshot

	async def on_review_verdict(
		self,
		task_id: str,
		verdict: ReviewVerdict,
		invocation: Optional[int] = None,
	) -> Task:
		"""
		Apply a reviewer verdict.

		Approved finalizes the task. NeedsImprovement counts an attempt and
		either fails the task at the retry limit or sends it back to the
		same worker with the feedback.

		Raises:
			ValueError: Verdict belongs to another task
			TaskNotFoundError: Unknown task
			InvalidTransition: No open review cycle
		"""
		if verdict.task_id != task_id:
			raise ValueError(f"Verdict for task {verdict.task_id} applied to {task_id}")

		escalated = False
		async with self._lock:
			task = self._require(task_id)
			if self._is_stale(task, invocation, "review verdict"):
				return self._snapshot(task)

			if task.status != TaskStatus.AWAITING_REVIEW:
				raise InvalidTransition(f"Task {task_id} has no open review cycle")

			task.verdicts.append(verdict)
			self._queue_event(
				EventType.REVIEW_RECORDED,
				task,
				worker=verdict.reviewer,
				data={
					"outcome": verdict.outcome.value,
					"feedback": verdict.feedback,
					"cycle": len(task.verdicts),
				},
			)

			if verdict.approved:
				self._finalize(task, note=f"approved by {verdict.reviewer}")
			else:
				task.attempt_count += 1
				if task.attempt_count >= self.retry_limit:
					self._fail(
						task,
						FailureReason.RETRY_LIMIT_EXCEEDED,
						error=(
							f"Rejected {task.attempt_count} times "
							f"(limit {self.retry_limit}); last feedback: {verdict.feedback}"
						),
					)
					escalated = True
				else:
					self._transition(
						task,
						TaskStatus.IN_PROGRESS,
						note=f"rework {task.attempt_count}/{self.retry_limit}",
					)
					self._dispatch_worker(task)

			await self._persist(task)
			snapshot = self._snapshot(task)

		await self._flush_events()

		if escalated:
			logger.warning(
				f"Task {task_id} escalated after {snapshot.attempt_count} rejections"
			)
			if self.on_escalate:
				try:
					await self.on_escalate(snapshot)
				except Exception as e:
					logger.error(f"Escalation callback failed: {e}")

		return snapshot

	async def on_worker_failure(
		self,
		task_id: str,
		error: "BaseException | str",
		invocation: Optional[int] = None,
	) -> Task:
		"""Fail a task whose worker (or reviewer) call errored. Not retried."""
		message = error if isinstance(error, str) else f"{type(error).__name__}: {error}"

		async with self._lock:
			task = self._require(task_id)
			if self._is_stale(task, invocation, "worker failure"):
				return self._snapshot(task)

			self._fail(task, FailureReason.WORKER_INVOCATION_FAILURE, error=message)
			await self._persist(task)
			snapshot = self._snapshot(task)

		await self._flush_events()
		return snapshot

	async def cancel(self, task_id: str) -> Task:
		"""
		Cancel a task. Idempotent.

		In-flight worker calls are not interrupted; whatever they return
		later is discarded.
		"""
		async with self._lock:
			task = self._require(task_id)
			if task.is_terminal:
				logger.debug(f"Cancel of task {task_id} ignored; already {task.status.value}")
				return self._snapshot(task)

			self._fail(task, FailureReason.CANCELLED, error="Cancelled by caller")
			await self._persist(task)
			snapshot = self._snapshot(task)

		await self._flush_events()
		return snapshot

	async def resolve_approval(self, task_id: str, approved: bool, note: str = "") -> Task:
		"""
		Resolve the human approval gate of a task.

		Raises:
			InvalidTransition: The task is not awaiting approval
		"""
		async with self._lock:
			task = self._require(task_id)
			if task.status != TaskStatus.AWAITING_APPROVAL:
				raise InvalidTransition(
					f"Task {task_id} is {task.status.value}; no approval pending"
				)

			if approved:
				self._approve(task, note=note or "approved by operator")
			else:
				self._fail(task, FailureReason.APPROVAL_DENIED, error=note or "Approval denied")

			await self._persist(task)
			snapshot = self._snapshot(task)

		await self._flush_events()
		return snapshot

	async def apply_timeout_action(self, task_id: str, action: TimeoutAction) -> Task:
		"""
		Act on a hard timeout.

		REASSIGN re-dispatches the current step (worker or review) and
		discards whatever the abandoned call returns; FAIL ends the task.
		"""
		async with self._lock:
			task = self._require(task_id)
			if task.is_terminal or action == TimeoutAction.IGNORE:
				return self._snapshot(task)

			if action == TimeoutAction.FAIL:
				self._fail(task, FailureReason.HARD_TIMEOUT, error="Exceeded hard timeout")
			elif task.status in (TaskStatus.IN_PROGRESS, TaskStatus.AWAITING_REVIEW):
				previous = self._running.get(task_id)
				if previous and not previous.done():
					previous.cancel()
				now = datetime.now().isoformat()
				task.status_changed_at = now
				task.updated_at = now
				if task.status == TaskStatus.IN_PROGRESS:
					self._dispatch_worker(task)
				else:
					self._dispatch_review(task)
				logger.warning(f"Task {task_id} reassigned after hard timeout")
			else:
				logger.info(f"Task {task_id} is {task.status.value}; nothing to reassign")

			await self._persist(task)
			snapshot = self._snapshot(task)

		await self._flush_events()
		return snapshot

	# ------------------------------------------------------------------
	# Queries
	# ------------------------------------------------------------------

	def get_task(self, task_id: str) -> Optional[Task]:
		"""Snapshot of a task, or None."""
		task = self._tasks.get(task_id)
		return self._snapshot(task) if task else None

	def list_tasks(
		self,
		status: Optional[TaskStatus] = None,
		open_only: bool = False,
	) -> list[Task]:
		"""Snapshots of known tasks, oldest first."""
		tasks = list(self._tasks.values())
		if status:
			tasks = [t for t in tasks if t.status == status]
		if open_only:
			tasks = [t for t in tasks if not t.is_terminal]
		return [self._snapshot(t) for t in tasks]

	async def wait_for(self, task_id: str, timeout: Optional[float] = None) -> Task:
		"""
		Wait until a task is terminal.

		Raises:
			TaskNotFoundError: Unknown task
			asyncio.TimeoutError: Not terminal within timeout
		"""
		finished = self._finished.get(task_id)
		if finished is None:
			raise TaskNotFoundError(f"Task not found: {task_id}")
		await asyncio.wait_for(finished.wait(), timeout=timeout)
		return self.get_task(task_id)

	async def run(
		self,
		capability: "str | Capability",
		payload: Any,
		timeout: Optional[float] = None,
		**options: Any,
	) -> Task:
		"""Submit a task and wait for its terminal state."""
		task_id = await self.submit(capability, payload, **options)
		return await self.wait_for(task_id, timeout=timeout)

	async def shutdown(self) -> None:
		"""Cancel background invocations."""
		running = list(self._running.values())
		for bg in running:
			bg.cancel()
		if running:
			await asyncio.gather(*running, return_exceptions=True)
		self._running.clear()

	# ------------------------------------------------------------------
	# Internals (callers hold self._lock)
	# ------------------------------------------------------------------

	def _require(self, task_id: str) -> Task:
		task = self._tasks.get(task_id)
		if task is None:
			raise TaskNotFoundError(f"Task not found: {task_id}")
		return task

	def _snapshot(self, task: Task) -> Task:
		return task.model_copy(deep=True)

	def _is_stale(self, task: Task, invocation: Optional[int], what: str) -> bool:
		if task.is_terminal:
			logger.warning(f"Discarding {what} for task {task.id}: already {task.status.value}")
			return True
		if invocation is not None and invocation != task.invocation:
			logger.warning(
				f"Discarding stale {what} for task {task.id} "
				f"(invocation {invocation}, current {task.invocation})"
			)
			return True
		return False

	def _transition(self, task: Task, to_status: TaskStatus, note: str = "") -> None:
		if to_status not in ALLOWED_TRANSITIONS[task.status]:
			raise InvalidTransition(
				f"Task {task.id}: {task.status.value} -> {to_status.value} is not allowed"
			)

		now = datetime.now().isoformat()
		from_status = task.status
		task.history.append(StatusChange(from_status=from_status, to_status=to_status, at=now, note=note))
		task.status = to_status
		task.updated_at = now
		task.status_changed_at = now
		if task.is_terminal:
			task.completed_at = now

		self._queue_event(
			EventType.STATUS_CHANGED,
			task,
			data={"from": from_status.value, "to": to_status.value, "note": note},
		)
		logger.info(f"Task {task.id}: {from_status.value} -> {to_status.value}")

	def _finalize(self, task: Task, note: str = "") -> None:
		if task.approval_required:
			self._transition(task, TaskStatus.AWAITING_APPROVAL, note=note)
			self._queue_event(
				EventType.TASK_AWAITING_APPROVAL,
				task,
				data={"result": task.result},
			)
		else:
			self._approve(task, note=note)

	def _approve(self, task: Task, note: str = "") -> None:
		self._transition(task, TaskStatus.APPROVED, note=note)
		self._queue_event(
			EventType.TASK_APPROVED,
			task,
			data={
				"result": task.result,
				"attemptCount": task.attempt_count,
				"verdictCount": len(task.verdicts),
			},
		)
		self._settled.append(task.id)

	def _fail(self, task: Task, reason: FailureReason, error: Optional[str] = None) -> None:
		task.failure_reason = reason
		task.error = error
		self._transition(task, TaskStatus.FAILED, note=reason.value)
		last = task.last_verdict
		self._queue_event(
			EventType.TASK_FAILED,
			task,
			data={
				"reason": reason.value,
				"error": error,
				"attemptCount": task.attempt_count,
				"escalated": reason == FailureReason.RETRY_LIMIT_EXCEEDED,
				"lastVerdict": last.model_dump(mode="json") if last else None,
				"verdicts": [v.model_dump(mode="json") for v in task.verdicts],
			},
		)
		self._settled.append(task.id)
		logger.warning(f"Task {task.id} failed ({reason.value}): {error}")

	def _dispatch_worker(self, task: Task, registered: Optional[RegisteredWorker] = None) -> None:
		registered = registered or self.registry.resolve(task.capability)
		task.invocation += 1
		assignment = Assignment(
			task_id=task.id,
			capability=task.capability,
			payload=copy.deepcopy(task.payload),
			attempt=task.attempt_count,
			previous_result=copy.deepcopy(task.result),
			feedback=task.feedback_history(),
		)
		self._spawn(task.id, self._run_worker(task.id, task.invocation, registered, assignment))

	def _dispatch_review(self, task: Task) -> None:
		task.invocation += 1
		snapshot = self._snapshot(task)
		self._spawn(task.id, self._run_review(task.id, task.invocation, snapshot))

	def _spawn(self, task_id: str, coro: Awaitable[None]) -> None:
		bg = asyncio.create_task(coro, name=f"delegation-{task_id}")
		self._running[task_id] = bg
		bg.add_done_callback(lambda done, tid=task_id: self._forget(tid, done))

	def _forget(self, task_id: str, done: asyncio.Task) -> None:
		if self._running.get(task_id) is done:
			del self._running[task_id]

	async def _run_worker(
		self,
		task_id: str,
		invocation: int,
		registered: RegisteredWorker,
		assignment: Assignment,
	) -> None:
		try:
			result = await registered.invoke(assignment)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.warning(f"Worker {registered.identity} failed on task {task_id}: {e}")
			await self._apply_safely(self.on_worker_failure(task_id, e, invocation=invocation))
			return

		await self._apply_safely(self.on_worker_result(task_id, result, invocation=invocation))

	async def _run_review(self, task_id: str, invocation: int, snapshot: Task) -> None:
		try:
			verdict = await self.reviewer.review(snapshot, snapshot.result)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.warning(f"Reviewer failed on task {task_id}: {e}")
			await self._apply_safely(self.on_worker_failure(task_id, e, invocation=invocation))
			return

		await self._apply_safely(self.on_review_verdict(task_id, verdict, invocation=invocation))

	async def _apply_safely(self, step: Awaitable[Task]) -> None:
		"""Run a state step from a background invocation, logging rejections."""
		try:
			await step
		except (CoordinatorError, ValueError) as e:
			logger.error(f"Background step rejected: {e}")

	async def _handle_hard_timeout(self, event: CoordinatorEvent) -> None:
		if event.type != EventType.HARD_TIMEOUT:
			return
		task = self.get_task(event.task_id)
		if task is None or task.is_terminal:
			return
		action = await self.timeout_policy(event, task)
		logger.info(f"Timeout policy for task {task.id}: {action.value}")
		await self.apply_timeout_action(task.id, action)

	def _queue_event(
		self,
		event_type: EventType,
		task: Task,
		worker: Optional[str] = None,
		data: Optional[dict] = None,
	) -> None:
		if worker is None:
			try:
				worker = self.registry.resolve(task.capability).identity
			except UnknownCapability:
				worker = None
		self._outbox.append(CoordinatorEvent(
			type=event_type,
			task_id=task.id,
			worker=worker,
			data=copy.deepcopy(data or {}),
		))

	async def _flush_events(self) -> None:
		while self._outbox:
			await self.events.publish(self._outbox.pop(0))
		# Waiters wake only after the terminal snapshot is persisted and announced
		while self._settled:
			self._finished[self._settled.pop(0)].set()

	async def _persist(self, task: Task) -> None:
		if not self.store:
			return
		try:
			await self.store.save_task(task)
		except Exception as e:
			logger.error(f"Failed to persist task {task.id}: {e}")
