"""
Coordinator Models - Pydantic schemas for tasks, workers and verdicts.

A Task is created by the caller through the coordinator and mutated only
by the coordinator. Workers and the reviewer receive snapshots and return
results or verdicts; they never write task state.
"""

import json
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import RetryLimitExceeded, TaskFailed, UnknownCapability


def _now() -> str:
	return datetime.now().isoformat()


class Capability(str, Enum):
	"""Capability tags a worker can be registered under."""
	FRONTEND = "frontend"
	BACKEND = "backend"
	DEVOPS = "devops"
	QA = "qa"
	KNOWLEDGE_MANAGER = "knowledge-manager"
	PLAN_REVIEWER = "plan-reviewer"

	@classmethod
	def parse(cls, value: "str | Capability") -> "Capability":
		"""Parse a tag, raising UnknownCapability for anything outside the enum."""
		if isinstance(value, cls):
			return value
		try:
			return cls(str(value).strip().lower())
		except ValueError:
			raise UnknownCapability(str(value)) from None


class TaskStatus(str, Enum):
	"""Lifecycle status of a task."""
	PENDING = "pending"
	IN_PROGRESS = "in_progress"
	AWAITING_REVIEW = "awaiting_review"
	AWAITING_APPROVAL = "awaiting_approval"
	APPROVED = "approved"
	# A rejection is recorded as a verdict; tasks never rest in this status.
	REJECTED = "rejected"
	FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.APPROVED, TaskStatus.FAILED})

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
	TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.FAILED}),
	TaskStatus.IN_PROGRESS: frozenset({TaskStatus.AWAITING_REVIEW, TaskStatus.FAILED}),
	TaskStatus.AWAITING_REVIEW: frozenset({
		TaskStatus.IN_PROGRESS,
		TaskStatus.APPROVED,
		TaskStatus.AWAITING_APPROVAL,
		TaskStatus.FAILED,
	}),
	TaskStatus.AWAITING_APPROVAL: frozenset({TaskStatus.APPROVED, TaskStatus.FAILED}),
	TaskStatus.APPROVED: frozenset(),
	TaskStatus.REJECTED: frozenset(),
	TaskStatus.FAILED: frozenset(),
}


class FailureReason(str, Enum):
	"""Why a task ended in FAILED."""
	WORKER_INVOCATION_FAILURE = "worker_invocation_failure"
	RETRY_LIMIT_EXCEEDED = "retry_limit_exceeded"
	CANCELLED = "cancelled"
	HARD_TIMEOUT = "hard_timeout"
	APPROVAL_DENIED = "approval_denied"


class VerdictOutcome(str, Enum):
	"""Outcome of one review cycle."""
	APPROVED = "approved"
	NEEDS_IMPROVEMENT = "needs_improvement"


def default_category(capability: Capability) -> str:
	"""Duration-budget category used when a task does not name one."""
	return {
		Capability.PLAN_REVIEWER: "review",
		Capability.QA: "testing",
		Capability.KNOWLEDGE_MANAGER: "documentation",
	}.get(capability, "implementation")


class Worker(BaseModel):
	"""A capability-tagged executor, fixed for the process lifetime."""
	model_config = ConfigDict(frozen=True)

	identity: str = Field(description="Worker name, e.g. 'backend-agent'")
	capability: Capability
	available: bool = Field(default=True)


class ReviewVerdict(BaseModel):
	"""The reviewer's decision for one review cycle. Never mutated."""
	model_config = ConfigDict(frozen=True)

	task_id: str
	outcome: VerdictOutcome
	feedback: Optional[str] = Field(default=None, description="Only for needs_improvement")
	reviewer: str = Field(default=Capability.PLAN_REVIEWER.value)
	timestamp: str = Field(default_factory=_now)

	@model_validator(mode="after")
	def _check_feedback(self) -> "ReviewVerdict":
		if self.outcome == VerdictOutcome.NEEDS_IMPROVEMENT and not (self.feedback or "").strip():
			raise ValueError("needs_improvement verdicts require feedback")
		if self.outcome == VerdictOutcome.APPROVED and self.feedback is not None:
			raise ValueError("approved verdicts carry no feedback")
		return self

	@property
	def approved(self) -> bool:
		return self.outcome == VerdictOutcome.APPROVED

	@classmethod
	def approve(cls, task_id: str, reviewer: str = Capability.PLAN_REVIEWER.value) -> "ReviewVerdict":
		return cls(task_id=task_id, outcome=VerdictOutcome.APPROVED, reviewer=reviewer)

	@classmethod
	def needs_improvement(
		cls,
		task_id: str,
		feedback: str,
		reviewer: str = Capability.PLAN_REVIEWER.value,
	) -> "ReviewVerdict":
		return cls(
			task_id=task_id,
			outcome=VerdictOutcome.NEEDS_IMPROVEMENT,
			feedback=feedback,
			reviewer=reviewer,
		)


class StatusChange(BaseModel):
	"""One entry of a task's status history."""
	from_status: Optional[TaskStatus] = None
	to_status: TaskStatus
	at: str = Field(default_factory=_now)
	note: str = ""


class Task(BaseModel):
	"""A unit of work delegated to exactly one worker."""
	id: str = Field(default_factory=lambda: str(uuid.uuid4())[:12])
	capability: Capability
	payload: Any = None
	status: TaskStatus = Field(default=TaskStatus.PENDING)
	attempt_count: int = Field(default=0, description="Rejected review cycles so far")
	review_required: bool = Field(default=True)
	approval_required: bool = Field(default=False)
	category: str = Field(default="implementation")

	created_at: str = Field(default_factory=_now)
	updated_at: str = Field(default_factory=_now)
	status_changed_at: str = Field(default_factory=_now)
	completed_at: Optional[str] = None

	result: Any = None
	verdicts: list[ReviewVerdict] = Field(default_factory=list)
	history: list[StatusChange] = Field(default_factory=list)
	failure_reason: Optional[FailureReason] = None
	error: Optional[str] = None

	# Incremented on every worker or review dispatch
	invocation: int = 0

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES

	@property
	def last_verdict(self) -> Optional[ReviewVerdict]:
		return self.verdicts[-1] if self.verdicts else None

	def feedback_history(self) -> list[str]:
		"""All needs_improvement feedback in the order it was given."""
		return [v.feedback for v in self.verdicts if not v.approved and v.feedback]

	def raise_for_failure(self) -> None:
		"""Raise the matching error if the task failed."""
		if self.status != TaskStatus.FAILED:
			return
		if self.failure_reason == FailureReason.RETRY_LIMIT_EXCEEDED:
			raise RetryLimitExceeded(self.id, self.attempt_count, list(self.verdicts))
		reason = self.failure_reason.value if self.failure_reason else "unknown"
		raise TaskFailed(self.id, reason, self.error)

	def summary(self) -> dict:
		"""Compact dict for listings."""
		return {
			"taskId": self.id,
			"capability": self.capability.value,
			"status": self.status.value,
			"attemptCount": self.attempt_count,
			"category": self.category,
			"createdAt": self.created_at,
			"updatedAt": self.updated_at,
		}

	def to_api(self) -> dict:
		"""Full external representation of the task."""
		data = self.summary()
		data.update({
			"reviewRequired": self.review_required,
			"approvalRequired": self.approval_required,
			"payload": self.payload,
			"verdicts": [v.model_dump(mode="json") for v in self.verdicts],
			"completedAt": self.completed_at,
		})
		if self.result is not None:
			data["result"] = self.result
		if self.failure_reason:
			data["failureReason"] = self.failure_reason.value
		if self.error:
			data["error"] = self.error
		return data


class Assignment(BaseModel):
	"""What a worker receives for one invocation."""
	task_id: str
	capability: Capability
	payload: Any = None
	attempt: int = 0
	previous_result: Any = None
	feedback: list[str] = Field(default_factory=list)

	@property
	def latest_feedback(self) -> Optional[str]:
		return self.feedback[-1] if self.feedback else None

	def to_prompt(self) -> str:
		"""Render the assignment as plain text for command-line workers."""
		payload = self.payload if isinstance(self.payload, str) else json.dumps(self.payload, indent=2)
		lines = [
			f"# Task {self.task_id} ({self.capability.value})",
			"",
			payload,
		]
		if self.feedback:
			lines.extend(["", f"## Review feedback (attempt {self.attempt + 1})"])
			for i, item in enumerate(self.feedback, 1):
				lines.append(f"{i}. {item}")
		if self.previous_result is not None:
			previous = (
				self.previous_result
				if isinstance(self.previous_result, str)
				else json.dumps(self.previous_result, indent=2)
			)
			lines.extend(["", "## Previous result", previous])
		return "\n".join(lines)


class ReviewRequest(BaseModel):
	"""What the reviewer receives for one review cycle."""
	task: Task
	result: Any = None

	def to_prompt(self) -> str:
		result = self.result if isinstance(self.result, str) else json.dumps(self.result, indent=2)
		lines = [
			f"# Review task {self.task.id} ({self.task.capability.value})",
			f"Attempt: {self.task.attempt_count + 1}",
			"",
			"## Request",
			self.task.payload if isinstance(self.task.payload, str) else json.dumps(self.task.payload, indent=2),
			"",
			"## Result",
			result,
			"",
			'Respond with JSON: {"outcome": "approved" | "needs_improvement", "feedback": "..."}',
		]
		return "\n".join(lines)


class DurationBudget(BaseModel):
	"""Expected duration window for one task category."""
	category: str
	min_minutes: float = 0
	max_minutes: float
	check_in_factor: float = 1.5
	hard_timeout_factor: float = 2.0

	@model_validator(mode="after")
	def _check_bounds(self) -> "DurationBudget":
		if self.max_minutes <= 0 or self.min_minutes > self.max_minutes:
			raise ValueError(f"Invalid duration window for {self.category}")
		if self.hard_timeout_factor <= self.check_in_factor:
			raise ValueError("hard_timeout_factor must exceed check_in_factor")
		return self

	@property
	def check_in_after(self) -> float:
		"""Seconds after which a check-in is due."""
		return self.max_minutes * 60 * self.check_in_factor

	@property
	def hard_timeout_after(self) -> float:
		"""Seconds after which the task is considered timed out."""
		return self.max_minutes * 60 * self.hard_timeout_factor


class ProgressCheckpoint(BaseModel):
	"""Monitor bookkeeping for one task's current status phase."""
	task_id: str
	status: TaskStatus
	budget: DurationBudget
	phase_started_at: str
	elapsed_seconds: float = 0.0
	last_checked_at: Optional[str] = None
	check_in_emitted: bool = False
	escalated: bool = False


class EventType(str, Enum):
	"""Kinds of coordinator events."""
	TASK_SUBMITTED = "task_submitted"
	STATUS_CHANGED = "status_changed"
	REVIEW_RECORDED = "review_recorded"
	PROGRESS_CHECK_IN = "progress_check_in"
	HARD_TIMEOUT = "hard_timeout"
	TASK_AWAITING_APPROVAL = "task_awaiting_approval"
	TASK_APPROVED = "task_approved"
	TASK_FAILED = "task_failed"


class CoordinatorEvent(BaseModel):
	"""An observational signal about a task."""
	type: EventType
	task_id: str
	worker: Optional[str] = None
	timestamp: str = Field(default_factory=_now)
	data: dict = Field(default_factory=dict)
