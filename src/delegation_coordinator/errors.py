"""Exception taxonomy for the delegation coordinator."""

from typing import Optional


class CoordinatorError(Exception):
	"""Base class for coordinator errors."""
	pass


class UnknownCapability(CoordinatorError):
	"""Raised when no worker is registered for a capability tag."""

	def __init__(self, capability: str, message: Optional[str] = None):
		self.capability = capability
		super().__init__(message or f"No worker registered for capability: {capability}")


class WorkerUnavailable(UnknownCapability):
	"""Raised when the worker for a capability is flagged unavailable."""

	def __init__(self, capability: str):
		super().__init__(capability, f"Worker for capability {capability} is unavailable")


class TaskNotFoundError(CoordinatorError):
	"""Raised when a task id is not known to the coordinator."""
	pass


class InvalidTransition(CoordinatorError):
	"""Raised when a task status change is not on the legal path."""
	pass


class ReviewCycleConflict(InvalidTransition):
	"""Raised when a new review cycle would start before the previous resolves."""
	pass


class RegistryFrozenError(CoordinatorError):
	"""Raised when registering a worker after start-up configuration."""
	pass


class WorkerInvocationFailure(CoordinatorError):
	"""Raised when a worker call errors out."""

	def __init__(self, message: str, capability: Optional[str] = None):
		self.capability = capability
		super().__init__(message)


class ReviewFormatError(WorkerInvocationFailure):
	"""Raised when the reviewer returns something that is not a verdict."""
	pass


class RetryLimitExceeded(CoordinatorError):
	"""Raised for a task that failed after too many rejected review cycles."""

	def __init__(self, task_id: str, attempt_count: int, verdicts: list):
		self.task_id = task_id
		self.attempt_count = attempt_count
		self.verdicts = verdicts
		last = verdicts[-1].feedback if verdicts else None
		super().__init__(
			f"Task {task_id} rejected {attempt_count} times; last feedback: {last}"
		)


class TaskFailed(CoordinatorError):
	"""Raised for a failed task whose failure is not a rejection loop."""

	def __init__(self, task_id: str, reason: str, error: Optional[str] = None):
		self.task_id = task_id
		self.reason = reason
		self.error = error
		super().__init__(f"Task {task_id} failed ({reason}): {error or 'no details'}")
