"""Delegation coordinator - Capability routing, review gate, retries and progress monitoring."""

from .coordinator import DelegationCoordinator, TimeoutAction
from .errors import (
	CoordinatorError,
	InvalidTransition,
	RetryLimitExceeded,
	TaskNotFoundError,
	UnknownCapability,
	WorkerInvocationFailure,
)
from .events import EventBus
from .models import (
	Assignment,
	Capability,
	CoordinatorEvent,
	EventType,
	FailureReason,
	ReviewVerdict,
	Task,
	TaskStatus,
)
from .monitor import ProgressMonitor
from .registry import WorkerRegistry
from .reviewer import ReviewerGate

__all__ = [
	"DelegationCoordinator",
	"TimeoutAction",
	"WorkerRegistry",
	"ReviewerGate",
	"ProgressMonitor",
	"EventBus",
	"Capability",
	"Task",
	"TaskStatus",
	"Assignment",
	"ReviewVerdict",
	"FailureReason",
	"EventType",
	"CoordinatorEvent",
	"CoordinatorError",
	"UnknownCapability",
	"TaskNotFoundError",
	"InvalidTransition",
	"RetryLimitExceeded",
	"WorkerInvocationFailure",
]
