"""Tests for coordinator models: capabilities, verdicts, tasks and budgets."""

import pytest
from pydantic import ValidationError

from delegation_coordinator.errors import RetryLimitExceeded, TaskFailed, UnknownCapability
from delegation_coordinator.models import (
	ALLOWED_TRANSITIONS,
	Assignment,
	Capability,
	DurationBudget,
	FailureReason,
	ReviewRequest,
	ReviewVerdict,
	Task,
	TaskStatus,
	VerdictOutcome,
	default_category,
)


class TestCapability:
	"""Tests for capability parsing."""

	def test_parse_known_tags(self):
		assert Capability.parse("backend") == Capability.BACKEND
		assert Capability.parse(" Knowledge-Manager ") == Capability.KNOWLEDGE_MANAGER
		assert Capability.parse(Capability.QA) is Capability.QA

	def test_parse_unknown_tag_raises(self):
		"""Tags outside the closed set are unknown capabilities."""
		with pytest.raises(UnknownCapability) as exc_info:
			Capability.parse("mobile")
		assert exc_info.value.capability == "mobile"

	def test_default_category(self):
		assert default_category(Capability.BACKEND) == "implementation"
		assert default_category(Capability.FRONTEND) == "implementation"
		assert default_category(Capability.QA) == "testing"
		assert default_category(Capability.PLAN_REVIEWER) == "review"
		assert default_category(Capability.KNOWLEDGE_MANAGER) == "documentation"


class TestTransitions:
	"""Tests for the legal status path."""

	def test_terminal_statuses_have_no_exits(self):
		assert ALLOWED_TRANSITIONS[TaskStatus.APPROVED] == frozenset()
		assert ALLOWED_TRANSITIONS[TaskStatus.FAILED] == frozenset()

	def test_pending_cannot_skip_to_review(self):
		assert TaskStatus.AWAITING_REVIEW not in ALLOWED_TRANSITIONS[TaskStatus.PENDING]

	def test_in_progress_cannot_self_approve(self):
		"""Workers never approve their own work."""
		assert TaskStatus.APPROVED not in ALLOWED_TRANSITIONS[TaskStatus.IN_PROGRESS]

	def test_review_can_send_back_to_worker(self):
		assert TaskStatus.IN_PROGRESS in ALLOWED_TRANSITIONS[TaskStatus.AWAITING_REVIEW]


class TestReviewVerdict:
	"""Tests for verdict validation."""

	def test_needs_improvement_requires_feedback(self):
		with pytest.raises(ValidationError):
			ReviewVerdict(task_id="t1", outcome=VerdictOutcome.NEEDS_IMPROVEMENT)
		with pytest.raises(ValidationError):
			ReviewVerdict(task_id="t1", outcome=VerdictOutcome.NEEDS_IMPROVEMENT, feedback="   ")

	def test_approved_rejects_feedback(self):
		with pytest.raises(ValidationError):
			ReviewVerdict(task_id="t1", outcome=VerdictOutcome.APPROVED, feedback="nice")

	def test_constructors(self):
		ok = ReviewVerdict.approve("t1")
		assert ok.approved
		assert ok.feedback is None
		assert ok.reviewer == "plan-reviewer"

		bad = ReviewVerdict.needs_improvement("t1", "Add tests")
		assert not bad.approved
		assert bad.feedback == "Add tests"

	def test_verdict_is_immutable(self):
		verdict = ReviewVerdict.approve("t1")
		with pytest.raises(ValidationError):
			verdict.outcome = VerdictOutcome.NEEDS_IMPROVEMENT


class TestTask:
	"""Tests for task helpers."""

	def test_defaults(self):
		task = Task(capability=Capability.BACKEND, payload={"goal": "x"})
		assert task.status == TaskStatus.PENDING
		assert task.attempt_count == 0
		assert task.review_required is True
		assert task.approval_required is False
		assert len(task.id) == 12

	def test_feedback_history_skips_approvals(self):
		task = Task(capability=Capability.BACKEND)
		task.verdicts = [
			ReviewVerdict.needs_improvement(task.id, "F1"),
			ReviewVerdict.needs_improvement(task.id, "F2"),
			ReviewVerdict.approve(task.id),
		]
		assert task.feedback_history() == ["F1", "F2"]
		assert task.last_verdict.approved

	def test_raise_for_failure_retry_limit(self):
		task = Task(capability=Capability.BACKEND, status=TaskStatus.FAILED, attempt_count=3)
		task.failure_reason = FailureReason.RETRY_LIMIT_EXCEEDED
		task.verdicts = [ReviewVerdict.needs_improvement(task.id, "still broken")]

		with pytest.raises(RetryLimitExceeded) as exc_info:
			task.raise_for_failure()
		assert exc_info.value.attempt_count == 3
		assert exc_info.value.verdicts[-1].feedback == "still broken"

	def test_raise_for_failure_other_reason(self):
		task = Task(capability=Capability.BACKEND, status=TaskStatus.FAILED)
		task.failure_reason = FailureReason.CANCELLED
		task.error = "Cancelled by caller"
		with pytest.raises(TaskFailed, match="cancelled"):
			task.raise_for_failure()

	def test_raise_for_failure_noop_when_not_failed(self):
		Task(capability=Capability.BACKEND, status=TaskStatus.APPROVED).raise_for_failure()

	def test_to_api_uses_external_names(self):
		task = Task(capability=Capability.DEVOPS, payload="deploy", result="ok")
		data = task.to_api()
		assert data["taskId"] == task.id
		assert data["capability"] == "devops"
		assert data["status"] == "pending"
		assert data["attemptCount"] == 0
		assert data["result"] == "ok"
		assert data["verdicts"] == []
		assert "failureReason" not in data


class TestAssignment:
	"""Tests for assignment rendering."""

	def test_prompt_includes_feedback_and_previous_result(self):
		assignment = Assignment(
			task_id="t1",
			capability=Capability.BACKEND,
			payload={"goal": "Add /health"},
			attempt=1,
			previous_result="R1",
			feedback=["F1"],
		)
		prompt = assignment.to_prompt()
		assert assignment.latest_feedback == "F1"
		assert '"goal": "Add /health"' in prompt
		assert "Review feedback (attempt 2)" in prompt
		assert "1. F1" in prompt
		assert "R1" in prompt

	def test_first_attempt_prompt_is_just_payload(self):
		prompt = Assignment(task_id="t1", capability=Capability.QA, payload="Run tests").to_prompt()
		assert "Run tests" in prompt
		assert "feedback" not in prompt.lower()

	def test_review_request_prompt(self):
		task = Task(capability=Capability.BACKEND, payload="Add /health")
		prompt = ReviewRequest(task=task, result={"files": ["app.py"]}).to_prompt()
		assert task.id in prompt
		assert "Add /health" in prompt
		assert "app.py" in prompt
		assert "needs_improvement" in prompt


class TestDurationBudget:
	"""Tests for budget thresholds."""

	def test_thresholds_in_seconds(self):
		budget = DurationBudget(category="implementation", min_minutes=30, max_minutes=120)
		assert budget.check_in_after == 120 * 60 * 1.5
		assert budget.hard_timeout_after == 120 * 60 * 2.0

	def test_invalid_window_rejected(self):
		with pytest.raises(ValidationError):
			DurationBudget(category="x", min_minutes=50, max_minutes=10)
		with pytest.raises(ValidationError):
			DurationBudget(category="x", max_minutes=10, check_in_factor=2.0, hard_timeout_factor=1.5)
