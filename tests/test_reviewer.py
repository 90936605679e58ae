"""Tests for the reviewer gate and verdict coercion."""

import json

import pytest

from delegation_coordinator.errors import ReviewFormatError
from delegation_coordinator.models import Capability, ReviewRequest, ReviewVerdict, Task
from delegation_coordinator.registry import WorkerRegistry
from delegation_coordinator.reviewer import DEFAULT_FEEDBACK, ReviewerGate

from .helpers import ScriptedWorker


@pytest.fixture
def gate():
	return ReviewerGate(ScriptedWorker({"outcome": "approved"}))


class TestCoerceVerdict:
	"""Tests for turning reviewer output into verdicts."""

	def test_dict_outcome(self, gate):
		verdict = gate.coerce_verdict("t1", {"outcome": "needs_improvement", "feedback": "Add tests"})
		assert not verdict.approved
		assert verdict.feedback == "Add tests"
		assert verdict.task_id == "t1"

	def test_dict_approved_flag_and_list_feedback(self, gate):
		assert gate.coerce_verdict("t1", {"approved": True}).approved

		verdict = gate.coerce_verdict("t1", {"approved": False, "feedback": ["a", "b"]})
		assert verdict.feedback == "a\nb"

	def test_json_string(self, gate):
		raw = json.dumps({"verdict": "REJECTED", "feedback": "Handle 404"})
		verdict = gate.coerce_verdict("t1", raw)
		assert not verdict.approved
		assert verdict.feedback == "Handle 404"

	def test_plain_text_with_inline_feedback(self, gate):
		verdict = gate.coerce_verdict("t1", "NEEDS_IMPROVEMENT: missing tests\nAlso lint errors")
		assert not verdict.approved
		assert verdict.feedback == "missing tests\nAlso lint errors"

	def test_plain_text_approved_drops_feedback(self, gate):
		verdict = gate.coerce_verdict("t1", "LGTM.\nGreat work")
		assert verdict.approved
		assert verdict.feedback is None

	def test_bool(self, gate):
		assert gate.coerce_verdict("t1", True).approved
		rejected = gate.coerce_verdict("t1", False)
		assert rejected.feedback == DEFAULT_FEEDBACK

	def test_verdict_instance_must_match_task(self, gate):
		verdict = ReviewVerdict.approve("t1")
		assert gate.coerce_verdict("t1", verdict) is verdict
		with pytest.raises(ReviewFormatError):
			gate.coerce_verdict("t2", verdict)

	def test_unrecognized_output(self, gate):
		with pytest.raises(ReviewFormatError):
			gate.coerce_verdict("t1", "Maybe? Not sure.")
		with pytest.raises(ReviewFormatError):
			gate.coerce_verdict("t1", {"outcome": "perhaps"})
		with pytest.raises(ReviewFormatError):
			gate.coerce_verdict("t1", "{not json")
		with pytest.raises(ReviewFormatError):
			gate.coerce_verdict("t1", 42)


class TestReview:
	"""Tests for running a review."""

	@pytest.mark.asyncio
	async def test_review_sends_request_and_returns_verdict(self):
		reviewer = ScriptedWorker("NEEDS_IMPROVEMENT: add error handling")
		gate = ReviewerGate(reviewer, identity="senior-reviewer")
		task = Task(capability=Capability.BACKEND, payload="Add /health")

		verdict = await gate.review(task, "R1")

		assert verdict.feedback == "add error handling"
		assert verdict.reviewer == "senior-reviewer"
		request = reviewer.requests[0]
		assert isinstance(request, ReviewRequest)
		assert request.task.id == task.id
		assert request.result == "R1"

	def test_from_registry(self):
		registry = WorkerRegistry()
		assert ReviewerGate.from_registry(registry) is None

		registry.register("plan-reviewer", ScriptedWorker(True), identity="plan-reviewer")
		gate = ReviewerGate.from_registry(registry)
		assert gate is not None
		assert gate.identity == "plan-reviewer"

	def test_from_registry_ignores_unavailable_reviewer(self):
		registry = WorkerRegistry()
		registry.register("plan-reviewer", ScriptedWorker(True), available=False)
		assert ReviewerGate.from_registry(registry) is None
