"""
Reviewer Gate - Mandatory review before any result is final.

Key Principle: Workers do NOT self-approve. Every reviewed task's result
goes through the plan-reviewer, whose verdict decides finalization.

The reviewer is itself a worker (the plan-reviewer capability). Its raw
output is coerced into a ReviewVerdict here:
- ReviewVerdict instances
- dicts or JSON strings: {"outcome": "...", "feedback": "..."}
- booleans (True = approved)
- plain text starting with APPROVED / NEEDS_IMPROVEMENT
"""

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError

from .errors import ReviewFormatError, UnknownCapability
from .models import Capability, ReviewRequest, ReviewVerdict, Task, VerdictOutcome, Worker
from .registry import RegisteredWorker, WorkerHandler, WorkerRegistry

logger = logging.getLogger(__name__)

DEFAULT_FEEDBACK = "Reviewer requested changes without details; revisit the task requirements."

_OUTCOME_ALIASES = {
	"approved": VerdictOutcome.APPROVED,
	"approve": VerdictOutcome.APPROVED,
	"accept": VerdictOutcome.APPROVED,
	"accepted": VerdictOutcome.APPROVED,
	"lgtm": VerdictOutcome.APPROVED,
	"needs_improvement": VerdictOutcome.NEEDS_IMPROVEMENT,
	"needs-improvement": VerdictOutcome.NEEDS_IMPROVEMENT,
	"needs improvement": VerdictOutcome.NEEDS_IMPROVEMENT,
	"reject": VerdictOutcome.NEEDS_IMPROVEMENT,
	"rejected": VerdictOutcome.NEEDS_IMPROVEMENT,
	"changes_requested": VerdictOutcome.NEEDS_IMPROVEMENT,
}


class ReviewerGate:
	"""
	Routes worker results through the plan-reviewer.

	Usage:
		gate = ReviewerGate.from_registry(registry)
		verdict = await gate.review(task, result)
	"""

	def __init__(
		self,
		handler: WorkerHandler,
		identity: str = Capability.PLAN_REVIEWER.value,
	):
		self.identity = identity
		self._worker = RegisteredWorker(
			worker=Worker(identity=identity, capability=Capability.PLAN_REVIEWER),
			handler=handler,
		)

	@classmethod
	def from_registry(cls, registry: WorkerRegistry) -> Optional["ReviewerGate"]:
		"""Build a gate around the registered plan-reviewer, if there is one."""
		try:
			registered = registry.resolve(Capability.PLAN_REVIEWER)
		except UnknownCapability:
			return None
		return cls(registered.handler, identity=registered.identity)

	async def review(self, task: Task, result: Any) -> ReviewVerdict:
		"""
		Review one worker result.

		Args:
			task: Snapshot of the task under review
			result: The worker's result for this attempt

		Returns:
			ReviewVerdict for this cycle

		Raises:
			ReviewFormatError: If the reviewer output is not a verdict
		"""
		request = ReviewRequest(task=task, result=result)
		raw = await self._worker.invoke(request)
		verdict = self.coerce_verdict(task.id, raw)
		logger.info(
			f"Review of task {task.id} attempt {task.attempt_count + 1}: {verdict.outcome.value}"
		)
		return verdict

	def coerce_verdict(self, task_id: str, raw: Any) -> ReviewVerdict:
		"""Turn reviewer output into a ReviewVerdict for task_id."""
		if isinstance(raw, ReviewVerdict):
			if raw.task_id != task_id:
				raise ReviewFormatError(
					f"Verdict for task {raw.task_id} returned while reviewing {task_id}",
					capability=Capability.PLAN_REVIEWER.value,
				)
			return raw

		if isinstance(raw, bool):
			return self._build(task_id, VerdictOutcome.APPROVED if raw else VerdictOutcome.NEEDS_IMPROVEMENT, None)

		if isinstance(raw, str):
			return self._from_text(task_id, raw)

		if isinstance(raw, dict):
			return self._from_dict(task_id, raw)

		raise ReviewFormatError(
			f"Unsupported reviewer output type: {type(raw).__name__}",
			capability=Capability.PLAN_REVIEWER.value,
		)

	def _from_dict(self, task_id: str, data: dict) -> ReviewVerdict:
		outcome_raw = data.get("outcome", data.get("verdict"))
		if outcome_raw is None and isinstance(data.get("approved"), bool):
			outcome_raw = "approved" if data["approved"] else "needs_improvement"
		outcome = _OUTCOME_ALIASES.get(str(outcome_raw).strip().lower()) if outcome_raw is not None else None
		if outcome is None:
			raise ReviewFormatError(
				f"Reviewer output has no recognizable outcome: {outcome_raw!r}",
				capability=Capability.PLAN_REVIEWER.value,
			)
		feedback = data.get("feedback")
		if isinstance(feedback, list):
			feedback = "\n".join(str(item) for item in feedback)
		return self._build(task_id, outcome, feedback)

	def _from_text(self, task_id: str, text: str) -> ReviewVerdict:
		stripped = text.strip()
		if stripped.startswith("{"):
			try:
				return self._from_dict(task_id, json.loads(stripped))
			except json.JSONDecodeError as e:
				raise ReviewFormatError(
					f"Invalid JSON from reviewer: {e}",
					capability=Capability.PLAN_REVIEWER.value,
				) from e

		first_line, _, rest = stripped.partition("\n")
		# "NEEDS_IMPROVEMENT: missing tests" keeps the inline part as feedback
		head, _, inline = first_line.partition(":")
		outcome = _OUTCOME_ALIASES.get(head.strip().rstrip(".").lower())
		if outcome is None:
			raise ReviewFormatError(
				f"Reviewer output does not start with a verdict: {first_line[:80]!r}",
				capability=Capability.PLAN_REVIEWER.value,
			)
		feedback = "\n".join(part for part in (inline.strip(), rest.strip()) if part)
		return self._build(task_id, outcome, feedback or None)

	def _build(self, task_id: str, outcome: VerdictOutcome, feedback: Optional[str]) -> ReviewVerdict:
		if outcome == VerdictOutcome.APPROVED:
			feedback = None
		elif not (feedback or "").strip():
			feedback = DEFAULT_FEEDBACK
		try:
			return ReviewVerdict(
				task_id=task_id,
				outcome=outcome,
				feedback=feedback,
				reviewer=self.identity,
			)
		except ValidationError as e:
			raise ReviewFormatError(str(e), capability=Capability.PLAN_REVIEWER.value) from e
