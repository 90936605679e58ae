"""Tests for the worker registry."""

import pytest

from delegation_coordinator.errors import RegistryFrozenError, UnknownCapability, WorkerUnavailable
from delegation_coordinator.models import Assignment, Capability
from delegation_coordinator.registry import WorkerRegistry


async def async_handler(assignment):
	return f"async:{assignment.payload}"


def sync_handler(assignment):
	return f"sync:{assignment.payload}"


class TestRegistration:
	"""Tests for registering workers."""

	def test_register_defaults_identity(self):
		registry = WorkerRegistry()
		worker = registry.register("backend", async_handler)

		assert worker.identity == "backend-agent"
		assert worker.capability == Capability.BACKEND
		assert worker.available
		assert "backend" in registry
		assert len(registry) == 1

	def test_register_custom_identity(self):
		registry = WorkerRegistry()
		worker = registry.register(Capability.FRONTEND, async_handler, identity="ui-bot")
		assert registry.resolve("frontend").identity == "ui-bot"
		assert registry.workers() == [worker]

	def test_one_worker_per_capability(self):
		registry = WorkerRegistry()
		registry.register("qa", async_handler)
		with pytest.raises(ValueError):
			registry.register("qa", sync_handler)

	def test_unknown_capability_rejected(self):
		registry = WorkerRegistry()
		with pytest.raises(UnknownCapability):
			registry.register("mobile", async_handler)

	def test_frozen_registry_rejects_registration(self):
		registry = WorkerRegistry()
		registry.freeze()
		assert registry.frozen
		with pytest.raises(RegistryFrozenError):
			registry.register("backend", async_handler)


class TestResolve:
	"""Tests for capability lookup."""

	def test_missing_worker(self):
		registry = WorkerRegistry()
		with pytest.raises(UnknownCapability):
			registry.resolve("devops")
		assert not registry.has("devops")
		assert "devops" not in registry
		assert 42 not in registry

	def test_unavailable_worker(self):
		registry = WorkerRegistry()
		registry.register("devops", async_handler, available=False)
		with pytest.raises(WorkerUnavailable):
			registry.resolve("devops")
		assert not registry.has("devops")


class TestInvoke:
	"""Tests for calling handlers."""

	@pytest.mark.asyncio
	async def test_invoke_coroutine_handler(self):
		registry = WorkerRegistry()
		registry.register("backend", async_handler)
		assignment = Assignment(task_id="t1", capability=Capability.BACKEND, payload="x")

		assert await registry.resolve("backend").invoke(assignment) == "async:x"

	@pytest.mark.asyncio
	async def test_invoke_plain_callable_runs_in_thread(self):
		registry = WorkerRegistry()
		registry.register("backend", sync_handler)
		assignment = Assignment(task_id="t1", capability=Capability.BACKEND, payload="y")

		assert await registry.resolve("backend").invoke(assignment) == "sync:y"

	@pytest.mark.asyncio
	async def test_invoke_callable_object(self):
		class Worker:
			async def __call__(self, assignment):
				return assignment.task_id

		registry = WorkerRegistry()
		registry.register("qa", Worker())
		assignment = Assignment(task_id="t9", capability=Capability.QA)

		assert await registry.resolve("qa").invoke(assignment) == "t9"
