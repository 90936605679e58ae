"""Shared test fixtures and helpers for delegation-coordinator tests."""

import asyncio
from typing import Any, Callable

from delegation_coordinator.coordinator import DelegationCoordinator
from delegation_coordinator.registry import WorkerRegistry


class ScriptedWorker:
	"""Async worker returning queued results in order; the last one repeats.

	Exceptions in the script are raised instead of returned. Every request
	(Assignment or ReviewRequest) is recorded.
	"""

	def __init__(self, *results: Any):
		self.results = list(results)
		self.requests: list = []

	async def __call__(self, request: Any) -> Any:
		self.requests.append(request)
		result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
		if isinstance(result, BaseException):
			raise result
		return result


class BlockingWorker:
	"""Async worker that waits until released. Used for in-flight tasks."""

	def __init__(self, result: Any = "done"):
		self.result = result
		self.started = asyncio.Event()
		self.released = asyncio.Event()
		self.calls = 0

	async def __call__(self, request: Any) -> Any:
		self.calls += 1
		self.started.set()
		await self.released.wait()
		return self.result

	def release(self) -> None:
		self.released.set()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
	"""Poll until predicate() is true, failing the test after timeout seconds."""
	loop = asyncio.get_running_loop()
	deadline = loop.time() + timeout
	while not predicate():
		if loop.time() > deadline:
			raise AssertionError("Condition not met in time")
		await asyncio.sleep(0.01)


def approve(*_args: Any) -> dict:
	return {"outcome": "approved"}


def needs_improvement(feedback: str) -> dict:
	return {"outcome": "needs_improvement", "feedback": feedback}


def make_coordinator(
	workers: dict[str, Callable],
	reviewer: Any = None,
	**kwargs: Any,
) -> DelegationCoordinator:
	"""Register workers (and an optional plan-reviewer) and build a coordinator."""
	registry = WorkerRegistry()
	for capability, handler in workers.items():
		registry.register(capability, handler)
	if reviewer is not None:
		registry.register("plan-reviewer", reviewer)
	return DelegationCoordinator(registry, **kwargs)


def capture_tools(coordinator: DelegationCoordinator, register_fn: Callable, store: Any = None) -> dict:
	"""Register tools on a mock MCP and return the captured tool functions.

	Args:
		coordinator: Coordinator to pass to the registration function
		register_fn: The registration function (e.g., register_coordinator_tools)
		store: Optional task store

	Returns:
		Dict mapping tool name to the tool function
	"""
	captured = {}

	class MockMCP:
		def tool(self):
			def decorator(fn):
				captured[fn.__name__] = fn
				return fn
			return decorator

	register_fn(MockMCP(), coordinator, store)
	return captured
