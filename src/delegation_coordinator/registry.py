"""
Worker Registry - Static mapping from capability tag to worker.

Single writer at start-up, many readers afterwards. Once frozen the
table is read-only and needs no locking.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .errors import RegistryFrozenError, UnknownCapability, WorkerUnavailable
from .models import Capability, Worker

logger = logging.getLogger(__name__)

WorkerHandler = Callable[[Any], Any]


@dataclass(frozen=True)
class RegisteredWorker:
	"""A worker record bound to the callable that does its work."""
	worker: Worker
	handler: WorkerHandler

	@property
	def identity(self) -> str:
		return self.worker.identity

	@property
	def capability(self) -> Capability:
		return self.worker.capability

	async def invoke(self, request: Any) -> Any:
		"""
		Call the handler with an Assignment (or ReviewRequest).

		Coroutine functions are awaited; plain callables run in a worker
		thread so they never block the event loop.
		"""
		if inspect.iscoroutinefunction(self.handler) or inspect.iscoroutinefunction(
			getattr(self.handler, "__call__", None)
		):
			return await self.handler(request)

		result = await asyncio.to_thread(self.handler, request)
		if inspect.isawaitable(result):
			result = await result
		return result


class WorkerRegistry:
	"""
	Capability -> worker table.

	Usage:
		registry = WorkerRegistry()
		registry.register("backend", backend_handler)
		registry.register("plan-reviewer", review_handler)
		registry.freeze()

		worker = registry.resolve("backend")
		result = await worker.invoke(assignment)
	"""

	def __init__(self):
		self._workers: dict[Capability, RegisteredWorker] = {}
		self._frozen = False

	@property
	def frozen(self) -> bool:
		return self._frozen

	def register(
		self,
		capability: "str | Capability",
		handler: WorkerHandler,
		identity: Optional[str] = None,
		available: bool = True,
	) -> Worker:
		"""
		Register the single worker for a capability.

		Args:
			capability: Capability tag
			handler: Callable taking an Assignment and returning a result
			identity: Worker name (defaults to '<capability>-agent')
			available: Availability flag

		Returns:
			The registered Worker record

		Raises:
			RegistryFrozenError: If start-up configuration already ended
			UnknownCapability: If the tag is not a known capability
			ValueError: If the capability already has a worker
		"""
		if self._frozen:
			raise RegistryFrozenError("Worker registry is frozen; register workers at start-up")

		cap = Capability.parse(capability)
		if cap in self._workers:
			raise ValueError(
				f"Capability {cap.value} already served by {self._workers[cap].identity}"
			)

		worker = Worker(
			identity=identity or f"{cap.value}-agent",
			capability=cap,
			available=available,
		)
		self._workers[cap] = RegisteredWorker(worker=worker, handler=handler)
		logger.info(f"Registered worker {worker.identity} for {cap.value}")
		return worker

	def freeze(self) -> None:
		"""End the start-up phase; further registration is rejected."""
		self._frozen = True

	def resolve(self, capability: "str | Capability") -> RegisteredWorker:
		"""
		Look up the worker for a capability.

		Raises:
			UnknownCapability: Unknown tag or no worker registered
			WorkerUnavailable: Worker registered but flagged unavailable
		"""
		cap = Capability.parse(capability)
		registered = self._workers.get(cap)
		if registered is None:
			raise UnknownCapability(cap.value)
		if not registered.worker.available:
			raise WorkerUnavailable(cap.value)
		return registered

	def has(self, capability: "str | Capability") -> bool:
		try:
			self.resolve(capability)
		except UnknownCapability:
			return False
		return True

	def workers(self) -> list[Worker]:
		"""All registered workers, in registration order."""
		return [r.worker for r in self._workers.values()]

	def __contains__(self, capability: object) -> bool:
		return isinstance(capability, (str, Capability)) and self.has(capability)

	def __len__(self) -> int:
		return len(self._workers)

