"""Wiring of coordinator, monitor and store from a Config."""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Config
from .coordinator import DelegationCoordinator, TimeoutPolicy
from .events import EventBus
from .monitor import ProgressMonitor
from .registry import WorkerRegistry
from .store import TaskStore
from .workers import build_registry

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorServices:
	"""Everything a front end (HTTP, MCP, CLI) needs."""
	coordinator: DelegationCoordinator
	monitor: ProgressMonitor
	store: Optional[TaskStore]
	events: EventBus


def create_services(
	config: Config,
	registry: Optional[WorkerRegistry] = None,
	persist: bool = True,
	timeout_policy: Optional[TimeoutPolicy] = None,
) -> CoordinatorServices:
	"""
	Build the coordinator stack.

	Args:
		config: Loaded configuration
		registry: Worker registry (default: built from [workers.*])
		persist: Keep task snapshots and events in SQLite
		timeout_policy: Optional hard-timeout policy for the coordinator
	"""
	events = EventBus()
	store = TaskStore(str(config.db_path)) if persist else None
	if store is not None:
		store.attach(events)

	registry = registry if registry is not None else build_registry(config)
	coordinator = DelegationCoordinator(
		registry,
		retry_limit=config.retry_limit,
		store=store,
		events=events,
		timeout_policy=timeout_policy,
	)
	monitor = ProgressMonitor(
		coordinator,
		budgets=config.duration_budgets(),
		poll_interval=config.poll_interval,
	)
	logger.info(
		f"Coordinator ready: {len(registry)} workers, retry limit {config.retry_limit}"
	)
	return CoordinatorServices(coordinator=coordinator, monitor=monitor, store=store, events=events)
