"""Tests for SQLite task persistence."""

from pathlib import Path

import pytest

from delegation_coordinator import store as store_module
from delegation_coordinator.events import EventBus
from delegation_coordinator.models import (
	Capability,
	CoordinatorEvent,
	EventType,
	ReviewVerdict,
	Task,
	TaskStatus,
)
from delegation_coordinator.store import TaskStore, get_task_store

from .helpers import ScriptedWorker, approve, make_coordinator, needs_improvement, wait_until


@pytest.fixture
def store(tmp_path: Path) -> TaskStore:
	return TaskStore(str(tmp_path / "db" / "coordinator.db"))


class TestTaskSnapshots:
	"""Tests for saving and loading tasks."""

	@pytest.mark.asyncio
	async def test_save_and_get(self, store):
		task = Task(capability=Capability.BACKEND, payload={"goal": "Add /health"})
		task.verdicts.append(ReviewVerdict.needs_improvement(task.id, "Add tests"))

		await store.save_task(task)
		loaded = await store.get_task(task.id)

		assert loaded == task
		assert loaded.verdicts[0].feedback == "Add tests"
		await store.close()

	@pytest.mark.asyncio
	async def test_upsert_replaces_snapshot(self, store):
		task = Task(capability=Capability.QA)
		await store.save_task(task)

		task.status = TaskStatus.IN_PROGRESS
		task.updated_at = "2099-01-01T00:00:00"
		await store.save_task(task)

		tasks = await store.list_tasks()
		assert len(tasks) == 1
		assert tasks[0].status == TaskStatus.IN_PROGRESS
		await store.close()

	@pytest.mark.asyncio
	async def test_list_filter_and_order(self, store):
		older = Task(capability=Capability.BACKEND, status=TaskStatus.APPROVED, updated_at="2026-01-01T10:00:00")
		newer = Task(capability=Capability.FRONTEND, status=TaskStatus.APPROVED, updated_at="2026-01-02T10:00:00")
		failed = Task(capability=Capability.DEVOPS, status=TaskStatus.FAILED, updated_at="2026-01-03T10:00:00")
		for task in (older, newer, failed):
			await store.save_task(task)

		approved = await store.list_tasks(status=TaskStatus.APPROVED)
		assert [t.id for t in approved] == [newer.id, older.id]
		assert len(await store.list_tasks(limit=1)) == 1
		await store.close()

	@pytest.mark.asyncio
	async def test_missing_task(self, store):
		assert await store.get_task("nope") is None
		await store.close()

	@pytest.mark.asyncio
	async def test_init_is_idempotent(self, store):
		await store.init()
		await store.init()
		assert store.db_path.exists()
		await store.close()


class TestEventLog:
	"""Tests for the append-only event log."""

	@pytest.mark.asyncio
	async def test_append_and_filter(self, store):
		await store.append_event(CoordinatorEvent(type=EventType.TASK_SUBMITTED, task_id="a"))
		await store.append_event(CoordinatorEvent(type=EventType.TASK_SUBMITTED, task_id="b"))
		await store.append_event(CoordinatorEvent(type=EventType.TASK_APPROVED, task_id="a", data={"result": "ok"}))

		events = await store.get_events(task_id="a")
		assert [e.type for e in events] == [EventType.TASK_SUBMITTED, EventType.TASK_APPROVED]
		assert events[1].data == {"result": "ok"}
		assert len(await store.get_events()) == 3
		await store.close()

	@pytest.mark.asyncio
	async def test_attach_persists_bus_events(self, store):
		bus = EventBus()
		store.attach(bus)

		await bus.publish(CoordinatorEvent(type=EventType.PROGRESS_CHECK_IN, task_id="t1", worker="qa-agent"))

		events = await store.get_events(task_id="t1")
		assert len(events) == 1
		assert events[0].worker == "qa-agent"
		await store.close()


class TestCoordinatorPersistence:
	"""Tests for the coordinator writing through the store."""

	@pytest.mark.asyncio
	async def test_final_snapshot_and_history_persisted(self, store):
		bus = EventBus()
		store.attach(bus)
		coordinator = make_coordinator(
			{"backend": ScriptedWorker("R1", "R2")},
			reviewer=ScriptedWorker(needs_improvement("F1"), approve()),
			store=store,
			events=bus,
		)

		task = await coordinator.run("backend", "x", timeout=2)
		# Events are flushed by the background invocation after the task settles
		await wait_until(lambda: not coordinator._running)
		stored = await store.get_task(task.id)

		assert stored.status == TaskStatus.APPROVED
		assert stored.attempt_count == 1
		assert len(stored.verdicts) == 2

		types = [e.type for e in await store.get_events(task_id=task.id)]
		assert types[0] == EventType.TASK_SUBMITTED
		assert types.count(EventType.REVIEW_RECORDED) == 2
		assert types[-1] == EventType.TASK_APPROVED
		await store.close()


class TestGlobalStore:
	"""Tests for the process-wide store."""

	@pytest.mark.asyncio
	async def test_get_task_store_returns_singleton(self, tmp_path: Path, monkeypatch):
		monkeypatch.setattr(store_module, "_store", None)

		first = await get_task_store(str(tmp_path / "global.db"))
		second = await get_task_store()

		assert first is second
		await first.close()
