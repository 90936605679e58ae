"""Tests for the event bus."""

import pytest

from delegation_coordinator.events import EventBus
from delegation_coordinator.models import CoordinatorEvent, EventType


def make_event(task_id: str = "t1", event_type: EventType = EventType.STATUS_CHANGED) -> CoordinatorEvent:
	return CoordinatorEvent(type=event_type, task_id=task_id)


class TestEventBus:
	"""Tests for publishing and subscribing."""

	@pytest.mark.asyncio
	async def test_listeners_and_queues_receive_events(self):
		bus = EventBus()
		received = []

		async def listener(event):
			received.append(event)

		bus.add_listener(listener)
		queue = bus.subscribe()

		event = make_event()
		await bus.publish(event)

		assert received == [event]
		assert queue.get_nowait() is event

	@pytest.mark.asyncio
	async def test_listener_failure_is_contained(self):
		bus = EventBus()
		received = []

		async def broken(event):
			raise RuntimeError("boom")

		async def listener(event):
			received.append(event)

		bus.add_listener(broken)
		bus.add_listener(listener)

		await bus.publish(make_event())

		assert len(received) == 1

	@pytest.mark.asyncio
	async def test_full_queue_drops_oldest(self):
		bus = EventBus()
		queue = bus.subscribe(maxsize=2)

		for task_id in ("a", "b", "c"):
			await bus.publish(make_event(task_id))

		assert [queue.get_nowait().task_id for _ in range(2)] == ["b", "c"]

	@pytest.mark.asyncio
	async def test_unsubscribe_and_remove_listener(self):
		bus = EventBus()
		received = []

		async def listener(event):
			received.append(event)

		bus.add_listener(listener)
		queue = bus.subscribe()
		bus.remove_listener(listener)
		bus.unsubscribe(queue)

		await bus.publish(make_event())

		assert received == []
		assert queue.empty()

	@pytest.mark.asyncio
	async def test_recent_history(self):
		bus = EventBus(history_size=3)
		for task_id in ("a", "b", "a", "c"):
			await bus.publish(make_event(task_id))

		assert [e.task_id for e in bus.recent()] == ["b", "a", "c"]
		assert [e.task_id for e in bus.recent(task_id="a")] == ["a"]
		assert [e.task_id for e in bus.recent(limit=1)] == ["c"]
