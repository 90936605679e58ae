"""
Task Store - SQLite-backed task snapshots and event log.

Features:
- Upsert of the latest snapshot per task
- Append-only event log keyed by task id
- Lookup of tasks from earlier runs
"""

import logging
from pathlib import Path
from typing import Optional

import aiosqlite

from .events import EventBus
from .models import CoordinatorEvent, Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
	"""
	SQLite-backed task storage.

	Usage:
		store = TaskStore("data/coordinator.db")
		await store.init()

		await store.save_task(task)
		task = await store.get_task(task_id)

		store.attach(event_bus)  # persist every published event
	"""

	def __init__(self, db_path: str):
		"""Initialize the task store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		if self._db:
			return
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS tasks (
				id TEXT PRIMARY KEY,
				capability TEXT NOT NULL,
				status TEXT NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
		""")

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS task_events (
				id INTEGER PRIMARY KEY AUTOINCREMENT,
				task_id TEXT NOT NULL,
				event_type TEXT NOT NULL,
				worker TEXT,
				data TEXT NOT NULL,
				timestamp TEXT NOT NULL
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_task_events_task ON task_events(task_id)
		""")

		await self._db.commit()
		logger.info(f"Task store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def save_task(self, task: Task) -> None:
		"""Insert or replace the snapshot of a task."""
		if not self._db:
			await self.init()

		await self._db.execute(
			"""
			INSERT INTO tasks (id, capability, status, data, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?, ?)
			ON CONFLICT(id) DO UPDATE SET
				status = excluded.status,
				data = excluded.data,
				updated_at = excluded.updated_at
			""",
			(
				task.id,
				task.capability.value,
				task.status.value,
				task.model_dump_json(),
				task.created_at,
				task.updated_at,
			)
		)
		await self._db.commit()

	async def get_task(self, task_id: str) -> Optional[Task]:
		"""Get the latest snapshot of a task, or None."""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT data FROM tasks WHERE id = ?",
			(task_id,)
		) as cursor:
			row = await cursor.fetchone()

		if not row:
			return None

		return Task.model_validate_json(row["data"])

	async def list_tasks(
		self,
		status: Optional[TaskStatus] = None,
		limit: int = 100,
	) -> list[Task]:
		"""
		List task snapshots, most recently updated first.

		Args:
			status: Filter by status
			limit: Max results
		"""
		if not self._db:
			await self.init()

		if status:
			query = "SELECT data FROM tasks WHERE status = ? ORDER BY updated_at DESC LIMIT ?"
			params: tuple = (status.value, limit)
		else:
			query = "SELECT data FROM tasks ORDER BY updated_at DESC LIMIT ?"
			params = (limit,)

		async with self._db.execute(query, params) as cursor:
			rows = await cursor.fetchall()

		return [Task.model_validate_json(row["data"]) for row in rows]

	async def append_event(self, event: CoordinatorEvent) -> None:
		"""Append an event to the log."""
		if not self._db:
			await self.init()

		await self._db.execute(
			"""
			INSERT INTO task_events (task_id, event_type, worker, data, timestamp)
			VALUES (?, ?, ?, ?, ?)
			""",
			(
				event.task_id,
				event.type.value,
				event.worker,
				event.model_dump_json(),
				event.timestamp,
			)
		)
		await self._db.commit()

	async def get_events(
		self,
		task_id: Optional[str] = None,
		limit: int = 200,
	) -> list[CoordinatorEvent]:
		"""Events in the order they were appended."""
		if not self._db:
			await self.init()

		if task_id:
			query = "SELECT data FROM task_events WHERE task_id = ? ORDER BY id LIMIT ?"
			params: tuple = (task_id, limit)
		else:
			query = "SELECT data FROM task_events ORDER BY id LIMIT ?"
			params = (limit,)

		async with self._db.execute(query, params) as cursor:
			rows = await cursor.fetchall()

		return [CoordinatorEvent.model_validate_json(row["data"]) for row in rows]

	def attach(self, events: EventBus) -> None:
		"""Persist every event published on the bus."""
		events.add_listener(self.append_event)


# Global store instance
_store: Optional[TaskStore] = None


async def get_task_store(db_path: str = "") -> TaskStore:
	"""Get or create the global task store."""
	global _store
	if _store is None:
		if not db_path:
			from .config import get_config
			db_path = str(get_config().db_path)
		_store = TaskStore(db_path)
		await _store.init()
	return _store
