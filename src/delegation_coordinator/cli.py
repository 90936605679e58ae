"""CLI for delegation-coordinator: serve, mcp, run, workers, tasks and doctor commands."""

import argparse
import asyncio
import json
import platform
import sys
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .config import Config, load_config
from .errors import CoordinatorError
from .logging_config import setup_logging
from .models import TaskStatus

CORE_DEPS = ["pydantic", "aiosqlite", "platformdirs", "python-dotenv", "rich", "mcp", "starlette", "uvicorn"]


def _parse_payload(raw: str) -> Any:
	"""JSON payloads are decoded; anything else is passed through as text."""
	try:
		return json.loads(raw)
	except json.JSONDecodeError:
		return raw


def cmd_serve(args: argparse.Namespace) -> None:
	"""Run the HTTP API."""
	from .web import run_api_server

	run_api_server(args.config, host=args.host, port=args.port)


def cmd_mcp(args: argparse.Namespace) -> None:
	"""Run the MCP server (stdio transport)."""
	from .server import build_server

	build_server(args.config).run()


async def _run_task(config: Config, args: argparse.Namespace):
	from .factory import create_services

	services = create_services(config)
	if services.store is not None:
		await services.store.init()
	await services.monitor.start()
	try:
		return await services.coordinator.run(
			args.capability,
			_parse_payload(args.payload),
			timeout=args.timeout,
			review_required=not args.no_review,
			category=args.category,
		)
	finally:
		await services.monitor.stop()
		await services.coordinator.shutdown()
		if services.store is not None:
			await services.store.close()


def cmd_run(args: argparse.Namespace) -> None:
	"""Submit one task and wait for it to finish."""
	from .visualizer import render_task_detail

	try:
		task = asyncio.run(_run_task(args.config, args))
	except CoordinatorError as e:
		print(f"Error: {e}")
		sys.exit(1)
	except asyncio.TimeoutError:
		print(f"Task did not finish within {args.timeout:.0f} seconds")
		sys.exit(1)

	if args.json:
		print(json.dumps(task.to_api(), indent=2, default=str))
	else:
		render_task_detail(task)
	if task.status == TaskStatus.FAILED:
		sys.exit(1)


def cmd_workers(args: argparse.Namespace) -> None:
	"""Show the configured worker roster."""
	from .visualizer import render_workers
	from .workers import build_registry

	try:
		registry = build_registry(args.config)
	except (CoordinatorError, ValueError) as e:
		print(f"Invalid worker configuration: {e}")
		sys.exit(1)
	render_workers(registry.workers())


async def _load_tasks(config: Config, task_id: str | None, status: TaskStatus | None, limit: int):
	from .store import TaskStore

	store = TaskStore(str(config.db_path))
	await store.init()
	try:
		if task_id:
			return await store.get_task(task_id)
		return await store.list_tasks(status=status, limit=limit)
	finally:
		await store.close()


def cmd_tasks(args: argparse.Namespace) -> None:
	"""List recorded tasks, or show one in detail."""
	from .visualizer import render_task_detail, render_task_table

	try:
		status = TaskStatus(args.status) if args.status else None
	except ValueError:
		print(f"Unknown status: {args.status}")
		sys.exit(1)

	result = asyncio.run(_load_tasks(args.config, args.task_id, status, args.limit))
	if args.task_id:
		if result is None:
			print(f"Task not found: {args.task_id}")
			sys.exit(1)
		render_task_detail(result)
	else:
		render_task_table(result)


def _check_config_toml(config_dir: Path) -> tuple[str, str | None]:
	"""Validate config.toml. Returns (status, issue_or_none)."""
	import tomllib

	toml_path = config_dir / "config.toml"
	if not toml_path.exists():
		return "not found (optional)", None
	try:
		with open(toml_path, "rb") as f:
			tomllib.load(f)
		return "valid", None
	except tomllib.TOMLDecodeError as e:
		return f"INVALID ({e})", f"config.toml parse error: {e}"


def _check_workers(config: Config) -> tuple[str, str | None]:
	"""Build the registry from config. Returns (status, issue_or_none)."""
	from .models import Capability
	from .workers import build_registry

	try:
		registry = build_registry(config)
	except (CoordinatorError, ValueError) as e:
		return f"INVALID ({e})", f"Worker configuration: {e}"
	if not len(registry):
		return "none configured", "No workers configured"
	if not registry.has(Capability.PLAN_REVIEWER):
		return f"{len(registry)} workers, no plan-reviewer", "No plan-reviewer: only review-exempt tasks can run"
	return f"{len(registry)} workers", None


def cmd_doctor(args: argparse.Namespace) -> None:
	"""Health check - verify installation and configuration."""
	print("delegation-coordinator doctor")
	print(f"{'=' * 40}")

	config: Config = args.config
	issues: list[str] = []

	py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
	print(f"  Python:       {py_ver}")
	print(f"  Platform:     {platform.system()} {platform.machine()}")
	print()

	print("  Core deps:")
	for dep in CORE_DEPS:
		try:
			print(f"    {dep:22s} {pkg_version(dep)}")
		except Exception:
			print(f"    {dep:22s} NOT INSTALLED")
			issues.append(f"{dep} package not installed")
	print()

	print("  Config:")
	print(f"    config dir:          {config.config_dir}")
	print(f"    database:            {config.db_path}")
	toml_status, toml_issue = _check_config_toml(config.config_dir)
	print(f"    config.toml:         {toml_status}")
	if toml_issue:
		issues.append(toml_issue)
	workers_status, workers_issue = _check_workers(config)
	print(f"    workers:             {workers_status}")
	if workers_issue:
		issues.append(workers_issue)
	print()

	if issues:
		print(f"  {len(issues)} issue(s) found:")
		for issue in issues:
			print(f"    - {issue}")
		sys.exit(1)
	else:
		print("  All checks passed.")


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="delegation-coordinator",
		description="Delegate tasks to capability workers with a plan-reviewer gate",
	)
	subparsers = parser.add_subparsers(dest="command")

	# serve
	serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
	serve_parser.add_argument("--host", type=str, default=None, help="Bind address (default from config)")
	serve_parser.add_argument("--port", type=int, default=None, help="Port (default from config)")
	serve_parser.set_defaults(func=cmd_serve)

	# mcp
	mcp_parser = subparsers.add_parser("mcp", help="Run MCP server (stdio)")
	mcp_parser.set_defaults(func=cmd_mcp)

	# run
	run_parser = subparsers.add_parser("run", help="Submit a task and wait for the outcome")
	run_parser.add_argument("capability", help="Target capability, e.g. backend")
	run_parser.add_argument("payload", help="Task description (JSON or text)")
	run_parser.add_argument("--no-review", action="store_true", help="Skip the plan-reviewer")
	run_parser.add_argument("--category", type=str, default=None, help="Duration-budget category")
	run_parser.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds")
	run_parser.add_argument("--json", action="store_true", help="Print the task as JSON")
	run_parser.set_defaults(func=cmd_run)

	# workers
	workers_parser = subparsers.add_parser("workers", help="Show configured workers")
	workers_parser.set_defaults(func=cmd_workers)

	# tasks
	tasks_parser = subparsers.add_parser("tasks", help="Show recorded tasks")
	tasks_parser.add_argument("task_id", nargs="?", default=None, help="Task ID for detail view")
	tasks_parser.add_argument("--status", type=str, default=None, help="Filter by status")
	tasks_parser.add_argument("--limit", type=int, default=50, help="Max results")
	tasks_parser.set_defaults(func=cmd_tasks)

	# doctor
	doctor_parser = subparsers.add_parser("doctor", help="Health check")
	doctor_parser.set_defaults(func=cmd_doctor)

	return parser


def main(argv: list[str] | None = None) -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	load_dotenv()
	config = load_config()
	setup_logging(config.log_level, log_dir=str(config.log_dir))
	args.config = config
	args.func(args)
