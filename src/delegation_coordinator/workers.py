"""
Command workers - run an external agent CLI for each invocation.

The worker's prompt goes to the command on stdin; stdout is the result.
Configured per capability in config.toml:

	[workers.backend]
	identity = "backend-agent"
	command = ["claude", "--print", "--output-format", "json"]
	result_key = "result"

	[workers.plan-reviewer]
	command = "claude --print"
"""

import asyncio
import json
import logging
import shlex
from pathlib import Path
from typing import Any, Optional

from .config import Config
from .errors import WorkerInvocationFailure
from .registry import WorkerRegistry

logger = logging.getLogger(__name__)

MAX_ERROR_CHARS = 500


class CommandWorker:
	"""Invokes a command-line agent with the rendered assignment."""

	def __init__(
		self,
		command: "list[str] | str",
		cwd: Optional[str] = None,
		timeout: float = 1800.0,
		result_key: Optional[str] = None,
	):
		"""
		Initialize the worker.

		Args:
			command: argv list, or a shell-style string split with shlex
			cwd: Working directory for the command
			timeout: Seconds before the call is abandoned
			result_key: Pull this key out of JSON stdout (e.g. 'result')
		"""
		self.command = shlex.split(command) if isinstance(command, str) else list(command)
		if not self.command:
			raise ValueError("CommandWorker needs a non-empty command")
		self.cwd = Path(cwd).expanduser() if cwd else None
		self.timeout = timeout
		self.result_key = result_key

	async def __call__(self, request: Any) -> Any:
		prompt = request.to_prompt() if hasattr(request, "to_prompt") else str(request)
		output = await self._run(prompt)
		return self._extract(output)

	async def _run(self, prompt: str) -> str:
		try:
			proc = await asyncio.create_subprocess_exec(
				*self.command,
				stdin=asyncio.subprocess.PIPE,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=str(self.cwd) if self.cwd else None,
			)
		except FileNotFoundError:
			raise WorkerInvocationFailure(f"Command not found: {self.command[0]}")

		try:
			stdout, stderr = await asyncio.wait_for(
				proc.communicate(input=prompt.encode()),
				timeout=self.timeout,
			)
		except asyncio.TimeoutError:
			proc.kill()
			await proc.wait()
			raise WorkerInvocationFailure(
				f"{self.command[0]} timed out after {self.timeout:.0f} seconds"
			)

		if proc.returncode != 0:
			error = stderr.decode("utf-8", errors="replace")[:MAX_ERROR_CHARS]
			raise WorkerInvocationFailure(
				f"{self.command[0]} exited with code {proc.returncode}: {error}"
			)

		return stdout.decode("utf-8", errors="replace").strip()

	def _extract(self, output: str) -> Any:
		if not self.result_key:
			return output
		try:
			data = json.loads(output)
		except json.JSONDecodeError:
			logger.debug(f"{self.command[0]} output is not JSON; returning raw text")
			return output
		if isinstance(data, dict) and self.result_key in data:
			return data[self.result_key]
		return data

	def __repr__(self) -> str:
		return f"CommandWorker({shlex.join(self.command)!r})"


def build_registry(config: Config) -> WorkerRegistry:
	"""
	Build a registry from the [workers.*] tables of the config.

	Raises:
		ValueError: A worker table has no command
		UnknownCapability: A table is named after an unknown capability
	"""
	registry = WorkerRegistry()
	for capability, entry in config.workers.items():
		command = entry.get("command")
		if not command:
			raise ValueError(f"Worker for {capability} has no command")
		worker = CommandWorker(
			command,
			cwd=entry.get("cwd"),
			timeout=float(entry.get("timeout", config.worker_timeout)),
			result_key=entry.get("result_key"),
		)
		registry.register(
			capability,
			worker,
			identity=entry.get("identity"),
			available=bool(entry.get("available", True)),
		)
	return registry
