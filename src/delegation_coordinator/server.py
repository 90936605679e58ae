"""delegation-coordinator MCP server."""

import contextlib
import logging
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP

from .config import Config, load_config
from .factory import create_services
from .tools import register_coordinator_tools

logger = logging.getLogger(__name__)


def build_server(config: Optional[Config] = None) -> FastMCP:
	"""Build a FastMCP server exposing the coordinator."""
	config = config or load_config()
	services = create_services(config)

	@contextlib.asynccontextmanager
	async def lifespan(server: FastMCP) -> AsyncIterator[dict]:
		if services.store is not None:
			await services.store.init()
		await services.monitor.start()
		try:
			yield {}
		finally:
			await services.monitor.stop()
			await services.coordinator.shutdown()
			if services.store is not None:
				await services.store.close()

	mcp = FastMCP("delegation-coordinator", lifespan=lifespan)
	register_coordinator_tools(mcp, services.coordinator, services.store)
	return mcp
