"""HTTP API for the delegation coordinator."""

from __future__ import annotations

from typing import Optional

from ..config import Config


def create_app(config: Optional[Config] = None) -> object:
	"""Create the Starlette ASGI application from configuration."""
	from ..config import get_config
	from ..factory import create_services
	from .app import build_app

	services = create_services(config or get_config())
	return build_app(services.coordinator, monitor=services.monitor, store=services.store)


def run_api_server(config: Config, host: Optional[str] = None, port: Optional[int] = None) -> None:
	"""Run the HTTP API with uvicorn."""
	import uvicorn

	host = host or config.host
	port = port or config.port
	app = create_app(config)

	print(f"Delegation coordinator API at http://{host}:{port}")
	print("Press Ctrl+C to stop.")
	uvicorn.run(app, host=host, port=port, log_level="warning")
