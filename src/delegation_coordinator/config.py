"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import platformdirs

from .models import DurationBudget

APP_NAME = "delegation-coordinator"
APP_AUTHOR = "delegation-coordinator"
ENV_PREFIX = "DELEGATION_COORDINATOR_"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	db_path: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Coordination policy
	retry_limit: int = 3
	poll_interval: float = 60.0
	worker_timeout: float = 1800.0

	# HTTP API
	host: str = "127.0.0.1"
	port: int = 8430

	log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

	# [workers.<capability>] command = [...], identity = "...", available = true
	workers: dict[str, dict[str, Any]] = field(default_factory=dict)
	# [budgets.<category>] min_minutes / max_minutes / check_in_factor / hard_timeout_factor
	budgets: dict[str, dict[str, Any]] = field(default_factory=dict)

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "coordinator.db"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)

	def duration_budgets(self) -> dict[str, DurationBudget]:
		"""Default budgets with [budgets.*] overrides applied."""
		from .monitor import DEFAULT_BUDGETS

		budgets = dict(DEFAULT_BUDGETS)
		for category, overrides in self.budgets.items():
			base = budgets.get(category)
			data = base.model_dump() if base else {}
			data.update(overrides)
			data["category"] = category
			budgets[category] = DurationBudget.model_validate(data)
		return budgets


def _apply_env_overrides(config: Config) -> Config:
	"""Apply DELEGATION_COORDINATOR_* environment variable overrides."""
	env_map = {
		"CONFIG_DIR": ("config_dir", Path),
		"DATA_DIR": ("data_dir", Path),
		"RETRY_LIMIT": ("retry_limit", int),
		"POLL_INTERVAL": ("poll_interval", float),
		"WORKER_TIMEOUT": ("worker_timeout", float),
		"HOST": ("host", str),
		"PORT": ("port", int),
		"LOG_LEVEL": ("log_level", str),
	}
	for suffix, (attr, cast) in env_map.items():
		val = os.getenv(ENV_PREFIX + suffix)
		if val:
			setattr(config, attr, cast(val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	path_fields = {"config_dir", "data_dir"}
	for key, val in data.items():
		if hasattr(config, key):
			if key in path_fields:
				setattr(config, key, Path(os.path.expanduser(val)))
			else:
				setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# config_dir itself may come from the environment
	config_dir = os.getenv(ENV_PREFIX + "CONFIG_DIR")
	if config_dir:
		config.config_dir = Path(config_dir)
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
