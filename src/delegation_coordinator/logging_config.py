"""Centralized logging configuration for delegation-coordinator."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "delegation_coordinator"


class SensitiveDataFilter(logging.Filter):
	"""Flag records that look like they carry credentials from task payloads."""

	SENSITIVE_PATTERNS = ("token", "password", "secret", "api_key", "authorization")

	def filter(self, record: logging.LogRecord) -> bool:
		if isinstance(record.msg, str) and not record.msg.startswith("[SENSITIVE]"):
			msg_lower = record.msg.lower()
			if any(pattern in msg_lower for pattern in self.SENSITIVE_PATTERNS):
				# Don't block, but mark for review
				record.msg = f"[SENSITIVE] {record.msg}"
		return True


def setup_logging(
	level: Optional[str] = None,
	log_dir: Optional[str] = None,
	name: str = ROOT_LOGGER,
) -> logging.Logger:
	"""
	Set up logging with console and file handlers.

	Args:
		level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL or INFO.
		log_dir: Directory for the rotating log file; console only when None
		name: Logger to configure (the package root by default)

	Returns:
		Configured logger
	"""
	level = level or os.getenv("LOG_LEVEL", "INFO")
	log_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(name)
	logger.setLevel(log_level)

	# Avoid duplicate handlers
	if logger.handlers:
		return logger

	detailed_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
		datefmt="%Y-%m-%d %H:%M:%S",
	)
	simple_formatter = logging.Formatter(
		"%(asctime)s [%(levelname)s] %(message)s",
		datefmt="%H:%M:%S",
	)
	sensitive_filter = SensitiveDataFilter()

	# stderr keeps stdout free for the MCP stdio transport
	console_handler = logging.StreamHandler(sys.stderr)
	console_handler.setLevel(log_level)
	console_handler.setFormatter(simple_formatter)
	console_handler.addFilter(sensitive_filter)
	logger.addHandler(console_handler)

	if log_dir:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)

		file_handler = RotatingFileHandler(
			log_path / "coordinator.log",
			maxBytes=10 * 1024 * 1024,  # 10 MB
			backupCount=5,
		)
		file_handler.setLevel(logging.DEBUG)  # File gets all logs
		file_handler.setFormatter(detailed_formatter)
		file_handler.addFilter(sensitive_filter)
		logger.addHandler(file_handler)

	return logger

