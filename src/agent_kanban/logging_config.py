"""Centralized logging configuration for agent-kanban."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

ROOT_LOGGER = "agent_kanban"
LOG_FILE_NAME = "agent_kanban.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Chatty third-party loggers capped at WARNING
QUIET_LOGGERS = ("aiosqlite", "httpx", "mcp.server.lowlevel.server")


def setup_logging(
	level: str | None = None,
	log_dir: Path | str | None = None,
) -> logging.Logger:
	"""
	Attach console and rotating-file handlers to the package logger.

	The console handler writes to stderr: under ``agent-kanban serve`` stdout
	carries the MCP stdio transport. Calling this again is a no-op.

	Args:
		level: Console level name. Defaults to AGENT_KANBAN_LOG_LEVEL, else INFO.
		log_dir: Where agent_kanban.log rotates. Console only when omitted.
	"""
	level = level or os.getenv("AGENT_KANBAN_LOG_LEVEL", "INFO")
	console_level = getattr(logging, level.upper(), logging.INFO)

	logger = logging.getLogger(ROOT_LOGGER)
	if logger.handlers:
		return logger
	# The file handler wants everything; the console handler filters on its own
	logger.setLevel(logging.DEBUG if log_dir else console_level)

	console = logging.StreamHandler(sys.stderr)
	console.setLevel(console_level)
	console.setFormatter(logging.Formatter(
		"%(asctime)s [%(levelname)s] %(name)s: %(message)s",
		datefmt="%H:%M:%S",
	))
	logger.addHandler(console)

	if log_dir:
		log_path = Path(log_dir)
		log_path.mkdir(parents=True, exist_ok=True)
		file_handler = RotatingFileHandler(
			log_path / LOG_FILE_NAME,
			maxBytes=LOG_FILE_MAX_BYTES,
			backupCount=LOG_FILE_BACKUPS,
		)
		file_handler.setLevel(logging.DEBUG)
		file_handler.setFormatter(logging.Formatter(
			"%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
			datefmt="%Y-%m-%d %H:%M:%S",
		))
		logger.addHandler(file_handler)

	for name in QUIET_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)

	return logger
