"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "agent-kanban"
APP_AUTHOR = "agent-kanban"

ENV_PREFIX = "AGENT_KANBAN_"

PATH_FIELDS = {"config_dir", "data_dir", "project_path"}
INT_FIELDS = {
	"plan_session_timeout",
	"plan_eviction_interval",
	"event_queue_size",
	"preview_port_start",
	"preview_port_range",
	"web_port",
}
STR_FIELDS = {"agent_binary", "main_branch", "preview_command"}


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	db_path: Path = field(init=False)
	worktrees_dir: Path = field(init=False)
	log_dir: Path = field(init=False)

	# User-configurable
	project_path: Path = field(default_factory=Path.cwd)
	agent_binary: str = "claude"
	main_branch: str = "main"
	plan_session_timeout: int = 3600
	plan_eviction_interval: int = 60
	event_queue_size: int = 100
	preview_command: str = ""
	preview_port_start: int = 9900
	preview_port_range: int = 100
	web_port: int = 9847

	def __post_init__(self) -> None:
		self.db_path = self.data_dir / "agent_kanban.db"
		self.worktrees_dir = self.data_dir / "worktrees"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.worktrees_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


def _coerce(key: str, val: object) -> object:
	"""Convert a raw toml/env value to the field's type."""
	if key in PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if key in INT_FIELDS:
		return int(val)
	return str(val)


def _apply_env_overrides(config: Config) -> Config:
	"""Apply AGENT_KANBAN_* environment variable overrides."""
	for attr in PATH_FIELDS | INT_FIELDS | STR_FIELDS:
		val = os.getenv(ENV_PREFIX + attr.upper())
		if val:
			setattr(config, attr, _coerce(attr, val))
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

	for key, val in data.items():
		if key in PATH_FIELDS | INT_FIELDS | STR_FIELDS:
			setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	config_dir = os.getenv(ENV_PREFIX + "CONFIG_DIR")
	if config_dir:
		config.config_dir = Path(os.path.expanduser(config_dir))
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
