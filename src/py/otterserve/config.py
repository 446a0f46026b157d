import os
from os import getenv
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .utils.logging import info

# --
# # Configuration
#
# The configuration is a YAML file, with defaults that can be overridden
# through the environment.

HOST: str = getenv("OTTERSERVE_HOST", "localhost")
PORT: int = int(getenv("OTTERSERVE_PORT", 1123))
CONFIG: str = getenv("OTTERSERVE_CONFIG", "config.yaml")
LOG_LEVEL: str = getenv("OTTERSERVE_LOG_LEVEL", "info")

# The levels accepted in configuration files
VALID_LEVELS: tuple[str, ...] = ("debug", "info", "warn", "error")


class ConfigError(Exception):
	pass


@dataclass
class ServerConfig:
	host: str = HOST
	port: int = PORT


@dataclass
class AuthConfig:
	enabled: bool = False
	username: str = ""
	password: str = ""


@dataclass
class RouteConfig:
	path: str = ""
	directory: str = ""

	@staticmethod
	def FromDict(data: Any) -> "RouteConfig":
		if not isinstance(data, dict):
			raise ConfigError(f"Each route must be a mapping, got: {data!r}")
		return RouteConfig(
			path=str(data.get("path") or ""),
			directory=str(data.get("directory") or ""),
		)


@dataclass
class LoggingConfig:
	level: str = LOG_LEVEL
	# Empty means stderr
	file: str = ""


@dataclass
class Config:
	server: ServerConfig = field(default_factory=ServerConfig)
	auth: AuthConfig = field(default_factory=AuthConfig)
	routes: list[RouteConfig] = field(default_factory=list)
	logging: LoggingConfig = field(default_factory=LoggingConfig)

	@staticmethod
	def FromDict(data: dict[str, Any]) -> "Config":
		"""Creates a configuration from parsed YAML. Absent keys are left
		empty, so that `applyDefaults` can tell them apart."""
		server = section(data, "server")
		auth = section(data, "auth")
		logging = section(data, "logging")
		routes = data.get("routes") or []
		if not isinstance(routes, list):
			raise ConfigError(f"'routes' must be a list, got: {routes!r}")
		try:
			return Config(
				server=ServerConfig(
					host=str(server.get("host") or ""),
					port=int(-1 if server.get("port") is None else server["port"]),
				),
				auth=AuthConfig(
					enabled=bool(auth.get("enabled", False)),
					username=str(auth.get("username") or ""),
					password=str(auth.get("password") or ""),
				),
				routes=[RouteConfig.FromDict(_) for _ in routes],
				logging=LoggingConfig(
					level=str(logging.get("level") or ""),
					file=str(logging.get("file") or ""),
				),
			)
		except (TypeError, ValueError) as e:
			raise ConfigError(f"Invalid configuration value: {e}") from e

	def asDict(self) -> dict[str, Any]:
		return asdict(self)


def section(data: dict[str, Any], name: str) -> dict[str, Any]:
	value = data.get(name)
	if value is None:
		return {}
	elif not isinstance(value, dict):
		raise ConfigError(f"'{name}' must be a mapping, got: {value!r}")
	else:
		return value


def defaults() -> Config:
	"""Returns the default configuration: serving the current directory
	on `localhost:1123`."""
	return Config(
		server=ServerConfig(HOST, PORT),
		auth=AuthConfig(),
		routes=[RouteConfig("/", "./")],
		logging=LoggingConfig(LOG_LEVEL, ""),
	)


def applyDefaults(config: Config) -> Config:
	"""Fills in the missing values. Port `0` is kept, as it means any
	available port."""
	base = defaults()
	if not config.server.host:
		config.server.host = base.server.host
	if config.server.port < 0:
		config.server.port = base.server.port
	if not config.logging.level:
		config.logging.level = base.logging.level
	if not config.routes:
		config.routes = base.routes
	return config


def load(path: Path | str) -> Config:
	try:
		with open(path, "rt", encoding="utf8") as f:
			data = yaml.safe_load(f)
	except OSError as e:
		raise ConfigError(f"Failed to read config file {path}: {e}") from e
	except yaml.YAMLError as e:
		raise ConfigError(f"Failed to parse YAML config {path}: {e}") from e
	if data is None:
		data = {}
	elif not isinstance(data, dict):
		raise ConfigError(f"Config file {path} must contain a mapping")
	return Config.FromDict(data)


def save(config: Config, path: Path | str) -> Path:
	p = Path(path)
	try:
		p.parent.mkdir(parents=True, exist_ok=True)
		with open(p, "wt", encoding="utf8") as f:
			yaml.safe_dump(config.asDict(), f, sort_keys=False)
	except OSError as e:
		raise ConfigError(f"Failed to write config file {path}: {e}") from e
	return p


def loadOrCreateDefault(path: Path | str) -> Config:
	"""Loads the configuration at `path`, creating a default one (and the
	directories of its routes) when it does not exist."""
	if Path(path).exists():
		return applyDefaults(load(path))
	config = applyDefaults(defaults())
	for route in config.routes:
		try:
			os.makedirs(route.directory, exist_ok=True)
		except OSError as e:
			raise ConfigError(
				f"Failed to create directory {route.directory}: {e}"
			) from e
	save(config, path)
	info("Created default configuration", path=str(path))
	return config


def validate(config: Config) -> Config:
	"""Checks the configuration, raising a `ConfigError` describing the
	first problem found."""
	if not config.server.host:
		raise ConfigError("Server host cannot be empty")
	if not 0 <= config.server.port <= 65535:
		raise ConfigError(
			f"Server port must be between 0 and 65535, got {config.server.port}"
		)
	if config.auth.enabled:
		if not config.auth.username:
			raise ConfigError("Auth username cannot be empty when auth is enabled")
		if not config.auth.password:
			raise ConfigError("Auth password cannot be empty when auth is enabled")
	if not config.routes:
		raise ConfigError("At least one route must be configured")
	for i, route in enumerate(config.routes):
		if not route.path:
			raise ConfigError(f"Route {i}: path cannot be empty")
		if not route.directory:
			raise ConfigError(f"Route {i}: directory cannot be empty")
		if not os.path.exists(route.directory):
			raise ConfigError(f"Route {i}: directory {route.directory} does not exist")
	if config.logging.level not in VALID_LEVELS:
		raise ConfigError(
			f"Invalid log level {config.logging.level}, must be one of: {', '.join(VALID_LEVELS)}"
		)
	return config


# EOF
