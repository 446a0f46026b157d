import sys
from abc import ABC, abstractmethod
from pathlib import Path

from . import config as configuration
from .config import Config
from .server import STOP_DEADLINE, run
from .utils.logging import info, setLevel, setOutput
from .utils.shell import ShellCommandError, TShell, shell

# --
# # Service management
#
# Registers the server as a background service of the host, through a small
# interface so that the server itself has no dependency on it. The systemd
# implementation runs `systemctl` through an injectable command runner.

NAME: str = "otterserve"
DISPLAY_NAME: str = "Otter Serve"
DESCRIPTION: str = "Lightweight HTTP file server with configurable routing"

SYSTEMD_UNIT_DIRECTORY: Path = Path("/etc/systemd/system")


class ServiceError(Exception):
	pass


def configure(config: Config) -> Config:
	"""Applies the logging section of the configuration."""
	setLevel(config.logging.level)
	if config.logging.file:
		setOutput(config.logging.file)
	return config


def prepare(configPath: Path | str) -> Config:
	"""Loads (or creates) and validates the configuration."""
	return configuration.validate(configuration.loadOrCreateDefault(configPath))


class ServiceManager(ABC):
	@abstractmethod
	def install(self) -> None: ...

	@abstractmethod
	def uninstall(self) -> None: ...

	@abstractmethod
	def start(self) -> None: ...

	@abstractmethod
	def stop(self) -> None: ...

	@abstractmethod
	def run(self) -> None:
		"""Runs the server in the foreground, as the service manager
		does."""


class SystemdServiceManager(ServiceManager):
	def __init__(
		self,
		configPath: Path | str,
		*,
		name: str = NAME,
		displayName: str = DISPLAY_NAME,
		description: str = DESCRIPTION,
		unitDirectory: Path | str = SYSTEMD_UNIT_DIRECTORY,
		command: TShell = shell,
	):
		self.name: str = name
		self.displayName: str = displayName
		self.description: str = description
		self.configPath: Path = Path(configPath).absolute()
		self.unitDirectory: Path = Path(unitDirectory)
		self.command: TShell = command

	@property
	def unitPath(self) -> Path:
		return self.unitDirectory / f"{self.name}.service"

	def unit(self) -> str:
		"""Renders the systemd unit file for the service."""
		return "\n".join(
			[
				"[Unit]",
				f"Description={self.displayName}: {self.description}",
				"After=network.target",
				"",
				"[Service]",
				"Type=simple",
				f"WorkingDirectory={self.configPath.parent}",
				f"ExecStart={sys.executable} -m otterserve --config {self.configPath}",
				"Restart=on-failure",
				"RestartSec=5",
				f"TimeoutStopSec={int(STOP_DEADLINE) + 5}",
				"",
				"[Install]",
				"WantedBy=multi-user.target",
				"",
			]
		)

	def systemctl(self, *args: str) -> bytes:
		try:
			return self.command(["systemctl", *args])
		except ShellCommandError as e:
			raise ServiceError(str(e)) from e

	def install(self) -> None:
		info("Installing service", service=self.name, unit=str(self.unitPath))
		try:
			self.unitPath.parent.mkdir(parents=True, exist_ok=True)
			self.unitPath.write_text(self.unit(), encoding="utf8")
		except OSError as e:
			raise ServiceError(f"Could not write unit file {self.unitPath}: {e}") from e
		self.systemctl("daemon-reload")
		self.systemctl("enable", self.name)
		info("Service installed", service=self.name)

	def uninstall(self) -> None:
		info("Uninstalling service", service=self.name)
		# A service that is not running can't be stopped, which is fine
		try:
			self.systemctl("stop", self.name)
		except ServiceError as e:
			info("Service was not stopped", service=self.name, reason=str(e))
		self.systemctl("disable", self.name)
		try:
			self.unitPath.unlink(missing_ok=True)
		except OSError as e:
			raise ServiceError(f"Could not remove unit file {self.unitPath}: {e}") from e
		self.systemctl("daemon-reload")
		info("Service uninstalled", service=self.name)

	def start(self) -> None:
		self.systemctl("start", self.name)

	def stop(self) -> None:
		self.systemctl("stop", self.name)

	def run(self) -> None:
		ConsoleRunner(self.configPath).run()


class ConsoleRunner:
	"""Runs the server in the foreground until `SIGINT` or `SIGTERM`."""

	def __init__(self, configPath: Path | str):
		self.configPath: Path = Path(configPath)

	def run(self, config: Config | None = None) -> None:
		"""Runs with the given configuration, already validated, or with the
		one loaded from `configPath`."""
		config = configure(config or prepare(self.configPath))
		info(
			"Configuration loaded",
			config=str(self.configPath),
			host=config.server.host,
			port=config.server.port,
			routes=len(config.routes),
			auth=config.auth.enabled,
		)
		run(config)


# EOF
