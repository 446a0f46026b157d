import os
import sys
import argparse
from pathlib import Path

from . import __version__
from . import config as configuration
from .config import Config, ConfigError
from .routing import ConfigurationRejected
from .server import BindError, ShutdownTimeout
from .service import (
	DISPLAY_NAME,
	NAME,
	ConsoleRunner,
	ServiceError,
	SystemdServiceManager,
	prepare,
)
from .utils.logging import error, exception, info, warning


def banner(configPath: Path, config: Config) -> str:
	lines: list[str] = [
		f"Starting {DISPLAY_NAME} {__version__} in console mode",
		f"  config:  {configPath}",
		f"  auth:    {'enabled' if config.auth.enabled else 'disabled'}",
		"  routes:",
	]
	lines += [f"    {_.path} → {_.directory}" for _ in config.routes]
	lines.append("Press Ctrl+C to stop.")
	return "\n".join(lines)


def install(configPath: Path) -> None:
	if not configPath.exists():
		warning(
			"Configuration file does not exist, it will be created with defaults",
			config=str(configPath),
		)
	prepare(configPath)
	info("Configuration validated", config=str(configPath))
	SystemdServiceManager(configPath).install()
	print(f"{DISPLAY_NAME} has been installed successfully.")
	print(f"Configuration file: {configPath}")
	print(f"You can now start it with: systemctl start {NAME}")


def uninstall(configPath: Path) -> None:
	SystemdServiceManager(configPath).uninstall()
	print(f"{DISPLAY_NAME} has been uninstalled successfully.")


def console(configPath: Path) -> None:
	config = prepare(configPath)
	print(banner(configPath, config))
	# The bound address is logged once the server listens
	ConsoleRunner(configPath).run(config)


def main(args: list[str] | None = None) -> int:
	parser = argparse.ArgumentParser(
		prog=NAME,
		description=f"{DISPLAY_NAME}: serves local directories over HTTP",
	)
	parser.add_argument(
		"-c",
		"--config",
		default=configuration.CONFIG,
		help="Path to the configuration file (created with defaults if missing)",
	)
	group = parser.add_mutually_exclusive_group()
	group.add_argument(
		"--install", action="store_true", help="Installs the systemd service"
	)
	group.add_argument(
		"--uninstall", action="store_true", help="Uninstalls the systemd service"
	)
	group.add_argument("--version", action="version", version=f"{NAME} {__version__}")
	options = parser.parse_args(args)
	config_path: Path = Path(os.path.abspath(options.config))
	try:
		if options.install:
			install(config_path)
		elif options.uninstall:
			uninstall(config_path)
		else:
			console(config_path)
	except (
		ConfigError,
		ConfigurationRejected,
		BindError,
		ShutdownTimeout,
		ServiceError,
	) as e:
		error(str(e), e.__class__.__name__)
		return 1
	except KeyboardInterrupt:
		info("Interrupted")
	except Exception as e:
		exception(e, "Application failed")
		return 1
	return 0


if __name__ == "__main__":
	sys.exit(main())

# EOF
