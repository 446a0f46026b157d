import sys
from pathlib import Path

import pytest

from otterserve import __main__ as cli
from otterserve import config as configuration
from otterserve import service as services
from otterserve.config import AuthConfig
from otterserve.service import ServiceError, SystemdServiceManager
from otterserve.utils.shell import ShellCommandError


class FakeShell:
	"""Records the commands instead of running them."""

	def __init__(self, failing: set[str] | None = None) -> None:
		self.commands: list[list[str]] = []
		self.failing: set[str] = failing or set()

	def __call__(self, command: list[str]) -> bytes:
		self.commands.append(command)
		if command[1] in self.failing:
			raise ShellCommandError(command, 1, b"Unit not loaded")
		return b""


def manager(tmp_path: Path, shell: FakeShell) -> SystemdServiceManager:
	return SystemdServiceManager(
		tmp_path / "config.yaml", unitDirectory=tmp_path / "units", command=shell
	)


def test_unit(tmp_path: Path):
	unit = manager(tmp_path, FakeShell()).unit()
	assert "[Service]" in unit
	assert (
		f"ExecStart={sys.executable} -m otterserve --config {tmp_path / 'config.yaml'}"
		in unit
	)
	assert "Restart=on-failure" in unit
	assert "WantedBy=multi-user.target" in unit


def test_install(tmp_path: Path):
	shell = FakeShell()
	service = manager(tmp_path, shell)
	service.install()
	assert service.unitPath == tmp_path / "units" / "otterserve.service"
	assert service.unitPath.read_text() == service.unit()
	assert shell.commands == [
		["systemctl", "daemon-reload"],
		["systemctl", "enable", "otterserve"],
	]


def test_uninstall(tmp_path: Path):
	shell = FakeShell(failing={"stop"})
	service = manager(tmp_path, shell)
	service.install()
	shell.commands.clear()
	# A service that is not running is still uninstalled
	service.uninstall()
	assert not service.unitPath.exists()
	assert [_[1] for _ in shell.commands] == ["stop", "disable", "daemon-reload"]


def test_start_stop(tmp_path: Path):
	shell = FakeShell()
	service = manager(tmp_path, shell)
	service.start()
	service.stop()
	assert shell.commands == [
		["systemctl", "start", "otterserve"],
		["systemctl", "stop", "otterserve"],
	]


def test_errors(tmp_path: Path):
	service = manager(tmp_path, FakeShell(failing={"enable"}))
	with pytest.raises(ServiceError) as e:
		service.install()
	assert "Unit not loaded" in str(e.value)


def test_cli_version(capsys):
	with pytest.raises(SystemExit) as e:
		cli.main(["--version"])
	assert e.value.code == 0
	assert "otterserve" in capsys.readouterr().out


def test_cli_invalid_config(tmp_path: Path):
	path = tmp_path / "config.yaml"
	config = configuration.defaults()
	config.auth = AuthConfig(True, "", "")
	config.routes[0].directory = str(tmp_path)
	configuration.save(config, path)
	assert cli.main(["--config", str(path)]) == 1


def test_cli_console(tmp_path: Path, monkeypatch, capsys):
	path = tmp_path / "config.yaml"
	config = configuration.defaults()
	config.server.port = 0
	config.routes[0].directory = str(tmp_path)
	configuration.save(config, path)
	load = configuration.loadOrCreateDefault
	loaded: list[Path] = []
	ran: list[configuration.Config] = []
	monkeypatch.setattr(
		configuration, "loadOrCreateDefault", lambda p: loaded.append(p) or load(p)
	)
	monkeypatch.setattr(services, "configure", lambda c: c)
	monkeypatch.setattr(services, "run", ran.append)
	assert cli.main(["--config", str(path)]) == 0
	# The configuration is loaded and validated once
	assert loaded == [path]
	assert ran[0].server.port == 0
	out = capsys.readouterr().out
	assert "Starting Otter Serve" in out
	# Port 0 is only known once bound, so it is not in the banner
	assert ":0" not in out


def test_cli_options_are_exclusive():
	with pytest.raises(SystemExit) as e:
		cli.main(["--install", "--uninstall"])
	assert e.value.code == 2


# EOF
