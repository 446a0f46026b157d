import subprocess  # nosec: B404
from typing import Callable, Optional

# --
# # Shell Utils
#
# Runs external commands (like `systemctl`) and turns failures into
# exceptions carrying the command, status and error output.


class ShellCommandError(RuntimeError):
	"""Wrapper for a shell command error."""

	__slots__ = ["command", "status", "error"]

	def __init__(self, command: list[str], status: int, error: bytes):
		super().__init__()
		self.command = command
		self.status = status
		self.error = error

	def __str__(self) -> str:
		return f"{self.__class__.__name__}: '{' '.join(self.command)}', failed with status {self.status}: {self.error.decode('utf8', errors='replace').strip()}"


TShell = Callable[[list[str]], bytes]


def shell(
	command: list[str], cwd: Optional[str] = None, input: Optional[bytes] = None
) -> bytes:
	"""Runs a shell command, and returns the stdout as a byte output"""
	try:
		res = subprocess.run(  # nosec: B603
			command,
			stdout=subprocess.PIPE,
			stderr=subprocess.PIPE,
			input=input,
			cwd=cwd,
		)
	except FileNotFoundError as e:
		raise ShellCommandError(command, 127, str(e).encode("utf8")) from e
	if res.returncode == 0:
		return res.stdout
	else:
		raise ShellCommandError(command, res.returncode, res.stderr)


# EOF
