import os
import sys
import time
import threading
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, NamedTuple, TextIO, TypeAlias
from contextvars import ContextVar

# --
# # Structured logging
#
# Every logging function takes a message and an open-ended set of named
# fields, builds a `LogEntry` and sends it to the sink. The sink is stderr
# by default (with colours), or a file when `setOutput` is given a path.

TPrimitive: TypeAlias = (
	bool | int | float | str | bytes | None | list[Any] | tuple[Any, ...] | dict[str, Any]
)

LogOrigin: ContextVar[str] = ContextVar("LogOrigin", default="otterserve")
# The span is set to the request id while a request is being processed.
LogSpan: ContextVar[str | int | None] = ContextVar("LogSpan", default=None)

# SEE: https://no-color.org/
NO_COLOR: bool = "NO_COLOR" in os.environ
FORCE_COLOR: bool = "FORCE_COLOR" in os.environ


class Term:
	BOLD: ClassVar[str] = "" if NO_COLOR else "\033[1m"
	RESET: ClassVar[str] = "" if NO_COLOR else "\033[0m"

	@staticmethod
	def Color(color: int, bold: bool = False) -> str:
		return f"\033[{'1' if bold else '0'};38;5;{color}m"


class LogType(Enum):
	Message = 0  # A general information message
	Event = 20  # An event


class LogLevel(Enum):
	Debug = 0
	Info = 10
	Warning = 30
	Error = 40  # A managed error
	Exception = 50  # An un-managed error


LOG_LEVEL_COLOR = {
	LogLevel.Debug: 31,
	LogLevel.Info: 75,
	LogLevel.Warning: 202,
	LogLevel.Error: 160,
	LogLevel.Exception: 124,
}

LOG_LEVEL_NAME = {
	LogLevel.Debug: "DEBUG",
	LogLevel.Info: "INFO",
	LogLevel.Warning: "WARN",
	LogLevel.Error: "ERROR",
	LogLevel.Exception: "ERROR",
}

LOG_LEVELS: dict[str, LogLevel] = {
	"debug": LogLevel.Debug,
	"info": LogLevel.Info,
	"warn": LogLevel.Warning,
	"warning": LogLevel.Warning,
	"error": LogLevel.Error,
}


class LogEntry(NamedTuple):
	origin: str
	time: float
	type: LogType = LogType.Message
	level: LogLevel = LogLevel.Info
	message: str | None = None
	name: str | None = None
	value: TPrimitive | None = None
	context: dict[str, TPrimitive] | None = None
	span: str | int | None = None


class LogSink:
	"""Writes formatted entries to a stream. A whole line is written in one
	call under a lock, so that records from concurrent requests (and from the
	worker threads) never get torn."""

	def __init__(self, stream: TextIO | None = None) -> None:
		self.stream: TextIO | None = stream
		self.path: Path | None = None
		self.level: LogLevel = LogLevel.Info
		self.lock = threading.Lock()

	@property
	def out(self) -> TextIO:
		# Resolved lazily so that tests capturing stderr see the output
		return self.stream or sys.stderr

	@property
	def colored(self) -> bool:
		if NO_COLOR or self.path:
			return False
		return FORCE_COLOR or self.out.isatty()

	def open(self, path: str | Path | None) -> "LogSink":
		self.close()
		if path:
			p = Path(path)
			if p.parent and not p.parent.exists():
				p.parent.mkdir(parents=True, exist_ok=True)
			self.stream = open(p, "a", encoding="utf8")
			self.path = p
		return self

	def close(self) -> None:
		if self.path and self.stream:
			self.stream.close()
		self.stream = None
		self.path = None

	def write(self, line: str) -> None:
		with self.lock:
			self.out.write(line)
			self.out.flush()


SINK: LogSink = LogSink()


def parseLevel(level: str) -> LogLevel:
	"""Parses a level name (`debug`, `info`, `warn`, `error`)."""
	try:
		return LOG_LEVELS[level.strip().lower()]
	except KeyError:
		raise ValueError(f"Invalid log level: {level}") from None


def setLevel(level: LogLevel | str) -> LogLevel:
	SINK.level = parseLevel(level) if isinstance(level, str) else level
	return SINK.level


def setOutput(path: str | Path | None) -> LogSink:
	"""Sends the log to the given file, or back to stderr when `None`."""
	return SINK.open(path)


def formatData(value: Any) -> str:
	if value is None or value == () or value == [] or value == {}:
		return "◌"
	elif isinstance(value, dict):
		return " ".join(f"{k}={formatData(v)}" for k, v in value.items())
	elif isinstance(value, list) or isinstance(value, tuple):
		return ",".join(formatData(v) for v in value)
	elif isinstance(value, str):
		return repr(value) if " " in value else value
	elif isinstance(value, bool):
		return "✓" if value else "✗"
	elif isinstance(value, float):
		return f"{value:0.2f}"
	else:
		return str(value)


def formatEntry(entry: LogEntry, colored: bool = False) -> str:
	stamp: str = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(entry.time))
	level: str = LOG_LEVEL_NAME[entry.level]
	span: str = f" [{entry.span}]" if entry.span is not None else ""
	if entry.type == LogType.Event:
		text = f"{entry.name} {formatData(entry.value)}"
	else:
		text = entry.message or ""
	if entry.value is not None and entry.type != LogType.Event:
		text = f"{text} ({entry.value})"
	fields: str = f" | {formatData(entry.context)}" if entry.context else ""
	if colored:
		clr: str = Term.Color(LOG_LEVEL_COLOR[entry.level])
		return f"{clr}{Term.BOLD}[{stamp}] {level}{Term.RESET}{clr}{span} {text}{fields}{Term.RESET}\n"
	else:
		return f"[{stamp}] {level}{span} {text}{fields}\n"


def send(entry: LogEntry) -> LogEntry:
	if entry.level.value >= SINK.level.value:
		SINK.write(formatEntry(entry, SINK.colored))
	return entry


def entry(
	*,
	origin: str | None = None,
	at: float | None = None,
	type: LogType = LogType.Message,
	level: LogLevel = LogLevel.Info,
	message: str | None = None,
	name: str | None = None,
	value: TPrimitive | None = None,
	context: dict[str, TPrimitive],
) -> LogEntry:
	return LogEntry(
		origin=origin or LogOrigin.get(),
		time=time.time() if at is None else at,
		type=type,
		level=level,
		message=message,
		name=name,
		value=value,
		context=context,
		span=LogSpan.get(),
	)


def debug(
	message: str,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(
		entry(
			message=message,
			level=LogLevel.Debug,
			origin=origin,
			at=at,
			context=context,
		)
	)


def info(
	message: str,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(entry(message=message, origin=origin, at=at, context=context))


def warning(
	message: str,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(
		entry(
			message=message,
			level=LogLevel.Warning,
			origin=origin,
			at=at,
			context=context,
		)
	)


def error(
	message: str,
	code: int | str | None = None,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(
		entry(
			message=message,
			value=code,
			level=LogLevel.Error,
			origin=origin,
			at=at,
			context=context,
		)
	)


def event(
	event: str,
	value: Any = None,
	*,
	origin: str | None = None,
	at: float | None = None,
	**context: TPrimitive,
) -> LogEntry:
	return send(
		entry(
			name=event,
			value=value,
			type=LogType.Event,
			origin=origin,
			at=at,
			context=context,
		)
	)


def exception(
	exception: BaseException,
	message: str | None = None,
) -> BaseException:
	try:
		lines: list[str] = [
			f"!!! EXCP {f'{message}: ' if message else ''}[{exception.__class__.__name__}] {exception}\n"
		]
		tb = exception.__traceback__
		while tb:
			code = tb.tb_frame.f_code
			lines.append(
				f"... in {code.co_name:15s} at {tb.tb_lineno:4d} in {code.co_filename}\n"
			)
			tb = tb.tb_next
		SINK.write("".join(lines))
	except Exception:  # nosec: B110
		# Swallow all exceptions so that this function can be called from an exception
		# handler safely, such as in the implementation of logging sinks.
		pass

	# Return the exception so that this function can be called like:
	#   raise exception(e)
	return exception


def logged(item: Any) -> bool:
	"""Takes one of the logging function, and tells if it is currently
	emitted given the sink level. This is used to guard against building
	entries when not necessary."""
	level: LogLevel = {
		debug: LogLevel.Debug,
		info: LogLevel.Info,
		warning: LogLevel.Warning,
		error: LogLevel.Error,
	}.get(item, LogLevel.Info)
	return level.value >= SINK.level.value


# EOF
