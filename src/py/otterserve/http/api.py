import os
from abc import ABC, abstractmethod
from email.utils import formatdate, parsedate_to_datetime
from pathlib import Path
from typing import Any, Generic, Iterator, NamedTuple, TypeVar

from ..utils.files import contentType as getContentType
from .status import HTTP_STATUS

T = TypeVar("T")

# -----------------------------------------------------------------------------
#
# HELPERS
#
# -----------------------------------------------------------------------------


class ByteRange(NamedTuple):
	"""A satisfiable byte range, `end` being inclusive."""

	start: int
	end: int

	@property
	def length(self) -> int:
		return self.end - self.start + 1


class RangeNotSatisfiable(ValueError):
	pass


def httpDate(timestamp: float) -> str:
	return formatdate(timestamp, usegmt=True)


def parseHTTPDate(value: str | None) -> int | None:
	"""Parses an HTTP date into an epoch, truncated to the second. Returns `None`
	when the value is absent or not a date (an ETag, for instance)."""
	if not value:
		return None
	try:
		return int(parsedate_to_datetime(value).timestamp())
	except (TypeError, ValueError, IndexError, OverflowError):
		return None


def parseRange(value: str | None, size: int) -> ByteRange | None:
	"""Parses a `Range` header for a resource of the given `size`. Returns
	`None` when the header should be ignored (absent, another unit, malformed
	or asking for multiple ranges) and raises `RangeNotSatisfiable` when the
	range can't be served."""
	if not value:
		return None
	unit, _, ranges = value.strip().partition("=")
	if unit.strip().lower() != "bytes" or not ranges or "," in ranges:
		return None
	first, sep, last = ranges.strip().partition("-")
	first, last = first.strip(), last.strip()
	if not sep or (first and not first.isdigit()) or (last and not last.isdigit()):
		return None
	if not first:
		# Suffix range, the last N bytes
		if not last:
			return None
		count: int = int(last)
		if count == 0 or size == 0:
			raise RangeNotSatisfiable(value)
		return ByteRange(max(0, size - count), size - 1)
	start: int = int(first)
	end: int = int(last) if last else size - 1
	if start >= size or end < start:
		raise RangeNotSatisfiable(value)
	return ByteRange(start, min(end, size - 1))


# -----------------------------------------------------------------------------
#
# API
#
# -----------------------------------------------------------------------------

# --
# == HTTP Request Response API
#
# Defines the high level API functions (orthogonal to the underlying model)
# to manipulate requests/responses.


class ResponseFactory(ABC, Generic[T]):
	@abstractmethod
	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> T: ...

	def header(self, name: str) -> str | None:
		"""Returns the value of the given request header, if any."""
		return None

	def empty(
		self,
		status: int = 200,
		headers: dict[str, str] | None = None,
	) -> T:
		return self.respond(
			content=None,
			contentType=None,
			status=status,
			headers=headers,
		)

	def error(
		self,
		status: int,
		content: str | None = None,
		contentType: str = "text/plain; charset=utf-8",
		headers: dict[str, str] | None = None,
	) -> T:
		message = HTTP_STATUS.get(status, "Server Error")
		return self.respond(
			content=f"{status} {message}\n" if content is None else content,
			contentType=contentType,
			status=status,
			message=message,
			headers=headers,
		)

	def notAuthorized(self, realm: str) -> T:
		# SEE: https://www.rfc-editor.org/rfc/rfc7617
		return self.error(
			401, headers={"WWW-Authenticate": f'Basic realm="{realm}"'}
		)

	def forbidden(self) -> T:
		return self.error(403)

	def notFound(self, content: str | None = None) -> T:
		return self.error(404, content=content)

	def notAllowed(self, *methods: str) -> T:
		return self.error(405, headers={"Allow": ", ".join(methods)})

	def fail(self, content: str | None = None, *, status: int = 500) -> T:
		return self.error(status, content=content)

	def notModified(self, headers: dict[str, str] | None = None) -> T:
		return self.respondEmpty(304, headers)

	def respondText(
		self,
		content: str | bytes,
		contentType: str = "text/plain; charset=utf-8",
		status: int = 200,
	) -> T:
		return self.respond(content=content, contentType=contentType, status=status)

	def respondHTML(self, html: str | bytes | Iterator[str], status: int = 200) -> T:
		return self.respond(
			content=html if isinstance(html, (str, bytes)) else "".join(html),
			contentType="text/html; charset=utf-8",
			status=status,
		)

	def respondFile(
		self,
		path: Path | str,
		stat: os.stat_result | None = None,
		headers: dict[str, str] | None = None,
		contentType: str | None = None,
	) -> T:
		"""Responds with the file at the given path, honouring the
		`If-Modified-Since`, `Range` and `If-Range` request headers. The
		stat result can be passed when the caller already has it."""
		# The model module imports this one
		from .model import HTTPBodyFile

		p: Path = path if isinstance(path, Path) else Path(path)
		st: os.stat_result = stat or p.stat()
		size: int = st.st_size
		modified: int = int(st.st_mtime)
		base_headers: dict[str, str] = {
			"Last-Modified": httpDate(modified),
			"Accept-Ranges": "bytes",
		}
		if headers:
			base_headers |= headers
		# Conditional requests are evaluated before ranges
		since: int | None = parseHTTPDate(self.header("If-Modified-Since"))
		if since is not None and modified <= since:
			return self.notModified(base_headers)
		content_type: str = contentType or getContentType(p)
		byte_range: ByteRange | None = None
		if_range: str | None = self.header("If-Range")
		if if_range is None or parseHTTPDate(if_range) == modified:
			try:
				byte_range = parseRange(self.header("Range"), size)
			except RangeNotSatisfiable:
				return self.error(
					416, headers=base_headers | {"Content-Range": f"bytes */{size}"}
				)
		if byte_range is None:
			return self.respond(
				content=HTTPBodyFile(p, 0, size),
				contentType=content_type,
				headers=base_headers,
			)
		else:
			return self.respond(
				content=HTTPBodyFile(p, byte_range.start, byte_range.length),
				contentType=content_type,
				status=206,
				headers=base_headers
				| {
					"Content-Range": f"bytes {byte_range.start}-{byte_range.end}/{size}"
				},
			)

	def respondEmpty(self, status: int, headers: dict[str, str] | None = None) -> T:
		return self.respond(content=None, status=status, headers=headers)


# EOF
