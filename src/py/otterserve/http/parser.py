from typing import Iterator, Literal
from urllib.parse import unquote

from ..utils.io import LineParser, LineTooLong
from .model import (
	HTTPRequest,
	HTTPRequestLine,
	HTTPHeaders,
	HTTPBodyBlob,
	HTTPAtom,
	HTTPProcessingStatus,
	headername,
)


class BadRequest(ValueError):
	"""Raised by the parsers when the input is not valid HTTP/1.x"""


class PayloadTooLarge(BadRequest):
	"""The request announces a body larger than what is accepted."""


# Request bodies are never used by the handlers, so they are kept small
MAX_BODY: int = 1_048_576
MAX_HEADERS: int = 100


class MessageParser:
	"""Parses an HTTP request line."""

	__slots__ = ["line", "value"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.value: HTTPRequestLine | None = None

	def flush(self) -> HTTPRequestLine | None:
		res = self.value
		self.reset()
		return res

	def reset(self) -> "MessageParser":
		self.line.reset()
		self.value = None
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		line, read = self.line.feed(chunk, start)
		if not line:
			# Empty lines before a request line are ignored (RFC 9112 §2.2)
			return None, read
		try:
			ln = line.decode("ascii")
		except UnicodeDecodeError:
			raise BadRequest("Request line is not ASCII") from None
		parts: list[str] = ln.split(" ")
		if len(parts) != 3:
			raise BadRequest(f"Malformed request line: {ln!r}")
		method, target, protocol = parts
		if not method.isalpha() or not method.isupper():
			raise BadRequest(f"Invalid method: {method!r}")
		if not protocol.startswith("HTTP/1."):
			raise BadRequest(f"Unsupported protocol: {protocol!r}")
		if not target.startswith("/"):
			raise BadRequest(f"Unsupported request target: {target!r}")
		p: list[str] = target.split("?", 1)
		self.value = HTTPRequestLine(method, p[0], p[1] if len(p) > 1 else "", protocol)
		return True, read

	def __str__(self) -> str:
		return f"MessageParser({self.value})"


class HeadersParser:
	__slots__ = [
		"headers",
		"contentType",
		"contentLength",
		"line",
		"count",
		"maxBody",
		"maxHeaders",
	]

	def __init__(self, maxBody: int = MAX_BODY, maxHeaders: int = MAX_HEADERS) -> None:
		super().__init__()
		self.line: LineParser = LineParser()
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None
		# Header lines read so far, repeated headers included
		self.count: int = 0
		self.maxBody: int = maxBody
		self.maxHeaders: int = maxHeaders

	def flush(self) -> HTTPHeaders:
		res = HTTPHeaders(self.headers, self.contentType, self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		self.count = 0
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[str | Literal[False] | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns
		a value and the number of bytes read. When the value is `None`, no
		header has been extracted, when the value is `False` it's the empty
		line ending the headers, otherwise it's the name of the header that
		was added."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			# An empty line denotes the end of headers
			return False, read
		self.count += 1
		if self.count > self.maxHeaders:
			raise BadRequest(f"More than {self.maxHeaders} header lines")
		# Header values are latin-1 as per RFC 9110
		ln: str = line.decode("latin-1")
		i = ln.find(":")
		if i <= 0:
			raise BadRequest(f"Malformed header line: {ln!r}")
		h = ln[:i].strip().lower()
		v = ln[i + 1 :].strip()
		if h == "content-length":
			if not v.isdigit():
				raise BadRequest(f"Invalid Content-Length: {v!r}")
			self.contentLength = int(v)
			if self.contentLength > self.maxBody:
				raise PayloadTooLarge(
					f"Content-Length {self.contentLength} exceeds {self.maxBody}"
				)
		elif h == "content-type":
			self.contentType = v
		n: str = headername(h)
		# Repeated headers are folded
		self.headers[n] = f"{self.headers[n]}, {v}" if n in self.headers else v
		return n, read

	def __str__(self) -> str:
		return f"HeadersParser({self.headers})"


class BodyLengthParser:
	"""Parses the body of a request with ContentLength set"""

	__slots__ = ["expected", "read", "data"]

	def __init__(self) -> None:
		self.expected: int = 0
		self.read: int = 0
		self.data: list[bytes] = []

	def flush(self) -> HTTPBodyBlob:
		res = HTTPBodyBlob(
			b"".join(self.data),
			self.read,
			self.expected - self.read,
		)
		self.reset()
		return res

	def reset(self, length: int = 0) -> "BodyLengthParser":
		self.expected = length
		self.read = 0
		self.data.clear()
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		to_read: int = min(len(chunk) - start, self.expected - self.read)
		self.data.append(chunk[start : start + to_read])
		self.read += to_read
		return (True if self.read >= self.expected else None), to_read


class HTTPParser:
	"""A stateful, incremental HTTP request parser. Chunks are fed as they
	arrive, and requests are yielded as soon as they are complete, which
	supports pipelining."""

	def __init__(self, maxBody: int = MAX_BODY, maxHeaders: int = MAX_HEADERS) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser(maxBody, maxHeaders)
		self.bodyLength: BodyLengthParser = BodyLengthParser()
		self.parser: MessageParser | HeadersParser | BodyLengthParser = self.message
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None

	@property
	def isIdle(self) -> bool:
		"""Tells if the parser is between two requests."""
		return self.parser is self.message and self.message.line.isEmpty

	@property
	def isReadingBody(self) -> bool:
		return self.parser is self.bodyLength

	def reset(self) -> "HTTPParser":
		self.message.reset()
		self.headers.reset()
		self.bodyLength.reset()
		self.parser = self.message
		self.requestLine = None
		self.requestHeaders = None
		return self

	def request(self, body: HTTPBodyBlob) -> HTTPRequest:
		line = self.requestLine
		assert line is not None  # nosec: B101
		res = HTTPRequest(
			method=line.method,
			# Routing and file resolution both work on the decoded path
			path=unquote(line.path),
			query=parseQuery(line.query) if line.query else None,
			headers=self.requestHeaders or HTTPHeaders({}),
			protocol=line.protocol,
			body=body,
		)
		self.parser = self.message.reset()
		self.requestLine = None
		self.requestHeaders = None
		return res

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		"""Feeds the chunk, yielding the request line, headers and requests
		as they get parsed. A malformed input yields `BadFormat`, and a body
		over the limit `TooLarge`, after which the parser must be reset."""
		size: int = len(chunk)
		offset: int = 0
		try:
			while offset < size:
				ln, read = self.parser.feed(chunk, offset)
				offset += read
				if ln is None:
					continue
				elif self.parser is self.message:
					self.requestLine = self.message.flush()
					self.requestHeaders = None
					if self.requestLine is not None:
						yield self.requestLine
						self.parser = self.headers
				elif self.parser is self.headers:
					if ln is not False:
						# `ln` is the header name there
						continue
					headers = self.headers.flush()
					self.requestHeaders = headers
					yield headers
					if not headers.contentLength:
						yield self.request(HTTPBodyBlob(b"", 0))
					else:
						self.parser = self.bodyLength.reset(headers.contentLength)
						yield HTTPProcessingStatus.Body
				elif self.parser is self.bodyLength:
					yield self.request(self.bodyLength.flush())
				else:
					raise RuntimeError(f"Unsupported parser: {self.parser}")
		except PayloadTooLarge:
			self.reset()
			yield HTTPProcessingStatus.TooLarge
		except (BadRequest, LineTooLong):
			self.reset()
			yield HTTPProcessingStatus.BadFormat


def parseQuery(text: str) -> dict[str, str]:
	res: dict[str, str] = {}
	for item in text.split("&"):
		kv = item.split("=", 1)
		if len(kv) == 1:
			res[item] = ""
		else:
			res[kv[0]] = kv[1]
	return res


# EOF
