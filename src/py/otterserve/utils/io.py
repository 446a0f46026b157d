DEFAULT_ENCODING: str = "utf8"
CRLF: bytes = b"\r\n"
# Upper bound for a single request or header line.
MAX_LINE: int = 65_536


class LineTooLong(ValueError):
	pass


class LineParser:
	"""Splits `CRLF` terminated lines out of a stream of chunks. Only the
	part of a line that spans chunks is held, the rest is searched in place."""

	__slots__ = ["pending", "limit"]

	def __init__(self, limit: int = MAX_LINE) -> None:
		self.pending: bytearray = bytearray()
		self.limit: int = limit

	@property
	def isEmpty(self) -> bool:
		return not self.pending

	def reset(self) -> "LineParser":
		self.pending.clear()
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bytes | None, int]:
		"""Returns the line without its `CRLF`, or `None` when it is not
		complete yet, and how many bytes of `chunk` were used from `start`."""
		# The `\r` may have come at the end of the previous chunk
		if self.pending.endswith(b"\r") and chunk[start : start + 1] == b"\n":
			return self.take(self.pending[:-1]), 1
		end: int = chunk.find(CRLF, start)
		self.pending += chunk[start:] if end < 0 else chunk[start:end]
		if len(self.pending) > self.limit:
			raise LineTooLong(f"Line exceeds {self.limit} bytes")
		if end < 0:
			return None, len(chunk) - start
		return self.take(self.pending), end - start + len(CRLF)

	def take(self, line: bytearray) -> bytes:
		res: bytes = bytes(line)
		self.reset()
		return res


# EOF
