import asyncio
import http.client
import threading
from pathlib import Path
from typing import Any, Iterator, NamedTuple

import pytest

from otterserve.auth import Authenticator
from otterserve.config import RouteConfig
from otterserve.server import Server, ServerOptions
from otterserve.utils import logging

# Keeps the test output readable
logging.setLevel("error")


class Reply(NamedTuple):
	status: int
	headers: dict[str, str]
	body: bytes


class ServerThread:
	"""Runs a server on an event loop in a background thread, so that tests
	can use a blocking HTTP client."""

	def __init__(self, server: Server):
		self.server: Server = server
		self.loop = asyncio.new_event_loop()
		self.thread = threading.Thread(target=self.loop.run_forever, daemon=True)

	def call(self, coroutine, timeout: float | None = 10.0):
		return asyncio.run_coroutine_threadsafe(coroutine, self.loop).result(timeout)

	def start(self) -> "ServerThread":
		self.thread.start()
		self.call(self.server.start())
		return self

	def stop(self, deadline: float = 30.0) -> None:
		self.call(self.server.stop(deadline), timeout=deadline + 10.0)

	def close(self) -> None:
		if self.server.isRunning:
			self.stop()
		self.loop.call_soon_threadsafe(self.loop.stop)
		self.thread.join(5)
		self.loop.close()

	@property
	def port(self) -> int:
		return self.server.boundAddress[1]

	def connection(self, timeout: float = 10.0) -> http.client.HTTPConnection:
		return http.client.HTTPConnection("127.0.0.1", self.port, timeout=timeout)

	def fetch(
		self, path: str, method: str = "GET", headers: dict[str, str] | None = None
	) -> Reply:
		conn = self.connection()
		try:
			conn.request(method, path, headers=headers or {})
			res = conn.getresponse()
			return Reply(res.status, dict(res.getheaders()), res.read())
		finally:
			conn.close()


@pytest.fixture
def site(tmp_path: Path) -> Path:
	"""A directory with a few files and folders to serve."""
	root = tmp_path / "site"
	root.mkdir()
	(root / "test.txt").write_text("Hello, World!")
	(root / "data.bin").write_bytes(bytes(range(256)))
	(root / "docs").mkdir()
	(root / "docs" / "index.html").write_text("<h1>Docs</h1>")
	(root / "empty").mkdir()
	(root / "listed").mkdir()
	(root / "listed" / "b.txt").write_text("b")
	(root / "listed" / "a.txt").write_text("a")
	(root / "listed" / "zdir").mkdir()
	(root / "listed" / "adir").mkdir()
	return root


@pytest.fixture
def serving():
	"""Returns a function that starts a server for the given routes (and
	server options), all servers being stopped at the end of the test."""
	threads: list[ServerThread] = []

	def start(
		routes: list[RouteConfig],
		authenticator: Authenticator | None = None,
		**options: Any,
	) -> ServerThread:
		server = Server(
			routes, authenticator, ServerOptions(host="127.0.0.1", port=0, **options)
		)
		thread = ServerThread(server)
		threads.append(thread)
		return thread.start()

	yield start
	for _ in threads:
		_.close()


@pytest.fixture
def static(site: Path, serving) -> Iterator[ServerThread]:
	yield serving([RouteConfig("/static", str(site))])


# EOF
