import asyncio
import errno
import os
import socket
import threading
import time
from enum import Enum
from pathlib import Path
from signal import SIGINT, SIGTERM
from typing import Any, Iterable, Literal, NamedTuple

from . import __version__
from .auth import Authenticator, authenticator
from .config import HOST, PORT, Config, RouteConfig
from .http.api import httpDate
from .http.model import (
	HTTPBodyWriter,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPResponse,
)
from .http.parser import MAX_BODY, HTTPParser
from .http.status import HTTP_STATUS
from .routing import Router
from .utils.limits import raiseOpenFilesLimit
from .utils.logging import debug, exception, info, logged, warning

SERVER_NAME: str = f"otterserve/{__version__}"

# How long `stop()` waits for in-flight requests by default
STOP_DEADLINE: float = 30.0


class ServerState(Enum):
	Created = 0
	Starting = 1
	Running = 2
	Stopping = 3
	Stopped = 4


class ServerStateError(RuntimeError):
	"""The operation is not available in the current server state."""


class BindError(OSError):
	"""The listening socket could not be bound."""


class ShutdownTimeout(Exception):
	"""Some requests were still in flight when the stop deadline expired."""

	def __init__(self, deadline: float, pending: int):
		super().__init__(
			f"{pending} connection(s) still busy after {deadline:0.1f}s, closed"
		)
		self.deadline: float = deadline
		self.pending: int = pending


class ServerOptions(NamedTuple):
	host: str = HOST
	port: int = PORT
	backlog: int = 1_024
	# Timeout for reading the rest of a request once it has started
	timeout: float = 30.0
	# Idle time after which a keep-alive connection is closed
	keepalive: float = 120.0
	# Timeout for sending each part of a response to a client
	writeTimeout: float = 30.0
	maxBody: int = MAX_BODY
	readsize: int = 64_000


def onException(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
	e = context.get("exception")
	if e:
		exception(e)
	else:
		warning("Event loop error", message=context.get("message"))


class AIOSocketBodyWriter(HTTPBodyWriter):
	"""Specialized body writer to work with AIO sockets."""

	def __init__(
		self,
		client: "socket.socket",
		loop: asyncio.AbstractEventLoop,
		timeout: float | None = None,
	) -> None:
		super().__init__()
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop
		# A client that stops reading raises `TimeoutError`
		self.timeout: float | None = timeout

	async def _writeBytes(self, chunk: bytes | None | Literal[False]) -> bool:
		if chunk is None or chunk is False:
			pass
		else:
			await asyncio.wait_for(
				self.loop.sock_sendall(self.client, chunk), self.timeout
			)
		return False

	async def _writeFile(
		self,
		path: Path,
		offset: int = 0,
		count: int | None = None,
		size: int = 1_048_576,
	) -> int:
		sent: int = 0
		with open(path, "rb") as f:
			end: int = os.fstat(f.fileno()).st_size if count is None else offset + count
			# Sent in slices so that the timeout bounds each write, not the body
			while offset + sent < end:
				n: int = await asyncio.wait_for(
					self.loop.sock_sendfile(
						self.client, f, offset + sent, min(size, end - offset - sent)
					),
					self.timeout,
				)
				if not n:
					break
				sent += n
		return sent


# NOTE: Connection bookkeeping: `connections` holds one task per open
# connection, and `busy` the ones that are processing a request. Stopping
# cancels the connections that are not busy, and gives the busy ones until
# the deadline to finish.
class Server:
	"""An HTTP/1.1 server for the given routes, using asyncio sockets
	directly."""

	@staticmethod
	def FromConfig(config: Config) -> "Server":
		return Server(
			config.routes,
			authenticator(config.auth),
			ServerOptions(host=config.server.host, port=config.server.port),
		)

	def __init__(
		self,
		routes: Iterable[RouteConfig],
		authenticator: Authenticator | None = None,
		options: ServerOptions = ServerOptions(),
	):
		self.routes: list[RouteConfig] = list(routes)
		self.options: ServerOptions = options
		self.router: Router = Router(authenticator)
		self.state: ServerState = ServerState.Created
		self.socket: socket.socket | None = None
		self.acceptor: asyncio.Task[None] | None = None
		self.connections: set[asyncio.Task[None]] = set()
		self.busy: set[asyncio.Task[None]] = set()
		self._address: tuple[str, int] | None = None

	@property
	def isRunning(self) -> bool:
		return self.state is ServerState.Running

	@property
	def boundAddress(self) -> tuple[str, int]:
		"""The actual address of the listening socket, which differs from the
		options when the port is `0`."""
		if self._address is None or self.state in (
			ServerState.Created,
			ServerState.Starting,
		):
			raise ServerStateError(f"Server has no bound address, state: {self.state.name}")
		return self._address

	@property
	def address(self) -> str:
		host, port = self.boundAddress
		return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"

	# =========================================================================
	# LIFECYCLE
	# =========================================================================

	async def start(self) -> "Server":
		"""Registers the routes, binds the listening socket and starts
		accepting connections. A failure leaves the server `Stopped`."""
		if self.state is not ServerState.Created:
			raise ServerStateError(f"Server can't start, state: {self.state.name}")
		self.state = ServerState.Starting
		try:
			self.router.registerRoutes(self.routes)
			self.socket = self.bind()
		except Exception:
			self.state = ServerState.Stopped
			raise
		loop = asyncio.get_running_loop()
		self.acceptor = loop.create_task(self.accept(self.socket, loop))
		self.state = ServerState.Running
		info("Server listening", address=self.address, routes=len(self.router))
		return self

	def bind(self) -> socket.socket:
		host, port = self.options.host, self.options.port
		try:
			family, kind, proto, _, addr = socket.getaddrinfo(
				host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
			)[0]
		except OSError as e:
			raise BindError(f"Invalid address {host}:{port}: {e}") from e
		server = socket.socket(family, kind, proto)
		try:
			server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
			server.bind(addr)
			# The argument is the backlog of connections that will be accepted
			# before they are refused.
			server.listen(self.options.backlog)
			# This is what we need to use it with asyncio
			server.setblocking(False)
		except OSError as e:
			server.close()
			raise BindError(f"Unable to bind to {host}:{port}: {e}") from e
		self._address = server.getsockname()[:2]
		return server

	async def stop(self, deadline: float = STOP_DEADLINE) -> "Server":
		"""Stops accepting connections, closes the idle ones and waits up to
		`deadline` seconds for the busy ones. The server is `Stopped` once
		this returns, and `ShutdownTimeout` is raised when connections had to
		be closed while still busy."""
		if self.state is not ServerState.Running:
			raise ServerStateError(f"Server can't stop, state: {self.state.name}")
		self.state = ServerState.Stopping
		info(
			"Server stopping",
			connections=len(self.connections),
			busy=len(self.busy),
			deadline=deadline,
		)
		if self.acceptor:
			self.acceptor.cancel()
			await asyncio.gather(self.acceptor, return_exceptions=True)
			self.acceptor = None
		if self.socket:
			self.socket.close()
			self.socket = None
		for task in self.connections - self.busy:
			task.cancel()
		pending: set[asyncio.Task[None]] = set()
		if self.busy:
			_, pending = await asyncio.wait(set(self.busy), timeout=deadline)
		for task in pending:
			task.cancel()
		await asyncio.gather(*list(self.connections), return_exceptions=True)
		self.state = ServerState.Stopped
		if pending:
			warning("Shutdown deadline exceeded", pending=len(pending))
			raise ShutdownTimeout(deadline, len(pending))
		info("Server stopped")
		return self

	# =========================================================================
	# CONNECTIONS
	# =========================================================================

	async def accept(self, server: socket.socket, loop: asyncio.AbstractEventLoop) -> None:
		while True:
			try:
				client, address = await loop.sock_accept(server)
			except OSError as e:
				if e.errno in (errno.EMFILE, errno.ENFILE):
					# Too many open files, we give the connections a chance to close
					await asyncio.sleep(0.1)
					continue
				elif self.state is not ServerState.Running:
					break
				else:
					exception(e)
					continue
			task = loop.create_task(self.onConnection(client, address, loop))
			self.connections.add(task)
			task.add_done_callback(self.connections.discard)

	async def onConnection(
		self,
		client: socket.socket,
		address: Any,
		loop: asyncio.AbstractEventLoop,
	) -> None:
		"""Processes the requests sent on the connection, until either side
		closes it or it times out."""
		task = asyncio.current_task()
		assert task is not None  # nosec: B101
		peer: str = (
			f"{address[0]}:{address[1]}" if isinstance(address, tuple) else str(address)
		)
		buffer = bytearray(self.options.readsize)
		parser: HTTPParser = HTTPParser(maxBody=self.options.maxBody)
		writer: AIOSocketBodyWriter = AIOSocketBodyWriter(
			client, loop, self.options.writeTimeout
		)
		keepAlive: bool = True
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		count: int = 0
		try:
			while keepAlive and self.state is ServerState.Running:
				try:
					n = await asyncio.wait_for(
						loop.sock_recv_into(client, buffer),
						timeout=(
							self.options.keepalive
							if parser.isIdle
							else self.options.timeout
						),
					)
				except asyncio.TimeoutError:
					status = HTTPProcessingStatus.Timeout
					break
				if not n:
					# A no-data means a close
					status = HTTPProcessingStatus.NoData
					break
				# NOTE: With HTTP Pipelining, we may receive more than one
				# request in the same payload.
				for atom in parser.feed(bytes(buffer[:n])):
					if (
						atom is HTTPProcessingStatus.BadFormat
						or atom is HTTPProcessingStatus.TooLarge
					):
						status = atom
						self.busy.add(task)
						try:
							await self.sendError(
								writer, 413 if atom is HTTPProcessingStatus.TooLarge else 400
							)
						finally:
							self.busy.discard(task)
						keepAlive = False
						break
					elif isinstance(atom, HTTPRequest):
						atom.peer = peer
						count += 1
						self.busy.add(task)
						try:
							res = await self.sendResponse(
								atom, writer, shouldClose=self.shouldClose(atom)
							)
						finally:
							self.busy.discard(task)
						if res.shouldClose or self.state is not ServerState.Running:
							keepAlive = False
							break
		except OSError as e:
			debug("Connection error", peer=peer, error=str(e))
		except Exception as e:
			exception(e, f"Connection failed: {peer}")
		finally:
			# NOTE: The above loop takes care of keep alive, so we always close
			# the connection on exit.
			client.close()
			if status is HTTPProcessingStatus.Timeout and not parser.isIdle:
				warning("Client timed out mid-request", peer=peer, requests=count)
			elif logged(debug):
				debug("Connection closed", peer=peer, requests=count, status=status.name)

	def shouldClose(self, request: HTTPRequest) -> bool:
		connection: str = (request.header("Connection") or "").lower()
		if request.protocol == "HTTP/1.0":
			return connection != "keep-alive"
		# A body we did not fully read would be parsed as the next request
		return connection == "close" or request.hasPendingBody

	async def sendResponse(
		self,
		request: HTTPRequest,
		writer: HTTPBodyWriter,
		*,
		shouldClose: bool = False,
	) -> HTTPResponse:
		"""Processes the request through the router and sends the response
		using the given writer."""
		try:
			res = await self.router.process(request)
		except Exception as e:
			exception(e, f"Handler failed for {request.method} {request.path}")
			res = request.fail()
		if shouldClose or self.state is not ServerState.Running:
			res.shouldClose = True
		res.setHeader("Date", httpDate(time.time()))
		res.setHeader("Server", SERVER_NAME)
		if res.shouldClose:
			res.setHeader("Connection", "close")
		try:
			await writer.write(res.head())
			writer.written = 0
			# Responses to HEAD, and 304s, have no body
			if request.method != "HEAD" and res.status != 304:
				await writer.write(res.body)
		except TimeoutError:
			warning(
				"Client stopped reading the response",
				path=request.path,
				timeout=self.options.writeTimeout,
			)
			res.shouldClose = True
		except OSError as e:
			# Client did an early close
			debug("Could not send response", error=str(e))
			res.shouldClose = True
		res.bytesWritten = writer.written
		if res.onClose:
			try:
				res.onClose(res)
			except Exception as e:
				# NOTE: close handler failed
				exception(e)
		return res

	async def sendError(self, writer: HTTPBodyWriter, status: int) -> None:
		"""Answers a request that could not be parsed, the connection is
		then closed."""
		res = HTTPResponse.Create(
			content=f"{status} {HTTP_STATUS[status]}\n",
			contentType="text/plain; charset=utf-8",
			status=status,
			headers={
				"Connection": "close",
				"Date": httpDate(time.time()),
				"Server": SERVER_NAME,
			},
		)
		try:
			await writer.write(res.head())
			await writer.write(res.body)
		except OSError as e:
			debug("Could not send response", error=str(e))


# -----------------------------------------------------------------------------
#
# DRIVERS
#
# -----------------------------------------------------------------------------


async def serve(
	server: Server, stopped: asyncio.Event, deadline: float = STOP_DEADLINE
) -> Server:
	"""Starts the server, runs it until `stopped` is set, and then stops it
	with the given deadline. Errors from stopping are propagated."""
	await server.start()
	try:
		await stopped.wait()
	finally:
		await server.stop(deadline)
	return server


def run(config: Config, *, deadline: float = STOP_DEADLINE) -> None:
	"""Runs a server for the given configuration until it receives
	`SIGINT` or `SIGTERM`."""
	raiseOpenFilesLimit()
	server = Server.FromConfig(config)

	async def main() -> None:
		stopped = asyncio.Event()
		loop = asyncio.get_running_loop()
		# Signal handlers can only be installed from the main thread
		if threading.current_thread() is threading.main_thread():
			loop.add_signal_handler(SIGINT, stopped.set)
			loop.add_signal_handler(SIGTERM, stopped.set)
		loop.set_exception_handler(onException)
		await serve(server, stopped, deadline)

	asyncio.run(main())


# EOF
