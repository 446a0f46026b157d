import time
import itertools
from typing import Awaitable, Callable, NamedTuple, TypeAlias

from .http.model import HTTPRequest, HTTPResponse
from .utils.logging import LogSpan, info, warning

# --
# # Handlers
#
# A handler is an async callable taking a request and returning a
# response. Authentication and request logging are handlers wrapping
# other handlers.

THandler: TypeAlias = Callable[[HTTPRequest], Awaitable[HTTPResponse]]

# Request ids are unique for the lifetime of the process
REQUEST_IDS = itertools.count(1)


def nextRequestID() -> str:
	return f"req-{next(REQUEST_IDS)}"


class RequestContext(NamedTuple):
	requestID: str
	method: str
	path: str
	remoteAddress: str | None
	startTime: float

	@property
	def elapsed(self) -> float:
		"""Elapsed time in milliseconds"""
		return (time.monotonic() - self.startTime) * 1000.0


class RequestLogger:
	"""Logs the start and the completion of each request going through the
	wrapped handler. The completion is logged once the response has been
	written, so that the byte count is known."""

	def __init__(self, handler: THandler):
		self.handler: THandler = handler

	async def __call__(self, request: HTTPRequest) -> HTTPResponse:
		context = RequestContext(
			requestID=nextRequestID(),
			method=request.method,
			path=request.path,
			remoteAddress=request.peer,
			startTime=time.monotonic(),
		)
		token = LogSpan.set(context.requestID)
		try:
			info(
				"Request started",
				request_id=context.requestID,
				method=context.method,
				path=context.path,
				remote_addr=context.remoteAddress,
				user_agent=request.header("User-Agent"),
			)
			try:
				response = await self.handler(request)
			except Exception as e:
				warning(
					"Request failed",
					request_id=context.requestID,
					error=str(e),
					duration_ms=context.elapsed,
				)
				raise
			previous = response.onClose

			def completed(res: HTTPResponse) -> None:
				if previous:
					previous(res)
				# The callback runs after the handler's context is gone
				span = LogSpan.set(context.requestID)
				try:
					info(
						"Request completed",
						request_id=context.requestID,
						status_code=res.status,
						duration_ms=context.elapsed,
						bytes=res.bytesWritten,
					)
				finally:
					LogSpan.reset(span)

			response.onClose = completed
			return response
		finally:
			LogSpan.reset(token)


# EOF
