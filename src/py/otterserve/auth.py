import hmac
import binascii
from abc import ABC, abstractmethod
from base64 import b64decode
from typing import NamedTuple

from .config import AuthConfig
from .handler import THandler
from .http.model import HTTPRequest, HTTPResponse
from .utils.logging import debug, warning

# --
# # Authentication
#
# A single username/password pair, checked with HTTP Basic authentication
# in front of a request handler.

REALM: str = "Otter Serve"


class Credentials(NamedTuple):
	username: str
	password: str


def parseBasicCredentials(header: str | None) -> Credentials | None:
	"""Extracts the credentials from an `Authorization` header value,
	returning `None` when the header is absent or not valid Basic
	authentication. The password may contain colons, and may be empty."""
	if not header:
		return None
	scheme, _, token = header.strip().partition(" ")
	if scheme.lower() != "basic" or not token.strip():
		return None
	try:
		decoded: str = b64decode(token.strip(), validate=True).decode("utf8")
	except (binascii.Error, ValueError):
		return None
	username, sep, password = decoded.partition(":")
	return Credentials(username, password) if sep else None


class Authenticator(ABC):
	@property
	@abstractmethod
	def isEnabled(self) -> bool: ...

	@abstractmethod
	def authenticate(self, username: str, password: str) -> bool: ...

	@abstractmethod
	def middleware(self, handler: THandler) -> THandler:
		"""Wraps the handler so that it's only invoked for authenticated
		requests."""


class NoOpAuthenticator(Authenticator):
	"""Lets every request through."""

	@property
	def isEnabled(self) -> bool:
		return False

	def authenticate(self, username: str, password: str) -> bool:
		return True

	def middleware(self, handler: THandler) -> THandler:
		return handler


class BasicAuthenticator(Authenticator):
	def __init__(
		self,
		username: str,
		password: str,
		*,
		enabled: bool = True,
		realm: str = REALM,
	):
		self.enabled: bool = enabled
		self.realm: str = realm
		self._username: bytes = username.encode("utf8")
		self._password: bytes = password.encode("utf8")

	@property
	def isEnabled(self) -> bool:
		return self.enabled

	def authenticate(self, username: str, password: str) -> bool:
		# Both fields are always compared, in constant time
		user_ok: bool = hmac.compare_digest(username.encode("utf8"), self._username)
		pass_ok: bool = hmac.compare_digest(password.encode("utf8"), self._password)
		return user_ok and pass_ok

	def middleware(self, handler: THandler) -> THandler:
		async def authenticated(request: HTTPRequest) -> HTTPResponse:
			if not self.enabled:
				return await handler(request)
			credentials = parseBasicCredentials(request.header("Authorization"))
			if credentials is None:
				debug("Missing or malformed credentials", path=request.path)
				return request.notAuthorized(self.realm)
			elif not self.authenticate(credentials.username, credentials.password):
				warning(
					"Authentication failed",
					path=request.path,
					user=credentials.username,
					remote=request.peer,
				)
				return request.notAuthorized(self.realm)
			else:
				return await handler(request)

		return authenticated

	def __str__(self) -> str:
		return f"BasicAuthenticator(realm={self.realm!r}, enabled={self.enabled})"


def authenticator(policy: AuthConfig) -> Authenticator:
	"""Creates the authenticator for the given policy."""
	return (
		BasicAuthenticator(policy.username, policy.password)
		if policy.enabled
		else NoOpAuthenticator()
	)


# EOF
