import os
import stat
import asyncio
import posixpath
from pathlib import Path
from typing import NamedTuple
from urllib.parse import quote

from ..http.model import HTTPRequest, HTTPResponse
from ..utils.files import DirectoryEntry, listEntries
from ..utils.htmpl import H, Node, html
from ..utils.logging import debug, error

# --
# # Static files
#
# Serves a local directory under a mount path. Paths are resolved lexically
# and anything that climbs above the mount root is rejected before the
# filesystem is touched.

INDEX_FILES: tuple[str, ...] = ("index.html", "index.htm", "default.html")

# NOTE: Text content is escaped by `htmpl`, so this must stay free of quotes
# and angle brackets.
LISTING_CSS: str = """
body { font-family: sans-serif; font-size: 14px; margin: 2em; background: #F8F8F8; }
h1 { font-size: 1.4em; margin-bottom: 1.5em; }
table { border-collapse: collapse; min-width: 50%; }
th, td { text-align: left; padding: 0.25em 1.5em 0.25em 0em; }
th { border-bottom: 1px solid #CCC; }
td.size, th.size { text-align: right; }
"""

# -----------------------------------------------------------------------------
#
# ERRORS
#
# -----------------------------------------------------------------------------


class ResolveError(Exception):
	"""Base class for errors resolving or reading a request target. The
	message is only meant for the logs and may contain local paths."""

	STATUS: int = 500

	@property
	def status(self) -> int:
		return self.STATUS


class Forbidden(ResolveError):
	STATUS = 403


class NotFound(ResolveError):
	STATUS = 404


class Internal(ResolveError):
	STATUS = 500


# -----------------------------------------------------------------------------
#
# RESOLUTION
#
# -----------------------------------------------------------------------------


class ResolvedTarget(NamedTuple):
	path: Path
	isDirectory: bool
	stat: os.stat_result | None = None


def relativePath(requestPath: str, mountPath: str) -> str:
	"""Returns the normalized path of the request relative to the mount,
	as a string that does not start with `/`. The request path is already
	percent-decoded. Raises `Forbidden` when the path climbs above the mount
	root."""
	if requestPath.startswith(mountPath):
		rest = requestPath[len(mountPath) :]
	elif f"{requestPath}/" == mountPath:
		rest = ""
	else:
		raise NotFound(f"Path is not under mount {mountPath}: {requestPath}")
	# Lexical cleaning only, symlinks are not resolved there.
	cleaned: str = posixpath.normpath(rest or "/")
	if cleaned == ".." or cleaned.startswith("../"):
		raise Forbidden(f"Path escapes mount {mountPath}: {requestPath}")
	return cleaned.lstrip("/") if cleaned != "." else ""


def resolvePath(requestPath: str, mountPath: str, root: Path | str) -> ResolvedTarget:
	"""Resolves the request path against the directory mounted at
	`mountPath`, returning the target and whether it is a directory."""
	rel: str = relativePath(requestPath, mountPath)
	path: Path = Path(root) / rel if rel else Path(root)
	try:
		st = os.stat(path)
	except FileNotFoundError:
		raise NotFound(f"No such file: {path}") from None
	except NotADirectoryError:
		raise NotFound(f"Not a directory: {path}") from None
	except PermissionError:
		raise Forbidden(f"Permission denied: {path}") from None
	except ValueError as e:
		# Paths the OS refuses outright, like embedded NUL bytes
		raise Forbidden(f"Invalid path {requestPath!r}: {e}") from None
	except OSError as e:
		raise Internal(f"Could not stat {path}: {e}") from e
	return ResolvedTarget(path, stat.S_ISDIR(st.st_mode), st)


def findIndex(directory: Path) -> ResolvedTarget | None:
	"""Returns the first index file found in the directory, if any."""
	for name in INDEX_FILES:
		candidate = directory / name
		try:
			st = os.stat(candidate)
		except OSError:
			continue
		if stat.S_ISREG(st.st_mode):
			return ResolvedTarget(candidate, False, st)
	return None


# -----------------------------------------------------------------------------
#
# LISTING
#
# -----------------------------------------------------------------------------


class DirectoryLister:
	"""Renders the contents of a directory as an HTML page."""

	def entries(self, directory: Path) -> list[DirectoryEntry]:
		try:
			return listEntries(directory)
		except PermissionError:
			raise Forbidden(f"Cannot list directory: {directory}") from None
		except OSError as e:
			raise Internal(f"Cannot list directory {directory}: {e}") from e

	def row(self, entry: DirectoryEntry, base: str) -> Node:
		return H.tr(
			H.td(H.a(entry.displayName, href=f"{base}{entry.href}")),
			H.td(entry.displaySize, _="size"),
			H.td(entry.displayTime),
		)

	def render(self, directory: Path, requestPath: str) -> str:
		entries = self.entries(directory)
		# Links are relative, so they need a base when the request path
		# doesn't end with a slash.
		base: str = (
			""
			if requestPath.endswith("/")
			else f"{quote(posixpath.basename(requestPath))}/"
		)
		rows: list[Node] = []
		if requestPath != "/":
			rows.append(H.tr(H.td(H.a("../", href=f"{base}../")), H.td("-", _="size"), H.td("")))
		rows += [self.row(_, base) for _ in entries]
		title: str = f"Directory listing for {requestPath}"
		return "".join(
			html(
				H.html(
					H.head(
						H.meta(charset="utf-8"),
						H.title(title),
						H.style(LISTING_CSS),
					),
					H.body(
						H.h1(title),
						H.table(
							H.thead(
								H.tr(
									H.th("Name"),
									H.th("Size", _="size"),
									H.th("Last Modified"),
								)
							),
							H.tbody(*rows),
						),
					),
				),
				doctype="html",
			)
		)


# -----------------------------------------------------------------------------
#
# SERVICE
#
# -----------------------------------------------------------------------------


class FileService:
	"""A request handler serving the files of `directory` under
	`mountPath`: files are sent with their content type and support
	conditional and range requests, directories are served through their
	index file or a generated listing."""

	METHODS: tuple[str, ...] = ("GET", "HEAD")

	def __init__(
		self,
		mountPath: str,
		directory: Path | str,
		lister: DirectoryLister | None = None,
	):
		self.mountPath: str = mountPath
		self.directory: Path = Path(directory).absolute()
		self.lister: DirectoryLister = lister or DirectoryLister()

	async def __call__(self, request: HTTPRequest) -> HTTPResponse:
		if request.method not in self.METHODS:
			return request.notAllowed(*self.METHODS)
		# Filesystem access is blocking, so it happens in a worker thread
		return await asyncio.to_thread(self.serve, request)

	def serve(self, request: HTTPRequest) -> HTTPResponse:
		try:
			target = resolvePath(request.path, self.mountPath, self.directory)
			if target.isDirectory:
				index = findIndex(target.path)
				if index is None:
					return request.respondHTML(
						self.lister.render(target.path, request.path)
					)
				target = index
			return self.serveFile(request, target)
		except ResolveError as e:
			if e.status >= 500:
				error("Could not serve request", e.status, path=request.path, reason=str(e))
			else:
				debug("Request rejected", status=e.status, reason=str(e))
			return request.error(e.status)

	def serveFile(self, request: HTTPRequest, target: ResolvedTarget) -> HTTPResponse:
		# Opened up front so that unreadable files are reported as such,
		# rather than failing while the body is being sent.
		try:
			with open(target.path, "rb"):
				pass
		except PermissionError:
			raise Forbidden(f"Cannot read file: {target.path}") from None
		except OSError as e:
			raise Internal(f"Cannot open file {target.path}: {e}") from e
		return request.respondFile(target.path, target.stat)

	def __str__(self) -> str:
		return f"FileService({self.mountPath} → {self.directory})"


# EOF
