import os
import time
import mimetypes
from urllib.parse import quote
from pathlib import Path
from typing import Iterable, NamedTuple

mimetypes.init()

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

# Overrides for extensions the platform registry gets wrong or misses.
MIME_TYPES: dict[str, str] = dict(
	bz2="application/x-bzip",
	gz="application/x-gzip",
)

# Overrides for whole file names.
MIME_NAMES: dict[str, str] = {
	"importmap.json": "application/importmap+json",
}

SIZE_UNITS: str = "KMGTPE"


def contentType(path: Path | str) -> str:
	"""Guesses the content type from the given file name, falling back on
	`application/octet-stream`. This does no I/O."""
	name: str = os.path.basename(str(path))
	if name in MIME_NAMES:
		return MIME_NAMES[name]
	ext: str = name.rsplit(".", 1)[-1].lower() if "." in name else ""
	return (
		res
		if (res := MIME_TYPES.get(ext))
		else mimetypes.guess_type(name, strict=False)[0] or DEFAULT_CONTENT_TYPE
	)


def formatSize(size: int) -> str:
	"""Formats a byte count with binary units, like `512 B` or `1.5 KB`."""
	if size < 1024:
		return f"{size} B"
	div: int = 1024
	exp: int = 0
	n: int = size // 1024
	while n >= 1024 and exp < len(SIZE_UNITS) - 1:
		div *= 1024
		exp += 1
		n //= 1024
	return f"{size / div:.1f} {SIZE_UNITS[exp]}B"


def formatTime(timestamp: float) -> str:
	return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(timestamp))


class DirectoryEntry(NamedTuple):
	name: str
	size: int
	modifiedAt: float
	isDirectory: bool

	@staticmethod
	def FromDirEntry(entry: os.DirEntry) -> "DirectoryEntry":
		is_dir: bool = entry.is_dir()
		stats = entry.stat()
		return DirectoryEntry(
			name=entry.name,
			size=stats.st_size,
			modifiedAt=stats.st_mtime,
			isDirectory=is_dir,
		)

	@property
	def href(self) -> str:
		name: str = quote(self.name)
		return f"{name}/" if self.isDirectory else name

	@property
	def displayName(self) -> str:
		return f"{self.name}/" if self.isDirectory else self.name

	@property
	def displaySize(self) -> str:
		return "-" if self.isDirectory else formatSize(self.size)

	@property
	def displayTime(self) -> str:
		return formatTime(self.modifiedAt)


def sortEntries(entries: Iterable[DirectoryEntry]) -> list[DirectoryEntry]:
	"""Directories first, then files, each group sorted by name."""
	return sorted(entries, key=lambda _: (not _.isDirectory, _.name))


def listEntries(path: Path | str) -> list[DirectoryEntry]:
	"""Lists the direct children of `path`, skipping the entries that can't be
	stat'ed. Errors opening the directory itself are propagated."""
	res: list[DirectoryEntry] = []
	with os.scandir(path) as entries:
		for _ in entries:
			try:
				res.append(DirectoryEntry.FromDirEntry(_))
			except OSError:
				continue
	return sortEntries(res)


# EOF
