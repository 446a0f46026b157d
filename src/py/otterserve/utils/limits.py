import resource

from .logging import debug, warning

# Each connection holds a socket, plus a file while a body is being sent
OPEN_FILES: int = 100 * 1024


def openFilesLimit() -> tuple[int, int]:
	"""Returns the soft and hard limits on open files."""
	soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
	return soft, hard


def raiseOpenFilesLimit(target: int = OPEN_FILES) -> int:
	"""Raises the soft limit on open files up to `target`, without going
	over the hard limit. The limit is never lowered. Returns the soft limit
	in effect."""
	soft, hard = openFilesLimit()
	wanted: int = target if hard == resource.RLIM_INFINITY else min(target, hard)
	if wanted <= soft:
		return soft
	try:
		resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))
	except (ValueError, OSError) as e:
		warning("Could not raise the open files limit", soft=soft, target=wanted, error=str(e))
		return soft
	debug("Raised the open files limit", previous=soft, limit=wanted)
	return wanted


# EOF
