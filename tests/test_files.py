import asyncio
import os
from pathlib import Path

import pytest

from otterserve.http.model import HTTPHeaders, HTTPRequest
from otterserve.services.files import (
	DirectoryLister,
	FileService,
	Forbidden,
	NotFound,
	relativePath,
	resolvePath,
)
from otterserve.utils.files import (
	DirectoryEntry,
	contentType,
	formatSize,
	listEntries,
	sortEntries,
)


def request(path: str, method: str = "GET", **headers: str) -> HTTPRequest:
	return HTTPRequest(
		method, path, None, HTTPHeaders({k.replace("_", "-"): v for k, v in headers.items()})
	)


# --
# ## Content types


def test_content_type():
	assert contentType("test.txt") == "text/plain"
	assert contentType("index.html") == "text/html"
	assert contentType("a/b/style.css") == "text/css"
	assert contentType("image.PNG") == "image/png"
	assert contentType("archive.gz") == "application/x-gzip"
	assert contentType("importmap.json") == "application/importmap+json"
	assert contentType("README") == "application/octet-stream"
	assert contentType("file.unknownext") == "application/octet-stream"


def test_format_size():
	assert formatSize(0) == "0 B"
	assert formatSize(1023) == "1023 B"
	assert formatSize(1024) == "1.0 KB"
	assert formatSize(1536) == "1.5 KB"
	assert formatSize(1024 * 1024) == "1.0 MB"
	assert formatSize(5 * 1024**3) == "5.0 GB"


def test_sort_entries():
	entries = [
		DirectoryEntry("b.txt", 1, 0, False),
		DirectoryEntry("zdir", 0, 0, True),
		DirectoryEntry("a.txt", 1, 0, False),
		DirectoryEntry("adir", 0, 0, True),
	]
	assert [_.name for _ in sortEntries(entries)] == ["adir", "zdir", "a.txt", "b.txt"]


def test_entry_display():
	d = DirectoryEntry("my dir", 0, 0, True)
	f = DirectoryEntry("file.txt", 2048, 0, False)
	assert d.href == "my%20dir/"
	assert d.displayName == "my dir/"
	assert d.displaySize == "-"
	assert f.href == "file.txt"
	assert f.displaySize == "2.0 KB"


def test_list_entries(site: Path):
	names = [_.name for _ in listEntries(site / "listed")]
	assert names == ["adir", "zdir", "a.txt", "b.txt"]


# --
# ## Path resolution


def test_relative_path():
	assert relativePath("/static/", "/static/") == ""
	assert relativePath("/static", "/static/") == ""
	assert relativePath("/static/a/./b//c", "/static/") == "a/b/c"
	assert relativePath("/static/a/../b", "/static/") == "b"
	assert relativePath("/static/my file.txt", "/static/") == "my file.txt"
	# Paths are decoded once, by the parser, and never again here
	assert relativePath("/static/100%25.txt", "/static/") == "100%25.txt"
	# A double slash must not turn into an absolute path
	assert relativePath("/static//etc/passwd", "/static/") == "etc/passwd"


@pytest.mark.parametrize(
	"path",
	[
		"/static/..",
		"/static/../../etc/passwd",
		"/static/a/../../../etc/passwd",
		"/static/./../etc/passwd",
		"/static/a/b/../../../etc",
		"/static/..//..//etc/passwd",
	],
)
def test_traversal(site: Path, path: str):
	with pytest.raises(Forbidden):
		resolvePath(path, "/static/", site)


def test_resolve(site: Path):
	target = resolvePath("/static/test.txt", "/static/", site)
	assert target.path == site / "test.txt"
	assert not target.isDirectory
	target = resolvePath("/static/", "/static/", site)
	assert target.path == site
	assert target.isDirectory
	target = resolvePath("/static/docs", "/static/", site)
	assert target.isDirectory


def test_resolve_errors(site: Path):
	with pytest.raises(NotFound):
		resolvePath("/static/missing.txt", "/static/", site)
	with pytest.raises(NotFound):
		resolvePath("/static/test.txt/child", "/static/", site)
	with pytest.raises(Forbidden):
		resolvePath("/static/bad\x00name", "/static/", site)


# --
# ## Listing


def test_listing(site: Path):
	page = DirectoryLister().render(site / "listed", "/static/listed/")
	assert "<title>Directory listing for /static/listed/</title>" in page
	assert '<a href="../">../</a>' in page
	assert '<a href="adir/">adir/</a>' in page
	assert '<a href="a.txt">a.txt</a>' in page
	assert page.index("zdir/") < page.index("a.txt") < page.index("b.txt")


def test_listing_root(site: Path):
	page = DirectoryLister().render(site / "listed", "/")
	assert "../" not in page


def test_listing_escapes_names(tmp_path: Path):
	(tmp_path / "<b>.txt").write_text("x")
	page = DirectoryLister().render(tmp_path, "/")
	assert "&lt;b&gt;.txt" in page
	assert "<b>" not in page


def test_listing_relative_links(site: Path):
	# Without a trailing slash, links still point inside the directory
	page = DirectoryLister().render(site / "listed", "/static/listed")
	assert '<a href="listed/a.txt">a.txt</a>' in page


def test_listing_relative_links_are_quoted(tmp_path: Path):
	(tmp_path / "a#b").mkdir()
	(tmp_path / "a#b" / "c.txt").write_text("c")
	page = DirectoryLister().render(tmp_path / "a#b", "/files/a#b")
	assert '<a href="a%23b/c.txt">c.txt</a>' in page
	assert "Directory listing for /files/a#b" in page


# --
# ## File service


def test_service_file(site: Path):
	service = FileService("/static/", site)
	res = asyncio.run(service(request("/static/test.txt")))
	assert res.status == 200
	assert res.getHeader("Content-Type") == "text/plain"
	assert res.getHeader("Content-Length") == "13"
	assert res.body.path == site / "test.txt"


def test_service_index(site: Path):
	service = FileService("/static/", site)
	res = asyncio.run(service(request("/static/docs/")))
	assert res.status == 200
	assert res.body.path == site / "docs" / "index.html"
	assert res.getHeader("Content-Type") == "text/html"


def test_service_index_order(tmp_path: Path):
	(tmp_path / "default.html").write_text("default")
	(tmp_path / "index.htm").write_text("htm")
	service = FileService("/", tmp_path)
	res = asyncio.run(service(request("/")))
	assert res.body.path == tmp_path / "index.htm"
	# A directory named like an index file is not an index
	(tmp_path / "index.html").mkdir()
	res = asyncio.run(service(request("/")))
	assert res.body.path == tmp_path / "index.htm"


def test_service_listing(site: Path):
	service = FileService("/static/", site)
	res = asyncio.run(service(request("/static/empty/")))
	assert res.status == 200
	assert res.getHeader("Content-Type") == "text/html; charset=utf-8"
	assert b"Directory listing for /static/empty/" in res.body.payload


def test_service_errors(site: Path):
	service = FileService("/static/", site)
	res = asyncio.run(service(request("/static/../secret")))
	assert res.status == 403
	assert res.body.payload == b"403 Forbidden\n"
	res = asyncio.run(service(request("/static/missing")))
	assert res.status == 404
	assert res.body.payload == b"404 Not Found\n"
	res = asyncio.run(service(request("/static/test.txt", "POST")))
	assert res.status == 405
	assert res.getHeader("Allow") == "GET, HEAD"


@pytest.mark.skipif(
	hasattr(os, "geteuid") and os.geteuid() == 0,
	reason="Permissions are not enforced for root",
)
def test_service_unreadable(tmp_path: Path):
	secret = tmp_path / "secret.txt"
	secret.write_text("secret")
	secret.chmod(0)
	locked = tmp_path / "locked"
	locked.mkdir()
	locked.chmod(0)
	try:
		service = FileService("/", tmp_path)
		assert asyncio.run(service(request("/secret.txt"))).status == 403
		assert asyncio.run(service(request("/locked/"))).status == 403
	finally:
		secret.chmod(0o644)
		locked.chmod(0o755)


# EOF
