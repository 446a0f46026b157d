import pytest

from otterserve.http.model import (
	HTTPHeaders,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPRequestLine,
)
from otterserve.http.parser import MAX_HEADERS, HTTPParser, parseQuery
from otterserve.utils.io import LineParser


def requests(parser: HTTPParser, *chunks: bytes) -> list[HTTPRequest]:
	return [
		atom
		for chunk in chunks
		for atom in parser.feed(chunk)
		if isinstance(atom, HTTPRequest)
	]


def test_line_parser():
	parser = LineParser()
	lines: list[bytes] = []
	for chunk in (
		b"GET /time/5 HTTP/1.1\r\nHost: 127.0.0.1\r\nConnection: close",
		b"\r\n\r",
		b"\n",
	):
		offset: int = 0
		while offset < len(chunk):
			line, read = parser.feed(chunk, offset)
			offset += read
			if line is not None:
				lines.append(line)
				parser.reset()
	assert lines == [
		b"GET /time/5 HTTP/1.1",
		b"Host: 127.0.0.1",
		b"Connection: close",
		b"",
	]


def test_line_parser_keeps_lone_carriage_returns():
	parser = LineParser()
	assert parser.isEmpty
	assert parser.feed(b"a\r") == (None, 2)
	assert not parser.isEmpty
	assert parser.feed(b"b\r\nc", 0) == (b"a\rb", 3)
	assert parser.feed(b"b\r\nc", 3) == (None, 1)
	assert parser.feed(b"\r\n") == (b"c", 2)
	assert parser.isEmpty


def test_incremental():
	parser = HTTPParser()
	atoms = []
	for chunk in (
		b"GET /time/5",
		b"?a=1&b HTTP/1.1\r\nHost: ",
		b"127.0.0.1\r",
		b"\nConn",
		b"ection: close\r\n",
		b"\r",
		b"\n",
	):
		atoms += list(parser.feed(chunk))
	assert isinstance(atoms[0], HTTPRequestLine)
	assert isinstance(atoms[1], HTTPHeaders)
	req = atoms[2]
	assert isinstance(req, HTTPRequest)
	assert req.method == "GET"
	assert req.path == "/time/5"
	assert req.query == {"a": "1", "b": ""}
	assert req.protocol == "HTTP/1.1"
	assert req.header("host") == "127.0.0.1"
	assert req.header("Connection") == "close"
	assert parser.isIdle


def test_pipelining():
	parser = HTTPParser()
	reqs = requests(
		parser,
		b"GET /a HTTP/1.1\r\nHost: x\r\n\r\nHEAD /b HTTP/1.1\r\nHost: x\r\n\r\nGET /c",
		b" HTTP/1.1\r\n\r\n",
	)
	assert [(_.method, _.path) for _ in reqs] == [("GET", "/a"), ("HEAD", "/b"), ("GET", "/c")]


def test_body():
	parser = HTTPParser()
	atoms = list(parser.feed(b"POST /upload HTTP/1.1\r\nContent-Length: 10\r\n\r\n01234"))
	assert HTTPProcessingStatus.Body in atoms
	assert parser.isReadingBody
	reqs = requests(parser, b"56789GET /next HTTP/1.1\r\n\r\n")
	assert reqs[0].body.payload == b"0123456789"
	assert reqs[0].contentLength == 10
	assert not reqs[0].hasPendingBody
	assert reqs[1].path == "/next"


def test_leading_empty_lines():
	reqs = requests(HTTPParser(), b"\r\nGET / HTTP/1.1\r\n\r\n")
	assert len(reqs) == 1


@pytest.mark.parametrize(
	"payload",
	[
		b"NOT A VALID REQUEST LINE\r\n\r\n",
		b"GET /\r\n\r\n",
		b"get / HTTP/1.1\r\n\r\n",
		b"GET / HTTP/2.0\r\n\r\n",
		b"GET http://example.com/ HTTP/1.1\r\n\r\n",
		b"GET / HTTP/1.1\r\nNoColon\r\n\r\n",
		b"GET / HTTP/1.1\r\nContent-Length: abc\r\n\r\n",
		b"GET /\xff HTTP/1.1\r\n\r\n",
	],
)
def test_bad_format(payload: bytes):
	atoms = list(HTTPParser().feed(payload))
	assert atoms[-1] is HTTPProcessingStatus.BadFormat


def test_line_too_long():
	parser = HTTPParser()
	atoms = list(parser.feed(b"GET /" + b"a" * 70_000))
	assert atoms == [HTTPProcessingStatus.BadFormat]


def test_repeated_headers():
	reqs = requests(HTTPParser(), b"GET / HTTP/1.1\r\nAccept: a\r\naccept: b\r\n\r\n")
	assert reqs[0].header("Accept") == "a, b"


def test_path_is_decoded():
	reqs = requests(HTTPParser(), b"GET /my%20files/caf%C3%A9.txt?q=a%20b HTTP/1.1\r\n\r\n")
	assert reqs[0].path == "/my files/caf\u00e9.txt"
	# The query is kept as sent
	assert reqs[0].query == {"q": "a%20b"}
	reqs = requests(HTTPParser(), b"GET /static/%2e%2e/%2e%2e/etc HTTP/1.1\r\n\r\n")
	assert reqs[0].path == "/static/../../etc"


def test_body_too_large():
	parser = HTTPParser(maxBody=16)
	atoms = list(parser.feed(b"POST / HTTP/1.1\r\nContent-Length: 16\r\n\r\n"))
	assert atoms[-1] is HTTPProcessingStatus.Body
	parser = HTTPParser(maxBody=16)
	atoms = list(parser.feed(b"POST / HTTP/1.1\r\nContent-Length: 17\r\n\r\n"))
	assert atoms[-1] is HTTPProcessingStatus.TooLarge


def test_body_is_not_buffered_past_the_limit():
	parser = HTTPParser()
	atoms = list(
		parser.feed(b"GET / HTTP/1.1\r\nContent-Length: 200000000\r\n\r\n")
	)
	assert atoms[-1] is HTTPProcessingStatus.TooLarge
	assert not parser.isReadingBody
	for _ in range(20):
		list(parser.feed(b"x" * 1_000_000))
	assert sum(len(_) for _ in parser.bodyLength.data) == 0


def test_too_many_headers():
	headers = b"".join(b"X-H%d: v\r\n" % i for i in range(MAX_HEADERS + 1))
	atoms = list(HTTPParser().feed(b"GET / HTTP/1.1\r\n" + headers + b"\r\n"))
	assert atoms[-1] is HTTPProcessingStatus.BadFormat
	headers = b"".join(b"X-H%d: v\r\n" % i for i in range(MAX_HEADERS))
	reqs = requests(HTTPParser(), b"GET / HTTP/1.1\r\n" + headers + b"\r\n")
	assert len(reqs[0].headers) == MAX_HEADERS


def test_parse_query():
	assert parseQuery("a=1&b=2&c") == {"a": "1", "b": "2", "c": ""}


# EOF
