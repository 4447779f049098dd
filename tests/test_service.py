import asyncio
import io
import os
from pathlib import Path

import pytest
from conftest import get, parse

from dirserve.bridge import Bridge, BufferedBodyWriter
from dirserve.config import ServerConfig
from dirserve.http.model import HTTPBodyWriter, HTTPRequest, HTTPResponse
from dirserve.http.parser import HTTPParser
from dirserve.server import AIOSocketServer
from dirserve.services.files import FileService
from dirserve.utils.files import MIME_TYPES, MimeTable


def request(path: str, method: str = "GET") -> HTTPRequest:
	payload = f"{method} {path} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode("utf8")
	(res,) = [_ for _ in HTTPParser().feed(payload) if isinstance(_, HTTPRequest)]
	return res


# -----------------------------------------------------------------------------
#
# DIRECTORY LISTING
#
# -----------------------------------------------------------------------------


def test_root_listing(bridge: Bridge):
	res = get(bridge, "/")
	assert res.status == 200
	assert res.headers["Content-Type"] == "text/html; charset=utf-8"
	assert int(res.headers["Content-Length"]) == len(res.body)
	assert res.body.startswith(b"<!DOCTYPE html>")
	assert b"<title>Directory &quot;/&quot;</title>" in res.body
	assert b"<h1>Directory &quot;/&quot;</h1>" in res.body
	assert res.body.count(b"<li>") == 2
	# No parent link at the root
	assert b'href="./.."' not in res.body
	i = res.body.index(b'<li>[D] <a href="./sub/">sub</a></li>')
	j = res.body.index(b'<li>[F] <a href="./a.txt">a.txt</a></li>')
	assert i < j


def test_subdirectory_listing(bridge: Bridge):
	res = get(bridge, "/sub/")
	assert res.status == 200
	assert b"<h1>Directory &quot;/sub/&quot;</h1>" in res.body
	assert res.body.count(b"<li>") == 1
	assert b'<li>[D] <a href="./..">..</a></li>' in res.body
	# Without the trailing slash, this is the same directory
	assert get(bridge, "/sub").status == 200


def test_listing_order(root: Path, bridge: Bridge):
	for name in ("b.txt", "A.txt", "c.txt"):
		(root / name).write_text("")
	for name in ("zdir", "adir"):
		(root / name).mkdir()
	body = get(bridge, "/").body
	order = [
		body.index(f'href="./{_}'.encode("utf8"))
		for _ in ("adir/", "sub/", "zdir/", "A.txt", "a.txt", "b.txt", "c.txt")
	]
	assert order == sorted(order)


def test_listing_escapes_names(root: Path, bridge: Bridge):
	(root / "<b>&.txt").write_text("")
	body = get(bridge, "/").body
	assert b"<b>" not in body
	assert b"&lt;b&gt;&amp;.txt</a>" in body


def test_listing_omits_broken_symlinks(root: Path, bridge: Bridge):
	(root / "broken").symlink_to(root / "nowhere")
	body = get(bridge, "/").body
	assert b"broken" not in body
	assert body.count(b"<li>") == 2


def test_listing_read_error(monkeypatch, bridge: Bridge):
	def fail(path):
		raise PermissionError(13, "Permission denied", path)

	monkeypatch.setattr("dirserve.services.files.listDirectory", fail)
	res = get(bridge, "/")
	assert res.status == 500
	assert res.body == b"Error 500. Cannot read directory."


@pytest.mark.skipif(
	not hasattr(os, "geteuid") or os.geteuid() == 0,
	reason="Permissions are not enforced for root",
)
def test_unreadable_directory(root: Path, bridge: Bridge):
	(root / "locked").mkdir(mode=0)
	try:
		res = get(bridge, "/locked/")
		assert res.status == 500
		assert res.body == b"Error 500. Cannot open this path."
	finally:
		(root / "locked").chmod(0o755)


# -----------------------------------------------------------------------------
#
# FILES
#
# -----------------------------------------------------------------------------


def test_file(bridge: Bridge):
	res = get(bridge, "/a.txt")
	assert res.status == 200
	assert res.headers["Content-Type"] == "text/plain; charset=utf-8"
	assert res.headers["Content-Length"] == "2"
	assert res.body == b"hi"


def test_file_is_served_for_any_method(bridge: Bridge):
	for method in ("POST", "PUT", "DELETE"):
		res = get(bridge, "/a.txt", method)
		assert (res.status, res.body) == (200, b"hi")


def test_file_content_types(root: Path, bridge: Bridge):
	(root / "image.PNG").write_bytes(b"\x89PNG")
	(root / "data.xyz").write_bytes(b"data")
	(root / "README").write_bytes(b"read me")
	assert get(bridge, "/image.PNG").headers["Content-Type"] == "image/png"
	assert get(bridge, "/data.xyz").headers["Content-Type"] == "application/octet-stream"
	assert get(bridge, "/README").headers["Content-Type"] == "application/octet-stream"


def test_file_without_fallback_type(root: Path):
	(root / "data.xyz").write_bytes(b"data")
	service = FileService(
		ServerConfig.Make(str(root)),
		mimeTypes=MimeTable.Make(MIME_TYPES, fallback=None),
	)
	res = get(Bridge(service), "/data.xyz")
	assert res.status == 200
	assert "Content-Type" not in res.headers
	assert res.body == b"data"


def test_empty_file(root: Path, bridge: Bridge):
	(root / "empty.txt").write_bytes(b"")
	res = get(bridge, "/empty.txt")
	assert res.status == 200
	assert res.headers["Content-Length"] == "0"
	assert res.body == b""


def test_large_file(root: Path, bridge: Bridge):
	data = os.urandom(1_000_003)
	(root / "large.bin").write_bytes(data)
	res = get(bridge, "/large.bin")
	assert res.headers["Content-Length"] == str(len(data))
	assert res.body == data
	# Serving is idempotent
	assert get(bridge, "/large.bin") == res


def test_file_names_with_plus_and_spaces(root: Path, bridge: Bridge):
	(root / "a b.txt").write_bytes(b"space")
	(root / "c+d.txt").write_bytes(b"plus")
	assert get(bridge, "/a+b.txt").body == b"space"
	assert get(bridge, "/a%20b.txt").body == b"space"
	assert get(bridge, "/c%2Bd.txt").body == b"plus"
	assert get(bridge, "/c+d.txt").status == 404


def test_file_outside_root_is_reachable(root: Path, bridge: Bridge):
	(root.parent / "outside.txt").write_bytes(b"out")
	res = get(bridge, "/../outside.txt")
	assert (res.status, res.body) == (200, b"out")


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="Requires FIFOs")
def test_fifo_is_not_served(root: Path, bridge: Bridge):
	os.mkfifo(root / "pipe")
	res = get(bridge, "/pipe")
	assert res.status == 500
	assert res.body == b"Error 500. Cannot open this path."


# -----------------------------------------------------------------------------
#
# ERRORS & HEADERS
#
# -----------------------------------------------------------------------------


def test_not_found(bridge: Bridge):
	for path in ("/missing", "/a.txt/", "/a.txt/child", "/sub/missing/"):
		res = get(bridge, path)
		assert res.status == 404
		assert res.headers["Content-Type"] == "text/plain; charset=utf-8"
		assert res.body == b"Error 404. Page not found."


def denying(call, name: str = "a.txt"):
	"""Wraps a filesystem call so that it fails for paths ending with `name`."""

	def f(path, *args, **kwargs):
		if str(path).endswith(name):
			raise PermissionError(13, "Permission denied", str(path))
		return call(path, *args, **kwargs)

	return f


def test_stat_error(monkeypatch, bridge: Bridge):
	monkeypatch.setattr(os, "stat", denying(os.stat))
	res = get(bridge, "/a.txt")
	assert res.status == 500
	assert res.body == b"Error 500. Cannot open this path."
	assert get(bridge, "/missing").status == 404


def test_open_error(monkeypatch, bridge: Bridge):
	monkeypatch.setattr(os, "open", denying(os.open))
	res = get(bridge, "/a.txt")
	assert res.status == 500
	assert res.body == b"Error 500. Cannot open this path."
	# Directories are opened the same way
	monkeypatch.setattr(os, "open", denying(os.open, "sub/"))
	res = get(bridge, "/sub/")
	assert res.status == 500
	assert res.body == b"Error 500. Cannot open this path."


def test_fstat_error(monkeypatch, bridge: Bridge):
	open_fd, fstat, close = os.open, os.fstat, os.close
	opened: list[int] = []
	closed: list[int] = []

	def track(path, *args, **kwargs):
		fd = open_fd(path, *args, **kwargs)
		if str(path).endswith("a.txt"):
			opened.append(fd)
		return fd

	def failing(fd: int):
		if fd in opened:
			raise PermissionError(13, "Permission denied")
		return fstat(fd)

	def closing(fd: int):
		closed.append(fd)
		close(fd)

	monkeypatch.setattr(os, "open", track)
	monkeypatch.setattr(os, "fstat", failing)
	monkeypatch.setattr(os, "close", closing)
	res = get(bridge, "/a.txt")
	assert res.status == 500
	assert res.body == b"Error 500. Cannot open this path."
	# The descriptor is released on the error path
	assert opened and opened[0] in closed


def test_malformed_path(bridge: Bridge):
	for path in ("/100%", "/%FF"):
		res = get(bridge, path)
		assert res.status == 500
		assert res.body == b"Error 500. Cannot open this path."


def test_no_cache_headers(root: Path):
	bridge = Bridge(FileService(ServerConfig.Make(str(root), noCache=True)))
	for path in ("/", "/a.txt"):
		res = get(bridge, path)
		assert res.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
		assert res.headers["Pragma"] == "no-cache"
		assert res.headers["Expires"] == "0"
	assert "Cache-Control" not in get(bridge, "/missing").headers


def test_cache_headers_by_default(bridge: Bridge):
	for path in ("/", "/a.txt"):
		assert "Cache-Control" not in get(bridge, path).headers


def test_connection_close(bridge: Bridge):
	res = parse(bridge.request(b"GET /a.txt HTTP/1.1\r\nConnection: close\r\n\r\n"))
	assert res.headers["Connection"] == "close"
	res = parse(bridge.request(b"GET /a.txt HTTP/1.0\r\n\r\n"))
	assert res.headers["Connection"] == "close"
	assert "Connection" not in get(bridge, "/a.txt").headers


def test_pipelined_requests(bridge: Bridge):
	responses = asyncio.run(
		bridge.process(b"GET /a.txt HTTP/1.1\r\n\r\nGET /missing HTTP/1.1\r\n\r\n")
	)
	assert [parse(_).status for _ in responses] == [200, 404]


def test_incomplete_request(bridge: Bridge):
	with pytest.raises(ValueError):
		bridge.request(b"GET / HTTP/1.1\r\n")


# -----------------------------------------------------------------------------
#
# RESPONSE WRITING
#
# -----------------------------------------------------------------------------


class FailingWriter(HTTPBodyWriter):
	"""Accepts the head, then fails as if the client went away."""

	def __init__(self) -> None:
		super().__init__()
		self.writes: int = 0

	async def _writeBytes(self, chunk: bytes) -> bool:
		self.writes += 1
		if self.writes > 1:
			raise ConnectionResetError(104, "Connection reset by peer")
		return True


class BrokenFile(io.RawIOBase):
	def readable(self) -> bool:
		return True

	def readinto(self, buffer) -> int:
		raise OSError(5, "Input/output error")


class StubService:
	def __init__(self, respond):
		self.respond = respond

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		return self.respond(request)


def test_file_is_closed_when_client_goes_away(bridge: Bridge):
	writer = FailingWriter()
	res = asyncio.run(
		AIOSocketServer.SendResponse(request("/a.txt"), bridge.service, writer)
	)
	assert res is not None and res.status == 200
	assert res.body.file.closed
	assert writer.shouldClose


def test_read_error_after_head_closes_connection():
	file = BrokenFile()
	service = StubService(lambda _: _.respondFile(file, 10))
	writer = BufferedBodyWriter()
	res = asyncio.run(AIOSocketServer.SendResponse(request("/"), service, writer))
	assert res is not None
	assert writer.flush().startswith(b"HTTP/1.1 200 OK\r\n")
	assert file.closed
	assert writer.shouldClose


def test_truncated_file_closes_connection():
	service = StubService(lambda _: _.respondFile(io.BytesIO(b"abc"), 10))
	writer = BufferedBodyWriter()
	asyncio.run(AIOSocketServer.SendResponse(request("/"), service, writer))
	res = parse(writer.flush())
	assert res.headers["Content-Length"] == "10"
	assert res.body == b"abc"
	assert writer.shouldClose


def test_service_failure_is_a_server_error():
	def fail(request: HTTPRequest) -> HTTPResponse:
		raise RuntimeError("Unexpected")

	writer = BufferedBodyWriter()
	res = asyncio.run(
		AIOSocketServer.SendResponse(request("/"), StubService(fail), writer)
	)
	assert res is None
	assert parse(writer.flush()).status == 500
	assert writer.shouldClose


# EOF
