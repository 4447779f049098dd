from pathlib import Path
from typing import NamedTuple

import pytest

from dirserve.bridge import Bridge
from dirserve.config import ServerConfig
from dirserve.services.files import FileService


class Response(NamedTuple):
	status: int
	headers: dict[str, str]
	body: bytes


def parse(payload: bytes) -> Response:
	"""Parses a raw HTTP response."""
	head, _, body = payload.partition(b"\r\n\r\n")
	lines = head.decode("latin-1").split("\r\n")
	status = int(lines[0].split(" ", 2)[1])
	headers: dict[str, str] = {}
	for line in lines[1:]:
		k, v = line.split(":", 1)
		headers[k.strip()] = v.strip()
	return Response(status, headers, body)


def get(bridge: Bridge, path: str, method: str = "GET") -> Response:
	return parse(
		bridge.request(
			f"{method} {path} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode("utf8")
		)
	)


@pytest.fixture
def root(tmp_path: Path) -> Path:
	"""A root with `a.txt` containing "hi" and an empty `sub` directory."""
	path = tmp_path / "root"
	path.mkdir()
	(path / "a.txt").write_bytes(b"hi")
	(path / "sub").mkdir()
	return path


@pytest.fixture
def bridge(root: Path) -> Bridge:
	return Bridge(FileService(ServerConfig.Make(str(root))))


# EOF
