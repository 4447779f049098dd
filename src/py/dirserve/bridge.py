import asyncio

from .config import ServerConfig
from .http.model import HTTPBodyWriter, HTTPRequest
from .http.parser import HTTPParser
from .server import AIOSocketServer
from .services.files import FileService

# --
# The bridge runs the file service in-process: raw request bytes go in,
# raw response bytes come out, without going through a socket. This is
# useful to embed the service or to test it.


class BufferedBodyWriter(HTTPBodyWriter):
	"""A body writer that accumulates what is written in memory."""

	__slots__ = ["buffer"]

	def __init__(self) -> None:
		super().__init__()
		self.buffer: bytearray = bytearray()

	async def _writeBytes(self, chunk: bytes) -> bool:
		self.buffer += chunk
		return True

	def flush(self) -> bytes:
		res = bytes(self.buffer)
		self.buffer.clear()
		return res


class Bridge:
	def __init__(self, service: FileService):
		self.service: FileService = service

	async def process(self, payload: bytes) -> list[bytes]:
		"""Processes the requests contained in the payload, returning
		one serialized response per complete request."""
		parser = HTTPParser()
		writer = BufferedBodyWriter()
		responses: list[bytes] = []
		for atom in parser.feed(payload):
			if isinstance(atom, HTTPRequest):
				await AIOSocketServer.SendResponse(atom, self.service, writer)
				responses.append(writer.flush())
		return responses

	def request(self, payload: bytes) -> bytes:
		"""Synchronously processes a single request, returning the raw
		response."""
		responses = asyncio.run(self.process(payload))
		if not responses:
			raise ValueError(f"Payload does not contain a complete request: {payload!r}")
		return responses[0]


def run(config: ServerConfig) -> Bridge:
	"""Returns a bridge to the file service for the given configuration."""
	return Bridge(FileService(config))


# EOF
