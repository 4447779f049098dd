import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from io import IOBase
from typing import Any, BinaryIO, NamedTuple, TypeAlias, Union, cast

from ..utils.io import DEFAULT_ENCODING
from ..utils.logging import warning
from .api import ResponseFactory
from .status import HTTP_STATUS

# -----------------------------------------------------------------------------
#
# HELPERS
#
# -----------------------------------------------------------------------------


def headername(name: str, *, headers: dict[str, str] = {}) -> str:
	"""Normalizes the header name as `Kebab-Case`."""
	if name in headers:
		return headers[name]
	key: str = name.lower()
	if key in headers:
		return headers[key]
	else:
		normalized: str = "-".join(_.capitalize() for _ in name.split("-"))
		headers[key] = normalized
		return normalized


# -----------------------------------------------------------------------------
#
# DATA MODEL
#
# -----------------------------------------------------------------------------


class HTTPRequestLine(NamedTuple):
	"""Represents a request status line"""

	method: str
	path: str
	protocol: str


class HTTPHeaders(NamedTuple):
	"""Wraps HTTP headers, keeping key information for request processing."""

	headers: dict[str, str]
	contentType: str | None = None
	contentLength: int | None = None


class HTTPProcessingStatus(Enum):
	"""Internal parser/processor state management"""

	Processing = 0
	Body = 1
	Timeout = 10
	NoData = 11
	BadFormat = 12


# Type alias for what the parser produces
HTTPAtom: TypeAlias = Union[
	HTTPRequestLine,
	HTTPHeaders,
	HTTPProcessingStatus,
	"HTTPRequest",
]

# -----------------------------------------------------------------------------
#
# BODY
#
# -----------------------------------------------------------------------------


class HTTPBodyBlob(NamedTuple):
	"""Represents a body as bytes."""

	payload: bytes = b""
	length: int = 0

	@staticmethod
	def FromBytes(data: bytes) -> "HTTPBodyBlob":
		return HTTPBodyBlob(payload=data, length=len(data))


class HTTPBodyFile(NamedTuple):
	"""Represents an HTTP body streamed from an open file, of which `size`
	bytes are to be sent. The body owns the file and must be closed."""

	file: BinaryIO
	size: int

	@property
	def length(self) -> int:
		return self.size

	def close(self) -> None:
		if not self.file.closed:
			self.file.close()


# The different types of bodies that are managed
THTTPBody: TypeAlias = HTTPBodyBlob | HTTPBodyFile


# -----------------------------------------------------------------------------
#
# BODY WRITER
#
# -----------------------------------------------------------------------------

FILE_CHUNK_SIZE: int = 64_000


class HTTPBodyWriter(ABC):
	"""A generic writer for responses, which knows how to write the
	different types of bodies."""

	__slots__ = ["shouldClose"]

	def __init__(self) -> None:
		# Set when the connection can't be reused after a write
		self.shouldClose: bool = False

	async def write(self, body: THTTPBody | bytes | None) -> bool:
		"""Writes the given type of body."""
		if isinstance(body, bytes):
			return await self._writeBytes(body)
		elif isinstance(body, HTTPBodyBlob):
			return await self._writeBytes(body.payload)
		elif isinstance(body, HTTPBodyFile):
			try:
				sent = await self._writeFile(body)
			finally:
				body.close()
			if sent != body.size:
				# The client was promised `Content-Length` bytes, the only
				# way to signal the truncation is to close.
				warning("File body was truncated", Expected=body.size, Sent=sent)
				self.shouldClose = True
			return sent == body.size
		elif body is None:
			return True
		else:
			raise ValueError(f"Unsupported body format: {body}")

	async def _writeFile(self, body: HTTPBodyFile, size: int = FILE_CHUNK_SIZE) -> int:
		"""Streams the file in chunks, returning the number of bytes sent,
		which is never more than `body.size`."""
		remaining: int = body.size
		while remaining > 0:
			chunk: bytes = await asyncio.to_thread(body.file.read, min(size, remaining))
			if not chunk:
				break
			await self._writeBytes(chunk)
			remaining -= len(chunk)
		return body.size - remaining

	@abstractmethod
	async def _writeBytes(self, chunk: bytes) -> bool: ...


# -----------------------------------------------------------------------------
#
# REQUESTS
#
# -----------------------------------------------------------------------------


class HTTPRequest(ResponseFactory["HTTPResponse"]):
	"""Represents an HTTP requests, which also acts as a factory for
	responses."""

	__slots__ = ["protocol", "method", "path", "_headers", "_body"]

	def __init__(
		self,
		method: str,
		path: str,
		headers: HTTPHeaders,
		body: HTTPBodyBlob | None = None,
		protocol: str = "HTTP/1.1",
	):
		super().__init__()
		self.method: str = method
		self.path: str = path
		self.protocol: str = protocol
		self._headers: HTTPHeaders = headers
		self._body: HTTPBodyBlob | None = body

	@property
	def headers(self) -> dict[str, str]:
		return self._headers.headers

	def header(self, name: str) -> str | None:
		return self._headers.headers.get(headername(name))

	@property
	def body(self) -> HTTPBodyBlob | None:
		return self._body

	@property
	def keepAlive(self) -> bool:
		"""Tells if the connection can stay open after the response."""
		connection = (self.header("Connection") or "").lower()
		if self.header("Transfer-Encoding"):
			# Chunked bodies are not read by the parser, what follows on
			# the connection can't be parsed as the next request.
			return False
		elif self.protocol == "HTTP/1.0":
			return connection == "keep-alive"
		else:
			return connection != "close"

	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> "HTTPResponse":
		return HTTPResponse.Create(
			status=status,
			message=message,
			content=content,
			contentType=contentType,
			contentLength=contentLength,
			protocol=self.protocol,
			headers=headers,
		)

	def __str__(self) -> str:
		return f"Request({self.method} {self.path} {self.headers})"


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class HTTPResponse:
	"""An HTTP response."""

	@staticmethod
	def Create(
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		headers: dict[str, str] | None = None,
		status: int = 200,
		message: str | None = None,
		protocol: str = "HTTP/1.1",
	) -> "HTTPResponse":
		"""Factory method to create HTTP response objects."""
		updated_headers: dict[str, str] = {}
		body: THTTPBody | None = None
		if content is None:
			contentLength = 0
		elif isinstance(content, str):
			body = HTTPBodyBlob.FromBytes(content.encode(DEFAULT_ENCODING))
		elif isinstance(content, bytes):
			body = HTTPBodyBlob.FromBytes(content)
		elif isinstance(content, IOBase):
			if contentLength is None:
				raise ValueError("File content requires a content length")
			body = HTTPBodyFile(cast(BinaryIO, content), contentLength)
		else:
			raise ValueError(f"Unsupported content {type(content)}:{content}")
		if isinstance(body, HTTPBodyBlob):
			contentLength = body.length
		# Explicit arguments take precedence over the given headers
		if contentType is not None:
			updated_headers["Content-Type"] = contentType
		if contentLength is not None:
			updated_headers["Content-Length"] = str(contentLength)
		res_headers: dict[str, str] = (
			(headers | updated_headers) if headers else updated_headers
		)
		return HTTPResponse(
			status=status,
			message=message or HTTP_STATUS.get(status, "Unknown status"),
			headers=HTTPHeaders(
				res_headers,
				contentType=res_headers.get("Content-Type"),
				contentLength=contentLength,
			),
			body=body,
			protocol=protocol,
		)

	__slots__ = [
		"protocol",
		"status",
		"message",
		"headers",
		"body",
	]

	def __init__(
		self,
		protocol: str,
		status: int,
		message: str | None,
		headers: HTTPHeaders,
		body: THTTPBody | None = None,
	):
		self.protocol: str = protocol
		self.status: int = status
		self.message: str | None = message
		self.headers: HTTPHeaders = headers
		self.body: THTTPBody | None = body

	def setHeader(self, name: str, value: str | int | None) -> "HTTPResponse":
		if value is None:
			self.headers.headers.pop(headername(name), None)
		else:
			self.headers.headers[headername(name)] = str(value)
		return self

	def head(self) -> bytes:
		"""Serializes the head as a payload."""
		message: str = self.message or HTTP_STATUS.get(self.status, "Unknown status")
		lines: list[str] = [
			f"{headername(k)}: {v}" for k, v in self.headers.headers.items()
		]
		lines.insert(0, f"{self.protocol} {self.status} {message}")
		lines.append("")
		lines.append("")
		# Header values may carry non-ASCII bytes, which latin-1 preserves
		return "\r\n".join(lines).encode("latin-1", "replace")

	def close(self) -> None:
		"""Releases the resources held by the response body, this is safe
		to call more than once."""
		if isinstance(self.body, HTTPBodyFile):
			self.body.close()

	def __str__(self) -> str:
		return f"Response({self.protocol} {self.status} {self.message} {self.headers} {self.body})"


# EOF
