from typing import Iterator, Literal

from ..utils.io import LineParser
from .model import (
	HTTPAtom,
	HTTPBodyBlob,
	HTTPHeaders,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPRequestLine,
	headername,
)


class RequestLineParser:
	"""Parses an HTTP request line."""

	__slots__ = ["line", "value"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.value: HTTPRequestLine | None = None

	def flush(self) -> HTTPRequestLine | None:
		res = self.value
		self.reset()
		return res

	def reset(self) -> "RequestLineParser":
		self.line.reset()
		self.value = None
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		line, read = self.line.feed(chunk, start)
		if not line:
			# Either incomplete, or an empty line before the request line
			return None, read
		# Raw non-ASCII bytes are preserved as surrogates, the path
		# decoder turns them back into bytes.
		ln = line.decode("utf8", "surrogateescape")
		i = ln.find(" ")
		j = ln.rfind(" ")
		if i == -1 or i == j:
			# Not a request line, we report it with an empty method
			# so that it can be rejected.
			self.value = HTTPRequestLine("", ln, "HTTP/1.1")
		else:
			# The query is not used to look up files
			self.value = HTTPRequestLine(
				ln[0:i], ln[i + 1 : j].split("?", 1)[0], ln[j + 1 :]
			)
		return True, read

	def __str__(self) -> str:
		return f"RequestLineParser({self.value})"


class HeadersParser:
	__slots__ = ["headers", "contentType", "contentLength", "line"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None

	def flush(self) -> HTTPHeaders:
		res = HTTPHeaders(self.headers, self.contentType, self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[str | Literal[False] | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns
		a value and the number of bytes read. When the value is `None`, no
		header has been extracted, when the value is `False` it's the empty
		line ending the headers, otherwise it's the name of the header
		that was added."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			return False, read
		else:
			ln: str = line.decode("latin-1")
			i = ln.find(":")
			if i == -1:
				return None, read
			h = ln[:i].lower().strip()
			v = ln[i + 1 :].strip()
			if h == "content-length":
				try:
					self.contentLength = int(v)
				except ValueError:
					self.contentLength = None
			elif h == "content-type":
				self.contentType = v
			n: str = headername(h)
			self.headers[n] = v
			return n, read

	def __str__(self) -> str:
		return f"HeadersParser({self.headers})"


class BodyLengthParser:
	"""Parses the body of a request with `Content-Length` set"""

	__slots__ = ["expected", "read", "data"]

	def __init__(self) -> None:
		self.expected: int = 0
		self.read: int = 0
		self.data: list[bytes] = []

	def flush(self) -> HTTPBodyBlob:
		res = HTTPBodyBlob(b"".join(self.data), self.read)
		self.reset()
		return res

	def reset(self, length: int = 0) -> "BodyLengthParser":
		self.expected = length
		self.read = 0
		self.data = []
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		"""Returns `True` once the expected length has been read."""
		to_read: int = min(len(chunk) - start, self.expected - self.read)
		self.data.append(chunk[start : start + to_read])
		self.read += to_read
		return (True if self.read >= self.expected else None), to_read


class HTTPParser:
	"""A stateful, incremental HTTP request parser. Chunks are fed as they
	come from the socket, and the parser yields atoms, the most important
	being the complete `HTTPRequest`."""

	def __init__(self) -> None:
		self.message: RequestLineParser = RequestLineParser()
		self.headers: HeadersParser = HeadersParser()
		self.bodyLength: BodyLengthParser = BodyLengthParser()
		self.parser: RequestLineParser | HeadersParser | BodyLengthParser = (
			self.message
		)
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None

	def request(self, body: HTTPBodyBlob) -> HTTPRequest:
		line = self.requestLine
		if line is None:
			raise RuntimeError("Request line has not been parsed")
		res = HTTPRequest(
			method=line.method,
			path=line.path,
			headers=self.requestHeaders or HTTPHeaders({}),
			protocol=line.protocol,
			body=body,
		)
		self.parser = self.message.reset()
		self.requestLine = None
		self.requestHeaders = None
		return res

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			# Parsers keep a buffer of partial data, so a chunk is never
			# fed twice.
			value, read = self.parser.feed(chunk, offset)
			offset += read
			if value is None:
				continue
			elif self.parser is self.message:
				line = self.message.flush()
				if isinstance(line, HTTPRequestLine):
					self.requestLine = line
					self.requestHeaders = None
					yield line
					self.parser = self.headers
			elif self.parser is self.headers:
				if value is not False:
					# That's a header name, we continue
					continue
				headers = self.headers.flush()
				self.requestHeaders = headers
				yield headers
				line = self.requestLine
				if line and not line.method:
					yield HTTPProcessingStatus.BadFormat
					self.parser = self.message.reset()
				elif headers.contentLength and headers.contentLength > 0:
					# The body is consumed (and ignored by the file service) so
					# that pipelined requests stay aligned.
					self.parser = self.bodyLength.reset(headers.contentLength)
					yield HTTPProcessingStatus.Body
				else:
					# No body is expected
					yield self.request(HTTPBodyBlob())
			elif self.parser is self.bodyLength:
				yield self.request(self.bodyLength.flush())
			else:
				raise RuntimeError(f"Unsupported parser: {self.parser}")


# EOF
