from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Generic, TypeVar

from ..utils.files import DEFAULT_CHARSET
from .status import HTTP_STATUS

T = TypeVar("T")

TEXT_PLAIN: str = f"text/plain; charset={DEFAULT_CHARSET}"
TEXT_HTML: str = f"text/html; charset={DEFAULT_CHARSET}"

# --
# == HTTP Request Response API
#
# Defines the high level API functions (orthogonal to the underlying model)
# to create responses from a request.


class ResponseFactory(ABC, Generic[T]):
	@abstractmethod
	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> T: ...

	def error(
		self,
		status: int,
		content: str | None = None,
		contentType: str = TEXT_PLAIN,
		headers: dict[str, str] | None = None,
	) -> T:
		message = HTTP_STATUS.get(status, "Server Error")
		return self.respond(
			content=message if content is None else content,
			contentType=contentType,
			status=status,
			message=message,
			headers=headers,
		)

	def respondHTML(
		self,
		html: str | bytes,
		status: int = 200,
		headers: dict[str, str] | None = None,
	) -> T:
		return self.respond(
			content=html, contentType=TEXT_HTML, status=status, headers=headers
		)

	# NOTE: Ranges and conditional requests are not supported, the file
	# is always sent as a whole.
	def respondFile(
		self,
		file: BinaryIO,
		size: int,
		contentType: str | None = None,
		headers: dict[str, str] | None = None,
		status: int = 200,
	) -> T:
		"""Responds with the contents of the given open `file`, of which
		exactly `size` bytes will be sent. The file is owned by the
		response from then on."""
		base_headers: dict[str, str] = {}
		if contentType:
			base_headers["Content-Type"] = contentType
		base_headers["Content-Length"] = str(size)
		return self.respond(
			content=file,
			contentLength=size,
			status=status,
			headers=base_headers | headers if headers else base_headers,
		)


# EOF
