import asyncio
import os
import stat
from typing import BinaryIO

from ..config import NO_CACHE_HEADERS, ServerConfig
from ..http.api import TEXT_PLAIN
from ..http.model import HTTPRequest, HTTPResponse
from ..utils.files import (
	MIME_TABLE,
	DirectoryEntry,
	MimeTable,
	iterEntries,
	listDirectory,
)
from ..utils.htmpl import H, Node, html
from ..utils.io import DEFAULT_ENCODING
from ..utils.logging import debug, logged, warning
from ..utils.uri import PathDecodeError, RequestContext

# Opening a FIFO for reading would block until a writer shows up
OPEN_FLAGS: int = os.O_RDONLY | getattr(os, "O_NONBLOCK", 0) | getattr(os, "O_BINARY", 0)

ERR_NOT_FOUND: str = "Page not found."
ERR_CANNOT_OPEN: str = "Cannot open this path."
ERR_CANNOT_READ_DIR: str = "Cannot read directory."
ERR_CANNOT_READ_FILE: str = "Cannot read file."


class FileService:
	"""Serves the directory tree under the configured root: directories
	are rendered as HTML listings and files are streamed as-is. Every
	method maps to the same lookup."""

	def __init__(self, config: ServerConfig, *, mimeTypes: MimeTable = MIME_TABLE):
		self.config: ServerConfig = config
		self.mimeTypes: MimeTable = mimeTypes

	@property
	def root(self) -> str:
		return self.config.root

	@property
	def extraHeaders(self) -> dict[str, str] | None:
		return dict(NO_CACHE_HEADERS) if self.config.noCache else None

	# =========================================================================
	# DISPATCH
	# =========================================================================

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		"""Resolves the request path, stats it and delegates to the
		directory listing or the file streaming. Errors are turned into
		a response right where they happen."""
		try:
			ctx = RequestContext.Resolve(self.root, request.path)
		except PathDecodeError as e:
			logged(debug) and debug(
				"Cannot decode path", Path=request.path, Error=str(e), Status=500
			)
			return self.respondError(request, 500, ERR_CANNOT_OPEN)
		if logged(debug):
			debug("HTTP request", Method=request.method, Path=f"/{ctx.decodedPath}")
			if not ctx.isContained(self.root):
				# Known limitation: `..` segments may escape the root
				warning("Path is outside of root", Path=ctx.resolvedPath)
		path: str = ctx.resolvedPath

		# --
		# Existence check
		try:
			await asyncio.to_thread(os.stat, path)
		except (FileNotFoundError, NotADirectoryError):
			logged(debug) and debug("Path is not found", Path=path, Status=404)
			return self.respondError(request, 404, ERR_NOT_FOUND)
		except (OSError, ValueError) as e:
			logged(debug) and debug(
				"Cannot get file stat", Path=path, Error=str(e), Status=500
			)
			return self.respondError(request, 500, ERR_CANNOT_OPEN)

		# --
		# We open a descriptor and stat it, so that what we classify is
		# what we are going to read.
		try:
			fd: int = await asyncio.to_thread(os.open, path, OPEN_FLAGS)
		except OSError as e:
			logged(debug) and debug(
				"Cannot open file descriptor", Path=path, Error=str(e), Status=500
			)
			return self.respondError(request, 500, ERR_CANNOT_OPEN)
		try:
			info: os.stat_result = os.fstat(fd)
		except OSError as e:
			os.close(fd)
			logged(debug) and debug(
				"Cannot get file stat", Path=path, Error=str(e), Status=500
			)
			return self.respondError(request, 500, ERR_CANNOT_OPEN)

		if stat.S_ISREG(info.st_mode):
			return self.respondFile(request, ctx, fd, info.st_size)
		os.close(fd)
		if stat.S_ISDIR(info.st_mode):
			return await self.respondDirectory(request, ctx)
		else:
			logged(debug) and debug("Unknown type of inode", Path=path, Status=500)
			return self.respondError(request, 500, ERR_CANNOT_OPEN)

	# =========================================================================
	# DIRECTORY LISTING
	# =========================================================================

	async def respondDirectory(
		self, request: HTTPRequest, ctx: RequestContext
	) -> HTTPResponse:
		logged(debug) and debug("Listing directory", Path=ctx.resolvedPath)
		try:
			dirs, files = await asyncio.to_thread(listDirectory, ctx.resolvedPath)
		except OSError as e:
			logged(debug) and debug(
				"Read dir error", Path=ctx.resolvedPath, Error=str(e), Status=500
			)
			return self.respondError(request, 500, ERR_CANNOT_READ_DIR)
		document: bytes = self.renderDirectory(
			ctx.decodedPath,
			list(iterEntries(dirs, files, parent=not ctx.isRoot)),
		)
		logged(debug) and debug(
			"Directory is opened",
			Path=ctx.resolvedPath,
			Directories=len(dirs),
			Files=len(files),
			Status=200,
		)
		# `respondHTML` sets the exact `Content-Length` of the document
		return request.respondHTML(document, headers=self.extraHeaders)

	def renderDirectory(self, path: str, entries: list[DirectoryEntry]) -> bytes:
		"""Renders the listing of the directory at the (decoded) request
		`path` as an HTML document."""
		title: str = f'Directory "/{path}"'
		items: list[Node] = [
			H.li(f"{_.tag} ", H.a(_.name, href=_.link)) for _ in entries
		]
		document: str = "".join(
			html(
				H.html(
					H.head(H.meta(charset="utf-8"), H.title(title)),
					H.body(H.h1(title), H.ul(items)),
				),
				doctype="html",
			)
		)
		# Names that are not valid UTF-8 are written back as their raw bytes
		return document.encode(DEFAULT_ENCODING, "surrogateescape")

	# =========================================================================
	# FILE STREAMING
	# =========================================================================

	def respondFile(
		self, request: HTTPRequest, ctx: RequestContext, fd: int, size: int
	) -> HTTPResponse:
		"""Responds with the file open as `fd`, of which `size` bytes
		are sent. The descriptor is owned by the response once created,
		and closed here otherwise."""
		try:
			file: BinaryIO = os.fdopen(fd, "rb")
		except OSError as e:
			os.close(fd)
			logged(debug) and debug(
				"Read file error", Path=ctx.resolvedPath, Error=str(e), Status=500
			)
			return self.respondError(request, 500, ERR_CANNOT_READ_FILE)
		content_type: str | None = self.mimeTypes.get(ctx.resolvedPath)
		if logged(debug):
			if content_type:
				debug(
					"File mime-type",
					Path=ctx.resolvedPath,
					ContentType=content_type,
					Status=200,
				)
			else:
				debug("Cannot detect file mime-type", Path=ctx.resolvedPath, Status=200)
		return request.respondFile(
			file, size, contentType=content_type, headers=self.extraHeaders
		)

	# =========================================================================
	# ERRORS
	# =========================================================================

	def respondError(
		self, request: HTTPRequest, status: int, message: str
	) -> HTTPResponse:
		return request.error(
			status, content=f"Error {status}. {message}", contentType=TEXT_PLAIN
		)


# EOF
