import asyncio
import socket
import threading
from dataclasses import dataclass
from signal import SIGINT, SIGTERM
from typing import Any, Callable, NamedTuple

from .config import ServerConfig
from .http.model import (
	HTTPBodyFile,
	HTTPBodyWriter,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPResponse,
)
from .http.parser import HTTPParser
from .services.files import FileService
from .utils.logging import (
	LogLevel,
	debug,
	error,
	event,
	exception,
	info,
	logged,
	setLevel,
	warning,
)


@dataclass(slots=True)
class ServerState:
	isRunning: bool = True
	# The port that was actually bound, which matters when binding to 0
	port: int | None = None

	def stop(self) -> None:
		info("Server stopping…")
		self.isRunning = False

	def onException(
		self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
	) -> None:
		e = context.get("exception")
		if e:
			exception(e)


class ServerOptions(NamedTuple):
	backlog: int = 1_024
	# This is the polling timeout for accepting new requests, which is also
	# how long it takes to notice the server was stopped.
	polling: float = 1.0
	readsize: int = 4_096
	# Idle connections are closed after that many seconds
	keepalive: float = 60.0
	stopSignals: bool = True


SERVER_BAD_REQUEST: bytes = (
	b"HTTP/1.1 400 Bad Request\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 12\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Bad request."
)

SERVER_ERROR: bytes = (
	b"HTTP/1.1 500 Internal Server Error\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 22\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Internal server error."
)


def bindAddress(config: ServerConfig) -> tuple[socket.AddressFamily, Any]:
	"""Returns the address family and the address to bind to, so that
	IPv6 hosts like `::1` are supported. The wildcard binds IPv4."""
	if not config.bindHost:
		return socket.AF_INET, ("", config.port)
	family, _, _, _, address = socket.getaddrinfo(
		config.bindHost,
		config.port,
		type=socket.SOCK_STREAM,
		flags=socket.AI_PASSIVE,
	)[0]
	return family, address


class AIOSocketBodyWriter(HTTPBodyWriter):
	"""Specialized body writer to work with AIO sockets."""

	__slots__ = ["client", "loop"]

	def __init__(
		self,
		client: socket.socket,
		loop: asyncio.AbstractEventLoop,
	) -> None:
		super().__init__()
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop

	async def _writeBytes(self, chunk: bytes) -> bool:
		if chunk:
			await self.loop.sock_sendall(self.client, chunk)
		return True

	async def _writeFile(self, body: HTTPBodyFile, size: int = 64_000) -> int:
		# Uses `sendfile` when available, and otherwise falls back to
		# reading chunks, in both cases never more than `body.size`.
		if body.size == 0:
			return 0
		return await self.loop.sock_sendfile(
			self.client, body.file, 0, body.size, fallback=True
		)


class AIOSocketServer:
	"""AsyncIO backend using sockets directly."""

	@classmethod
	async def OnRequest(
		cls,
		service: FileService,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
		options: ServerOptions,
	) -> None:
		"""Asynchronous worker, processing the requests sent through the
		client socket until it is closed or stops being kept alive."""
		size: int = options.readsize
		buffer = bytearray(size)
		keep_alive: bool = True
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		req_count: int = 0
		res_count: int = 0
		try:
			parser: HTTPParser = HTTPParser()
			writer: AIOSocketBodyWriter = AIOSocketBodyWriter(client, loop)
			# NOTE: With HTTP pipelining, we may receive more than one
			# request in the same payload, they are answered in order.
			while keep_alive and not writer.shouldClose:
				try:
					n = await asyncio.wait_for(
						loop.sock_recv_into(client, buffer),
						timeout=options.keepalive,
					)
				except asyncio.TimeoutError:
					status = HTTPProcessingStatus.Timeout
					break
				if not n:
					# A no-data means a close
					status = HTTPProcessingStatus.NoData
					break
				for atom in parser.feed(bytes(buffer[:n])):
					if atom is HTTPProcessingStatus.BadFormat:
						warning("Malformed request", Client=f"{id(client):x}")
						await writer.write(SERVER_BAD_REQUEST)
						keep_alive = False
						break
					elif isinstance(atom, HTTPRequest):
						req_count += 1
						res = await cls.SendResponse(atom, service, writer)
						if res:
							res_count += 1
						if not atom.keepAlive or writer.shouldClose:
							keep_alive = False
							break
			if status is HTTPProcessingStatus.Timeout and req_count != res_count:
				warning(
					"Client timed out", Requests=req_count, Responses=res_count
				)
			elif status is HTTPProcessingStatus.NoData and not req_count:
				logged(debug) and debug(
					"Client closed without sending a request",
					Client=f"{id(client):x}",
				)
		except ConnectionError as e:
			logged(debug) and debug("Connection lost", Error=str(e))
		except Exception as e:
			exception(e)
		finally:
			# The loop takes care of keep alive, so we always close the
			# connection on exit.
			client.close()

	@staticmethod
	async def SendResponse(
		request: HTTPRequest,
		service: FileService,
		writer: HTTPBodyWriter,
	) -> HTTPResponse | None:
		"""Processes the request with the service and sends the response
		using the given writer."""
		res: HTTPResponse | None = None
		try:
			res = await service.process(request)
		except Exception as e:
			exception(e, f"Could not process {request.method} {request.path}")
		if res is None:
			await writer.write(SERVER_ERROR)
			writer.shouldClose = True
			return None
		if not request.keepAlive:
			res.setHeader("Connection", "close")
		committed: bool = False
		try:
			await writer.write(res.head())
			# From there, the status can't be changed anymore
			committed = True
			await writer.write(res.body)
		except ConnectionError as e:
			# The client went away, typically an early close
			logged(debug) and debug("Client closed connection", Error=str(e))
			writer.shouldClose = True
		except OSError as e:
			if committed:
				logged(debug) and debug(
					"Read file error after headers were sent",
					Path=request.path,
					Error=str(e),
				)
			else:
				exception(e)
			writer.shouldClose = True
		finally:
			# Guarantees the file descriptor is released on every path
			res.close()
		return res

	@classmethod
	async def Serve(
		cls,
		service: FileService,
		options: ServerOptions = ServerOptions(),
		*,
		state: ServerState | None = None,
		onStart: Callable[[ServerState], None] | None = None,
	) -> None:
		"""Main server coroutine."""
		config: ServerConfig = service.config
		server: socket.socket | None = None
		try:
			family, address = bindAddress(config)
			server = socket.socket(family, socket.SOCK_STREAM)
			server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
			server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
			server.bind(address)
		except OSError as e:
			if server:
				server.close()
			error(
				f"Unable to bind to {config.host}:{config.port}, aborting.",
				"HOSTPORTERR",
				Error=str(e),
			)
			raise e

		# The argument is the backlog of connections that will be accepted before
		# they are refused.
		server.listen(options.backlog)
		# This is what we need to use it with asyncio
		server.setblocking(False)

		tasks: set[asyncio.Task[None]] = set()
		loop = asyncio.get_running_loop()

		state = state or ServerState()
		state.port = server.getsockname()[1]
		# Registers handlers for signals and exception (so that we log them). Note
		# that signal handlers can only be set from the main thread.
		if (
			options.stopSignals
			and threading.current_thread() is threading.main_thread()
		):
			loop.add_signal_handler(SIGINT, state.stop)
			loop.add_signal_handler(SIGTERM, state.stop)
		loop.set_exception_handler(state.onException)

		info(
			"HTTP server started",
			icon="🚀",
			Host=config.host if config.bindHost else "*",
			Port=state.port,
			Root=config.root,
		)
		if onStart:
			onStart(state)

		try:
			while state.isRunning:
				try:
					client, _ = await asyncio.wait_for(
						loop.sock_accept(server), timeout=options.polling or 1.0
					)
				except asyncio.TimeoutError:
					continue
				except OSError as e:
					# This can be: [OSError] [Errno 24] Too many open files
					if e.errno == 24:
						await asyncio.sleep(0.1)
					else:
						exception(e)
					continue
				client.setblocking(False)
				task = loop.create_task(
					cls.OnRequest(service, client, loop=loop, options=options)
				)
				tasks.add(task)
				task.add_done_callback(tasks.discard)
		finally:
			server.close()
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)


def run(
	config: ServerConfig,
	options: ServerOptions | None = None,
	*,
	onStart: Callable[[ServerState], None] | None = None,
) -> None:
	"""High level function to run the file server with the given
	configuration until it is interrupted."""
	setLevel(LogLevel.Debug if config.debug else LogLevel.Info)
	options = options or ServerOptions()
	service = FileService(config)
	try:
		asyncio.run(AIOSocketServer.Serve(service, options, onStart=onStart))
	except KeyboardInterrupt:
		event("ManualShutdown")
	event("EOK")


# EOF
