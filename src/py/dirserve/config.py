import os
from os import getenv
from typing import NamedTuple

PORT: int = int(getenv("PORT", 8080))

# `*` stands for any interface
HOST: str = getenv("HOST", "localhost")
ANY_HOST: str = "*"

DEBUG: bool = getenv("DIRSERVE_DEBUG", "0") == "1"

NO_CACHE: bool = getenv("DIRSERVE_NO_CACHE", "0") == "1"

NO_CACHE_HEADERS: dict[str, str] = {
	"Cache-Control": "no-cache, no-store, must-revalidate",
	"Pragma": "no-cache",
	"Expires": "0",
}


class ServerConfig(NamedTuple):
	"""The configuration of the file server, created once at startup and
	never mutated afterwards."""

	root: str
	host: str = HOST
	port: int = PORT
	debug: bool = DEBUG
	noCache: bool = NO_CACHE

	@staticmethod
	def Make(
		root: str | None = None,
		*,
		host: str = HOST,
		port: int = PORT,
		debug: bool = DEBUG,
		noCache: bool = NO_CACHE,
	) -> "ServerConfig":
		"""Creates a configuration, expanding `~` and making the root an
		absolute path. The current directory is used when no root is given."""
		path: str = os.path.abspath(os.path.expanduser(root or os.getcwd()))
		return ServerConfig(
			root=path,
			host=host,
			port=port,
			debug=debug,
			noCache=noCache,
		)

	@property
	def bindHost(self) -> str:
		"""The address to bind to, where the wildcard means all interfaces."""
		return "" if self.host in (ANY_HOST, "") else self.host

	@property
	def url(self) -> str:
		host = "localhost" if self.bindHost in ("", "0.0.0.0") else self.host  # nosec: B104
		# IPv6 literals are bracketed in URLs
		return f"http://[{host}]:{self.port}" if ":" in host else f"http://{host}:{self.port}"


# EOF
