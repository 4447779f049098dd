import argparse
import sys
import webbrowser

from .config import ANY_HOST, DEBUG, HOST, NO_CACHE, PORT, ServerConfig
from .server import ServerState, run
from .utils.logging import info, warning


def parser() -> argparse.ArgumentParser:
	res = argparse.ArgumentParser(
		prog="dirserve",
		description="Serves a directory tree over HTTP, with directory listings",
		formatter_class=argparse.ArgumentDefaultsHelpFormatter,
	)
	res.add_argument(
		"--path",
		action="store",
		dest="path",
		help="Root directory of the file server (default is the current directory)",
	)
	res.add_argument(
		"--host",
		action="store",
		dest="host",
		default=HOST,
		help=f"Hostname of the server, use '{ANY_HOST}' for any host",
	)
	res.add_argument(
		"--port",
		action="store",
		dest="port",
		type=int,
		default=PORT,
		help="Port of the server",
	)
	res.add_argument(
		"--browse",
		action="store_true",
		dest="browse",
		help="Opens the server's URL in the default browser",
	)
	res.add_argument(
		"--debug",
		action="store_true",
		dest="debug",
		default=DEBUG,
		help="Logs every request",
	)
	res.add_argument(
		"--no-cache",
		action="store_true",
		dest="noCache",
		default=NO_CACHE,
		help="Disables caching in headers",
	)
	return res


def main(args: list[str] | None = None) -> None:
	options = parser().parse_args(args=args)
	if not options.path:
		warning("No path given, serving the current directory")
		warning("For a specific path, start with: --path=/specific/path")
	config = ServerConfig.Make(
		options.path,
		host=options.host,
		port=options.port,
		debug=options.debug,
		noCache=options.noCache,
	)

	def onStart(state: ServerState) -> None:
		if options.browse:
			url = config._replace(port=state.port or config.port).url
			info("Opening page in browser", URL=url)
			webbrowser.open(url)

	run(config, onStart=onStart)


if __name__ == "__main__":
	main(sys.argv[1:])

# EOF
