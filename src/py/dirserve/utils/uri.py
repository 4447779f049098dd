import os.path
import re
from typing import NamedTuple
from urllib.parse import unquote_to_bytes, urlsplit

from .io import DEFAULT_ENCODING

# A `%` that does not introduce two hexadecimal digits
RE_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class PathDecodeError(ValueError):
	"""Raised when a request path has a malformed percent-encoding."""


def decodePath(path: str) -> str:
	"""Decodes the given URL path: `+` is a space (as in form encoding),
	and percent-escapes must form valid UTF-8. Unlike `urllib.parse.unquote`,
	malformed escapes are an error rather than left as-is."""
	text = path.replace("+", " ")
	if (m := RE_BAD_ESCAPE.search(text)) is not None:
		raise PathDecodeError(f"Malformed escape at offset {m.start()}: {path!r}")
	try:
		# Raw non-ASCII bytes are carried as surrogates by the parser
		return unquote_to_bytes(text.encode(DEFAULT_ENCODING, "surrogateescape")).decode(
			DEFAULT_ENCODING
		)
	except UnicodeError as e:
		raise PathDecodeError(f"Path is not valid UTF-8: {path!r}") from e


def requestPath(target: str) -> str:
	"""Extracts the path from a request target, which can be in absolute
	form (`http://host/path`) when talking to a proxy."""
	if target.startswith("http://") or target.startswith("https://"):
		return urlsplit(target).path or "/"
	else:
		return target.split("?", 1)[0]


class RequestContext(NamedTuple):
	"""The per-request resolution of a URL path to a local path."""

	rawPath: str
	decodedPath: str
	resolvedPath: str

	@staticmethod
	def Resolve(root: str, path: str) -> "RequestContext":
		"""Resolves the raw request `path` against `root`. Raises
		`PathDecodeError` when the path cannot be decoded.

		NOTE: `..` segments are collapsed by the normalization and are not
		prevented from escaping the root, see `RequestContext.isContained`.
		"""
		decoded = decodePath(requestPath(path)).lstrip("/")
		resolved = os.path.normpath(os.path.join(root, decoded))
		# A trailing slash only resolves to a directory, `a.txt/` is not found
		if decoded.endswith("/") and not resolved.endswith(os.sep):
			resolved += os.sep
		return RequestContext(
			rawPath=path,
			decodedPath=decoded,
			resolvedPath=resolved,
		)

	@property
	def isRoot(self) -> bool:
		return self.decodedPath in ("", "/")

	def isContained(self, root: str) -> bool:
		"""Tells if the resolved path is the root or below it."""
		return os.path.commonpath([root, self.resolvedPath]) == os.path.normpath(root)


# EOF
