import os
from enum import Enum
from pathlib import Path
from typing import Iterator, Mapping, NamedTuple

DEFAULT_CHARSET: str = "utf-8"

OCTET_STREAM: str = "application/octet-stream"


# -----------------------------------------------------------------------------
#
# MIME TYPES
#
# -----------------------------------------------------------------------------


class MimeTable(NamedTuple):
	"""Maps file extensions (lowercase, with the leading dot) to content
	types. The fallback is returned when no extension matches, and may be
	`None`, in which case no content type can be determined."""

	types: Mapping[str, str]
	fallback: str | None = OCTET_STREAM

	@staticmethod
	def Make(
		types: Mapping[str, str], fallback: str | None = OCTET_STREAM
	) -> "MimeTable":
		return MimeTable({k.lower(): v for k, v in types.items()}, fallback)

	def get(self, path: Path | str) -> str | None:
		ext = extension(path)
		return self.types.get(ext, self.fallback) if ext else self.fallback


MIME_TYPES: dict[str, str] = {
	# Pages, styles and plain text
	".html": f"text/html; charset={DEFAULT_CHARSET}",
	".htm": f"text/html; charset={DEFAULT_CHARSET}",
	".css": f"text/css; charset={DEFAULT_CHARSET}",
	# SEE: https://lesscss.org
	".less": f"text/css; charset={DEFAULT_CHARSET}",
	".js": f"text/javascript; charset={DEFAULT_CHARSET}",
	".txt": f"text/plain; charset={DEFAULT_CHARSET}",
	# Images
	".png": "image/png",
	".jpeg": "image/jpeg",
	".jpg": "image/jpeg",
	".jpe": "image/jpeg",
	".gif": "image/gif",
	".svg": f"image/svg+xml; charset={DEFAULT_CHARSET}",
	".svgz": f"image/svg+xml; charset={DEFAULT_CHARSET}",
	".ico": "image/x-icon",
	# Fonts
	".eot": "application/vnd.ms-fontobject",
	".woff": "application/font-woff",
	".ttf": "font/ttf",
}

MIME_TABLE: MimeTable = MimeTable.Make(MIME_TYPES)


def extension(path: Path | str) -> str:
	"""Returns the lowercased extension of the last segment of the path,
	including the dot. Dot-files like `.bashrc` have no extension."""
	return os.path.splitext(os.path.basename(str(path)))[1].lower()


# -----------------------------------------------------------------------------
#
# DIRECTORY ENTRIES
#
# -----------------------------------------------------------------------------


class EntryKind(Enum):
	Parent = "parent"
	Directory = "directory"
	File = "file"


class DirectoryEntry(NamedTuple):
	name: str
	kind: EntryKind

	@property
	def tag(self) -> str:
		return "[F]" if self.kind is EntryKind.File else "[D]"

	@property
	def link(self) -> str:
		if self.kind is EntryKind.Parent:
			return "./.."
		elif self.kind is EntryKind.Directory:
			return f"./{self.name}/"
		else:
			return f"./{self.name}"


PARENT_ENTRY: DirectoryEntry = DirectoryEntry("..", EntryKind.Parent)


def classify(entry: os.DirEntry[str]) -> EntryKind | None:
	"""Classifies the entry following symlinks, returning `None` for
	entries that cannot be stat'ed or are neither files nor directories."""
	try:
		if entry.is_dir():
			return EntryKind.Directory
		elif entry.is_file():
			return EntryKind.File
		else:
			return None
	except OSError:
		return None


def listDirectory(path: Path | str) -> tuple[list[str], list[str]]:
	"""Returns the sorted names of the directories and the files directly
	contained in `path`. Children that can't be classified are omitted.
	Raises `OSError` when the directory itself can't be read."""
	dirs: list[str] = []
	files: list[str] = []
	with os.scandir(path) as entries:
		for _ in entries:
			kind = classify(_)
			if kind is EntryKind.Directory:
				dirs.append(_.name)
			elif kind is EntryKind.File:
				files.append(_.name)
	# Plain `str` ordering is by code point, which matches the byte order
	# of the UTF-8 encoded names.
	return sorted(dirs), sorted(files)


def iterEntries(
	dirs: list[str], files: list[str], *, parent: bool = False
) -> Iterator[DirectoryEntry]:
	"""Yields the listing entries in display order."""
	if parent:
		yield PARENT_ENTRY
	for name in dirs:
		yield DirectoryEntry(name, EntryKind.Directory)
	for name in files:
		yield DirectoryEntry(name, EntryKind.File)


# EOF
