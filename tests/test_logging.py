import io

import pytest

from dirserve.utils import logging
from dirserve.utils.term import Term
from dirserve.utils.logging import LogLevel, debug, info, logged, setLevel, warning


@pytest.fixture
def stream(monkeypatch) -> io.StringIO:
	res = io.StringIO()
	monkeypatch.setattr(logging, "ERR", res)
	monkeypatch.setattr(Term, "BOLD", "")
	monkeypatch.setattr(Term, "RESET", "")
	level = logging.LogSettings.Level
	yield res
	setLevel(level)


def test_level_filters_entries(stream: io.StringIO):
	setLevel(LogLevel.Info)
	assert not logged(debug)
	assert logged(info) and logged(warning)
	debug("Hidden", Path="/a")
	info("Shown", Path="/b")
	out = stream.getvalue()
	assert "Hidden" not in out
	assert "[dirserve]" in out
	assert "Shown" in out
	assert "Path=/b" in out


def test_debug_level(stream: io.StringIO):
	setLevel(LogLevel.Debug)
	assert logged(debug)
	debug("Listing directory", Path="/srv/my files")
	assert "Path='/srv/my files'" in stream.getvalue()


def test_warning_level(stream: io.StringIO):
	setLevel(LogLevel.Warning)
	assert not logged(info)
	info("Hidden")
	warning("Shown", Status=500)
	out = stream.getvalue()
	assert "Hidden" not in out
	assert "Status=500" in out


# EOF
