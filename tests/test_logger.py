from datetime import datetime

import pytest

from rtsproxy import logger
from rtsproxy.logger import LogLevel


@pytest.fixture(autouse=True)
def _restore_level():
    saved = logger.get_log_level()
    yield
    logger.set_log_level(saved)


def test_format_line_layout():
    when = datetime(2024, 1, 2, 3, 4, 5)
    assert logger.format_line(LogLevel.INFO, "hello", when) == "[2024-01-02 03:04:05] [INFO] hello"


@pytest.mark.parametrize("level", list(LogLevel))
def test_format_line_uses_level_name(level):
    line = logger.format_line(level, "msg", datetime(2020, 5, 6, 7, 8, 9))
    assert f"] [{level.name}] msg" in line


def test_set_and_get_level_round_trip():
    logger.set_log_level(LogLevel.DEBUG)
    assert logger.get_log_level() is LogLevel.DEBUG


def test_level_ordering_filters_at_warn(capsys):
    logger.set_log_level(LogLevel.WARN)
    logger.info("a")
    logger.warn("b")
    logger.error("c")
    logger.debug("d")
    lines = capsys.readouterr().out.splitlines()
    assert [line.split("] ", 1)[1] for line in lines] == ["[INFO] a", "[WARN] b"]


def test_debug_suppressed_at_info(capsys):
    logger.set_log_level(LogLevel.INFO)
    logger.debug("hidden")
    assert capsys.readouterr().out == ""


def test_info_printed_at_info(capsys):
    logger.set_log_level(LogLevel.INFO)
    logger.info("shown")
    out = capsys.readouterr().out
    assert out.endswith("[INFO] shown\n")


def test_error_suppressed_at_info(capsys):
    logger.set_log_level(LogLevel.INFO)
    logger.error("boom")
    logger.warn("careful")
    assert capsys.readouterr().out == ""


def test_everything_printed_at_debug(capsys):
    logger.set_log_level(LogLevel.DEBUG)
    logger.info("a")
    logger.warn("b")
    logger.error("c")
    logger.debug("d")
    lines = capsys.readouterr().out.splitlines()
    assert [line.split("] ", 1)[1] for line in lines] == ["[INFO] a", "[WARN] b", "[ERROR] c", "[DEBUG] d"]