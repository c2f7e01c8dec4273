"""Tests for the rotating-file logging bootstrap."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

import wacli.io.logging_setup as logging_setup


@pytest.fixture
def fresh_logging(monkeypatch):
    """Reset the module runtime and restore the wacli logger afterwards."""
    logger = logging.getLogger("wacli")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    monkeypatch.setattr(logging_setup, "_RUNTIME", None)
    yield
    for handler in logger.handlers:
        if handler not in saved[0]:
            handler.close()
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]
    logging.captureWarnings(False)


def test_configure_writes_to_log_dir(fresh_logging, tmp_path, monkeypatch):
    monkeypatch.setenv("WACLI_LOG_DIR", str(tmp_path / "logs"))
    runtime = logging_setup.configure(session_name="work phone")

    assert runtime.file_path.startswith(str(tmp_path / "logs"))
    assert "work-phone" in runtime.file_path
    assert runtime.level == logging.INFO
    handlers = logging.getLogger("wacli").handlers
    assert len(handlers) == 1
    assert isinstance(handlers[0], RotatingFileHandler)

    logging.getLogger("wacli.app.state_store").info("hello log")
    handlers[0].flush()
    with open(runtime.file_path, encoding="utf-8") as f:
        assert "hello log" in f.read()


def test_level_and_file_from_env(fresh_logging, tmp_path, monkeypatch):
    log_file = tmp_path / "explicit" / "wacli.log"
    monkeypatch.setenv("WACLI_LOG_LEVEL", "debug")
    monkeypatch.setenv("WACLI_LOG_FILE", str(log_file))
    runtime = logging_setup.configure()
    assert runtime.level_name == "DEBUG"
    assert runtime.file_path == str(log_file)
    assert log_file.parent.is_dir()


def test_unknown_level_falls_back_to_info(fresh_logging, monkeypatch):
    monkeypatch.setenv("WACLI_LOG_LEVEL", "chatty")
    assert logging_setup.configure().level == logging.INFO


def test_configure_is_idempotent(fresh_logging):
    first = logging_setup.configure()
    assert logging_setup.configure() is first
    assert logging_setup.get_runtime() is first
    assert len(logging.getLogger("wacli").handlers) == 1


class TestDiagnostics:
    def test_keeps_bounded_tail_of_warnings(self):
        handler = logging_setup.DiagnosticsHandler(limit=2)
        logger = logging.getLogger("wacli.tests.diagnostics")
        for i in range(3):
            logging_setup.record_diagnostic(logger, handler, logging.WARNING, "problem %d", i)
        logging_setup.record_diagnostic(logger, handler, logging.INFO, "routine")
        assert list(handler.entries) == [
            "WARNING wacli.tests.diagnostics problem 1",
            "WARNING wacli.tests.diagnostics problem 2",
        ]

    def test_record_reaches_log_and_carries_traceback(self, caplog):
        handler = logging_setup.DiagnosticsHandler()
        logger = logging.getLogger("wacli.tests.diagnostics")
        try:
            raise RuntimeError("handler exploded")
        except RuntimeError as e:
            logging_setup.record_diagnostic(logger, handler, logging.ERROR, "Failed applying %s", "chats", exc_info=e)
        assert "Failed applying chats" in caplog.text
        [entry] = handler.entries
        assert entry.startswith("ERROR wacli.tests.diagnostics Failed applying chats")
        assert "RuntimeError: handler exploded" in entry
