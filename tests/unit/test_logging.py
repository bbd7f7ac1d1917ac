import logging
import sys
from types import SimpleNamespace

import pytest
from loguru import logger

from utils.agent_logger import LoguruAgentLogger
from utils.logging_setup import NOISY_LOGGERS, setup_logging


@pytest.fixture
def records():
    captured = []

    def _sink(message):
        record = message.record
        captured.append((record["extra"].get("scope"), record["level"].name, record["message"]))

    handler_id = logger.add(_sink, level="DEBUG", format="{message}")
    yield captured
    logger.remove(handler_id)


@pytest.fixture
def restore_logging():
    root_handlers = list(logging.root.handlers)
    root_level = logging.root.level
    yield
    logger.remove()
    logger.add(sys.stderr)
    logging.root.handlers = root_handlers
    logging.root.setLevel(root_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)


@pytest.mark.unit
@pytest.mark.parametrize(
    "mode, configured, caller, expected",
    [
        ("inherit", "fixed-scope", "ChatRouter", "ChatRouter"),
        ("inherit", None, "", "default"),
        ("fixed", "fixed-scope", "ChatRouter", "fixed-scope"),
        ("default", "fallback", "", "fallback"),
        ("default", "fallback", "ChatRouter", "ChatRouter"),
        ("unknown", None, "RetrievalPipeline", "RetrievalPipeline"),
    ],
)
def test_agent_logger_scope_modes(records, mode, configured, caller, expected):
    LoguruAgentLogger(mode=mode, scope=configured).log(caller, "hello")
    assert records[-1] == (expected, "INFO", "hello")


@pytest.mark.unit
def test_agent_logger_never_raises(records):
    LoguruAgentLogger(level="NOT_A_LEVEL").log("scope", "dropped")
    assert records == []


@pytest.mark.unit
def test_setup_logging_intercepts_stdlib(restore_logging, tmp_path):
    settings = SimpleNamespace(LOG_LEVEL="debug", ENV="Development")
    setup_logging(settings, log_dir=str(tmp_path))
    captured = []
    logger.add(
        lambda m: captured.append((m.record["extra"]["scope"], m.record["message"])), level="DEBUG", format="{message}"
    )

    logging.getLogger("httpx").warning("connection pool full")

    assert ("httpx", "connection pool full") in captured
    assert list(tmp_path.iterdir()) == []


@pytest.mark.unit
def test_third_party_loggers_are_quieted_outside_debug(restore_logging, tmp_path):
    setup_logging(log_dir=str(tmp_path), level="INFO", development=True)
    captured = []
    logger.add(lambda m: captured.append(m.record["message"]), level="DEBUG", format="{message}")

    logging.getLogger("httpx").info("HTTP Request: POST /points/search")
    logging.getLogger("httpcore").warning("provider fallback")

    assert captured == ["provider fallback"]
    assert logging.getLogger("httpcore").level == logging.WARNING


@pytest.mark.unit
def test_setup_logging_adds_file_sink_outside_development(restore_logging, tmp_path):
    setup_logging(app_name="catalogtest", log_dir=str(tmp_path / "logs"), level="INFO", development=False)
    logger.info("written to file")
    logger.complete()

    files = list((tmp_path / "logs").glob("catalogtest_*.log"))
    assert len(files) == 1
