from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

# Chatty third-party loggers routed through the intercept handler
NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[scope]}</cyan> | {message}"
)


class InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records (httpx, litellm) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).bind(scope=record.name).log(
            level, record.getMessage()
        )


def quiet_third_party(level: str) -> None:
    """Raise noisy library loggers to WARNING unless we are debugging."""
    target = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(target)


def setup_logging(
    settings=None,
    app_name: str = "agentcatalog",
    log_dir: str = "logs",
    level: Optional[str] = None,
    development: Optional[bool] = None,
) -> None:
    """Install loguru sinks and route stdlib logging through them.

    ``level`` and ``development`` default to ``settings.LOG_LEVEL`` and
    ``settings.ENV == "development"``. Development gets a colored console with
    the agent scope column; production gets plain console lines plus a
    JSON-serialized, size-rotated file sink under ``log_dir``.
    """
    if level is None:
        level = getattr(settings, "LOG_LEVEL", None) or "INFO"
    level = level.upper()
    if development is None:
        development = str(getattr(settings, "ENV", "production")).lower() == "development"

    logger.remove()
    logger.configure(extra={"scope": "-"})
    logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT if development else "{message}",
        enqueue=True,
        catch=True,
    )

    if not development:
        logs_path = Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(logs_path / f"{app_name}_{{time}}.log"),
            rotation="10 MB",
            retention="14 days",
            level=level,
            serialize=True,
            enqueue=True,
            catch=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=level, force=True)
    quiet_third_party(level)
    logger.debug("Logging configured: level={} development={}", level, development)


__all__ = ["setup_logging", "InterceptHandler", "quiet_third_party"]
