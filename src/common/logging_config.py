"""Logging setup for the orchestration core.

The engines log through module loggers (``logging.getLogger(__name__)``)
that live under the core packages; the facade additionally owns a named
service logger. Both get the same console/file handlers.
"""

import logging
import sys
from pathlib import Path
from typing import Any, List, MutableMapping, Optional, Tuple

from common.config import settings
from common.utils import DateTimeUtils

CORE_PACKAGES = ("common", "providers", "generation", "translator", "manager")
THIRD_PARTY_LOGGERS = ("asyncio", "pydantic")

CONSOLE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
FILE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def resolve_level(level: Optional[str], default: str) -> int:
    """Map a level name to its numeric value, falling back to INFO."""
    return LOG_LEVELS.get((level or default).upper(), logging.INFO)


def _build_handlers(level: int, log_file: Optional[str]) -> List[logging.Handler]:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
    handlers: List[logging.Handler] = [console_handler]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)
    return handlers


def setup_logging(
    service_name: str, log_file: Optional[str] = None, log_level: Optional[str] = None
) -> logging.Logger:
    """
    Configure one named logger with console and optional file output.

    Calling it again for the same name replaces the previous handlers.

    Args:
        service_name: Logger name (a component or a core package)
        log_file: Optional log file path. If None, logs only to console
        log_level: Optional level override. If None, uses settings.log_level

    Returns:
        Configured logger instance
    """
    level = resolve_level(log_level, settings.log_level)

    logger = logging.getLogger(service_name)
    logger.setLevel(level)
    logger.handlers.clear()
    for handler in _build_handlers(level, log_file):
        logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_log_file_path(service_name: str) -> str:
    """
    Generate a dated log file path for a component.

    Args:
        service_name: Name of the component

    Returns:
        Path to log file
    """
    date_string = DateTimeUtils.get_date_string_for_log_file()
    return f"./logs/{service_name}_{date_string}.log"


def configure_core_loggers(
    log_file: Optional[str] = None, log_level: Optional[str] = None
) -> None:
    """Attach handlers to the package loggers the engines log through."""
    for package in CORE_PACKAGES:
        setup_logging(package, log_file, log_level)


def configure_third_party_loggers(level: Optional[str] = None) -> None:
    """
    Quiet library loggers.

    Args:
        level: Level for third-party loggers. If None, uses
            settings.third_party_log_level
    """
    log_level = resolve_level(level, settings.third_party_log_level)
    for logger_name in THIRD_PARTY_LOGGERS:
        logging.getLogger(logger_name).setLevel(log_level)


class ContextLogger(logging.LoggerAdapter):
    """Prefixes messages with identifiers such as a job id or correlation id."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        context = " ".join(
            f"{key}={value}" for key, value in self.extra.items() if value is not None
        )
        return (f"[{context}] {msg}" if context else msg), kwargs


class ServiceLogger:
    """Named logger for a component, with context binding."""

    def __init__(
        self,
        service_name: str,
        enable_file_logging: bool = False,
        log_level: Optional[str] = None,
    ):
        """
        Initialize service logger.

        Args:
            service_name: Name of the component
            enable_file_logging: Whether to also write to a dated log file
            log_level: Optional level override
        """
        self.service_name = service_name
        self.log_file = get_log_file_path(service_name) if enable_file_logging else None
        self.logger = setup_logging(service_name, self.log_file, log_level)

    def bind(self, **context: Any) -> ContextLogger:
        """Return an adapter that prefixes every message with context."""
        return ContextLogger(self.logger, context)


def setup_service_logging(
    service_name: str,
    enable_file_logging: bool = False,
    include_core: bool = True,
) -> ServiceLogger:
    """
    Set up logging for a component and, by default, for the core packages.

    Args:
        service_name: Name of the component
        enable_file_logging: Whether to enable file logging
        include_core: Also configure the core package loggers with the same output

    Returns:
        ServiceLogger instance
    """
    configure_third_party_loggers()

    service_logger = ServiceLogger(service_name, enable_file_logging)
    if include_core:
        configure_core_loggers(service_logger.log_file)
    return service_logger
