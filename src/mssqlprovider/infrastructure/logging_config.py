"""
Logging configuration module.

Two kinds of logging live here:

- The provider log: one base logger per provider instance, silent unless
  debug is enabled, in which case it appends to a fixed log file. Every
  operation derives a context logger from it that stamps each line with
  the resource kind and operation name.
- The CLI console log: colored, level-filtered output on stdout.
"""

import itertools
import logging
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple

PROVIDER_LOG_FILE = "mssql-provider.log"

# Above CRITICAL: nothing gets through
DISABLED = logging.CRITICAL + 10

_provider_ids = itertools.count(1)


class Colors:
    """ANSI escape sequences for terminal colors."""
    RESET = "\033[0m"
    DIM = "\033[2m"
    WHITE = "\033[37m"
    CYAN = "\033[36m"
    YELLOW = "\033[33m"
    BRIGHT_RED = "\033[91m"
    BOLD = "\033[1m"
    BG_RED = "\033[41m"


class ContextFormatter(logging.Formatter):
    """
    Plain formatter that appends the record's context fields.

    Output: ``2024-05-01 10:00:00 INFO     Created login resource=login func=create``
    """

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            fields = " ".join(f"{key}={value}" for key, value in context.items())
            line = f"{line} {fields}"
        return line


class ColoredFormatter(ContextFormatter):
    """
    Console formatter that colors the level name.

    Colors:
        DEBUG    - Dim/Gray
        INFO     - Cyan
        WARNING  - Yellow
        ERROR    - Red
        CRITICAL - Bold on red background
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DIM + Colors.WHITE,
        logging.INFO: Colors.CYAN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.BRIGHT_RED,
        logging.CRITICAL: Colors.BOLD + Colors.WHITE + Colors.BG_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        original_levelname = record.levelname
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        record.levelname = f"{color}{record.levelname:8}{Colors.RESET}"
        try:
            return super().format(record)
        finally:
            # Restore for other handlers
            record.levelname = original_levelname


class ContextLogger(logging.LoggerAdapter):
    """
    Logger carrying fixed identifying fields.

    Fields passed per call through ``extra`` are merged over the fixed ones.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        context = dict(self.extra)
        context.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {"context": context}
        return msg, kwargs

    def bind(self, **fields: Any) -> "ContextLogger":
        """Derived logger with additional fixed fields."""
        return ContextLogger(self.logger, {**self.extra, **fields})


def new_provider_logger(debug: bool, log_file: Optional[str] = PROVIDER_LOG_FILE) -> logging.Logger:
    """
    Create the base logger of one provider instance.

    The logger is detached from the logging hierarchy so that instances
    never share handlers or levels.

    Args:
        debug: Write DEBUG and above to ``log_file`` (append mode)
        log_file: Destination used in debug mode

    Returns:
        Logger (silent when ``debug`` is False)
    """
    logger = logging.Logger(f"mssqlprovider.provider.{next(_provider_ids)}")
    logger.propagate = False

    if debug and log_file:
        log_path = Path(log_file)
        if log_path.parent != Path("."):
            log_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        handler.setFormatter(ContextFormatter(
            fmt="%(asctime)s %(levelname)-8s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.setLevel(logging.DEBUG)
    else:
        handler = logging.NullHandler()
        logger.setLevel(DISABLED)

    logger.addHandler(handler)
    return logger


def with_context(logger: logging.Logger, **fields: Any) -> ContextLogger:
    """Context logger stamping ``fields`` on every line."""
    return ContextLogger(logger, fields)


def close_logger(logger: logging.Logger) -> None:
    """Flush and detach the handlers of a provider logger."""
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def setup_logging(level: int = logging.INFO) -> None:
    """
    Configure console logging for the CLI.

    Args:
        level: Logging level (logging.DEBUG, logging.INFO, etc.)
    """
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(
        fmt='[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
        datefmt='%H:%M:%S',
    ))
    console_handler.setLevel(level)

    logging.basicConfig(level=level, handlers=[console_handler], force=True)

    # Reduce noise from libraries
    logging.getLogger('pyodbc').setLevel(logging.WARNING)
    logging.getLogger('azure').setLevel(logging.WARNING)
