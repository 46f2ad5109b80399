"""Logging for the scheduler and CLI, built on loguru.

Scheduler internals that log through the standard library (queue,
controller, pacer, tracker) are routed into loguru, so one console sink
shows everything. Records carrying request or bulk-operation context
(see ``bind_request`` / ``bind_operation``) get that context appended to
the console line:

    10:04:12 | WARNING  | scheduler [1f3a9c2e /api/v1/users] - GET failed: ...

``--verbose`` / ``--quiet`` on the CLI override the configured level.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger, Record

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Third-party loggers that only speak up at DEBUG
QUIETED_LOGGERS = ("httpx", "httpcore")

# Extra keys rendered inline on the console, in this order
CONTEXT_KEYS = ("request", "endpoint", "action", "origin")

_configured = False


class InterceptHandler(logging.Handler):
    """Forward standard library records to loguru, keeping the caller's frame."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def effective_level(level: LogLevel, *, verbose: bool = False, quiet: bool = False) -> LogLevel:
    """Resolve the console level; verbose wins over quiet."""
    if verbose:
        return "DEBUG"
    if quiet:
        return "WARNING"
    return level


def _console_format(record: Record) -> str:
    extra = record["extra"]
    source = "{extra[name]}" if "name" in extra else "{name}"
    context = " ".join(str(extra[key]) for key in CONTEXT_KEYS if key in extra)
    # Context values go in literally; braces and tags must not reach the formatter
    context = context.replace("{", "{{").replace("}", "}}").replace("<", r"\<")
    suffix = f" [{context}]" if context else ""
    return (
        "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | "
        f"<cyan>{source}</cyan>{suffix} - <level>{{message}}</level>\n{{exception}}"
    )


def setup_logging(
    level: LogLevel = "INFO",
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    serialize: bool = False,
) -> Logger:
    """Configure loguru sinks and stdlib interception.

    Args:
        level: Base log level from config
        verbose: Force DEBUG (takes precedence over quiet)
        quiet: Force WARNING
        log_file: Optional rotating file sink; always written at DEBUG
        rotation: When to rotate the file (e.g., "10 MB", "1 day")
        retention: How long to keep rotated files
        serialize: Write the file as JSON lines

    Returns:
        The configured logger
    """
    global _configured

    console_level = effective_level(level, verbose=verbose, quiet=quiet)

    logger.remove()
    logger.add(
        sys.stderr,
        level=console_level,
        format=_console_format,
        colorize=True,
        backtrace=True,
        diagnose=console_level == "DEBUG",
    )

    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | "
            "{extra} | {message}",
            rotation=rotation,
            retention=retention,
            compression="gz",
            serialize=serialize,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    third_party_level = logging.DEBUG if console_level == "DEBUG" else logging.WARNING
    for name in QUIETED_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    _configured = True
    return logger


def get_logger(name: str) -> Logger:
    """Logger with ``name`` bound, shown in place of the module on the console.

    Usage:
        logger = get_logger(__name__)
        logger.info("Cache hit for {}", endpoint)
    """
    return logger.bind(name=name)


def bind_request(request_id: str, endpoint: str) -> Logger:
    """Logger for one scheduled request (id shortened to 8 characters)."""
    return logger.bind(name="scheduler", request=request_id[:8], endpoint=endpoint)


def bind_operation(action_type: str, origin: str) -> Logger:
    """Logger for one bulk run, tagged with its undo action type and caller."""
    return logger.bind(name="bulk", action=action_type, origin=origin)


class LogContext:
    """Bind context to every record logged inside the ``with`` block.

    Usage:
        with LogContext(origin="groups-view", group="00g1"):
            await paginator.fetch_all(endpoint)
    """

    def __init__(self, **context: Any) -> None:
        self._context = context
        self._manager: Any = None

    def __enter__(self) -> Logger:
        self._manager = logger.contextualize(**self._context)
        self._manager.__enter__()
        return logger

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self._manager is not None:
            self._manager.__exit__(exc_type, exc_val, exc_tb)
            self._manager = None


def is_configured() -> bool:
    return _configured


def reset_logging() -> None:
    """Drop all sinks (used by tests)."""
    global _configured
    logger.remove()
    _configured = False
