"""Logging configuration for the imgbudget CLI.

Key features:
- Unified loguru-based logging with consistent formatting
- Intercepts third-party library logs (httpx, Pillow, asyncio)
- Optional rotating log file, overridable with IMGBUDGET_LOG_DIR
"""

from __future__ import annotations

import logging
import os
import sys
import warnings
from datetime import datetime
from pathlib import Path
from typing import Any

from click import Context
from loguru import logger

from imgbudget import __version__
from imgbudget.constants import (
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_RETENTION,
    DEFAULT_LOG_ROTATION,
    LOG_DIR_ENV_VAR,
)

# Third-party loggers to intercept and route to loguru
INTERCEPTED_LOGGERS = [
    "httpx",
    "httpcore",
    "PIL",
    "PIL.Image",
    "asyncio",
    "concurrent.futures",
]

SUPPRESSED_WARNINGS = [
    r"Async methods should be used with an async client",
    r"Image size \(\d+ pixels\) exceeds limit",
]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{message}</cyan>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <5} | {module}:{line: <3} | {message}"


class InterceptHandler(logging.Handler):
    """Intercept standard logging and forward to loguru.

    Uses the record's own location info instead of frame tracing.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.bind(
            name=record.name,
            module=record.module,
            function=record.funcName,
            line=record.lineno,
        ).opt(exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    verbose: bool,
    log_dir: str | None = None,
    log_level: str = DEFAULT_LOG_LEVEL,
    rotation: str = DEFAULT_LOG_ROTATION,
    retention: str = DEFAULT_LOG_RETENTION,
    quiet: bool = False,
) -> tuple[int | None, Path | None]:
    """Configure loguru handlers and stdlib interception.

    Args:
        verbose: Show DEBUG records on the console.
        log_dir: Directory for log files. Supports ~ expansion.
                 Overridden by the IMGBUDGET_LOG_DIR env var.
        log_level: Log level for file output.
        rotation: Log file rotation size.
        retention: Log file retention period.
        quiet: Disable console logging entirely.

    Returns:
        Tuple of (console_handler_id, log_file_path).
    """
    _setup_warning_filters()

    logger.remove()

    console_handler_id: int | None = None
    if not quiet:
        console_handler_id = logger.add(
            sys.stderr,
            level="DEBUG" if verbose else "INFO",
            format=CONSOLE_FORMAT,
            filter=lambda record: _should_show_log(record, verbose),
        )

    env_log_dir = os.environ.get(LOG_DIR_ENV_VAR)
    if env_log_dir:
        log_dir = env_log_dir

    log_file_path: Path | None = None
    if log_dir:
        log_path = Path(log_dir).expanduser()
        log_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        log_file_path = log_path / f"imgbudget_{timestamp}.log"
        logger.add(
            log_file_path,
            level=log_level,
            rotation=rotation,
            retention=retention,
            format=FILE_FORMAT,
        )

    _setup_log_interception()

    return console_handler_id, log_file_path


def _setup_warning_filters() -> None:
    for pattern in SUPPRESSED_WARNINGS:
        warnings.filterwarnings("ignore", message=pattern)
    warnings.filterwarnings("ignore", category=UserWarning, module="pydantic")


def _setup_log_interception() -> None:
    """Route third-party stdlib loggers to loguru, WARNING and above only."""
    intercept_handler = InterceptHandler()

    for logger_name in INTERCEPTED_LOGGERS:
        stdlib_logger = logging.getLogger(logger_name)
        stdlib_logger.handlers.clear()
        stdlib_logger.addHandler(intercept_handler)
        stdlib_logger.propagate = False
        stdlib_logger.setLevel(logging.WARNING)


def _is_third_party_log(name: str) -> bool:
    """Check a logger name against INTERCEPTED_LOGGERS by exact or dotted prefix."""
    name_lower = name.lower()
    for intercepted in INTERCEPTED_LOGGERS:
        intercepted_lower = intercepted.lower()
        if name_lower == intercepted_lower or name_lower.startswith(
            f"{intercepted_lower}."
        ):
            return True
    return False


def _should_show_log(record: Any, verbose: bool) -> bool:
    """Console filter: hide third-party INFO, and DEBUG unless verbose."""
    level = record["level"].name

    if level == "DEBUG":
        return verbose

    if level in ("WARNING", "ERROR", "CRITICAL"):
        return True

    name = record.get("extra", {}).get("name", "")
    if level == "INFO" and _is_third_party_log(name):
        return False

    return True


def print_version(ctx: Context, param: Any, value: bool) -> None:
    """Print version and exit."""
    if not value or ctx.resilient_parsing:
        return
    from imgbudget.cli.console import get_console

    get_console().print(f"imgbudget {__version__}")
    ctx.exit(0)
