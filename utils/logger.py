"""
Logging setup shared by the API, the CLI jobs and the storage layer.

Every project logger gets:
- a console handler (level names colored on a TTY)
- `<name>.log`, a rotating file with everything from DEBUG up
- `<name>_errors.log`, a rotating file with ERROR and CRITICAL only

Project loggers do not propagate to the root logger. Use set_log_level to
change the level of all of them at once (the CLI's --log-level does this).

Files go to $HELPDESK_LOG_DIR, or ./logs at the repository root.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime

LOG_DIR_ENV = "HELPDESK_LOG_DIR"

FILE_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Loggers shared across modules rather than named after one
API_LOGGER = "api"
DATABASE_LOGGER = "database"
SLA_LOGGER = "sla"

NOISY_LIBRARIES = ("urllib3", "httpx", "httpcore", "openai", "LiteLLM", "psycopg.pool")


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelname)
        if color is None or not sys.stdout.isatty():
            return super().format(record)
        # Records are shared with the file handlers; color a copy only
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


def log_dir_from_env() -> Path:
    configured = os.environ.get(LOG_DIR_ENV)
    if configured:
        return Path(configured)
    return Path(__file__).parent.parent / "logs"


def _rotating_file(path: Path, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logger(
    name: str,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    console_output: bool = True,
    file_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the logger `name` once and return it.

    Calling it again for a logger that already has handlers returns the
    logger unchanged.

    Args:
        name: Logger name, usually the module's __name__
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL), any case
        log_dir: Directory for the log files (default: log_dir_from_env())
        console_output: Attach the stdout handler
        file_output: Attach the two rotating file handlers
        max_bytes: Size at which a log file rotates
        backup_count: Rotated files kept per log

    Raises:
        AttributeError: If level is not a logging level name
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(logging.INFO)
        console.setFormatter(ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(console)

    if file_output:
        log_dir = log_dir or log_dir_from_env()
        log_dir.mkdir(parents=True, exist_ok=True)
        stem = name.replace(".", "_")
        logger.addHandler(_rotating_file(log_dir / f"{stem}.log", logging.DEBUG, max_bytes, backup_count))
        logger.addHandler(
            _rotating_file(log_dir / f"{stem}_errors.log", logging.ERROR, max_bytes, backup_count)
        )

    return logger


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """
    Example:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return setup_logger(name, level=level)


def get_api_logger() -> logging.Logger:
    """Request access log of the API."""
    return get_logger(API_LOGGER)


def get_database_logger() -> logging.Logger:
    """Connection handling shared by all storage clients."""
    return get_logger(DATABASE_LOGGER)


def get_sla_logger() -> logging.Logger:
    """SLA evaluation, escalations and status automations."""
    return get_logger(SLA_LOGGER)


def set_log_level(level: str) -> None:
    """
    Apply level to the root logger and to every non-propagating logger.

    Console handlers follow the new level; file handlers keep theirs so the
    main log stays complete and the errors log stays errors-only.
    """
    numeric_level = getattr(logging, level.upper())
    logging.getLogger().setLevel(numeric_level)
    for logger in logging.Logger.manager.loggerDict.values():
        if not isinstance(logger, logging.Logger) or logger.propagate:
            continue
        logger.setLevel(numeric_level)
        for handler in logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(numeric_level)


class PerformanceLogger:
    """
    Time a block and log its duration.

    elapsed_ms is available after the block exits, e.g. for latency columns.

    Example:
        with PerformanceLogger(logger, "SLA check run") as perf:
            service.run_sla_checks()
        print(perf.elapsed_ms)
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.DEBUG):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.started_at: Optional[datetime] = None
        self.elapsed_ms: Optional[int] = None

    def __enter__(self):
        self.started_at = datetime.now()
        self.logger.log(self.level, f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        seconds = (datetime.now() - self.started_at).total_seconds()
        self.elapsed_ms = int(seconds * 1000)
        if exc_type is None:
            self.logger.log(self.level, f"Completed: {self.operation} in {seconds:.3f}s")
        else:
            self.logger.error(f"Failed: {self.operation} (after {seconds:.3f}s) - {exc_val}")


def configure_third_party_loggers() -> None:
    for library in NOISY_LIBRARIES:
        logging.getLogger(library).setLevel(logging.WARNING)


configure_third_party_loggers()
