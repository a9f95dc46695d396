"""
Centralized logging configuration for the print queue core.

Every record carries the producing thread's name and, inside a
concatenation run thread, the run it belongs to. Grepping for
``run=a1b2c3d4`` therefore yields one run's whole story: order lookup,
package downloads, truncation warnings, upload.

Log Format:
    2025-12-03 10:15:30 [INFO    ] [MainThread] [run=-] print_queue.app - Services initialized
    2025-12-03 10:15:31 [INFO    ] [MainThread] [run=-] print_queue.services.analysis_service - Job 12 analyzed
    2025-12-03 10:15:32 [WARNING ] [Concat-a1b2c3d4] [run=a1b2c3d4] print_queue.run.a1b2c3d4 - Truncated to 3 of 5 segments

Usage:
    # At application startup
    from logging_config import setup_logging, get_logger

    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    # In modules
    logger = get_logger(__name__)

    # First thing in a concatenation run thread
    run_logger = bind_run(run_id)
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


APP_NAMESPACE = "print_queue"

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(thread_name)s] [run=%(run_id)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO (SQL statements, request lines)
NOISY_LOGGERS = ("sqlalchemy.engine", "werkzeug")

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

_run_context = threading.local()


# =============================================================================
# RUN CONTEXT FILTER
# =============================================================================

class RunContextFilter(logging.Filter):
    """
    Annotates records with ``thread_name`` and ``run_id``.

    ``run_id`` is the short id bound by bind_run() in the current thread,
    or ``-`` outside run threads.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.thread_name = threading.current_thread().name
        record.run_id = getattr(_run_context, "run_id", "-")
        return True


def _rotating_handler(path: Path, level: int, formatter: logging.Formatter,
                      log_filter: logging.Filter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(log_filter)
    return handler


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    app_name: str = APP_NAMESPACE,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure the application logger.

    Installs a console handler and, when ``enable_file_logging`` is set,
    a rotating application log plus a rotating ERROR-only log. Calling it
    again replaces the handlers, so each create_app() starts clean.

    Args:
        app_name: Name of the root logger (default: "print_queue")
        log_level: Minimum log level (default: INFO)
        log_dir: Directory for log files (default: ./logs next to this file)
        enable_file_logging: Whether to write to log files (default: True)

    Returns:
        The configured application logger
    """
    logger = logging.getLogger(app_name)
    logger.setLevel(log_level)
    logger.propagate = False
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    run_filter = RunContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(run_filter)
    logger.addHandler(console_handler)

    if enable_file_logging:
        log_dir = Path(log_dir) if log_dir else Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        logger.addHandler(_rotating_handler(app_log_file, log_level, formatter, run_filter))
        logger.addHandler(_rotating_handler(log_dir / f"{app_name}_error.log", logging.ERROR, formatter, run_filter))
        logger.info(f"File logging enabled: {app_log_file}")

    # SQL echo and request lines only when debugging
    noisy_level = logging.INFO if log_level <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return logger


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger with the application namespace.

    "services.queue_service" -> "print_queue.services.queue_service"
    """
    if not name.startswith(APP_NAMESPACE):
        name = f"{APP_NAMESPACE}.{name}"

    return logging.getLogger(name)


def get_run_logger(run_id: str) -> logging.Logger:
    """Logger named "print_queue.run.<first 8 chars of run_id>"."""
    return logging.getLogger(f"{APP_NAMESPACE}.run.{run_id[:8]}")


def bind_run(run_id: str) -> logging.Logger:
    """
    Tag the current thread with a concatenation run.

    Renames the thread to ``Concat-<short id>`` and makes every record
    logged from it carry ``run=<short id>``. Meant to be called once at
    the top of a run thread; the binding dies with the thread.

    Returns:
        The run's logger (see get_run_logger)
    """
    short_id = run_id[:8]
    threading.current_thread().name = f"Concat-{short_id}"
    _run_context.run_id = short_id
    return get_run_logger(run_id)
