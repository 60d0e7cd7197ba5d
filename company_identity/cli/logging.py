"""
Logging utilities for company_identity scripts.

Provides logging setup and header printing functions.
"""

import logging
import time
from pathlib import Path

from company_identity.utils.tqdm_logging import TqdmLoggingHandler

PACKAGE_LOGGER = "company_identity"

NOISY_LOGGERS = (
    "openai",
    "httpx",
    "httpcore",
    "urllib3",
    "filelock",  # tldextract cache lock
)


class FlushingFileHandler(logging.FileHandler):
    """File handler that flushes after every record."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def setup_logging(
    script_name: str,
    execute: bool = False,
    log_dir: Path = Path("logs"),
    verbose: bool = False,
) -> logging.Logger:
    """
    Set up logging for a script.

    Console output goes through tqdm.write() so progress bars stay intact.
    The package logger (``company_identity``) shares the script's handlers,
    so phase summaries from the pipeline show up alongside script output.

    Args:
        script_name: Name of the script (for log file naming)
        execute: If True, log to file + console. If False, only console.
        log_dir: Directory for log files
        verbose: Show DEBUG messages on the console

    Returns:
        Configured logger instance
    """
    console_handler = TqdmLoggingHandler(level=logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    handlers: list[logging.Handler] = [console_handler]

    log_file = None
    if execute:
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = time.strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"{script_name}_{timestamp}.log"
        file_handler = FlushingFileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        handlers.append(file_handler)

    for name in (script_name, PACKAGE_LOGGER):
        target = logging.getLogger(name)
        target.setLevel(logging.DEBUG)
        target.handlers = [h for h in target.handlers if isinstance(h, logging.NullHandler)]
        for handler in handlers:
            target.addHandler(handler)
        # Prevent propagation to root logger (avoid duplicate messages)
        target.propagate = False

    for noisy_logger in NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.ERROR)

    logger = logging.getLogger(script_name)
    if log_file is not None:
        logger.info(f"Log file: {log_file}")
    return logger


def print_execute_header(title: str, logger: logging.Logger | None = None):
    """Print a standard execute mode header."""
    if logger is None:
        logger = logging.getLogger(__name__)

    logger.info("=" * 70)
    logger.info(title)
    logger.info("=" * 70)
