import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from talentpay.config import settings

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level() -> int:
    return getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)


def setup_request_logger() -> logging.Logger:
    """
    Rotating file log of HTTP requests, written by RequestLoggingMiddleware.

    Files live under LOG_DIR as ``api_requests.log`` and roll over at
    LOG_MAX_SIZE_MB, keeping LOG_MAX_FILES backups.

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger("talentpay.requests")
    logger.setLevel(_level())
    logger.propagate = False

    # Module may be imported more than once under test runners
    if logger.handlers:
        return logger

    logs_dir = Path(settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        filename=logs_dir / "api_requests.log",
        maxBytes=settings.LOG_MAX_SIZE_MB * 1024 * 1024,
        backupCount=settings.LOG_MAX_FILES,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter(fmt="[%(asctime)s] %(message)s", datefmt=DATE_FORMAT)
    )
    logger.addHandler(file_handler)
    return logger


def setup_payment_logger() -> logging.Logger:
    """
    Payment lifecycle events and errors on stdout.

    Initiations, status transitions, provider failures, best-effort store
    errors and side-effect retries all go here.
    """
    logger = logging.getLogger("talentpay.payments")
    logger.setLevel(_level())
    logger.propagate = False

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        logging.Formatter(
            fmt="[%(asctime)s] [%(levelname)s] [%(module)s] %(message)s",
            datefmt=DATE_FORMAT,
        )
    )
    logger.addHandler(console_handler)
    return logger


api_logger = setup_request_logger()
app_logger = setup_payment_logger()
