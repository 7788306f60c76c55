"""Named application loggers: stdout plus optional rotating files."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import get_config


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Configure ``name`` once; later calls return the same logger untouched.

    Args:
        name: Logger name
        log_file: Rotating file to write next to stdout
        level: Overrides ``logging.level`` from config
    """
    config = get_config()

    logger = logging.getLogger(name)
    log_level = level or config.logging.level
    logger.setLevel(getattr(logging, log_level.upper()))

    if logger.handlers:
        return logger

    formatter = logging.Formatter(config.logging.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Production containers capture stdout; no file handler there.
    if log_file and config.env.log_to_file and not config.is_production:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_ledger_logger() -> logging.Logger:
    """Movements and catalog edits."""
    return setup_logger("ledger", get_config().logging.files.ledger)


def get_audit_logger() -> logging.Logger:
    """Consistency audits and the audit scheduler."""
    return setup_logger("audit", get_config().logging.files.audit)


def get_api_logger() -> logging.Logger:
    """HTTP server, identity checks and the remote client."""
    return setup_logger("api", get_config().logging.files.api)


def get_error_logger() -> logging.Logger:
    """Rolled-back transactions and audit mismatches."""
    return setup_logger("error", get_config().logging.files.error, "ERROR")


def get_scheduler_logger() -> logging.Logger:
    """APScheduler's own logger, so job errors in its threads reach stdout."""
    return setup_logger("apscheduler")
