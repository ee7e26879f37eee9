"""
================================================================================
LOGGER - Unified Logging Configuration
================================================================================

One "solana_tax_export" logger shared by every stage. The run context
decides where records go:

    cli       console (INFO) plus a rotating file under outputs/logs/
              named {timestamp}.cli.log, 5MB x 5 backups
    test      console only, WARNING and above
    imported  console only (library use)

Log Format:
    {timestamp} {level} [{context}]: {message}
    Example: 2026-10-18 10:30:45 INFO [cli]: Scan complete: 412 transactions

Log Levels:
    - DEBUG: Enrichment fallbacks, skipped metadata lookups
    - INFO: Scan progress, row counts
    - WARNING: Skipped transactions, degraded enrichment
    - ERROR: Provider failures

Usage:
    from src.utils.logger import set_run_context, logger

    set_run_context('cli')
    logger.info('Starting scan')

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

import sys
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

logger = logging.getLogger("solana_tax_export")
logger.setLevel(logging.INFO)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(run_context)s]: %(message)s"

# Global run context state
_RUN_CONTEXT = 'imported'


class RunContextFilter(logging.Filter):
    """
    Logging filter that adds run context to all log records
    Allows distinguishing between different execution contexts
    """

    def filter(self, record):
        record.run_context = _RUN_CONTEXT or 'unknown'
        return True


def get_run_context() -> str:
    return _RUN_CONTEXT


def set_run_context(context: str):
    """
    Set the execution context for logging

    File logging is only attached for 'cli' runs; library imports and tests
    log to the console handler alone.

    Args:
        context: String identifier ('cli', 'test', 'imported')
    """
    global _RUN_CONTEXT
    _RUN_CONTEXT = context

    # Clear existing handlers
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    if context == 'cli':
        try:
            from src.utils.constants import LOG_DIR

            LOG_DIR.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
            log_file = LOG_DIR / f"{timestamp}.{context}.log"

            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=5_000_000,  # 5MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            file_handler.addFilter(RunContextFilter())
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"Log file unavailable, console only: {e}", file=sys.stderr)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO if context != 'test' else logging.WARNING)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    console_handler.addFilter(RunContextFilter())
    logger.addHandler(console_handler)


def setup_logging(context: str = 'imported'):
    """
    Initialize logging for the application

    Args:
        context: Execution context identifier
    """
    set_run_context(context)
    return logger


# Initialize with default context
set_run_context(_RUN_CONTEXT)
