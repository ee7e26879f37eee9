"""
================================================================================
UTILS MODULE - Shared Utilities and Helpers
================================================================================

Shared infrastructure used across all application components.

Exported Functions:
    Logging:
        - setup_logging() - Initialize logging infrastructure
        - set_run_context(context) - Set execution context
        - logger - Main application logger

    Configuration:
        - load_config() - Load configuration from config.json
        - get_api_key() - Read a provider key from the environment
        - get_status() / update_status() - Read and update run status
        - save_scan_cursor() / load_scan_cursor() - Resumable scan cursors
        - mark_run_complete() - Record a finished run

    Constants:
        - All system constants via wildcard import

Usage:
    from src.utils import logger, load_config
    from src.utils.constants import WSOL_MINT

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from .logger import setup_logging, set_run_context, logger
from .constants import *
from .config import (
    load_config, get_api_key, get_status, update_status,
    save_scan_cursor, load_scan_cursor, mark_run_complete,
)

__all__ = [
    'setup_logging',
    'set_run_context',
    'logger',
    'load_config',
    'get_api_key',
    'get_status',
    'update_status',
    'save_scan_cursor',
    'load_scan_cursor',
    'mark_run_complete',
]
