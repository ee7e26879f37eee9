"""
Configuration Management Module

Handles loading and updating application configuration from config.json,
merging user values over defaults, and persisting run status (resumable scan
cursors, last run markers) to status.json.
"""

import json
import os
from pathlib import Path
from datetime import datetime
import logging

from filelock import FileLock

logger = logging.getLogger("solana_tax_export")

DEFAULT_CONFIG = {
    "scan": {
        "page_size": 100,
        "max_pages_per_address": 50,
        "page_delay_seconds": 0.15,
        "include_derived_accounts": True,
    },
    "dust": {
        "mode": "off",  # off, remove, aggregate-signer, aggregate-period
        "threshold": "0",
        "interval": "day",  # day, week, month, year
    },
    "output": {
        "timezone": "UTC",  # UTC or Europe/Oslo
        "include_nfts": False,
        "wallet_name": "",
    },
    "api": {
        "retry_attempts": 5,
        "timeout_seconds": 30,
        "enrichment_workers": 4,
        "use_jupiter_metadata": True,
    },
    "tuning": {
        "bridge_tolerance": "0.01",
        "operational_outflow_ceiling": "0.02",
        "incidental_income_ceiling": "0.05",
        "tip_sanity_cap": "0.5",
    },
    "overrides": {
        "currencies": {},
        "markets": {},
    },
}


def load_config(config_file: Path = None):
    """
    Load configuration from config.json with sensible defaults

    Returns:
        dict: Configuration dictionary
    """
    if config_file is None:
        from .constants import CONFIG_FILE
        config_file = CONFIG_FILE

    defaults = json.loads(json.dumps(DEFAULT_CONFIG))

    if not config_file.exists():
        _save_config(config_file, defaults)
        return defaults

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            config = json.load(f)

        # Merge with defaults to ensure all keys exist
        merged = _deep_merge(defaults, config)

        # Save merged config back if anything was added
        if merged != config:
            _save_config(config_file, merged)

        return merged
    except json.JSONDecodeError as e:
        logger.error(f"Config file corrupted: {e}. Using defaults.")
        return defaults
    except OSError as e:
        logger.error(f"Error loading config: {e}. Using defaults.")
        return defaults


def get_api_key(name: str = 'HELIUS_API_KEY'):
    """API keys come from the environment only, never from config.json."""
    return os.environ.get(name, '').strip() or None


def _deep_merge(defaults: dict, override: dict) -> dict:
    """
    Deep merge override config into defaults, preserving new defaults

    Args:
        defaults: Default configuration
        override: User-provided configuration

    Returns:
        dict: Merged configuration
    """
    result = defaults.copy()
    for key, value in override.items():
        if key in defaults and isinstance(defaults[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(defaults[key], value)
        else:
            result[key] = value
    return result


def _save_config(config_file: Path, config: dict):
    """
    Save configuration to file

    Args:
        config_file: Path to config file
        config: Configuration dictionary
    """
    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
    except OSError as e:
        logger.error(f"Failed to save config: {e}")


def get_status(status_file: Path = None):
    """
    Get run status including stored scan cursors

    Returns:
        dict: Status dictionary with last_run, last_run_success, scan_cursors
    """
    if status_file is None:
        from .constants import STATUS_FILE
        status_file = STATUS_FILE

    default_status = {
        'last_run': None,
        'last_run_success': False,
        'scan_cursors': {},
    }

    if not status_file.exists():
        return default_status

    try:
        with open(status_file, 'r', encoding='utf-8') as f:
            return _deep_merge(default_status, json.load(f))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Status file unreadable ({e}); starting fresh")
        return default_status


def update_status(key: str, value, status_file: Path = None):
    """
    Update a specific status key

    Args:
        key: Status key to update
        value: New value (must be JSON serializable)
    """
    if status_file is None:
        from .constants import STATUS_FILE
        status_file = STATUS_FILE

    status_file.parent.mkdir(parents=True, exist_ok=True)
    with FileLock(str(status_file) + '.lock', timeout=10):
        status = get_status(status_file)
        status[key] = value
        try:
            with open(status_file, 'w', encoding='utf-8') as f:
                json.dump(status, f, indent=4)
        except OSError as e:
            logger.error(f"Failed to update status: {e}")


def save_scan_cursor(address: str, cursor, status_file: Path = None):
    """Persist a resumable scan cursor for an owner address (None clears it)."""
    cursors = dict(get_status(status_file).get('scan_cursors') or {})
    if cursor is None:
        cursors.pop(address, None)
    else:
        cursors[address] = cursor.to_dict()
    update_status('scan_cursors', cursors, status_file)


def load_scan_cursor(address: str, status_file: Path = None):
    """Return the stored ScanCursor for an address, or None."""
    from src.core.models import ScanCursor

    payload = (get_status(status_file).get('scan_cursors') or {}).get(address)
    return ScanCursor.from_dict(payload) if payload else None


def mark_run_complete(success: bool = True, status_file: Path = None):
    """Mark that a scan run completed"""
    update_status('last_run', datetime.now().isoformat(), status_file)
    update_status('last_run_success', success, status_file)
