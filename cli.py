#!/usr/bin/env python3
"""
================================================================================
CLI - Command Line Interface
================================================================================

Command-line access to the Solana tax export:
    - scan         Fetch a wallet's history and write the import CSV
    - convert      Classify a saved JSON file of raw transactions offline
    - cache-clear  Drop cached scan results
    - status       Show last run and stored scan cursors
    - config       Show the effective configuration
    - test         Run the test suite

Features:
    - ANSI-colored status output
    - Resumable scans (--resume) after rate limits or Ctrl+C
    - Optional fiat valuation of income rows

Usage:
    python cli.py scan <address> [options]
    python cli.py --help

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

import sys
import argparse
import signal
import subprocess
import json
import threading
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

from src.core.cache import TTLCache
from src.core.errors import ProviderError
from src.core.export import apply_overrides, income_report, tag_notes, write_csv
from src.core.models import DustPolicy, Thresholds
from src.core.pipeline import ExportPipeline, ExportRequest, process_transactions
from src.processors.enrichment import Enricher
from src.processors.helius_client import HeliusClient
from src.processors.price_fetcher import RateFetcher
from src.processors.symbols import SymbolResolver
from src.utils.config import (
    get_api_key, get_status, load_config, load_scan_cursor,
    mark_run_complete, save_scan_cursor,
)
from src.utils.constants import (
    BASE_DIR, OUTPUT_DIR, RATE_CACHE_FILE, RATE_CACHE_TTL_SECONDS,
    RESULT_CACHE_FILE, RESULT_CACHE_TTL_SECONDS, SUPPORTED_TIMEZONES,
)
from src.utils.logger import logger, set_run_context


# ANSI color codes
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'
    UNDERLINE = '\033[4m'


SCAN_STATE_DIR = BASE_DIR / 'configs' / 'scans'


def _pretty_json(payload: Any):
    """Render JSON to stdout with stable formatting."""
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _load_json(path: Path):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def _save_json(path: Path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f)


def print_header(text):
    """Print formatted header"""
    print(f"\n{Colors.BOLD}{Colors.BLUE}{'=' * 70}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.CYAN}{text:^70}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.BLUE}{'=' * 70}{Colors.ENDC}\n")


def print_success(text):
    """Print success message"""
    print(f"{Colors.GREEN}✓{Colors.ENDC} {text}")


def print_error(text):
    """Print error message"""
    print(f"{Colors.RED}✗{Colors.ENDC} {text}")


def print_warning(text):
    print(f"{Colors.YELLOW}!{Colors.ENDC} {text}")


def print_info(text):
    """Print info message"""
    print(f"{Colors.CYAN}ℹ{Colors.ENDC} {text}")


# ==================================
# ARGUMENT HELPERS
# ==================================

def parse_time(value: Optional[str], timezone: str) -> Optional[int]:
    """ISO date/datetime to unix seconds; naive values are read in ``timezone``."""
    if not value:
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize(timezone)
    return int(ts.tz_convert('UTC').timestamp())


def build_dust_policy(args, config: Dict, timezone: str) -> DustPolicy:
    dust = config.get('dust', {})
    return DustPolicy(
        mode=args.dust_mode or dust.get('mode', 'off'),
        threshold=args.dust_threshold if args.dust_threshold is not None else dust.get('threshold', '0'),
        interval=args.dust_interval or dust.get('interval', 'day'),
        timezone=timezone,
    )


def build_request(args, config: Dict) -> ExportRequest:
    output = config.get('output', {})
    timezone = args.timezone or output.get('timezone', 'UTC')
    return ExportRequest(
        address=args.address.strip(),
        from_time=parse_time(args.from_date, timezone),
        to_time=parse_time(args.to_date, timezone),
        timezone=timezone,
        include_nfts=bool(args.include_nfts or output.get('include_nfts', False)),
        dust=build_dust_policy(args, config, timezone),
        thresholds=Thresholds.from_config(config.get('tuning')),
    )


def finalize_rows(rows, address: str, config: Dict, wallet_name: Optional[str]):
    """Wallet tag and overrides, applied to a copy so cached rows stay untouched."""
    output = config.get('output', {})
    overrides = config.get('overrides', {})
    tagged = tag_notes(rows, address, wallet_name or output.get('wallet_name'))
    return apply_overrides(tagged, overrides.get('currencies'), overrides.get('markets'))


def default_output(address: str) -> Path:
    return OUTPUT_DIR / f"kryptosekken_{address[:8]}_{datetime.now().strftime('%Y%m%d_%H%M%S')}.csv"


def _scan_state_file(address: str) -> Path:
    return SCAN_STATE_DIR / f"{address}.json"


# ==================================
# COMMANDS
# ==================================

def cmd_scan(args):
    """Scan a wallet and write the import CSV"""
    print_header("WALLET SCAN")
    config = load_config()
    request = build_request(args, config)
    api_cfg = config.get('api', {})
    scan_cfg = config.get('scan', {})

    api_key = args.api_key or get_api_key()
    if not api_key:
        print_error("Missing Helius API key. Set HELIUS_API_KEY or pass --api-key.")
        return False

    cursor, seed = None, []
    if args.resume:
        cursor = load_scan_cursor(request.address)
        state_file = _scan_state_file(request.address)
        if cursor is None:
            print_info("No stored cursor; starting a fresh scan")
        elif state_file.exists():
            seed = _load_json(state_file)
            print_info(f"Resuming at address {cursor.next_address_index + 1}/{len(cursor.addresses)} "
                       f"with {len(seed)} transactions already collected")

    cancel = threading.Event()
    previous = signal.signal(signal.SIGINT, lambda *_: cancel.set())

    client = HeliusClient(api_key, timeout=api_cfg.get('timeout_seconds', 30),
                          retries=api_cfg.get('retry_attempts', 5),
                          page_delay=scan_cfg.get('page_delay_seconds', 0.15))
    enricher = Enricher(client, workers=api_cfg.get('enrichment_workers', 4), cancel_event=cancel,
                        use_jupiter=api_cfg.get('use_jupiter_metadata', True))
    pipeline = ExportPipeline(
        client,
        cache=TTLCache(RESULT_CACHE_TTL_SECONDS, path=RESULT_CACHE_FILE),
        enricher=enricher,
        max_pages=scan_cfg.get('max_pages_per_address', 50),
        page_size=scan_cfg.get('page_size', 100),
        include_derived=scan_cfg.get('include_derived_accounts', True),
        cancel_event=cancel,
    )

    try:
        print_info(f"Scanning {request.address} ({request.timezone})")
        result = pipeline.run(request, cursor=cursor, seed=seed, use_cache=not args.no_cache)
    except ProviderError as e:
        print_error(f"Scan failed: {e}")
        mark_run_complete(False)
        return False
    finally:
        signal.signal(signal.SIGINT, previous)

    if result.complete:
        save_scan_cursor(request.address, None)
        _scan_state_file(request.address).unlink(missing_ok=True)
    elif result.cursor is not None:
        save_scan_cursor(request.address, result.cursor)
        _save_json(_scan_state_file(request.address), result.transactions)
        print_warning(f"Partial result: {result.error}")
        print_info("Run again with --resume to continue from where the scan stopped")

    rows = finalize_rows(result.rows, request.address, config, args.wallet_name)
    out_path = write_csv(rows, Path(args.output) if args.output else default_output(request.address))
    source = " (cached)" if result.from_cache else ""
    print_success(f"{result.count} rows written to {out_path}{source} ({result.raw_count} before dust and consolidation)")

    if args.value_income:
        _write_income_report(result.rows, args.value_income, enricher, out_path)

    mark_run_complete(result.complete)
    return True


def _write_income_report(rows, quote: str, enricher: Enricher, out_path: Path):
    fetcher = RateFetcher(cache=TTLCache(RATE_CACHE_TTL_SECONDS, path=RATE_CACHE_FILE))
    rates = enricher.income_rates(rows, quote, fetcher)
    report = income_report(rows, rates, quote)
    report_path = out_path.with_name(out_path.stem + f"_income_{quote.upper()}.csv")
    report.to_csv(report_path, index=False, lineterminator='\n', encoding='utf-8')
    missing = int((report['Kurs'] == '').sum()) if not report.empty else 0
    print_success(f"Income report written to {report_path}")
    if missing:
        print_warning(f"{missing} income rows have no {quote.upper()} rate")


def cmd_convert(args):
    """Classify raw transactions from a JSON file without network access"""
    print_header("OFFLINE CONVERSION")
    path = Path(args.file)
    if not path.exists():
        print_error(f"Input file not found at {path}")
        return False
    payload = _load_json(path)
    transactions: List = payload.get('transactions', []) if isinstance(payload, dict) else payload
    derived = payload.get('derived_accounts', []) if isinstance(payload, dict) else []

    config = load_config()
    request = build_request(args, config)
    rows, raw_count = process_transactions(
        transactions, request.address, derived, SymbolResolver(),
        request.classify_options(), request.dust,
    )
    rows = finalize_rows(rows, request.address, config, args.wallet_name)
    out_path = write_csv(rows, Path(args.output) if args.output else default_output(request.address))
    print_success(f"{len(rows)} rows written to {out_path} ({raw_count} before dust and consolidation)")
    return True


def cmd_cache_clear(args):
    """Drop cached scan results"""
    cache = TTLCache(RESULT_CACHE_TTL_SECONDS, path=RESULT_CACHE_FILE)
    cache.clear()
    if args.rates:
        TTLCache(RATE_CACHE_TTL_SECONDS, path=RATE_CACHE_FILE).clear()
    print_success("Cache cleared")
    return True


def cmd_status(args):
    _pretty_json(get_status())
    return True


def cmd_config_show(args):
    _pretty_json(load_config())
    return True


def cmd_test(args):
    """Run test suite"""
    print_header("TEST SUITE")
    target = str(Path(__file__).parent / 'tests' / args.file) if args.file else 'tests/'
    try:
        result = subprocess.run([sys.executable, '-m', 'pytest', target, '-v'], check=True)
        return result.returncode == 0
    except subprocess.CalledProcessError:
        return False


def _add_output_options(parser):
    parser.add_argument('address', help='Wallet address (owner)')
    parser.add_argument('--from', dest='from_date', help='Start date/time (ISO, wallet timezone)')
    parser.add_argument('--to', dest='to_date', help='End date/time (ISO, wallet timezone)')
    parser.add_argument('--timezone', choices=SUPPORTED_TIMEZONES, help='Timestamp timezone')
    parser.add_argument('--include-nfts', action='store_true', help='Include NFT transfers')
    parser.add_argument('--dust-mode', choices=['off', 'remove', 'aggregate-signer', 'aggregate-period'])
    parser.add_argument('--dust-threshold', help='Dust threshold in token units')
    parser.add_argument('--dust-interval', choices=['day', 'week', 'month', 'year'])
    parser.add_argument('--wallet-name', help='Note prefix instead of the short address')
    parser.add_argument('--output', '-o', help='Output CSV path')


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description='Solana Tax Export - Kryptosekken CSV generator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s scan <address>                          # Scan and write CSV
  %(prog)s scan <address> --timezone Europe/Oslo   # Oslo timestamps
  %(prog)s scan <address> --resume                 # Continue a partial scan
  %(prog)s scan <address> --dust-mode aggregate-period --dust-threshold 0.001
  %(prog)s convert <address> --file raw.json       # Offline conversion
  %(prog)s cache-clear                             # Drop cached results
        '''
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    parser_scan = subparsers.add_parser('scan', help='Scan a wallet and write the import CSV')
    _add_output_options(parser_scan)
    parser_scan.add_argument('--api-key', help='Helius API key (default: HELIUS_API_KEY)')
    parser_scan.add_argument('--resume', action='store_true', help='Continue from the stored cursor')
    parser_scan.add_argument('--no-cache', action='store_true', help='Ignore cached results')
    parser_scan.add_argument('--value-income', metavar='CURRENCY', help='Value income rows (e.g. NOK)')
    parser_scan.set_defaults(func=cmd_scan)

    parser_convert = subparsers.add_parser('convert', help='Classify a JSON file of raw transactions')
    _add_output_options(parser_convert)
    parser_convert.add_argument('--file', required=True, help='JSON list of enhanced transactions')
    parser_convert.set_defaults(func=cmd_convert)

    parser_clear = subparsers.add_parser('cache-clear', help='Drop cached scan results')
    parser_clear.add_argument('--rates', action='store_true', help='Also drop cached exchange rates')
    parser_clear.set_defaults(func=cmd_cache_clear)

    parser_status = subparsers.add_parser('status', help='Show last run and stored scan cursors')
    parser_status.set_defaults(func=cmd_status)

    parser_config = subparsers.add_parser('config', help='Show effective configuration')
    parser_config.set_defaults(func=cmd_config_show)

    parser_test = subparsers.add_parser('test', help='Run test suite')
    parser_test.add_argument('--file', help='Specific test file to run')
    parser_test.set_defaults(func=cmd_test)

    # Parse arguments
    args = parser.parse_args()

    # If no command specified, show help
    if not args.command:
        parser.print_help()
        return 0

    set_run_context('cli')

    # Run command
    try:
        success = args.func(args)
        return 0 if success else 1
    except KeyboardInterrupt:
        print_info("\nOperation cancelled by user")
        return 130
    except ValueError as e:
        print_error(str(e))
        return 2
    except Exception as e:
        logger.exception("Unexpected error")
        print_error(f"Unexpected error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
