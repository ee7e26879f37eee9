"""
================================================================================
CORE MODULE - Value Types, Decoding and Output
================================================================================

Exported Classes:
    AccountingRow, RowKind - output rows
    Transaction, TxTag     - decoded provider transactions
    OwnerContext           - owner plus derived accounts
    ClassifyOptions, DustPolicy, Thresholds, ScanCursor, ScanResult
    TTLCache               - result/rate cache with injectable clock

Exported Functions:
    decode_transaction     - raw payload -> Transaction
    rows_to_csv, write_csv, read_csv, apply_overrides, tag_notes

The composed pipeline lives in src.core.pipeline and is not imported here,
since it depends on src.processors.

Usage:
    from src.core import AccountingRow, rows_to_csv
    from src.core.pipeline import process_transactions

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from src.core.cache import TTLCache, request_key
from src.core.errors import (
    ClassificationError,
    EnrichmentUnavailableError,
    MalformedTransactionError,
    ProviderError,
    RateLimitError,
    ScanCancelled,
    ScanError,
)
from src.core.export import apply_overrides, read_csv, rows_to_csv, tag_notes, write_csv
from src.core.models import (
    AccountingRow,
    ClassifyOptions,
    DustPolicy,
    OwnerContext,
    RowKind,
    ScanCursor,
    ScanResult,
    Thresholds,
    Transaction,
    TxTag,
)
from src.core.transaction import decode_transaction

__all__ = [
    'TTLCache',
    'request_key',
    'ClassificationError',
    'EnrichmentUnavailableError',
    'MalformedTransactionError',
    'ProviderError',
    'RateLimitError',
    'ScanCancelled',
    'ScanError',
    'apply_overrides',
    'read_csv',
    'rows_to_csv',
    'tag_notes',
    'write_csv',
    'AccountingRow',
    'ClassifyOptions',
    'DustPolicy',
    'OwnerContext',
    'RowKind',
    'ScanCursor',
    'ScanResult',
    'Thresholds',
    'Transaction',
    'TxTag',
    'decode_transaction',
]
