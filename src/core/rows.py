"""
Row construction helpers.

RowBuilder is the only place classification creates AccountingRows. It owns
the per-transaction fee: the first row emitted carries it, later rows carry
zero. Rows that already include the fee in their amount consume it with a
zeroed fee field.
"""

from decimal import Decimal
from typing import List, Optional

import pandas as pd

from src.core.models import AccountingRow, RowKind, Transaction
from src.decimal_utils import amount_string, normalize_currency_code, to_decimal
from src.utils.constants import (
    AGGREGATOR_VENUE_PATTERNS, BONDING_CURVE_VENUE_PATTERNS, CANONICAL_MARKETS,
    CHAIN_MARKET_ALIASES, DEX_VENUE_PATTERNS, MARKET_CHAIN, MARKET_DEX,
    MARKET_STAKE, NATIVE_SYMBOL, SIGNATURE_TAG, STAKE_VENUE_PATTERNS,
)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


def format_timestamp(unix_time: int, timezone: str = 'UTC') -> str:
    """Unix seconds to 'YYYY-MM-DD HH:MM:SS' wall-clock time in ``timezone``."""
    ts = pd.Timestamp(int(unix_time), unit='s', tz='UTC')
    if timezone != 'UTC':
        ts = ts.tz_convert(timezone)
    return ts.strftime(TIMESTAMP_FORMAT)


def short_address(address: Optional[str]) -> str:
    if not address:
        return ''
    if len(address) <= 11:
        return address
    return f"{address[:5]}…{address[-5:]}"


def signature_note(signature: str, prefix: str = '', suffix: str = '') -> str:
    parts = [p for p in (prefix, f"{SIGNATURE_TAG}{signature}", suffix) if p]
    return ' '.join(parts)


def note_prefix(note: str) -> str:
    """Text before the signature token (an event tag such as LP-ADD:RAYDIUM)."""
    head, sep, _ = (note or '').partition(SIGNATURE_TAG)
    return head.strip() if sep else ''


def matches_venue(venue: str, patterns) -> Optional[str]:
    upper = (venue or '').upper()
    for pattern in patterns:
        if pattern in upper:
            return pattern
    return None


def is_dex_venue(venue: str) -> bool:
    return bool(matches_venue(venue, DEX_VENUE_PATTERNS) or matches_venue(venue, AGGREGATOR_VENUE_PATTERNS)
                or matches_venue(venue, BONDING_CURVE_VENUE_PATTERNS))


def normalize_market(raw: Optional[str]) -> str:
    """Map a free-text venue label onto the canonical market set, passing unknown labels through."""
    upper = (raw or '').strip().upper()
    if upper in CANONICAL_MARKETS:
        return upper
    if upper in CHAIN_MARKET_ALIASES:
        return MARKET_CHAIN
    if matches_venue(upper, STAKE_VENUE_PATTERNS):
        return MARKET_STAKE
    if is_dex_venue(upper):
        return MARKET_DEX
    return upper


class RowBuilder:
    """Collects the rows of one transaction."""

    def __init__(self, tx: Transaction, fee: Decimal, timezone: str = 'UTC'):
        self.tx = tx
        self.fee = fee if fee and fee > 0 else Decimal(0)
        self.timestamp = format_timestamp(tx.timestamp, timezone)
        self.rows: List[AccountingRow] = []
        self._fee_consumed = False

    @property
    def fee_pending(self) -> bool:
        return not self._fee_consumed and self.fee > 0

    def take_fee(self) -> Decimal:
        """Claim the fee for a row that nets it into its amount."""
        if not self.fee_pending:
            return Decimal(0)
        self._fee_consumed = True
        return self.fee

    def emit(self, kind: RowKind, amount_in=None, currency_in: str = '', amount_out=None,
             currency_out: str = '', market: str = MARKET_CHAIN, prefix: str = '',
             suffix: str = '', fee_netted: bool = False, extra_fee: Decimal = Decimal(0)) -> Optional[AccountingRow]:
        """
        Append one fully-formed row, or nothing when both sides are zero.

        ``fee_netted`` marks rows whose amount already includes the fee: the fee
        is consumed and the fee field written as zero. ``extra_fee`` (folded
        tips) is added to whichever fee this row carries.
        """
        a_in = to_decimal(amount_in)
        a_out = to_decimal(amount_out)
        if a_in < 0 or a_out < 0:
            raise ValueError(f"Negative row amount in {self.tx.signature}")
        if a_in == 0 and a_out == 0:
            return None

        if fee_netted:
            self.take_fee()
            fee = Decimal(0)
        else:
            fee = self.take_fee() + (extra_fee if extra_fee > 0 else Decimal(0))

        row = AccountingRow(
            timestamp=self.timestamp,
            kind=kind,
            amount_in=amount_string(a_in),
            currency_in=normalize_currency_code(currency_in) if a_in > 0 else '',
            amount_out=amount_string(a_out),
            currency_out=normalize_currency_code(currency_out) if a_out > 0 else '',
            fee=amount_string(fee),
            fee_currency=NATIVE_SYMBOL if fee > 0 else '',
            market=normalize_market(market),
            note=signature_note(self.tx.signature, prefix, suffix),
            unix_time=self.tx.timestamp,
        )
        self.rows.append(row)
        return row
