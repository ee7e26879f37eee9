"""
================================================================================
DUST - Materiality Threshold Post-Pass
================================================================================

Removes or aggregates transfer-class rows whose single non-zero side is below
the caller's threshold.

Modes:
    off               - no-op
    remove            - drop eligible rows below threshold
    aggregate-signer  - bucket by interval x direction x currency x signer
    aggregate-period  - bucket by interval x direction x currency

Buckets materialize as one AGGREGERT row each, stamped with the bucket end
(capped to now). A signature whose rows are ALL dust stays ungrouped so the
consolidator can still pair its legs.

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from src.core.models import AccountingRow, DUST_ELIGIBLE_KINDS, DustPolicy, RowKind
from src.core.rows import TIMESTAMP_FORMAT, short_address
from src.decimal_utils import amount_string
from src.utils.constants import AGGREGATE_TAG, MARKET_AGGREGATED, NATIVE_SYMBOL
from src.utils.logger import logger

UNRESOLVED_SIGNER = 'unknown'


def _utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz='UTC')


def is_dust_eligible(row: AccountingRow) -> bool:
    """Transfer/acquisition/loss row with exactly one non-zero side, not liquidity or aggregate."""
    if row.kind not in DUST_ELIGIBLE_KINDS or row.is_liquidity or row.is_aggregate:
        return False
    return (row.inbound > 0) != (row.outbound > 0)


def dust_amount(row: AccountingRow) -> Decimal:
    return row.inbound if row.inbound > 0 else row.outbound


def is_dust(row: AccountingRow, threshold: Decimal) -> bool:
    return threshold > 0 and is_dust_eligible(row) and dust_amount(row) < threshold


def all_dust_signatures(rows: Iterable[AccountingRow], threshold: Decimal) -> set:
    """Signatures with two or more rows, every one of them dust."""
    grouped: Dict[str, List[AccountingRow]] = defaultdict(list)
    for row in rows:
        sig = row.signature
        if sig:
            grouped[sig].append(row)
    return {
        sig for sig, members in grouped.items()
        if len(members) >= 2 and all(is_dust(r, threshold) for r in members)
    }


# ==========================================
# TIME BUCKETS
# ==========================================

def bucket_start(timestamp: str, interval: str) -> pd.Timestamp:
    """Naive wall-clock start of the bucket containing a formatted row timestamp."""
    day = pd.Timestamp(timestamp).normalize()
    if interval == 'day':
        return day
    if interval == 'week':
        return day - pd.Timedelta(days=day.weekday())
    if interval == 'month':
        return day.replace(day=1)
    if interval == 'year':
        return day.replace(month=1, day=1)
    raise ValueError(f"Unknown dust interval {interval!r}")


def bucket_end(start: pd.Timestamp, interval: str) -> pd.Timestamp:
    """Naive wall-clock last second of the bucket beginning at ``start``."""
    if interval == 'day':
        nxt = start + pd.Timedelta(days=1)
    elif interval == 'week':
        nxt = start + pd.Timedelta(days=7)
    elif interval == 'month':
        nxt = start + pd.DateOffset(months=1)
    else:
        nxt = start + pd.DateOffset(years=1)
    return nxt - pd.Timedelta(seconds=1)


@dataclass
class DustBucket:
    start: pd.Timestamp
    direction: str  # 'in' or 'out'
    currency: str
    signer: Optional[str] = None
    count: int = 0
    total: Decimal = Decimal(0)
    fee_total: Decimal = Decimal(0)
    members: List[AccountingRow] = field(default_factory=list)

    def add(self, row: AccountingRow):
        self.count += 1
        self.total += dust_amount(row)
        self.fee_total += row.fee_amount
        self.members.append(row)

    def materialize(self, policy: DustPolicy, now: pd.Timestamp) -> AccountingRow:
        end_local = bucket_end(self.start, policy.interval).tz_localize(policy.timezone)
        now_local = now.tz_convert(policy.timezone)
        if end_local > now_local:
            end_local = now_local.floor('s')
        start_text = self.start.strftime(TIMESTAMP_FORMAT)
        end_text = end_local.strftime(TIMESTAMP_FORMAT)

        parts = [f"{AGGREGATE_TAG}{self.count}", f"støv<{amount_string(policy.threshold)}"]
        if self.signer is not None:
            parts.append(f"signer:{short_address(self.signer)}")
        parts.append(f"{start_text}..{end_text}")

        inbound = self.direction == 'in'
        total = amount_string(self.total)
        return AccountingRow(
            timestamp=end_text,
            kind=RowKind.ACQUISITION if inbound else RowKind.TRANSFER_OUT,
            amount_in=total if inbound else '0',
            currency_in=self.currency if inbound else '',
            amount_out='0' if inbound else total,
            currency_out='' if inbound else self.currency,
            fee=amount_string(self.fee_total),
            fee_currency=NATIVE_SYMBOL if self.fee_total > 0 else '',
            market=MARKET_AGGREGATED,
            note=' '.join(parts),
            unix_time=int(end_local.tz_convert('UTC').timestamp()),
        )


# ==========================================
# POLICY
# ==========================================

def _signer_for(row: AccountingRow, inbound: bool, index, owner_address: Optional[str]) -> str:
    signer = index.signer(row.signature) if index is not None else None
    if signer:
        return signer
    if not inbound and owner_address:
        return owner_address
    return UNRESOLVED_SIGNER


def apply_dust_policy(rows: Iterable[AccountingRow], policy: DustPolicy, index=None,
                      owner_address: Optional[str] = None,
                      clock: Callable[[], pd.Timestamp] = _utc_now) -> List[AccountingRow]:
    """
    Apply ``policy`` to the full row sequence.

    Args:
        rows: classifier output, any order
        policy: mode, threshold, interval and the timezone rows were stamped in
        index: TransactionIndex used to resolve signers (aggregate-signer mode)
        owner_address: signer fallback for outflows
        clock: returns the current time as a tz-aware pandas Timestamp

    Returns:
        New list sorted by time; input rows are not modified.
    """
    rows = list(rows)
    if not policy.active:
        return rows

    threshold = policy.threshold
    if policy.mode == 'remove':
        kept = [r for r in rows if not is_dust(r, threshold)]
        logger.info(f"Dust removal dropped {len(rows) - len(kept)} of {len(rows)} rows below {threshold}")
        return kept

    exempt = all_dust_signatures(rows, threshold)
    buckets: "OrderedDict[Tuple, DustBucket]" = OrderedDict()
    output: List[AccountingRow] = []

    for row in rows:
        if not is_dust(row, threshold) or row.signature in exempt:
            output.append(row)
            continue
        inbound = row.inbound > 0
        currency = row.currency_in if inbound else row.currency_out
        signer = _signer_for(row, inbound, index, owner_address) if policy.mode == 'aggregate-signer' else None
        start = bucket_start(row.timestamp, policy.interval)
        key = (start, 'in' if inbound else 'out', currency, signer)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = DustBucket(start=start, direction=key[1], currency=currency, signer=signer)
        bucket.add(row)

    now = clock()
    for bucket in buckets.values():
        output.append(bucket.materialize(policy, now))

    if buckets:
        absorbed = sum(b.count for b in buckets.values())
        logger.info(f"Dust aggregation folded {absorbed} rows into {len(buckets)} aggregate rows")
    output.sort(key=lambda r: r.unix_time)
    return output
