"""
================================================================================
CONSOLIDATOR - Cross-Row Netting by Transaction Signature
================================================================================

Groups rows by the signature embedded in their note and collapses each
multi-row group into one net economic event.

Bypass:
    Rows without a signature, dust aggregates and ADJ rows pass through.

Single-row groups (touch-ups, each independently gated):
    - upgrade    transfer + hidden native leg on a swap/fill => Handel
    - downgrade  small SOL outflow on account-create/stake   => Tap
    - close      SOL inflow on account-close                 => Erverv net of fee
    - backfill   UNKNOWN currency from "swapped X A for Y B"

Multi-row groups:
    1. Liquidity and ADJ rows are emitted unchanged
    2. All rows dust and below threshold: group unchanged
       Inntekt and Erverv rows (rewards, airdrops, reclaimed rent) keep
       their kind and only get the single-row touch-ups
    3. Plain SOL transfer context with a balance delta: one transfer
       sized from the delta (the delta wins over summed legs)
    4. Otherwise net per currency: largest gain vs largest loss => Handel,
       remaining currencies become transfers, a fully netted group keeps
       only its fee as Tap
    5. Aggregator trades may get a small native gain as Inntekt (ADJ)

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

import re
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from src.core.models import AccountingRow, OwnerContext, RowKind, Thresholds, TxTag
from src.core.rows import is_dex_venue, matches_venue, note_prefix, signature_note
from src.decimal_utils import UNKNOWN_CURRENCY, amount_string, normalize_currency_code, to_decimal
from src.processors.dust import is_dust
from src.processors.signatures import SignatureFacts, TransactionIndex
from src.utils.constants import (
    ADJUSTMENT_TAG, AGGREGATOR_VENUE_PATTERNS, MARKET_CHAIN, MARKET_DEX,
    NATIVE_SYMBOL, NET_EPSILON,
)
from src.utils.logger import logger

_SWAPPED_RE = re.compile(
    r'swapped\s+([0-9][0-9.,]*)\s+(\S+)\s+for\s+([0-9][0-9.,]*)\s+(\S+)', re.IGNORECASE,
)

TRANSFER_KINDS = (RowKind.TRANSFER_IN, RowKind.TRANSFER_OUT)
# Income and acquisitions are never netted into a trade or a transfer
KEPT_KINDS = (RowKind.INCOME, RowKind.ACQUISITION)


def parse_swap_description(description: str) -> Optional[Tuple[Decimal, str, Decimal, str]]:
    """'... swapped 1.5 SOL for 200 BONK' -> (1.5, 'SOL', 200, 'BONK')."""
    match = _SWAPPED_RE.search(description or '')
    if not match:
        return None
    sold_amount, sold, bought_amount, bought = match.groups()
    return (
        to_decimal(sold_amount.replace(',', '')), normalize_currency_code(sold),
        to_decimal(bought_amount.replace(',', '')), normalize_currency_code(bought),
    )


def _bypasses_grouping(row: AccountingRow) -> bool:
    return not row.signature or row.is_aggregate or row.is_adjustment


def _fee_fields(fee: Decimal) -> Dict[str, str]:
    return {'fee': amount_string(fee), 'fee_currency': NATIVE_SYMBOL if fee > 0 else ''}


# ==========================================
# SINGLE-ROW TOUCH-UPS
# ==========================================

def _upgrade_to_trade(row: AccountingRow, facts: SignatureFacts) -> Optional[AccountingRow]:
    if row.kind not in TRANSFER_KINDS:
        return None
    if not (facts.has(TxTag.SWAP) or facts.has(TxTag.ORDER_FILL) or facts.has_swap_event):
        return None
    native_net = facts.native_in - facts.native_out
    if row.kind == RowKind.TRANSFER_IN and row.currency_in not in ('', NATIVE_SYMBOL) and native_net < -NET_EPSILON:
        return row.with_changes(kind=RowKind.TRADE, amount_out=amount_string(-native_net),
                                currency_out=NATIVE_SYMBOL, market=MARKET_DEX)
    if row.kind == RowKind.TRANSFER_OUT and row.currency_out not in ('', NATIVE_SYMBOL) and native_net > NET_EPSILON:
        return row.with_changes(kind=RowKind.TRADE, amount_in=amount_string(native_net),
                                currency_in=NATIVE_SYMBOL, market=MARKET_DEX)
    return None


def _downgrade_to_loss(row: AccountingRow, facts: SignatureFacts, thresholds: Thresholds) -> Optional[AccountingRow]:
    if row.kind != RowKind.TRANSFER_OUT or row.currency_out != NATIVE_SYMBOL:
        return None
    if not (facts.has(TxTag.ACCOUNT_CREATE) or facts.has(TxTag.STAKE)):
        return None
    if row.outbound > thresholds.operational_outflow_ceiling:
        return None
    return row.with_changes(kind=RowKind.LOSS, amount_out=amount_string(row.outbound + row.fee_amount),
                            **_fee_fields(Decimal(0)))


def _net_close_rent(row: AccountingRow, facts: SignatureFacts) -> Optional[AccountingRow]:
    if not facts.has(TxTag.ACCOUNT_CLOSE) or row.currency_in != NATIVE_SYMBOL:
        return None
    if row.kind not in (RowKind.TRANSFER_IN, RowKind.ACQUISITION) or row.fee_amount <= 0:
        return None
    net = row.inbound - row.fee_amount
    if net <= 0:
        return None
    return row.with_changes(kind=RowKind.ACQUISITION, amount_in=amount_string(net), **_fee_fields(Decimal(0)))


def _backfill_unknown(row: AccountingRow, facts: SignatureFacts) -> Optional[AccountingRow]:
    if UNKNOWN_CURRENCY not in (row.currency_in, row.currency_out):
        return None
    parsed = parse_swap_description(facts.description)
    if parsed is None:
        return None
    _, sold, _, bought = parsed
    changes = {}
    if row.currency_in == UNKNOWN_CURRENCY and bought:
        changes['currency_in'] = bought
    if row.currency_out == UNKNOWN_CURRENCY and sold:
        changes['currency_out'] = sold
    return row.with_changes(**changes) if changes else None


def touch_up(row: AccountingRow, facts: Optional[SignatureFacts], thresholds: Thresholds) -> AccountingRow:
    """Apply the single-row rules in turn; each sees the previous rule's output."""
    if facts is None or row.is_liquidity:
        return row
    for rule in (
        lambda r: _upgrade_to_trade(r, facts),
        lambda r: _downgrade_to_loss(r, facts, thresholds),
        lambda r: _net_close_rent(r, facts),
        lambda r: _backfill_unknown(r, facts),
    ):
        changed = rule(row)
        if changed is not None:
            row = changed
    return row


# ==========================================
# MULTI-ROW NETTING
# ==========================================

class _GroupWriter:
    """Writes the merged rows of one signature group; the first row takes the summed fee."""

    def __init__(self, signature: str, members: List[AccountingRow]):
        latest = max(members, key=lambda r: r.unix_time)
        self.timestamp = latest.timestamp
        self.unix_time = latest.unix_time
        self.fee = sum((r.fee_amount for r in members), Decimal(0))
        self.prefix = next((note_prefix(r.note) for r in members if note_prefix(r.note)), '')
        self.signature = signature
        self.market = members[0].market
        self.rows: List[AccountingRow] = []

    def take_fee(self) -> Decimal:
        fee, self.fee = self.fee, Decimal(0)
        return fee

    def emit(self, kind: RowKind, amount_in=Decimal(0), currency_in='', amount_out=Decimal(0),
             currency_out='', market=None, prefix=None, fee_netted=False):
        if amount_in <= 0 and amount_out <= 0:
            return
        fee = self.take_fee()
        if fee_netted:
            fee = Decimal(0)
        self.rows.append(AccountingRow(
            timestamp=self.timestamp,
            kind=kind,
            amount_in=amount_string(amount_in),
            currency_in=currency_in if amount_in > 0 else '',
            amount_out=amount_string(amount_out),
            currency_out=currency_out if amount_out > 0 else '',
            market=market or self.market,
            note=signature_note(self.signature, self.prefix if prefix is None else prefix),
            unix_time=self.unix_time,
            **_fee_fields(fee),
        ))


def _totals(rows: List[AccountingRow]) -> Tuple["OrderedDict[str, Decimal]", "OrderedDict[str, Decimal]"]:
    inbound: "OrderedDict[str, Decimal]" = OrderedDict()
    outbound: "OrderedDict[str, Decimal]" = OrderedDict()
    for row in rows:
        if row.inbound > 0 and row.currency_in:
            inbound[row.currency_in] = inbound.get(row.currency_in, Decimal(0)) + row.inbound
        if row.outbound > 0 and row.currency_out:
            outbound[row.currency_out] = outbound.get(row.currency_out, Decimal(0)) + row.outbound
    return inbound, outbound


def _common_kind(rows: List[AccountingRow], inbound: bool) -> RowKind:
    side = [r.kind for r in rows if (r.inbound > 0 if inbound else r.outbound > 0)]
    if side and all(k == side[0] for k in side) and side[0] != RowKind.TRADE:
        return side[0]
    return RowKind.TRANSFER_IN if inbound else RowKind.TRANSFER_OUT


def _net_from_delta(writer: _GroupWriter, facts: SignatureFacts):
    delta = facts.delta
    if delta > 0:
        writer.emit(RowKind.TRANSFER_IN, amount_in=delta + writer.fee, currency_in=NATIVE_SYMBOL)
        return
    outflow = -delta - writer.fee
    if outflow > NET_EPSILON:
        writer.emit(RowKind.TRANSFER_OUT, amount_out=outflow, currency_out=NATIVE_SYMBOL)
    else:
        writer.emit(RowKind.LOSS, amount_out=-delta, currency_out=NATIVE_SYMBOL, fee_netted=True)


def _net_from_legs(writer: _GroupWriter, rows: List[AccountingRow], facts: Optional[SignatureFacts],
                   venue_dex: bool, thresholds: Thresholds):
    inbound, outbound = _totals(rows)
    net: "OrderedDict[str, Decimal]" = OrderedDict()
    for currency, amount in inbound.items():
        net[currency] = amount
    for currency, amount in outbound.items():
        net[currency] = net.get(currency, Decimal(0)) - amount

    gains = {c: v for c, v in net.items() if v > NET_EPSILON}
    losses = {c: -v for c, v in net.items() if v < -NET_EPSILON}

    traded = None
    if gains and losses:
        bought = max(gains.items(), key=lambda kv: kv[1])
        sold = max(losses.items(), key=lambda kv: kv[1])
        writer.emit(RowKind.TRADE, amount_in=bought[1], currency_in=bought[0],
                    amount_out=sold[1], currency_out=sold[0],
                    market=MARKET_DEX if venue_dex else None)
        traded = (bought[0], sold[0])
        del gains[bought[0]]
        del losses[sold[0]]

    in_kind = RowKind.TRANSFER_IN if traded else _common_kind(rows, inbound=True)
    out_kind = RowKind.TRANSFER_OUT if traded else _common_kind(rows, inbound=False)
    for currency, amount in gains.items():
        writer.emit(in_kind, amount_in=amount, currency_in=currency)
    for currency, amount in losses.items():
        writer.emit(out_kind, amount_out=amount, currency_out=currency)

    if not writer.rows and writer.fee > 0:
        writer.emit(RowKind.LOSS, amount_out=writer.fee, currency_out=NATIVE_SYMBOL, fee_netted=True)

    if traded and facts is not None and NATIVE_SYMBOL not in traded \
            and matches_venue(facts.venue, AGGREGATOR_VENUE_PATTERNS):
        gain = facts.native_in - facts.native_out
        if Decimal(0) < gain <= thresholds.incidental_income_ceiling:
            writer.emit(RowKind.INCOME, amount_in=gain, currency_in=NATIVE_SYMBOL,
                        market=MARKET_DEX, prefix=ADJUSTMENT_TAG)


def _keeps_kind(row: AccountingRow) -> bool:
    return row.kind in KEPT_KINDS


def merge_group(signature: str, members: List[AccountingRow], facts: Optional[SignatureFacts],
                dust_threshold: Decimal, thresholds: Thresholds) -> List[AccountingRow]:
    """Collapse the rows of one signature into its net event."""
    passthrough = [r for r in members if r.is_liquidity or r.is_adjustment]
    rest = [r for r in members if not (r.is_liquidity or r.is_adjustment)]
    if dust_threshold > 0 and len(rest) > 1 and all(is_dust(r, dust_threshold) for r in members):
        return list(members)

    kept = [touch_up(r, facts, thresholds) for r in rest if _keeps_kind(r)]
    rest = [r for r in rest if not _keeps_kind(r)]
    if len(rest) < 2:
        return passthrough + kept + [touch_up(r, facts, thresholds) for r in rest]

    writer = _GroupWriter(signature, rest)
    currencies = {r.currency_in for r in rest if r.currency_in} | {r.currency_out for r in rest if r.currency_out}
    venue_dex = any(r.market == MARKET_DEX for r in rest) or (facts is not None and is_dex_venue(facts.venue))

    if (not venue_dex and currencies == {NATIVE_SYMBOL} and facts is not None
            and facts.delta is not None and abs(facts.delta) > NET_EPSILON):
        writer.market = MARKET_CHAIN if writer.market == MARKET_DEX else writer.market
        _net_from_delta(writer, facts)
    else:
        _net_from_legs(writer, rest, facts, venue_dex, thresholds)
    return passthrough + kept + writer.rows


def consolidate_by_signature(rows, transactions, owner, dust_threshold=Decimal(0),
                             thresholds: Optional[Thresholds] = None) -> List[AccountingRow]:
    """
    Collapse rows sharing a transaction signature.

    Args:
        rows: dust-processed rows
        transactions: TransactionIndex, or a signature->Transaction map
        owner: OwnerContext or owner address
        dust_threshold: threshold used by the dust pass (0 disables the exemption)
        thresholds: tuning thresholds

    Returns:
        New row list ordered by time
    """
    thresholds = thresholds or Thresholds()
    dust_threshold = to_decimal(dust_threshold)
    if isinstance(transactions, TransactionIndex):
        index = transactions
    else:
        if not isinstance(owner, OwnerContext):
            owner = OwnerContext.build(owner)
        index = TransactionIndex(transactions or {}, owner)

    groups: "OrderedDict[str, List[AccountingRow]]" = OrderedDict()
    slots: List[Tuple[str, object]] = []
    for row in rows:
        if _bypasses_grouping(row):
            slots.append(('row', row))
            continue
        sig = row.signature
        if sig not in groups:
            groups[sig] = []
            slots.append(('group', sig))
        groups[sig].append(row)

    output: List[AccountingRow] = []
    merged = 0
    for kind, value in slots:
        if kind == 'row':
            output.append(value)
            continue
        members = groups[value]
        facts = index.facts(value)
        if len(members) == 1:
            output.append(touch_up(members[0], facts, thresholds))
        else:
            result = merge_group(value, members, facts, dust_threshold, thresholds)
            merged += len(members) - len(result)
            output.extend(result)

    if merged:
        logger.info(f"Consolidation removed {merged} rows across {len(groups)} signatures")
    output.sort(key=lambda r: r.unix_time)
    return output
