"""
================================================================================
SWAPS - Trade Leg Reconstruction
================================================================================

Rebuilds the two economic sides of a trade from one transaction's owner
flows. Strategies are tried in order; the first that succeeds wins.

Strategies:
    1. token_net_collapse  - One symbol nets positive, one nets negative.
                             Unexplained native outflow becomes a capped tip
                             folded into the fee.
    2. token_native_hybrid - One token against a plain native movement
                             (bonding curves). A sell needs native inflow
                             strictly above native outflow.
    3. bridge_route        - Routed trades: symbols seen both in and out
                             with near-equal size are routing plumbing.
    4. order_fill          - Order-book settlement from in/out totals, with
                             native substituted for a missing side and a
                             small native rebate split off as income.

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from src.core.models import SwapResult, Thresholds, Transaction, TxTag
from src.core.rows import matches_venue
from src.utils.constants import (
    AGGREGATOR_VENUE_PATTERNS, BONDING_CURVE_VENUE_PATTERNS,
    HYBRID_MIN_NATIVE_LEG, NATIVE_SYMBOL, NET_EPSILON,
)
from src.decimal_utils import lamports_to_sol


def _split_net(net) -> Tuple[dict, dict]:
    positive = {s: v for s, v in net.items() if v > NET_EPSILON}
    negative = {s: -v for s, v in net.items() if v < -NET_EPSILON}
    return positive, negative


def incidental_tip(flows, thresholds: Thresholds) -> Decimal:
    """Native outflow not explained by a SOL token leg, capped."""
    net_native_out = flows.native.out_amount - flows.native.in_amount
    tip = net_native_out - flows.symbol_out(NATIVE_SYMBOL)
    if tip <= 0:
        return Decimal(0)
    return min(tip, thresholds.tip_sanity_cap)


def income_adjustment(flows, bought: str, sold: str, thresholds: Thresholds) -> Decimal:
    """Small native gain beside a trade whose legs do not already include SOL."""
    if NATIVE_SYMBOL in (bought, sold):
        return Decimal(0)
    gain = flows.native.in_amount - flows.native.out_amount
    if Decimal(0) < gain <= thresholds.incidental_income_ceiling:
        return gain
    return Decimal(0)


def token_net_collapse(tx: Transaction, flows, thresholds: Thresholds) -> Optional[SwapResult]:
    positive, negative = _split_net(flows.net_by_symbol())
    if len(positive) != 1 or len(negative) != 1:
        return None
    (bought, amount_in), = positive.items()
    (sold, amount_out), = negative.items()
    return SwapResult(
        strategy='token-net',
        sold_symbol=sold,
        sold_amount=amount_out,
        bought_symbol=bought,
        bought_amount=amount_in,
        extra_fee=incidental_tip(flows, thresholds),
    )


def token_native_hybrid(tx: Transaction, flows, thresholds: Thresholds,
                        synthesize_from_delta: bool = False) -> Optional[SwapResult]:
    """
    One token against plain SOL.

    With ``synthesize_from_delta`` and no native transfer records, the SOL
    side comes from the owner's balance delta before fee.
    """
    net = flows.net_by_symbol()
    if len(net) != 1:
        return None
    (symbol, token_net), = net.items()
    if symbol == NATIVE_SYMBOL:
        return None

    native = flows.native
    if synthesize_from_delta and not native.in_list and not native.out_list:
        moved = flows.delta_ex_fee
        if moved is None:
            return None
        if token_net > 0 and moved < -NET_EPSILON:
            return SwapResult('token-native-delta', NATIVE_SYMBOL, -moved, symbol, token_net)
        if token_net < 0 and moved > NET_EPSILON:
            return SwapResult('token-native-delta', symbol, -token_net, NATIVE_SYMBOL, moved)
        return None

    total = native.in_amount + native.out_amount
    if total <= 0:
        return None

    if token_net > 0:
        if native.out_amount <= native.in_amount:
            return None
        amount = native.out_amount - native.in_amount
        dominant = max(lamports_to_sol(n.lamports) for n in native.out_list)
    else:
        # Sell requires strictly more native in than out; otherwise a stake or lock
        if not native.in_amount > native.out_amount:
            return None
        amount = native.in_amount - native.out_amount
        dominant = max(lamports_to_sol(n.lamports) for n in native.in_list)

    venue = tx.venue
    venue_hint = matches_venue(venue, BONDING_CURVE_VENUE_PATTERNS) or matches_venue(venue, AGGREGATOR_VENUE_PATTERNS)
    if not (dominant >= HYBRID_MIN_NATIVE_LEG or dominant * 2 >= total or venue_hint):
        return None

    if token_net > 0:
        return SwapResult('token-native', NATIVE_SYMBOL, amount, symbol, token_net)
    return SwapResult('token-native', symbol, -token_net, NATIVE_SYMBOL, amount)


def bridge_route(tx: Transaction, flows, thresholds: Thresholds, loose: bool = False) -> Optional[SwapResult]:
    """
    Collapse a routed trade whose intermediate symbol appears on both sides
    with near-equal size (within the bridge tolerance).
    """
    tolerance = thresholds.loose_bridge_tolerance if loose else thresholds.bridge_tolerance
    gross_in = dict(flows.gross_by_symbol(True))
    gross_out = dict(flows.gross_by_symbol(False))
    if len(flows.fungible) < 2:
        return None

    bridges = []
    for symbol in set(gross_in) & set(gross_out):
        a, b = gross_in[symbol], gross_out[symbol]
        largest = max(a, b)
        if largest > 0 and abs(a - b) <= tolerance * largest:
            bridges.append(symbol)
            del gross_in[symbol]
            del gross_out[symbol]
        elif a > b:
            gross_in[symbol] = a - b
            del gross_out[symbol]
        else:
            gross_out[symbol] = b - a
            del gross_in[symbol]

    if not bridges or len(gross_in) != 1 or len(gross_out) != 1:
        return None
    (bought, amount_in), = gross_in.items()
    (sold, amount_out), = gross_out.items()
    return SwapResult(
        strategy='bridge-loose' if loose else 'bridge',
        sold_symbol=sold,
        sold_amount=amount_out,
        bought_symbol=bought,
        bought_amount=amount_in,
        extra_fee=incidental_tip(flows, thresholds),
    )


def order_fill(tx: Transaction, flows, thresholds: Thresholds) -> Optional[SwapResult]:
    positive, negative = _split_net(flows.net_by_symbol())
    native_net = flows.native.in_amount - flows.native.out_amount

    bought = max(positive.items(), key=lambda kv: kv[1]) if positive else None
    sold = max(negative.items(), key=lambda kv: kv[1]) if negative else None
    if sold is None and native_net < -NET_EPSILON:
        sold = (NATIVE_SYMBOL, -native_net)
    if bought is None and native_net > thresholds.incidental_income_ceiling:
        bought = (NATIVE_SYMBOL, native_net)
    if bought is None or sold is None or bought[0] == sold[0]:
        return None

    return SwapResult(
        strategy='order-fill',
        sold_symbol=sold[0],
        sold_amount=sold[1],
        bought_symbol=bought[0],
        bought_amount=bought[1],
        income_adjustment=income_adjustment(flows, bought[0], sold[0], thresholds),
    )


def reconstruct_swap(tx: Transaction, flows, thresholds: Thresholds) -> Optional[SwapResult]:
    """Run the strategies in priority order; None when none applies."""
    strategies: List[Callable] = [token_net_collapse, token_native_hybrid, bridge_route]
    if tx.has(TxTag.ORDER_FILL):
        strategies.append(order_fill)
    for strategy in strategies:
        result = strategy(tx, flows, thresholds)
        if result is not None:
            return result
    return None
