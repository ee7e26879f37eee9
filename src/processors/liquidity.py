"""
================================================================================
LIQUIDITY - Add/Remove Liquidity Detection
================================================================================

Recognizes liquidity deposits and withdrawals from the shape of the owner's
flows, for classic pools (fungible LP receipt token) and concentrated pools
(position NFT), without decoding pool programs.

Detection Steps:
    1. Split owner legs into fungible and NFT, inbound and outbound
    2. One symbol in, one symbol out, no NFTs: ordinary swap, not liquidity
    3. Protocol and pool model from the venue label
    4. LP leg: LP-looking symbol, else the lone transfer on the minority
       side, else the only mint not mirrored on the other side.
       A position NFT minted to or burned from the owner also counts.
    5. add    - mint evidence, >= 2 deposited symbols, no burn evidence
       remove - burn evidence, >= 2 withdrawn symbols, no mint evidence
       remove without LP - >= 2 withdrawn symbols from a DEX venue,
                           nothing outbound, no LP evidence
    6. Bonding-curve venues need an LP-looking symbol or position NFT
    7. Aggregator venues never produce liquidity events

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from collections import OrderedDict
from decimal import Decimal
from typing import List, Optional, Tuple

from src.core.models import LiquidityEvent, Transaction, TxTag
from src.core.rows import matches_venue
from src.processors.symbols import is_lp_symbol
from src.utils.constants import (
    AGGREGATOR_VENUE_PATTERNS, BONDING_CURVE_VENUE_PATTERNS,
    CONCENTRATED_VENUE_PATTERNS, DEX_VENUE_PATTERNS, NATIVE_SYMBOL,
    OPERATIONAL_OUTFLOW_CEILING,
)


def protocol_label(tx: Transaction) -> str:
    venue = tx.venue
    found = matches_venue(venue, DEX_VENUE_PATTERNS) or matches_venue(venue, BONDING_CURVE_VENUE_PATTERNS)
    if found:
        return found
    return (tx.source or 'UNKNOWN').upper()


def _sum_by_symbol(legs) -> "OrderedDict[str, Decimal]":
    totals: "OrderedDict[str, Decimal]" = OrderedDict()
    for leg in legs:
        totals[leg.symbol] = totals.get(leg.symbol, Decimal(0)) + leg.amount
    return totals


def _find_lp_leg(fungible_in, fungible_out):
    """Return (leg, 'in'|'out', explicit) for the LP receipt leg, or (None, None, False)."""
    for leg in fungible_in:
        if is_lp_symbol(leg.symbol):
            return leg, 'in', True
    for leg in fungible_out:
        if is_lp_symbol(leg.symbol):
            return leg, 'out', True

    in_mints = {l.mint for l in fungible_in}
    out_mints = {l.mint for l in fungible_out}

    if len(fungible_in) == 1 and len(fungible_out) >= 2 and fungible_in[0].mint not in out_mints:
        return fungible_in[0], 'in', False
    if len(fungible_out) == 1 and len(fungible_in) >= 2 and fungible_out[0].mint not in in_mints:
        return fungible_out[0], 'out', False

    only_in = in_mints - out_mints
    only_out = out_mints - in_mints
    if len(only_in) == 1 and not only_out:
        mint = next(iter(only_in))
        return next(l for l in fungible_in if l.mint == mint), 'in', False
    if len(only_out) == 1 and not only_in:
        mint = next(iter(only_out))
        return next(l for l in fungible_out if l.mint == mint), 'out', False
    return None, None, False


def _native_side(flows, inbound: bool, ceiling: Decimal) -> Optional[Decimal]:
    """Net native amount on one side, when no wrapped-SOL leg already covers it."""
    if flows.has_native_token_leg:
        return None
    net = flows.external_native.net
    amount = net if inbound else -net
    return amount if amount > ceiling else None


def detect_liquidity(tx: Transaction, flows, ceiling: Decimal = OPERATIONAL_OUTFLOW_CEILING) -> Optional[LiquidityEvent]:
    if tx.has(TxTag.AIRDROP) or tx.has(TxTag.REWARD):
        return None
    venue = tx.venue
    if matches_venue(venue, AGGREGATOR_VENUE_PATTERNS):
        return None

    fungible_in = list(flows.fungible_in)
    fungible_out = list(flows.fungible_out)
    nft_in, nft_out = flows.nft_in, flows.nft_out

    native_out = _native_side(flows, inbound=False, ceiling=ceiling)
    native_in = _native_side(flows, inbound=True, ceiling=ceiling)
    in_symbols = {l.symbol for l in fungible_in} | ({NATIVE_SYMBOL} if native_in is not None else set())
    out_symbols = {l.symbol for l in fungible_out} | ({NATIVE_SYMBOL} if native_out is not None else set())
    if len(in_symbols) == 1 and len(out_symbols) == 1 and not nft_in and not nft_out:
        return None

    lp_leg, lp_side, explicit = _find_lp_leg(fungible_in, fungible_out)
    position_minted = bool(nft_in)
    position_burned = bool(nft_out)

    if matches_venue(venue, BONDING_CURVE_VENUE_PATTERNS) and not (explicit or position_minted or position_burned):
        return None

    mint_evidence = lp_side == 'in' or position_minted
    burn_evidence = lp_side == 'out' or position_burned

    deposited = _sum_by_symbol(l for l in fungible_out if l is not lp_leg)
    withdrawn = _sum_by_symbol(l for l in fungible_in if l is not lp_leg)
    if native_out is not None and NATIVE_SYMBOL not in deposited:
        deposited[NATIVE_SYMBOL] = native_out
    if native_in is not None and NATIVE_SYMBOL not in withdrawn:
        withdrawn[NATIVE_SYMBOL] = native_in

    concentrated = bool(matches_venue(venue, CONCENTRATED_VENUE_PATTERNS)) or position_minted or position_burned
    protocol = protocol_label(tx)
    marker = lp_leg if lp_leg is not None else (nft_in[0] if position_minted else (nft_out[0] if position_burned else None))
    lp_symbol = marker.symbol if marker is not None else None
    lp_amount = marker.amount if marker is not None else None

    def _event(kind: str, legs: "OrderedDict[str, Decimal]", with_marker: bool) -> LiquidityEvent:
        pairs: Tuple[Tuple[str, Decimal], ...] = tuple(legs.items())
        return LiquidityEvent(
            kind=kind,
            protocol=protocol,
            concentrated=concentrated,
            lp_symbol=lp_symbol if with_marker else None,
            lp_amount=lp_amount if with_marker else None,
            position_nft=(position_minted or position_burned) and lp_leg is None,
            deposited=pairs if kind == 'add' else (),
            withdrawn=pairs if kind == 'remove' else (),
        )

    if mint_evidence and not burn_evidence and len(deposited) >= 2:
        return _event('add', deposited, True)
    if burn_evidence and not mint_evidence and len(withdrawn) >= 2:
        return _event('remove', withdrawn, True)
    if (not mint_evidence and not burn_evidence and not fungible_out and native_out is None
            and len(withdrawn) >= 2 and matches_venue(venue, DEX_VENUE_PATTERNS + CONCENTRATED_VENUE_PATTERNS)):
        return _event('remove', withdrawn, False)
    return None


def share_of(total: Optional[Decimal], parts: int) -> Decimal:
    """Equal share of an LP amount across ``parts`` legs."""
    if not total or parts <= 0:
        return Decimal(0)
    return total / Decimal(parts)


def liquidity_legs(event: LiquidityEvent) -> List[Tuple[str, Decimal]]:
    return list(event.deposited if event.kind == 'add' else event.withdrawn)


def pool_note(event: LiquidityEvent) -> str:
    """Note suffix naming the pool model; classic pools get none."""
    if event.position_nft:
        return 'pool:clmm-position'
    if event.concentrated:
        return 'pool:clmm'
    return ''
