"""
================================================================================
TRANSFERS - Native and Token Flow Extraction
================================================================================

Turns one decoded Transaction into owner-relative flows:

    native_in_out()      - Native legs that literally name the owner address
    owns_as_source()     - Token transfer leaves an owned account
    owns_as_destination()- Token transfer lands in an owned account
    token_amount()       - Exact decimal amount of a token transfer
    best_counterparty()  - Most significant other party, for notes
    build_flows()        - Everything above, resolved once per transaction

Ownership of a token transfer matches either the user-level address or the
token account, since SPL balances live in per-mint sub-accounts.

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from src.core.models import NativeTransfer, OwnerContext, TokenLeg, TokenTransfer, Transaction
from src.decimal_utils import lamports_to_sol, scale_integer_string, to_decimal
from src.utils.constants import NATIVE_SYMBOL, NET_EPSILON, WSOL_MINT


@dataclass(frozen=True)
class NativeFlow:
    in_amount: Decimal
    out_amount: Decimal
    in_list: Tuple[NativeTransfer, ...] = ()
    out_list: Tuple[NativeTransfer, ...] = ()

    @property
    def net(self) -> Decimal:
        """Inflow minus outflow."""
        return self.in_amount - self.out_amount


def native_in_out(tx: Transaction, address: str, exclude: frozenset = frozenset()) -> NativeFlow:
    """
    Sum native legs where the owner is the literal receiver (in) or sender (out).

    ``exclude`` drops legs whose other side is in the given account set
    (e.g. movements between the owner and its own sub-accounts).
    """
    ins, outs = [], []
    for n in tx.native_transfers:
        if n.lamports <= 0:
            continue
        if n.destination == address and n.source != address and n.source not in exclude:
            ins.append(n)
        elif n.source == address and n.destination != address and n.destination not in exclude:
            outs.append(n)
    return NativeFlow(
        in_amount=sum((lamports_to_sol(n.lamports) for n in ins), Decimal(0)),
        out_amount=sum((lamports_to_sol(n.lamports) for n in outs), Decimal(0)),
        in_list=tuple(ins),
        out_list=tuple(outs),
    )


def owns_as_source(transfer: TokenTransfer, owner: OwnerContext) -> bool:
    return owner.owns(transfer.source_user) or owner.owns(transfer.source_account)


def owns_as_destination(transfer: TokenTransfer, owner: OwnerContext) -> bool:
    return owner.owns(transfer.destination_user) or owner.owns(transfer.destination_account)


def token_amount(transfer: TokenTransfer, decimals: Optional[int] = None) -> Decimal:
    """
    Exact amount of a token transfer.

    Prefers the raw base-unit integer string scaled by its own decimals (or the
    supplied fallback); uses the provider's pre-scaled amount only when no raw
    amount exists.
    """
    places = transfer.decimals if transfer.decimals is not None else decimals
    if transfer.raw_amount is not None and places is not None:
        return to_decimal(scale_integer_string(transfer.raw_amount, places)).copy_abs()
    if transfer.ui_amount is not None:
        return transfer.ui_amount.copy_abs()
    return Decimal(0)


def balance_delta(tx: Transaction, address: str) -> Optional[Decimal]:
    """Owner native balance change in SOL (fee already deducted), None if unreported."""
    lamports = tx.native_delta(address)
    if lamports is None:
        return None
    return Decimal(scale_integer_string(str(lamports), 9))


def best_counterparty(tx: Transaction, owner: OwnerContext) -> Optional[str]:
    """
    Largest outgoing leg's recipient, else largest incoming leg's sender.

    Token legs compare by their own amount; ties prefer a user-level address
    over a token sub-account.
    """
    outgoing: List[Tuple[Decimal, int, str]] = []
    incoming: List[Tuple[Decimal, int, str]] = []

    for n in tx.native_transfers:
        amount = lamports_to_sol(n.lamports)
        if owner.owns(n.source) and n.destination and not owner.owns(n.destination):
            outgoing.append((amount, 1, n.destination))
        elif owner.owns(n.destination) and n.source and not owner.owns(n.source):
            incoming.append((amount, 1, n.source))

    for t in tx.token_transfers:
        amount = token_amount(t)
        if owns_as_source(t, owner) and not owns_as_destination(t, owner):
            party = t.destination_user or t.destination_account
            if party:
                outgoing.append((amount, 1 if t.destination_user else 0, party))
        elif owns_as_destination(t, owner) and not owns_as_source(t, owner):
            party = t.source_user or t.source_account
            if party:
                incoming.append((amount, 1 if t.source_user else 0, party))

    for legs in (outgoing, incoming):
        if legs:
            legs.sort(key=lambda item: (item[0], item[1]), reverse=True)
            return legs[0][2]
    return None


@dataclass(frozen=True)
class TxFlows:
    """Owner-relative view of one transaction, resolved once and shared by all rules."""
    legs: Tuple[TokenLeg, ...]
    native: NativeFlow
    external_native: NativeFlow
    fee: Decimal
    delta: Optional[Decimal]
    counterparty: Optional[str] = None
    internal_mints: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def fungible(self) -> Tuple[TokenLeg, ...]:
        return tuple(l for l in self.legs if not l.is_nft)

    @property
    def fungible_in(self) -> Tuple[TokenLeg, ...]:
        return tuple(l for l in self.fungible if l.inbound)

    @property
    def fungible_out(self) -> Tuple[TokenLeg, ...]:
        return tuple(l for l in self.fungible if l.outbound)

    @property
    def nft_in(self) -> Tuple[TokenLeg, ...]:
        return tuple(l for l in self.legs if l.is_nft and l.inbound)

    @property
    def nft_out(self) -> Tuple[TokenLeg, ...]:
        return tuple(l for l in self.legs if l.is_nft and l.outbound)

    @property
    def delta_ex_fee(self) -> Optional[Decimal]:
        """Balance change before the fee was deducted."""
        if self.delta is None:
            return None
        return self.delta + self.fee

    def gross_by_symbol(self, inbound: bool) -> "OrderedDict[str, Decimal]":
        totals: "OrderedDict[str, Decimal]" = OrderedDict()
        for leg in self.fungible:
            if leg.inbound == inbound:
                totals[leg.symbol] = totals.get(leg.symbol, Decimal(0)) + leg.amount
        return totals

    def net_by_symbol(self) -> Dict[str, Decimal]:
        """Inbound minus outbound per fungible symbol, near-zero entries dropped."""
        totals: "OrderedDict[str, Decimal]" = OrderedDict()
        for leg in self.fungible:
            signed = leg.amount if leg.inbound else -leg.amount
            totals[leg.symbol] = totals.get(leg.symbol, Decimal(0)) + signed
        return OrderedDict((s, v) for s, v in totals.items() if abs(v) > NET_EPSILON)

    def symbol_out(self, symbol: str) -> Decimal:
        return sum((l.amount for l in self.fungible_out if l.symbol == symbol), Decimal(0))

    @property
    def has_native_token_leg(self) -> bool:
        return any(l.symbol == NATIVE_SYMBOL for l in self.fungible)


def build_flows(tx: Transaction, owner: OwnerContext, resolver) -> TxFlows:
    """
    Resolve every owner-relative token leg and native total for ``tx``.

    Transfers between two owned accounts are internal and produce no leg.
    NFT legs are kept (flagged) so liquidity detection can see position NFTs;
    callers filter them when NFTs are excluded from output.
    """
    legs: List[TokenLeg] = []
    internal = []
    for t in tx.token_transfers:
        src = owns_as_source(t, owner)
        dst = owns_as_destination(t, owner)
        if src and dst:
            internal.append(t.mint)
            continue
        if not src and not dst:
            continue
        resolved = resolver.resolve(t.mint, t.symbol_hint, t.decimals)
        amount = token_amount(t, resolved.decimals)
        if amount <= 0:
            continue
        is_nft = t.is_nft or (resolved.decimals == 0 and amount == 1 and t.mint != WSOL_MINT)
        legs.append(TokenLeg(
            mint=t.mint,
            symbol=resolved.symbol,
            decimals=resolved.decimals,
            amount=amount,
            inbound=dst,
            outbound=src,
            is_nft=is_nft,
            counterparty=(t.source_user or t.source_account) if dst else (t.destination_user or t.destination_account),
        ))

    fee = lamports_to_sol(tx.fee_paid_by(owner.address))
    return TxFlows(
        legs=tuple(legs),
        native=native_in_out(tx, owner.address),
        external_native=native_in_out(tx, owner.address, exclude=owner.owned_accounts),
        fee=fee,
        delta=balance_delta(tx, owner.address),
        counterparty=best_counterparty(tx, owner),
        internal_mints=tuple(internal),
    )
