"""
================================================================================
CLASSIFIER - Per-Transaction Row Generation
================================================================================

Turns one decoded transaction into zero or more accounting rows.

Rule Table (evaluated top-down, first match returns):
    1. order-place        Order placed or cancelled: operational cost as Tap
    2. order-fill         Matched order: Handel (+ small rebate as Inntekt)
    3. account-create     Sub-account rent with no token flow: Tap
    4. account-close      Rent reclaimed: Erverv net of fee
    5. staking-fee-only   Stake action moving nothing but the fee: Tap
    6. liquidity          LP add/remove rows
    7. swap               Tagged swap: Handel
    8. token-native       One-directional token flow, or token vs SOL
    9. routed-multi-hop   Untagged multi-leg trade: Handel

Fallthrough (no rule matched):
    10. Native transfers  Overføring-Inn / Overføring-Ut
    11. Token transfers   one row per owned leg
    12. Airdrop           first inbound token row becomes Erverv
    13. Reward            native inbound row (or inferred amount) becomes Inntekt
    14. Safety net        balance delta as a transfer, or the fee as Tap

Fee Handling:
    The first row of a transaction carries the fee; later rows carry zero.
    Tap rows for operational costs include the fee in their amount and
    write a zero fee field.

Usage:
    classifier = TransactionClassifier(owner, resolver, ClassifyOptions())
    rows = classifier.classify(transactions)

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Iterable, List, Optional

from src.core.errors import MalformedTransactionError
from src.core.models import (
    AccountingRow, ClassifyOptions, OwnerContext, RowKind, SwapResult,
    Transaction, TxTag,
)
from src.core.rows import RowBuilder, short_address
from src.core.transaction import decode_transaction
from src.decimal_utils import amount_string, lamports_to_sol
from src.processors.liquidity import detect_liquidity, liquidity_legs, pool_note, share_of
from src.processors.swaps import (
    bridge_route, income_adjustment, order_fill, reconstruct_swap,
    token_native_hybrid, token_net_collapse,
)
from src.processors.symbols import SymbolResolver
from src.processors.transfers import TxFlows, build_flows
from src.utils.constants import (
    ADJUSTMENT_TAG, AIRDROP_TAG, LP_ADD_TAG, LP_REMOVE_TAG, MARKET_CHAIN,
    MARKET_DEX, MARKET_LIQUIDITY, MARKET_STAKE, NATIVE_NOISE_EPSILON,
    NATIVE_SYMBOL, NET_EPSILON,
)
from src.utils.logger import logger

NOISY_SOURCES = ('SYSTEM_PROGRAM', 'ASSOCIATED_TOKEN_PROGRAM', 'TOKEN_PROGRAM')


@dataclass
class RuleContext:
    tx: Transaction
    flows: TxFlows
    owner: OwnerContext
    builder: RowBuilder
    options: ClassifyOptions

    @property
    def thresholds(self):
        return self.options.thresholds


@dataclass(frozen=True)
class Rule:
    name: str
    handler: Callable[[RuleContext], bool]


@dataclass
class ClassificationResult:
    signature: str
    rule: str
    rows: List[AccountingRow] = field(default_factory=list)


class TransactionClassifier:
    """Applies the rule table to transactions of one owner."""

    def __init__(self, owner: OwnerContext, resolver: SymbolResolver, options: ClassifyOptions = None):
        self.owner = owner
        self.resolver = resolver
        self.options = options or ClassifyOptions()
        self.rules = [
            Rule('order-place', self._order_place),
            Rule('order-fill', self._order_fill),
            Rule('account-create', self._account_create),
            Rule('account-close', self._account_close),
            Rule('staking-fee-only', self._staking_fee_only),
            Rule('liquidity', self._liquidity),
            Rule('swap', self._swap),
            Rule('token-native', self._token_native_fallback),
            Rule('routed-multi-hop', self._routed_multi_hop),
        ]

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def classify_transaction(self, tx: Transaction) -> ClassificationResult:
        flows = build_flows(tx, self.owner, self.resolver)
        builder = RowBuilder(tx, flows.fee, self.options.timezone)
        ctx = RuleContext(tx=tx, flows=flows, owner=self.owner, builder=builder, options=self.options)

        for rule in self.rules:
            if rule.handler(ctx):
                return ClassificationResult(tx.signature, rule.name, builder.rows)

        self._native_transfer_rows(ctx)
        self._token_transfer_rows(ctx, flows.legs)
        self._apply_airdrop(ctx)
        self._apply_reward(ctx)
        if builder.rows:
            return ClassificationResult(tx.signature, 'generic', builder.rows)

        self._safety_net(ctx)
        return ClassificationResult(tx.signature, 'safety-net', builder.rows)

    def classify(self, transactions: Iterable) -> List[AccountingRow]:
        """
        Classify a batch. Raw payloads are decoded here; a transaction that
        fails to decode or classify is logged and skipped.
        """
        decoded: List[Transaction] = []
        for raw in transactions:
            if isinstance(raw, Transaction):
                decoded.append(raw)
                continue
            try:
                decoded.append(decode_transaction(raw))
            except MalformedTransactionError as e:
                logger.warning(f"Skipping malformed transaction: {e}")

        rows: List[AccountingRow] = []
        for tx in sorted(decoded, key=lambda t: (t.timestamp, t.signature)):
            if not self.options.in_range(tx.timestamp):
                continue
            try:
                rows.extend(self.classify_transaction(tx).rows)
            except Exception as e:
                logger.warning(f"Skipping transaction {tx.signature}: {type(e).__name__}: {e}")
        return rows

    # ------------------------------------------------------------------
    # Shared emitters
    # ------------------------------------------------------------------

    @staticmethod
    def _market(tx: Transaction) -> str:
        return MARKET_STAKE if tx.has(TxTag.STAKE) else MARKET_CHAIN

    def _emit_loss(self, ctx: RuleContext, cost: Decimal, market: str = None):
        """Operational cost plus the fee as one Tap row with a zero fee field."""
        total = (cost if cost > 0 else Decimal(0)) + (ctx.builder.fee if ctx.builder.fee_pending else Decimal(0))
        ctx.builder.emit(RowKind.LOSS, amount_out=total, currency_out=NATIVE_SYMBOL,
                         market=market or self._market(ctx.tx), fee_netted=True)

    def _emit_trade(self, ctx: RuleContext, result: SwapResult):
        ctx.builder.emit(
            RowKind.TRADE,
            amount_in=result.bought_amount, currency_in=result.bought_symbol,
            amount_out=result.sold_amount, currency_out=result.sold_symbol,
            market=MARKET_DEX, extra_fee=result.extra_fee,
        )
        if result.income_adjustment > 0:
            ctx.builder.emit(RowKind.INCOME, amount_in=result.income_adjustment, currency_in=NATIVE_SYMBOL,
                             market=MARKET_DEX, prefix=ADJUSTMENT_TAG)

    def _token_transfer_rows(self, ctx: RuleContext, legs):
        for leg in legs:
            if leg.is_nft and not self.options.include_nfts:
                continue
            party = short_address(leg.counterparty)
            if leg.outbound:
                ctx.builder.emit(RowKind.TRANSFER_OUT, amount_out=leg.amount, currency_out=leg.symbol,
                                 market=ctx.tx.source, suffix=f"to:{party}" if party else '')
            else:
                ctx.builder.emit(RowKind.TRANSFER_IN, amount_in=leg.amount, currency_in=leg.symbol,
                                 market=ctx.tx.source, suffix=f"from:{party}" if party else '')

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _order_place(self, ctx: RuleContext) -> bool:
        tx = ctx.tx
        if not (tx.has(TxTag.ORDER_PLACE) or tx.has(TxTag.ORDER_CANCEL)) or tx.has(TxTag.ORDER_FILL):
            return False
        native = ctx.flows.native
        outflow = native.out_amount - native.in_amount
        cost = outflow if Decimal(0) < outflow <= ctx.thresholds.operational_outflow_ceiling else Decimal(0)
        self._emit_loss(ctx, cost, MARKET_DEX)
        return True

    def _order_fill(self, ctx: RuleContext) -> bool:
        if not ctx.tx.has(TxTag.ORDER_FILL):
            return False
        result = order_fill(ctx.tx, ctx.flows, ctx.thresholds)
        if result is not None:
            self._emit_trade(ctx, result)
            return True
        if ctx.flows.fungible:
            # Escrowed fills only show the received side; let the transfer rows record it
            return False
        self._emit_loss(ctx, Decimal(0), MARKET_DEX)
        return True

    def _account_create(self, ctx: RuleContext) -> bool:
        if not ctx.tx.has(TxTag.ACCOUNT_CREATE) or ctx.flows.fungible:
            return False
        native = ctx.flows.native
        if native.in_amount > NATIVE_NOISE_EPSILON:
            return False
        if native.out_amount > ctx.thresholds.operational_outflow_ceiling:
            return False
        self._emit_loss(ctx, native.out_amount)
        return True

    def _account_close(self, ctx: RuleContext) -> bool:
        if not ctx.tx.has(TxTag.ACCOUNT_CLOSE):
            return False
        flows = ctx.flows
        reclaimed = flows.delta if flows.delta is not None else flows.native.in_amount
        if reclaimed <= 0:
            return False
        net = reclaimed - ctx.builder.fee
        if net <= NET_EPSILON:
            return False
        ctx.builder.emit(RowKind.ACQUISITION, amount_in=net, currency_in=NATIVE_SYMBOL,
                         market=MARKET_CHAIN, fee_netted=True)
        # Burns that emptied the account before closing
        self._token_transfer_rows(ctx, flows.fungible_out)
        return True

    def _staking_fee_only(self, ctx: RuleContext) -> bool:
        tx, flows = ctx.tx, ctx.flows
        if not tx.has(TxTag.STAKE) or tx.has(TxTag.REWARD) or flows.fungible:
            return False
        if flows.native.in_amount > NATIVE_NOISE_EPSILON or flows.native.out_amount > NATIVE_NOISE_EPSILON:
            return False
        moved = flows.delta_ex_fee
        if moved is not None and abs(moved) > NATIVE_NOISE_EPSILON:
            return False
        self._emit_loss(ctx, Decimal(0), MARKET_STAKE)
        return True

    def _liquidity(self, ctx: RuleContext) -> bool:
        event = detect_liquidity(ctx.tx, ctx.flows, ctx.thresholds.operational_outflow_ceiling)
        if event is None:
            return False

        legs = liquidity_legs(event)
        adding = event.kind == 'add'
        tag = f"{LP_ADD_TAG if adding else LP_REMOVE_TAG}:{event.protocol}"
        share = share_of(event.lp_amount, len(legs))
        suffix = pool_note(event)
        for symbol, amount in legs:
            if event.lp_symbol and share > 0:
                if adding:
                    ctx.builder.emit(RowKind.TRADE, amount_in=share, currency_in=event.lp_symbol,
                                     amount_out=amount, currency_out=symbol,
                                     market=MARKET_LIQUIDITY, prefix=tag, suffix=suffix)
                else:
                    ctx.builder.emit(RowKind.TRADE, amount_in=amount, currency_in=symbol,
                                     amount_out=share, currency_out=event.lp_symbol,
                                     market=MARKET_LIQUIDITY, prefix=tag, suffix=suffix)
            elif adding:
                ctx.builder.emit(RowKind.LOSS, amount_out=amount, currency_out=symbol,
                                 market=MARKET_LIQUIDITY, prefix=tag, suffix=suffix)
            else:
                ctx.builder.emit(RowKind.ACQUISITION, amount_in=amount, currency_in=symbol,
                                 market=MARKET_LIQUIDITY, prefix=tag, suffix=suffix)
        return True

    def _swap(self, ctx: RuleContext) -> bool:
        if not ctx.tx.has(TxTag.SWAP):
            return False
        result = reconstruct_swap(ctx.tx, ctx.flows, ctx.thresholds)
        if result is None:
            return False
        self._emit_trade(ctx, result)
        return True

    def _token_native_fallback(self, ctx: RuleContext) -> bool:
        tx, flows = ctx.tx, ctx.flows
        if tx.has(TxTag.AIRDROP) or tx.has(TxTag.REWARD) or not flows.fungible:
            return False
        ins, outs = flows.fungible_in, flows.fungible_out
        native = flows.native
        moved = flows.delta_ex_fee
        fee_only = not native.in_list and not native.out_list and (
            moved is None or abs(moved) <= NATIVE_NOISE_EPSILON)

        # Stake/lock or unstake/claim: tokens move one way, SOL only pays the fee
        if fee_only and (not ins or not outs):
            self._token_transfer_rows(ctx, [l for l in flows.legs if not l.is_nft])
            return True

        result = token_native_hybrid(tx, flows, ctx.thresholds, synthesize_from_delta=True)
        if result is None:
            return False
        self._emit_trade(ctx, result)
        return True

    def _routed_multi_hop(self, ctx: RuleContext) -> bool:
        flows = ctx.flows
        if len(flows.fungible) < 2:
            return False
        result = token_net_collapse(ctx.tx, flows, ctx.thresholds) or \
            bridge_route(ctx.tx, flows, ctx.thresholds, loose=True)
        if result is None:
            return False
        adjustment = income_adjustment(flows, result.bought_symbol, result.sold_symbol, ctx.thresholds)
        if adjustment > 0:
            result = SwapResult(result.strategy, result.sold_symbol, result.sold_amount,
                                result.bought_symbol, result.bought_amount,
                                extra_fee=result.extra_fee, income_adjustment=adjustment)
        self._emit_trade(ctx, result)
        return True

    # ------------------------------------------------------------------
    # Fallthrough
    # ------------------------------------------------------------------

    def _native_transfer_rows(self, ctx: RuleContext):
        tx = ctx.tx
        native = ctx.flows.external_native
        noisy = tx.has(TxTag.ACCOUNT_CREATE) or tx.has(TxTag.ACCOUNT_CLOSE) or \
            (tx.source or '').upper() in NOISY_SOURCES

        def _kept(transfers):
            amounts = [lamports_to_sol(n.lamports) for n in transfers]
            return sum((a for a in amounts if not (noisy and a < NATIVE_NOISE_EPSILON)), Decimal(0))

        market = self._market(tx)
        out_total = _kept(native.out_list)
        in_total = _kept(native.in_list)
        if out_total > 0:
            party = short_address(ctx.flows.counterparty)
            ctx.builder.emit(RowKind.TRANSFER_OUT, amount_out=out_total, currency_out=NATIVE_SYMBOL,
                             market=market, suffix=f"to:{party}" if party else '')
        if in_total > 0:
            party = short_address(native.in_list[0].source) if native.in_list else ''
            ctx.builder.emit(RowKind.TRANSFER_IN, amount_in=in_total, currency_in=NATIVE_SYMBOL,
                             market=market, suffix=f"from:{party}" if party else '')

    def _apply_airdrop(self, ctx: RuleContext):
        if not ctx.tx.has(TxTag.AIRDROP):
            return
        rows = ctx.builder.rows
        for i, row in enumerate(rows):
            if row.kind == RowKind.TRANSFER_IN and row.currency_in != NATIVE_SYMBOL:
                rows[i] = row.with_changes(kind=RowKind.ACQUISITION, note=f"{AIRDROP_TAG} {row.note}")
                return

    def _apply_reward(self, ctx: RuleContext):
        tx, flows = ctx.tx, ctx.flows
        if not tx.has(TxTag.REWARD):
            return
        rows = ctx.builder.rows
        market = MARKET_STAKE if tx.has(TxTag.STAKE) or tx.staking_reward_lamports else self._market(tx)
        explicit = lamports_to_sol(tx.staking_reward_lamports) if tx.staking_reward_lamports else None

        for i, row in enumerate(rows):
            if row.kind == RowKind.TRANSFER_IN and row.currency_in == NATIVE_SYMBOL:
                changes = {'kind': RowKind.INCOME, 'market': market}
                if explicit is not None:
                    changes['amount_in'] = amount_string(explicit)
                rows[i] = row.with_changes(**changes)
                return

        if explicit is not None and explicit > 0:
            ctx.builder.emit(RowKind.INCOME, amount_in=explicit, currency_in=NATIVE_SYMBOL, market=market)
            return

        for i, row in enumerate(rows):
            if row.kind == RowKind.TRANSFER_IN:
                rows[i] = row.with_changes(kind=RowKind.INCOME)
                return

        inferred = flows.delta_ex_fee
        if inferred is not None and inferred > NET_EPSILON:
            ctx.builder.emit(RowKind.INCOME, amount_in=inferred, currency_in=NATIVE_SYMBOL, market=market)

    def _safety_net(self, ctx: RuleContext):
        flows, builder = ctx.flows, ctx.builder
        delta = flows.delta
        market = self._market(ctx.tx)
        if delta is None or abs(delta) <= NET_EPSILON:
            if builder.fee_pending:
                self._emit_loss(ctx, Decimal(0), market)
            return
        if delta > 0:
            builder.emit(RowKind.TRANSFER_IN, amount_in=delta + builder.fee, currency_in=NATIVE_SYMBOL, market=market)
            return
        outflow = -delta - builder.fee
        if outflow > NET_EPSILON:
            builder.emit(RowKind.TRANSFER_OUT, amount_out=outflow, currency_out=NATIVE_SYMBOL, market=market)
        else:
            builder.emit(RowKind.LOSS, amount_out=-delta, currency_out=NATIVE_SYMBOL,
                         market=market, fee_netted=True)


def classify(transactions: Iterable, owner_address: str, derived_accounts: Iterable[str] = (),
             resolver: Optional[SymbolResolver] = None, options: Optional[ClassifyOptions] = None) -> List[AccountingRow]:
    """Classify raw or decoded transactions for one owner into rows sorted by time."""
    owner = OwnerContext.build(owner_address, derived_accounts)
    classifier = TransactionClassifier(owner, resolver or SymbolResolver(), options)
    return classifier.classify(transactions)
