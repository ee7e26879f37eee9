"""
================================================================================
MODELS - Value Types Shared Across the Pipeline
================================================================================

Row types:
    RowKind        - Closed set of accounting row kinds (import-format labels)
    AccountingRow  - One output row; amounts are decimal strings

Normalized input:
    Transaction    - Decoded provider transaction with intent tags
    NativeTransfer / TokenTransfer / AccountDelta
    TxTag          - Intent tags derived once at decode time
    OwnerContext   - Owner address plus every account it owns

Intermediate results:
    LiquidityEvent, SwapResult

Options and scanning:
    Thresholds, ClassifyOptions, DustPolicy, ScanCursor, ScanResult

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

import re
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from src.decimal_utils import to_decimal
from src.utils.constants import (
    ADJUSTMENT_TAG, AGGREGATE_TAG, BRIDGE_TOLERANCE, CSV_HEADER,
    INCIDENTAL_INCOME_CEILING, LOOSE_BRIDGE_TOLERANCE, LP_ADD_TAG,
    LP_REMOVE_TAG, MARKET_CHAIN, MARKET_LIQUIDITY,
    OPERATIONAL_OUTFLOW_CEILING, PROGRAM_LABELS, SIGNATURE_TAG,
    SUPPORTED_TIMEZONES, TIP_SANITY_CAP,
)

_SIGNATURE_RE = re.compile(re.escape(SIGNATURE_TAG) + r'([1-9A-HJ-NP-Za-km-z]+)')


# ==========================================
# ROWS
# ==========================================

class RowKind(str, Enum):
    TRADE = 'Handel'
    ACQUISITION = 'Erverv'
    INCOME = 'Inntekt'
    LOSS = 'Tap'
    TRANSFER_IN = 'Overføring-Inn'
    TRANSFER_OUT = 'Overføring-Ut'
    CONSUMPTION = 'Forbruk'
    INTEREST_INCOME = 'Renteinntekt'
    GIFT_IN = 'Gave-Inn'
    GIFT_OUT = 'Gave-Ut'
    NON_DEDUCTIBLE_LOSS = 'Tap-uten-fradrag'
    MANAGEMENT_COST = 'Forvaltningskostnad'

    def __str__(self):
        return self.value


DUST_ELIGIBLE_KINDS = frozenset({
    RowKind.TRANSFER_IN, RowKind.TRANSFER_OUT, RowKind.ACQUISITION, RowKind.LOSS,
})


@dataclass
class AccountingRow:
    """
    One row of the tax-import file.

    ``unix_time`` is internal (sorting, bucketing) and never written out.
    The signature lives in ``note`` as ``sig:<signature>``; it is the grouping
    key for consolidation.
    """
    timestamp: str
    kind: RowKind
    amount_in: str = '0'
    currency_in: str = ''
    amount_out: str = '0'
    currency_out: str = ''
    fee: str = '0'
    fee_currency: str = ''
    market: str = MARKET_CHAIN
    note: str = ''
    unix_time: int = 0

    @property
    def signature(self) -> Optional[str]:
        match = _SIGNATURE_RE.search(self.note or '')
        return match.group(1) if match else None

    @property
    def is_aggregate(self) -> bool:
        return (self.note or '').startswith(AGGREGATE_TAG)

    @property
    def is_adjustment(self) -> bool:
        return (self.note or '').split(' ', 1)[0] == ADJUSTMENT_TAG

    @property
    def is_liquidity(self) -> bool:
        note = self.note or ''
        return self.market == MARKET_LIQUIDITY or note.startswith(LP_ADD_TAG) or note.startswith(LP_REMOVE_TAG)

    @property
    def inbound(self) -> Decimal:
        return to_decimal(self.amount_in)

    @property
    def outbound(self) -> Decimal:
        return to_decimal(self.amount_out)

    @property
    def fee_amount(self) -> Decimal:
        return to_decimal(self.fee)

    def with_changes(self, **changes) -> 'AccountingRow':
        return replace(self, **changes)

    def to_record(self) -> List[str]:
        """Field values in CSV_HEADER order."""
        return [
            self.timestamp, self.kind.value, self.amount_in, self.currency_in,
            self.amount_out, self.currency_out, self.fee, self.fee_currency,
            self.market, self.note,
        ]

    def to_dict(self) -> Dict[str, str]:
        return dict(zip(CSV_HEADER, self.to_record()))

    def to_state(self) -> dict:
        """JSON-safe form including internal fields (result cache)."""
        state = asdict(self)
        state['kind'] = self.kind.value
        return state

    @classmethod
    def from_state(cls, state: dict) -> 'AccountingRow':
        values = dict(state)
        values['kind'] = RowKind(values['kind'])
        return cls(**values)


# ==========================================
# NORMALIZED TRANSACTIONS
# ==========================================

class TxTag(str, Enum):
    SWAP = 'SWAP'
    ORDER_PLACE = 'ORDER_PLACE'
    ORDER_FILL = 'ORDER_FILL'
    ORDER_CANCEL = 'ORDER_CANCEL'
    ACCOUNT_CREATE = 'ACCOUNT_CREATE'
    ACCOUNT_CLOSE = 'ACCOUNT_CLOSE'
    STAKE = 'STAKE'
    AIRDROP = 'AIRDROP'
    REWARD = 'REWARD'


@dataclass(frozen=True)
class NativeTransfer:
    source: str
    destination: str
    lamports: int


@dataclass(frozen=True)
class TokenTransfer:
    mint: str
    source_user: str = ''
    destination_user: str = ''
    source_account: str = ''
    destination_account: str = ''
    raw_amount: Optional[str] = None
    decimals: Optional[int] = None
    ui_amount: Optional[Decimal] = None
    symbol_hint: Optional[str] = None
    token_standard: str = ''
    is_nft: bool = False


@dataclass(frozen=True)
class AccountDelta:
    account: str
    lamports: int


@dataclass(frozen=True)
class Transaction:
    signature: str
    timestamp: int
    fee_lamports: int = 0
    fee_payer: Optional[str] = None
    type_hint: str = ''
    description: str = ''
    source: str = ''
    program_ids: Tuple[str, ...] = ()
    native_transfers: Tuple[NativeTransfer, ...] = ()
    token_transfers: Tuple[TokenTransfer, ...] = ()
    account_deltas: Tuple[AccountDelta, ...] = ()
    has_swap_event: bool = False
    staking_reward_lamports: Optional[int] = None
    tags: FrozenSet[TxTag] = frozenset()

    @property
    def hint_text(self) -> str:
        return (self.type_hint or self.description or '').upper()

    @property
    def venue(self) -> str:
        """Upper-cased source, type and program labels; used for venue matching."""
        labels = [PROGRAM_LABELS[p] for p in self.program_ids if p in PROGRAM_LABELS]
        parts = [self.source or '', self.type_hint or ''] + labels
        return ' '.join(p.upper().replace(' ', '_') for p in parts if p)

    def has(self, tag: TxTag) -> bool:
        return tag in self.tags

    def fee_paid_by(self, address: str) -> int:
        """Lamports of fee charged to ``address`` (0 unless it is the fee payer)."""
        if self.fee_payer and address and self.fee_payer.lower() == address.lower():
            return max(int(self.fee_lamports or 0), 0)
        return 0

    def native_delta(self, address: str) -> Optional[int]:
        """Net lamport balance change of ``address`` including the fee, None when unreported."""
        found = [d.lamports for d in self.account_deltas if d.account == address]
        return sum(found) if found else None

    def with_fee_payer(self, fee_payer: str) -> 'Transaction':
        return replace(self, fee_payer=fee_payer)


@dataclass(frozen=True)
class OwnerContext:
    """The scanned owner and every account it controls (owner address included)."""
    address: str
    owned_accounts: FrozenSet[str] = frozenset()

    @classmethod
    def build(cls, address: str, derived_accounts=()) -> 'OwnerContext':
        owned = {a for a in derived_accounts if a}
        owned.add(address)
        return cls(address=address, owned_accounts=frozenset(owned))

    def owns(self, account: Optional[str]) -> bool:
        return bool(account) and account in self.owned_accounts


# ==========================================
# INTERMEDIATE RESULTS
# ==========================================

@dataclass(frozen=True)
class TokenLeg:
    """A resolved, non-zero token movement from the owner's perspective."""
    mint: str
    symbol: str
    decimals: int
    amount: Decimal
    inbound: bool
    outbound: bool
    is_nft: bool = False
    counterparty: str = ''


@dataclass(frozen=True)
class LiquidityEvent:
    kind: str  # 'add' or 'remove'
    protocol: str
    concentrated: bool = False
    lp_symbol: Optional[str] = None
    lp_amount: Optional[Decimal] = None
    position_nft: bool = False
    deposited: Tuple[Tuple[str, Decimal], ...] = ()
    withdrawn: Tuple[Tuple[str, Decimal], ...] = ()


@dataclass(frozen=True)
class SwapResult:
    strategy: str
    sold_symbol: str
    sold_amount: Decimal
    bought_symbol: str
    bought_amount: Decimal
    extra_fee: Decimal = Decimal(0)
    income_adjustment: Decimal = Decimal(0)


# ==========================================
# OPTIONS
# ==========================================

@dataclass(frozen=True)
class Thresholds:
    bridge_tolerance: Decimal = BRIDGE_TOLERANCE
    loose_bridge_tolerance: Decimal = LOOSE_BRIDGE_TOLERANCE
    operational_outflow_ceiling: Decimal = OPERATIONAL_OUTFLOW_CEILING
    incidental_income_ceiling: Decimal = INCIDENTAL_INCOME_CEILING
    tip_sanity_cap: Decimal = TIP_SANITY_CAP

    @classmethod
    def from_config(cls, tuning: dict) -> 'Thresholds':
        tuning = tuning or {}
        base = cls()
        return cls(
            bridge_tolerance=to_decimal(tuning.get('bridge_tolerance'), base.bridge_tolerance),
            loose_bridge_tolerance=to_decimal(tuning.get('loose_bridge_tolerance'), base.loose_bridge_tolerance),
            operational_outflow_ceiling=to_decimal(tuning.get('operational_outflow_ceiling'), base.operational_outflow_ceiling),
            incidental_income_ceiling=to_decimal(tuning.get('incidental_income_ceiling'), base.incidental_income_ceiling),
            tip_sanity_cap=to_decimal(tuning.get('tip_sanity_cap'), base.tip_sanity_cap),
        )


@dataclass(frozen=True)
class ClassifyOptions:
    timezone: str = 'UTC'
    include_nfts: bool = False
    from_time: Optional[int] = None
    to_time: Optional[int] = None
    thresholds: Thresholds = field(default_factory=Thresholds)

    def __post_init__(self):
        if self.timezone not in SUPPORTED_TIMEZONES:
            raise ValueError(f"Unsupported timezone {self.timezone!r}; use one of {SUPPORTED_TIMEZONES}")

    def in_range(self, ts: int) -> bool:
        if self.from_time is not None and ts < self.from_time:
            return False
        if self.to_time is not None and ts > self.to_time:
            return False
        return True


DUST_MODES = ('off', 'remove', 'aggregate-signer', 'aggregate-period')
DUST_INTERVALS = ('day', 'week', 'month', 'year')


@dataclass(frozen=True)
class DustPolicy:
    mode: str = 'off'
    threshold: Decimal = Decimal(0)
    interval: str = 'day'
    timezone: str = 'UTC'

    def __post_init__(self):
        mode = 'aggregate-period' if self.mode == 'aggregate' else self.mode
        object.__setattr__(self, 'mode', mode)
        object.__setattr__(self, 'threshold', to_decimal(self.threshold))
        if mode not in DUST_MODES:
            raise ValueError(f"Unknown dust mode {self.mode!r}")
        if self.interval not in DUST_INTERVALS:
            raise ValueError(f"Unknown dust interval {self.interval!r}")

    @property
    def active(self) -> bool:
        return self.mode != 'off' and self.threshold > 0

    @property
    def aggregating(self) -> bool:
        return self.active and self.mode.startswith('aggregate')


# ==========================================
# SCANNING
# ==========================================

@dataclass(frozen=True)
class ScanCursor:
    """Position of a paused scan: which address is next, and per-address `before` signatures."""
    addresses: Tuple[str, ...]
    next_address_index: int = 0
    before_by_address: Tuple[Tuple[str, str], ...] = ()

    def before(self, address: str) -> Optional[str]:
        return dict(self.before_by_address).get(address)

    def to_dict(self) -> dict:
        return {
            'addresses': list(self.addresses),
            'next_address_index': self.next_address_index,
            'before_by_address': dict(self.before_by_address),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> 'ScanCursor':
        return cls(
            addresses=tuple(payload.get('addresses') or ()),
            next_address_index=int(payload.get('next_address_index') or 0),
            before_by_address=tuple(sorted((payload.get('before_by_address') or {}).items())),
        )


@dataclass
class ScanResult:
    status: str  # 'complete' or 'partial'
    transactions: List[dict] = field(default_factory=list)
    owned_accounts: Tuple[str, ...] = ()
    cursor: Optional[ScanCursor] = None
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.status == 'complete'
