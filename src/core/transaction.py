"""
Decoding of provider (enhanced-transaction) payloads into Transaction values.

Decoding happens once per transaction. Intent tags are derived here from the
type hint, source label and program ids, so that classification only ever
matches on tags.
"""

from decimal import Decimal
from typing import Any, Iterable, Optional

from src.core.errors import MalformedTransactionError
from src.core.models import (
    AccountDelta, NativeTransfer, TokenTransfer, Transaction, TxTag,
)
from src.decimal_utils import lamports_to_sol, to_decimal
from src.utils.constants import (
    ACCOUNT_CLOSE_MARKERS, ACCOUNT_CREATE_MARKERS, AIRDROP_MARKERS,
    ASSOCIATED_TOKEN_PROGRAM, ORDER_BOOK_PROGRAMS, ORDER_CANCEL_MARKERS,
    ORDER_FILL_MARKERS, ORDER_PLACE_MARKERS, REWARD_MARKERS, STAKE_MARKERS,
    STAKING_PROGRAMS,
)

NFT_STANDARDS = frozenset({
    'NONFUNGIBLE', 'NONFUNGIBLEEDITION', 'PROGRAMMABLENONFUNGIBLE',
    'PROGRAMMABLENONFUNGIBLEEDITION', 'COMPRESSED',
})


def _int(value: Any, default: int = 0) -> int:
    d = to_decimal(value, None)
    if d is None:
        return default
    return int(d)


def _contains_any(text: str, markers: Iterable[str]) -> bool:
    return any(m in text for m in markers)


def _decode_token_transfer(raw: dict) -> TokenTransfer:
    raw_amount = raw.get('rawTokenAmount') or {}
    amount_text = raw_amount.get('tokenAmount')
    decimals = raw_amount.get('decimals', raw.get('decimals'))
    standard = str(raw.get('tokenStandard') or '')
    ui_amount = raw.get('tokenAmount')
    return TokenTransfer(
        mint=str(raw.get('mint') or ''),
        source_user=raw.get('fromUserAccount') or '',
        destination_user=raw.get('toUserAccount') or '',
        source_account=raw.get('fromTokenAccount') or '',
        destination_account=raw.get('toTokenAccount') or '',
        raw_amount=str(amount_text) if amount_text not in (None, '') else None,
        decimals=_int(decimals) if decimals not in (None, '') else None,
        ui_amount=to_decimal(ui_amount) if ui_amount not in (None, '') else None,
        symbol_hint=raw.get('tokenSymbol') or raw.get('symbol') or None,
        token_standard=standard,
        is_nft=bool(raw.get('isNFT')) or standard.replace('_', '').upper() in NFT_STANDARDS,
    )


def _program_ids(raw: dict) -> tuple:
    seen = []
    if raw.get('programId'):
        seen.append(raw['programId'])
    for ix in raw.get('instructions') or []:
        if not isinstance(ix, dict):
            continue
        if ix.get('programId'):
            seen.append(ix['programId'])
        for inner in ix.get('innerInstructions') or []:
            if isinstance(inner, dict) and inner.get('programId'):
                seen.append(inner['programId'])
    return tuple(dict.fromkeys(seen))


def derive_tags(hint: str, source: str, program_ids: Iterable[str],
                has_swap_event: bool = False, staking_reward: Optional[int] = None) -> frozenset:
    """Derive intent tags from the upper-cased hint, source label and program ids."""
    hint = (hint or '').upper()
    source = (source or '').upper()
    programs = set(program_ids or ())
    tags = set()

    if 'SWAP' in hint or has_swap_event:
        tags.add(TxTag.SWAP)

    placed = _contains_any(hint, ORDER_PLACE_MARKERS)
    cancelled = _contains_any(hint, ORDER_CANCEL_MARKERS)
    if placed:
        tags.add(TxTag.ORDER_PLACE)
    if cancelled:
        tags.add(TxTag.ORDER_CANCEL)
    if _contains_any(hint, ORDER_FILL_MARKERS) or (programs & ORDER_BOOK_PROGRAMS and not placed and not cancelled):
        tags.add(TxTag.ORDER_FILL)

    if _contains_any(hint, ACCOUNT_CREATE_MARKERS):
        tags.add(TxTag.ACCOUNT_CREATE)
    elif ASSOCIATED_TOKEN_PROGRAM in programs and hint in ('', 'UNKNOWN') and TxTag.SWAP not in tags:
        tags.add(TxTag.ACCOUNT_CREATE)
    if _contains_any(hint, ACCOUNT_CLOSE_MARKERS):
        tags.add(TxTag.ACCOUNT_CLOSE)

    if _contains_any(hint, STAKE_MARKERS) or programs & STAKING_PROGRAMS or 'STAKE' in source:
        tags.add(TxTag.STAKE)
    if _contains_any(hint, AIRDROP_MARKERS):
        tags.add(TxTag.AIRDROP)
    if _contains_any(hint, REWARD_MARKERS) or staking_reward:
        tags.add(TxTag.REWARD)
    return frozenset(tags)


def decode_transaction(raw: Any) -> Transaction:
    """
    Decode one enhanced-transaction payload.

    Raises:
        MalformedTransactionError: missing signature/timestamp or non-dict input.
    """
    if not isinstance(raw, dict):
        raise MalformedTransactionError(f"Expected a transaction object, got {type(raw).__name__}")
    signature = raw.get('signature')
    if not signature:
        raise MalformedTransactionError("Transaction has no signature")
    timestamp = raw.get('timestamp', raw.get('blockTime'))
    if timestamp is None or to_decimal(timestamp, None) is None:
        raise MalformedTransactionError(f"Transaction {signature} has no timestamp")

    try:
        natives = tuple(
            NativeTransfer(
                source=n.get('fromUserAccount') or '',
                destination=n.get('toUserAccount') or '',
                lamports=_int(n.get('amount')),
            )
            for n in raw.get('nativeTransfers') or []
        )
        tokens = tuple(_decode_token_transfer(t) for t in raw.get('tokenTransfers') or [])
        deltas = tuple(
            AccountDelta(account=a.get('account') or '', lamports=_int(a.get('nativeBalanceChange')))
            for a in raw.get('accountData') or []
            if a.get('nativeBalanceChange') is not None
        )
    except AttributeError as e:
        raise MalformedTransactionError(f"Transaction {signature} has malformed transfer lists: {e}") from e

    events = raw.get('events') or {}
    reward = events.get('stakingReward') if isinstance(events, dict) else None
    reward_lamports = None
    if isinstance(reward, dict) and reward.get('amount') is not None:
        reward_lamports = _int(reward.get('amount'))
    elif reward is not None and not isinstance(reward, dict):
        reward_lamports = _int(reward)
    has_swap = bool(isinstance(events, dict) and events.get('swap'))

    type_hint = str(raw.get('type') or '')
    description = str(raw.get('description') or '')
    source = str(raw.get('source') or '')
    programs = _program_ids(raw)

    return Transaction(
        signature=str(signature),
        timestamp=_int(timestamp),
        fee_lamports=_int(raw.get('fee')),
        fee_payer=raw.get('feePayer') or None,
        type_hint=type_hint,
        description=description,
        source=source,
        program_ids=programs,
        native_transfers=natives,
        token_transfers=tokens,
        account_deltas=deltas,
        has_swap_event=has_swap,
        staking_reward_lamports=reward_lamports,
        tags=derive_tags(type_hint or description, source, programs, has_swap, reward_lamports),
    )


def fee_in_sol(tx: Transaction, address: str) -> Decimal:
    """Fee charged to ``address`` in SOL."""
    return lamports_to_sol(tx.fee_paid_by(address))
