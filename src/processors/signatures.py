"""Per-signature facts shared by the dust and consolidation passes."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Union

from src.core.models import OwnerContext, Transaction, TxTag
from src.core.transaction import fee_in_sol
from src.processors.transfers import balance_delta, native_in_out


@dataclass(frozen=True)
class SignatureFacts:
    signature: str
    signer: Optional[str]
    venue: str
    description: str
    tags: FrozenSet[TxTag]
    fee: Decimal
    delta: Optional[Decimal]
    native_in: Decimal
    native_out: Decimal
    has_swap_event: bool = False

    def has(self, tag: TxTag) -> bool:
        return tag in self.tags

    @property
    def delta_ex_fee(self) -> Optional[Decimal]:
        return None if self.delta is None else self.delta + self.fee


class TransactionIndex:
    """
    Signature lookups over the retained transaction map.

    Facts are derived on first access and memoized; the index is built after
    the scan completes and only read afterwards.
    """

    def __init__(self, transactions: Union[Mapping[str, Transaction], Iterable[Transaction]], owner: OwnerContext):
        if isinstance(transactions, Mapping):
            self._transactions: Dict[str, Transaction] = dict(transactions)
        else:
            self._transactions = {tx.signature: tx for tx in transactions}
        self.owner = owner
        self._facts: Dict[str, SignatureFacts] = {}

    def __contains__(self, signature) -> bool:
        return signature in self._transactions

    def __len__(self):
        return len(self._transactions)

    def transaction(self, signature: str) -> Optional[Transaction]:
        return self._transactions.get(signature)

    def facts(self, signature: Optional[str]) -> Optional[SignatureFacts]:
        if not signature:
            return None
        if signature in self._facts:
            return self._facts[signature]
        tx = self._transactions.get(signature)
        if tx is None:
            return None
        native = native_in_out(tx, self.owner.address, exclude=self.owner.owned_accounts)
        facts = SignatureFacts(
            signature=signature,
            signer=tx.fee_payer,
            venue=tx.venue,
            description=tx.description,
            tags=tx.tags,
            fee=fee_in_sol(tx, self.owner.address),
            delta=balance_delta(tx, self.owner.address),
            native_in=native.in_amount,
            native_out=native.out_amount,
            has_swap_event=tx.has_swap_event,
        )
        self._facts[signature] = facts
        return facts

    def signer(self, signature: Optional[str]) -> Optional[str]:
        facts = self.facts(signature)
        return facts.signer if facts else None
