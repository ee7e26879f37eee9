"""
================================================================================
ENRICHMENT - Concurrent Metadata, Fee-Payer and Rate Lookups
================================================================================

External lookups that run between the scan and classification. Each batch
is submitted to a bounded ThreadPoolExecutor; every future fails on its own
and a failure leaves its keys absent (the classifier then degrades to the
next fallback). Results are merged into plain dicts keyed by mint,
signature, account or date.

Steps:
    1. enrich_metadata        Jupiter first, Helius for the rest
    2. backfill_fee_payers    getTransaction for txs without a fee payer
    3. resolve_account_owners owner wallet behind bare token accounts
    4. income_rates           fiat rate per income-row date

Cancellation is checked before every batch.

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

import concurrent.futures
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from src.core.errors import EnrichmentUnavailableError, ScanCancelled
from src.core.models import AccountingRow, OwnerContext, RowKind, Transaction
from src.processors.helius_client import chunked
from src.processors.symbols import SymbolResolver, mints_needing_metadata
from src.utils.constants import ENRICHMENT_WORKERS, METADATA_CHUNK_SIZE
from src.utils.logger import logger


class Enricher:
    def __init__(self, client, workers: int = ENRICHMENT_WORKERS, cancel_event=None, use_jupiter: bool = True):
        self.client = client
        self.workers = max(1, int(workers))
        self.cancel_event = cancel_event
        self.use_jupiter = use_jupiter

    def _check_cancel(self, label: str):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScanCancelled(f"Cancelled before {label}")

    @staticmethod
    def _lookup(func: Callable, key, label: str):
        try:
            return func(key)
        except Exception as e:
            raise EnrichmentUnavailableError(f"{label} lookup failed for {str(key)[:16]}: {e}") from e

    def run_batch(self, func: Callable, keys: List, label: str, batch_size: Optional[int] = None) -> Dict:
        """
        Call ``func(key)`` for every key and collect non-None results.

        Keys are processed in batches of ``batch_size`` (default: 4 per
        worker); cancellation is checked before each batch. A failing lookup
        surfaces as EnrichmentUnavailableError and only drops its own key.
        """
        results: Dict = {}
        keys = list(keys)
        if not keys:
            return results
        batch_size = batch_size or self.workers * 4
        failures = 0
        with concurrent.futures.ThreadPoolExecutor(max_workers=min(self.workers, len(keys))) as ex:
            for batch in chunked(keys, batch_size):
                self._check_cancel(label)
                futures = {ex.submit(self._lookup, func, key, label): key for key in batch}
                for future in concurrent.futures.as_completed(futures):
                    key = futures[future]
                    try:
                        value = future.result()
                    except EnrichmentUnavailableError as e:
                        failures += 1
                        logger.debug(str(e))
                        continue
                    if value is not None:
                        results[key] = value
        if failures:
            logger.info(f"{label}: {failures} of {len(keys)} lookups failed; continuing without them")
        return results

    # ------------------------------------------
    # token metadata
    # ------------------------------------------

    def _merge_chunks(self, fetch: Callable, mints: List[str], label: str) -> Dict[str, dict]:
        chunks = [tuple(c) for c in chunked(mints, METADATA_CHUNK_SIZE)]
        merged: Dict[str, dict] = {}
        for found in self.run_batch(lambda part: fetch(list(part)), chunks, label).values():
            merged.update(found)
        return merged

    def enrich_metadata(self, transactions: Iterable[Transaction], resolver: SymbolResolver) -> int:
        """Fill the resolver's primary/secondary maps; returns how many mints were looked up."""
        transactions = list(transactions)
        mints = mints_needing_metadata(transactions, resolver)
        if not mints:
            return 0
        missing = mints
        if self.use_jupiter:
            primary = self._merge_chunks(self.client.jupiter_token_metadata, mints, "Jupiter metadata")
            resolver.add_primary(primary)
            missing = [m for m in mints if not (primary.get(m) or {}).get('symbol')]
        if missing:
            secondary = self._merge_chunks(self.client.token_metadata, missing, "Helius metadata")
            resolver.add_secondary(secondary)
        logger.info(f"Metadata lookup for {len(mints)} mints ({len(missing)} needed the secondary source)")
        return len(mints)

    # ------------------------------------------
    # fee payers
    # ------------------------------------------

    def backfill_fee_payers(self, transactions: Iterable[Transaction]) -> List[Transaction]:
        transactions = list(transactions)
        missing = [tx.signature for tx in transactions if not tx.fee_payer]
        if not missing:
            return transactions
        payers = self.run_batch(self.client.fee_payer, missing, "Fee payer")
        return [tx.with_fee_payer(payers[tx.signature]) if tx.signature in payers else tx for tx in transactions]

    # ------------------------------------------
    # token-account owners
    # ------------------------------------------

    def resolve_account_owners(self, transactions: Iterable[Transaction], owner: OwnerContext) -> List[Transaction]:
        """Fill empty user fields of token transfers from the owner of the token account."""
        transactions = list(transactions)
        accounts = []
        for tx in transactions:
            for t in tx.token_transfers:
                if not t.source_user and t.source_account and not owner.owns(t.source_account):
                    accounts.append(t.source_account)
                if not t.destination_user and t.destination_account and not owner.owns(t.destination_account):
                    accounts.append(t.destination_account)
        accounts = list(dict.fromkeys(accounts))
        if not accounts:
            return transactions

        chunks = [tuple(c) for c in chunked(accounts, METADATA_CHUNK_SIZE)]
        owners: Dict[str, str] = {}
        for found in self.run_batch(lambda part: self.client.owners_of(list(part)), chunks, "Account owner").values():
            owners.update(found)
        if not owners:
            return transactions

        def _fill(tx: Transaction) -> Transaction:
            changed = []
            for t in tx.token_transfers:
                updates = {}
                if not t.source_user and t.source_account in owners:
                    updates['source_user'] = owners[t.source_account]
                if not t.destination_user and t.destination_account in owners:
                    updates['destination_user'] = owners[t.destination_account]
                changed.append(replace(t, **updates) if updates else t)
            return replace(tx, token_transfers=tuple(changed))

        return [_fill(tx) for tx in transactions]

    # ------------------------------------------
    # income valuation
    # ------------------------------------------

    def income_rates(self, rows: Iterable[AccountingRow], quote: str, rate_fetcher) -> Dict[tuple, object]:
        """(currency, date) -> rate for every Inntekt row; unpriced keys are absent."""
        keys = []
        for row in rows:
            if row.kind == RowKind.INCOME and row.currency_in:
                keys.append((row.currency_in, row.timestamp[:10]))
        keys = list(dict.fromkeys(keys))
        return self.run_batch(lambda key: rate_fetcher.rate_for(key[0], quote, key[1]), keys, "Income rate")
