"""
================================================================================
PIPELINE - Scan, Classify, Dust, Consolidate
================================================================================

Composes the stages in their fixed order:

    scan (resumable) -> decode -> enrichment -> classify
        -> apply_dust_policy -> consolidate_by_signature

process_transactions() is the offline part (no network) used by both the
scan and the convert command. ExportPipeline adds the provider scan, the
enrichment batches and the result cache.

Counters:
    raw_count - rows produced by the classifier (before dust)
    count     - rows after dust and consolidation

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from src.core.cache import TTLCache, request_key
from src.core.errors import MalformedTransactionError, ScanCancelled
from src.core.models import (
    AccountingRow, ClassifyOptions, DustPolicy, OwnerContext, ScanCursor,
    Thresholds, Transaction,
)
from src.core.transaction import decode_transaction
from src.processors.classifier import TransactionClassifier
from src.processors.consolidator import consolidate_by_signature
from src.processors.dust import apply_dust_policy
from src.processors.enrichment import Enricher
from src.processors.ingestor import ScanOrchestrator
from src.processors.signatures import TransactionIndex
from src.processors.symbols import SymbolResolver
from src.utils.constants import MAX_PAGES_PER_ADDRESS, PAGE_SIZE, RESULT_CACHE_TTL_SECONDS
from src.utils.logger import logger


@dataclass(frozen=True)
class ExportRequest:
    address: str
    from_time: Optional[int] = None
    to_time: Optional[int] = None
    timezone: str = 'UTC'
    include_nfts: bool = False
    dust: DustPolicy = field(default_factory=DustPolicy)
    thresholds: Thresholds = field(default_factory=Thresholds)

    def classify_options(self) -> ClassifyOptions:
        return ClassifyOptions(timezone=self.timezone, include_nfts=self.include_nfts,
                               from_time=self.from_time, to_time=self.to_time, thresholds=self.thresholds)

    def cache_key(self) -> str:
        return request_key(
            address=self.address, from_time=self.from_time, to_time=self.to_time,
            timezone=self.timezone, include_nfts=self.include_nfts,
            dust_mode=self.dust.mode, dust_threshold=str(self.dust.threshold),
            dust_interval=self.dust.interval, thresholds=repr(self.thresholds),
        )


@dataclass
class PipelineResult:
    rows: List[AccountingRow]
    raw_count: int
    status: str = 'complete'
    cursor: Optional[ScanCursor] = None
    error: Optional[str] = None
    transactions: List[dict] = field(default_factory=list)
    from_cache: bool = False

    @property
    def count(self) -> int:
        return len(self.rows)

    @property
    def complete(self) -> bool:
        return self.status == 'complete'

    def to_state(self) -> dict:
        state = {
            'rows': [r.to_state() for r in self.rows],
            'raw_count': self.raw_count,
            'status': self.status,
            'cursor': self.cursor.to_dict() if self.cursor else None,
            'error': self.error,
        }
        # A partial result is the resume seed; it must survive a cache hit
        if not self.complete:
            state['transactions'] = list(self.transactions)
        return state

    @classmethod
    def from_state(cls, state: dict) -> 'PipelineResult':
        return cls(
            rows=[AccountingRow.from_state(r) for r in state.get('rows') or []],
            raw_count=int(state.get('raw_count') or 0),
            status=state.get('status') or 'complete',
            cursor=ScanCursor.from_dict(state['cursor']) if state.get('cursor') else None,
            error=state.get('error'),
            transactions=list(state.get('transactions') or []),
            from_cache=True,
        )


def decode_all(transactions: Iterable) -> List[Transaction]:
    """Decode raw payloads, skipping (and logging) the malformed ones."""
    decoded = []
    for raw in transactions:
        if isinstance(raw, Transaction):
            decoded.append(raw)
            continue
        try:
            decoded.append(decode_transaction(raw))
        except MalformedTransactionError as e:
            logger.warning(f"Skipping malformed transaction: {e}")
    return decoded


def process_transactions(transactions: Iterable, owner_address: str, derived_accounts: Iterable[str] = (),
                         resolver: Optional[SymbolResolver] = None, options: Optional[ClassifyOptions] = None,
                         dust_policy: Optional[DustPolicy] = None, clock=None) -> Tuple[List[AccountingRow], int]:
    """
    classify -> apply_dust_policy -> consolidate_by_signature.

    Returns:
        (final rows, classifier row count before dust)
    """
    options = options or ClassifyOptions()
    dust_policy = dust_policy or DustPolicy(timezone=options.timezone)
    owner = OwnerContext.build(owner_address, derived_accounts)
    decoded = decode_all(transactions)

    classifier = TransactionClassifier(owner, resolver or SymbolResolver(), options)
    rows = classifier.classify(decoded)
    raw_count = len(rows)

    index = TransactionIndex(decoded, owner)
    dust_kwargs = {'clock': clock} if clock is not None else {}
    rows = apply_dust_policy(rows, dust_policy, index=index, owner_address=owner_address, **dust_kwargs)
    dust_threshold = dust_policy.threshold if dust_policy.active else Decimal(0)
    rows = consolidate_by_signature(rows, index, owner, dust_threshold, options.thresholds)

    logger.info(f"Classified {len(decoded)} transactions: {raw_count} rows before dust, {len(rows)} after")
    return rows, raw_count


def _exhausted_cursor(owner_address: str, owned_accounts: Tuple[str, ...]) -> ScanCursor:
    """Cursor past the last address: resuming fetches nothing and re-runs enrichment on the seed."""
    addresses = (owner_address,) + tuple(owned_accounts)
    return ScanCursor(addresses=addresses, next_address_index=len(addresses))


class ExportPipeline:
    """Provider scan plus offline processing, cached per request."""

    def __init__(self, client, cache: Optional[TTLCache] = None, enricher: Optional[Enricher] = None,
                 max_pages: int = MAX_PAGES_PER_ADDRESS, page_size: int = PAGE_SIZE,
                 include_derived: bool = True, cancel_event=None, clock=None):
        self.client = client
        self.cache = cache if cache is not None else TTLCache(RESULT_CACHE_TTL_SECONDS)
        self.enricher = enricher or Enricher(client, cancel_event=cancel_event)
        self.orchestrator = ScanOrchestrator(client, max_pages=max_pages, page_size=page_size,
                                             include_derived=include_derived, cancel_event=cancel_event)
        self.clock = clock

    def run(self, request: ExportRequest, cursor: Optional[ScanCursor] = None, seed: Iterable[dict] = (),
            use_cache: bool = True) -> PipelineResult:
        key = request.cache_key()
        if use_cache and cursor is None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info(f"Using cached result for {request.address[:8]}")
                return PipelineResult.from_state(cached)

        scan = self.orchestrator.scan(request.address, request.from_time, request.to_time, cursor=cursor, seed=seed)
        status, scan_cursor, error = scan.status, scan.cursor, scan.error
        owner = OwnerContext.build(request.address, scan.owned_accounts)
        decoded = decode_all(scan.transactions)
        resolver = SymbolResolver()
        try:
            decoded = self.enricher.backfill_fee_payers(decoded)
            decoded = self.enricher.resolve_account_owners(decoded, owner)
            self.enricher.enrich_metadata(decoded, resolver)
        except ScanCancelled as e:
            logger.warning(f"Enrichment cancelled; classifying with what was gathered ({e})")
            status, error = 'partial', str(e)
            scan_cursor = scan_cursor or _exhausted_cursor(request.address, scan.owned_accounts)

        rows, raw_count = process_transactions(
            decoded, request.address, scan.owned_accounts, resolver,
            request.classify_options(), request.dust, clock=self.clock,
        )
        result = PipelineResult(rows=rows, raw_count=raw_count, status=status, cursor=scan_cursor,
                                error=error, transactions=scan.transactions)
        self.cache.set(key, result.to_state())
        return result

    def clear(self, request: Optional[ExportRequest] = None) -> bool:
        if request is None:
            self.cache.clear()
            return True
        return self.cache.delete(request.cache_key())
