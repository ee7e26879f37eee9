"""
================================================================================
INGESTOR - Resumable Transaction Scan
================================================================================

Builds the signature -> raw transaction map for one owner by paginating the
owner address and then each of its token accounts in turn.

Resume Contract:
    ScanCursor(addresses, next_address_index, before_by_address)
    - addresses are fixed at the first run and reused on resume
    - before_by_address always advances to the last signature seen
    - a resumed scan is seeded with the transactions already collected, so
      downstream passes never see a partial map for a signature

Outcomes:
    complete   every address exhausted (or capped)
    partial    rate limit, 5xx after retries, or cancellation; cursor set
    raises     any other ProviderError (bad key, bad address)

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from collections import OrderedDict
from typing import Iterable, List, Optional

from src.core.errors import ProviderError, RateLimitError, ScanCancelled
from src.core.models import ScanCursor, ScanResult
from src.utils.constants import MAX_PAGES_PER_ADDRESS, PAGE_SIZE
from src.utils.logger import logger


def _is_partial_failure(exc: ProviderError) -> bool:
    return isinstance(exc, RateLimitError) or (exc.status_code is not None and exc.status_code >= 500)


class ScanOrchestrator:
    def __init__(self, client, max_pages: int = MAX_PAGES_PER_ADDRESS, page_size: int = PAGE_SIZE,
                 include_derived: bool = True, cancel_event=None):
        self.client = client
        self.max_pages = max_pages
        self.page_size = page_size
        self.include_derived = include_derived
        self.cancel_event = cancel_event

    def discover_addresses(self, owner_address: str) -> List[str]:
        addresses = [owner_address]
        if not self.include_derived:
            return addresses
        try:
            derived = self.client.token_accounts_by_owner(owner_address)
        except ProviderError as e:
            logger.warning(f"Token account discovery failed ({e}); scanning the owner address only")
            return addresses
        for account in derived:
            if account and account not in addresses:
                addresses.append(account)
        logger.info(f"Scanning {owner_address[:8]} and {len(addresses) - 1} token accounts")
        return addresses

    def scan(self, owner_address: str, from_time: Optional[int] = None, to_time: Optional[int] = None,
             cursor: Optional[ScanCursor] = None, seed: Iterable[dict] = ()) -> ScanResult:
        """
        Run or resume a scan.

        Args:
            owner_address: wallet to scan
            from_time / to_time: optional unix-second bounds
            cursor: cursor from a previous partial result
            seed: raw transactions collected by the previous run

        Returns:
            ScanResult with raw transactions in first-seen order
        """
        transactions: "OrderedDict[str, dict]" = OrderedDict()
        for raw in seed:
            sig = raw.get('signature') if isinstance(raw, dict) else None
            if sig and sig not in transactions:
                transactions[sig] = raw

        if cursor is not None and cursor.addresses:
            addresses = list(cursor.addresses)
            start = cursor.next_address_index
            before_by_address = dict(cursor.before_by_address)
        else:
            addresses = self.discover_addresses(owner_address)
            start = 0
            before_by_address = {}

        def _partial(index: int, error: str) -> ScanResult:
            resume = ScanCursor(
                addresses=tuple(addresses),
                next_address_index=index,
                before_by_address=tuple(sorted(before_by_address.items())),
            )
            logger.warning(f"Scan paused at address {index + 1}/{len(addresses)}: {error}")
            return ScanResult('partial', list(transactions.values()), tuple(addresses[1:]), resume, error)

        for index in range(start, len(addresses)):
            address = addresses[index]
            fetched = 0
            try:
                for page, last in self.client.iter_pages(
                        address, before=before_by_address.get(address), start_time=from_time,
                        end_time=to_time, max_pages=self.max_pages, limit=self.page_size,
                        cancel_event=self.cancel_event):
                    for raw in page:
                        sig = raw.get('signature') if isinstance(raw, dict) else None
                        if sig and sig not in transactions:
                            transactions[sig] = raw
                    fetched += len(page)
                    if last:
                        before_by_address[address] = last
            except ScanCancelled as e:
                return _partial(index, str(e))
            except ProviderError as e:
                if _is_partial_failure(e):
                    return _partial(index, str(e))
                raise
            logger.info(f"{address[:8]}: {fetched} transactions ({len(transactions)} unique so far)")

        return ScanResult('complete', list(transactions.values()), tuple(addresses[1:]), None, None)
