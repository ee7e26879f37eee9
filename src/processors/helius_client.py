"""
================================================================================
HELIUS CLIENT - Enhanced Transactions, RPC and Token Metadata
================================================================================

Thin requests-based client for the providers the scan depends on.

Endpoints:
    GET  {api}/v0/addresses/{address}/transactions   enhanced tx pages
    POST {api}/v0/token-metadata                     secondary metadata
    GET  {jupiter}/tokens/v2/search?query=a,b,c      primary metadata
    POST {rpc}/?api-key=...                          JSON-RPC, public fallback

Retry Policy:
    429 and 5xx are retried through NetworkRetry, honouring Retry-After.
    Other 4xx raise ProviderError at once. A 404 whose message names a
    `before` signature continues pagination from that signature once.

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

import re
import threading
import time
from typing import Dict, Iterator, List, Optional, Tuple

import requests

from src.core.errors import ProviderError, RateLimitError, ScanCancelled
from src.processors.network_retry import NetworkRetry
from src.utils.constants import (
    API_RETRY_MAX_ATTEMPTS, API_TIMEOUT_SECONDS, HELIUS_API_BASE,
    HELIUS_RPC_BASE, JUPITER_SEARCH_URL, MAX_PAGES_PER_ADDRESS,
    METADATA_CHUNK_SIZE, PAGE_DELAY_SECONDS, PAGE_SIZE, PUBLIC_RPC_URL,
    RPC_CHUNK_SIZE, TOKEN_PROGRAM,
)
from src.utils.logger import logger

_API_KEY_RE = re.compile(r'(api-key=)[^&\s]+', re.IGNORECASE)
_BEFORE_HINT_RE = re.compile(r'before.*set to', re.IGNORECASE)
_HINT_SIGNATURE_RES = (
    re.compile(r'set to\s+`?([1-9A-HJ-NP-Za-km-z]+)', re.IGNORECASE),
    re.compile(r'before[`\'":\s]+([1-9A-HJ-NP-Za-km-z]+)', re.IGNORECASE),
)


def redact(text: str) -> str:
    return _API_KEY_RE.sub(r'\1***', text or '')


def chunked(items, size):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def normalize_time_bounds(start: Optional[int], end: Optional[int], now: int) -> Tuple[Optional[int], Optional[int]]:
    """Swap flipped bounds and clamp the end to ``now``."""
    if start is not None and end is not None and start > end:
        start, end = end, start
    if end is not None and end > now:
        end = now
    return start, end


def pagination_hint(message: str) -> Optional[str]:
    """Signature suggested by a 404 "query again with `before` set to X" message."""
    if not _BEFORE_HINT_RE.search(message or ''):
        return None
    for pattern in _HINT_SIGNATURE_RES:
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


def _error_detail(resp) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or resp.reason or '').strip()
    if isinstance(body, dict):
        for key in ('error', 'message', 'msg', 'detail'):
            value = body.get(key)
            if isinstance(value, dict):
                value = value.get('message')
            if isinstance(value, str) and value:
                return value
    return str(body)


def _retry_after(resp) -> Optional[float]:
    raw = resp.headers.get('Retry-After') if resp.headers else None
    try:
        return max(float(raw), 0.0) if raw is not None else None
    except (TypeError, ValueError):
        return None


class HeliusClient:
    def __init__(self, api_key: Optional[str] = None, session=None, timeout=API_TIMEOUT_SECONDS,
                 retries=API_RETRY_MAX_ATTEMPTS, page_delay=PAGE_DELAY_SECONDS, sleep=time.sleep):
        self.api_key = (api_key or '').strip()
        self._session = session
        self._local = threading.local()
        self.timeout = timeout
        self.retries = retries
        self.page_delay = page_delay
        self.sleep = sleep

    # ------------------------------------------
    # transport
    # ------------------------------------------

    @property
    def session(self):
        """The injected session, else one requests.Session per thread (enrichment workers)."""
        if self._session is not None:
            return self._session
        session = getattr(self._local, 'session', None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _require_key(self):
        if not self.api_key:
            raise ProviderError("Missing Helius API key. Set HELIUS_API_KEY or pass --api-key.")

    def _check(self, resp, url: str):
        if resp.status_code < 400:
            return resp
        detail = f"Helius {resp.status_code}: {_error_detail(resp)} ({redact(url)})"
        if resp.status_code == 429:
            raise RateLimitError(detail, retry_after=_retry_after(resp))
        raise ProviderError(detail, status_code=resp.status_code)

    def _request(self, method: str, url: str, params=None, json=None, retries=None, context="Helius"):
        def _call():
            resp = self.session.request(method, url, params=params, json=json, timeout=self.timeout,
                                        headers={'accept': 'application/json'})
            return self._check(resp, url).json()

        return NetworkRetry.run(_call, retries=retries or self.retries, context=context)

    # ------------------------------------------
    # enhanced transactions
    # ------------------------------------------

    def fetch_page(self, address: str, before: Optional[str] = None, limit: int = PAGE_SIZE,
                   start_time: Optional[int] = None, end_time: Optional[int] = None) -> List[dict]:
        """One page of enhanced transactions, newest first."""
        self._require_key()
        params = {'api-key': self.api_key, 'limit': min(max(int(limit), 1), PAGE_SIZE)}
        if before:
            params['before'] = before
        if start_time is not None:
            params['startTime'] = int(start_time)
        if end_time is not None:
            params['endTime'] = int(end_time)
        url = f"{HELIUS_API_BASE}/v0/addresses/{address}/transactions"
        page = self._request('GET', url, params=params, context=f"Page {address[:8]}")
        return page if isinstance(page, list) else []

    def iter_pages(self, address: str, before: Optional[str] = None, start_time: Optional[int] = None,
                   end_time: Optional[int] = None, max_pages: int = MAX_PAGES_PER_ADDRESS,
                   limit: int = PAGE_SIZE, cancel_event=None, now: Optional[int] = None) -> Iterator[Tuple[List[dict], str]]:
        """
        Yield ``(page, last_signature)`` until the history is exhausted or
        ``max_pages`` pages were returned.

        Cancellation is checked before every page fetch.
        """
        start_time, end_time = normalize_time_bounds(start_time, end_time, int(now if now is not None else time.time()))
        seen = {before} if before else set()
        pages = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise ScanCancelled(f"Scan of {address} cancelled")
            try:
                page = self.fetch_page(address, before, limit, start_time, end_time)
            except ProviderError as e:
                suggested = pagination_hint(str(e)) if e.status_code == 404 else None
                if suggested and suggested not in seen:
                    logger.info(f"Provider suggested continuing {address[:8]} before {suggested[:8]}")
                    seen.add(suggested)
                    before = suggested
                    self._pause()
                    continue
                raise
            if not page:
                return
            last = page[-1].get('signature') if isinstance(page[-1], dict) else None
            if not last:
                yield page, before
                return
            yield page, last
            if last in seen:
                return
            seen.add(last)
            before = last
            pages += 1
            if max_pages and pages >= max_pages:
                return
            self._pause()

    def _pause(self):
        if self.page_delay > 0:
            self.sleep(self.page_delay)

    # ------------------------------------------
    # JSON-RPC
    # ------------------------------------------

    def _rpc_endpoints(self) -> List[str]:
        endpoints = []
        if self.api_key:
            endpoints.append(f"{HELIUS_RPC_BASE}/?api-key={self.api_key}")
        endpoints.append(PUBLIC_RPC_URL)
        return endpoints

    def rpc_call(self, method: str, params: list, retries: int = 2):
        """Call ``method`` on the Helius RPC, falling back to the public RPC."""
        body = {'jsonrpc': '2.0', 'id': 1, 'method': method, 'params': params}
        errors = []
        for endpoint in self._rpc_endpoints():
            try:
                payload = self._request('POST', endpoint, json=body, retries=retries, context=f"RPC {method}")
            except (requests.RequestException, ProviderError, ValueError) as e:
                errors.append(f"{redact(endpoint)}: {redact(str(e))}")
                continue
            if isinstance(payload, dict) and payload.get('error'):
                err = payload['error']
                errors.append(f"{redact(endpoint)}: {err.get('message') if isinstance(err, dict) else err}")
                continue
            return payload.get('result') if isinstance(payload, dict) else None
        raise ProviderError(f"All RPC endpoints failed for {method}: {' | '.join(errors)}")

    def token_accounts_by_owner(self, owner: str) -> List[str]:
        result = self.rpc_call(
            'getTokenAccountsByOwner',
            [owner, {'programId': TOKEN_PROGRAM}, {'encoding': 'jsonParsed'}],
        )
        value = (result or {}).get('value') if isinstance(result, dict) else None
        if not isinstance(value, list):
            return []
        return [v['pubkey'] for v in value if isinstance(v, dict) and isinstance(v.get('pubkey'), str)]

    def owners_of(self, accounts: List[str]) -> Dict[str, str]:
        """Owner wallet of each token account (accounts the RPC cannot parse are omitted)."""
        owners: Dict[str, str] = {}
        accounts = [a for a in accounts if a]
        for part in chunked(accounts, RPC_CHUNK_SIZE):
            result = self.rpc_call('getMultipleAccounts', [part, {'encoding': 'jsonParsed'}])
            values = (result or {}).get('value') or [] if isinstance(result, dict) else []
            for account, value in zip(part, values):
                try:
                    owner = value['data']['parsed']['info']['owner']
                except (KeyError, TypeError):
                    continue
                if isinstance(owner, str) and owner:
                    owners[account] = owner
        return owners

    def fee_payer(self, signature: str) -> Optional[str]:
        """First account key of the transaction, or the first signer."""
        result = self.rpc_call(
            'getTransaction',
            [signature, {'encoding': 'jsonParsed', 'maxSupportedTransactionVersion': 0}],
        )
        try:
            keys = result['transaction']['message']['accountKeys']
        except (KeyError, TypeError):
            return None
        if not isinstance(keys, list) or not keys:
            return None
        first = keys[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict) and isinstance(first.get('pubkey'), str):
            return first['pubkey']
        for key in keys:
            if isinstance(key, dict) and key.get('signer') and isinstance(key.get('pubkey'), str):
                return key['pubkey']
        return None

    # ------------------------------------------
    # token metadata
    # ------------------------------------------

    def token_metadata(self, mints: List[str]) -> Dict[str, dict]:
        """Helius token-metadata: mint -> {'symbol', 'decimals'}."""
        self._require_key()
        found: Dict[str, dict] = {}
        url = f"{HELIUS_API_BASE}/v0/token-metadata"
        for part in chunked(list(mints), METADATA_CHUNK_SIZE):
            items = self._request('POST', url, params={'api-key': self.api_key},
                                  json={'mintAccounts': part}, retries=4, context="Token metadata")
            for item in items if isinstance(items, list) else []:
                parsed = _parse_helius_metadata(item)
                if parsed:
                    found[parsed[0]] = parsed[1]
        return found

    def jupiter_token_metadata(self, mints: List[str]) -> Dict[str, dict]:
        """Jupiter token search (no key): mint -> {'symbol', 'decimals'}; failed chunks are skipped."""
        found: Dict[str, dict] = {}
        for part in chunked(list(mints), METADATA_CHUNK_SIZE):
            try:
                items = self._request('GET', JUPITER_SEARCH_URL, params={'query': ','.join(part)},
                                      retries=2, context="Jupiter search")
            except (requests.RequestException, ProviderError, ValueError) as e:
                logger.debug(f"Jupiter metadata chunk skipped: {e}")
                continue
            for item in items if isinstance(items, list) else []:
                mint = item.get('id') if isinstance(item, dict) else None
                if not isinstance(mint, str) or not mint:
                    continue
                symbol = item.get('symbol')
                decimals = item.get('decimals')
                found[mint] = {
                    'symbol': symbol if isinstance(symbol, str) and symbol else None,
                    'decimals': decimals if isinstance(decimals, int) else None,
                }
        return found


def _dig(item, *path):
    for key in path:
        if not isinstance(item, dict):
            return None
        item = item.get(key)
    return item


def _parse_helius_metadata(item) -> Optional[Tuple[str, dict]]:
    if not isinstance(item, dict):
        return None
    mint = (item.get('mint') or item.get('mintAddress') or item.get('id') or item.get('address')
            or _dig(item, 'onChainMetadata', 'mintAddress'))
    if not isinstance(mint, str) or not mint:
        return None
    symbol = (item.get('symbol') or item.get('tokenSymbol')
              or _dig(item, 'onChainMetadata', 'metadata', 'symbol')
              or _dig(item, 'offChainMetadata', 'metadata', 'symbol')
              or _dig(item, 'metadata', 'symbol'))
    decimals = item.get('decimals')
    if decimals is None:
        decimals = item.get('tokenDecimals')
    if decimals is None:
        decimals = _dig(item, 'onChainAccountInfo', 'data', 'parsed', 'info', 'decimals')
    try:
        decimals = int(decimals) if decimals is not None else None
    except (TypeError, ValueError):
        decimals = None
    return mint, {
        'symbol': symbol if isinstance(symbol, str) and symbol else None,
        'decimals': decimals,
    }
