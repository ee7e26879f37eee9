"""Token symbol and decimals resolution.

Symbol priority: wrapped-SOL constant, per-transfer hint, primary metadata
(Jupiter), secondary metadata (Helius), local hint table, placeholder.
Decimals follow the same order independently of the symbol, defaulting to 6.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from src.decimal_utils import normalize_currency_code
from src.utils.constants import (
    DEFAULT_TOKEN_DECIMALS, DEFI_LP_PATTERNS, NATIVE_DECIMALS, NATIVE_SYMBOL,
    TOKEN_HINTS, WSOL_MINT,
)


@dataclass(frozen=True)
class ResolvedToken:
    symbol: str
    decimals: int
    source: str


def placeholder_symbol(mint: str) -> str:
    return normalize_currency_code(f"TOKEN-{(mint or '')[:6]}")


def is_lp_symbol(symbol: str) -> bool:
    """True when a symbol looks like a pool receipt token."""
    upper = (symbol or '').upper()
    return any(p in upper for p in DEFI_LP_PATTERNS)


class SymbolResolver:
    """
    Resolves mints to canonical (symbol, decimals).

    Metadata maps hold ``{mint: {'symbol': str|None, 'decimals': int|None}}``.
    They are filled by the enrichment step before classification starts and
    only read afterwards.
    """

    def __init__(self, primary: Optional[Mapping[str, dict]] = None,
                 secondary: Optional[Mapping[str, dict]] = None,
                 hints: Optional[Mapping[str, dict]] = None):
        self.primary: Dict[str, dict] = dict(primary or {})
        self.secondary: Dict[str, dict] = dict(secondary or {})
        self.hints = dict(TOKEN_HINTS if hints is None else hints)
        self._lock = threading.Lock()

    def add_primary(self, metadata: Mapping[str, dict]):
        with self._lock:
            self.primary.update(metadata)

    def add_secondary(self, metadata: Mapping[str, dict]):
        with self._lock:
            self.secondary.update(metadata)

    def _sources(self, mint: str, hinted_symbol, hinted_decimals):
        yield 'hint', {'symbol': hinted_symbol, 'decimals': hinted_decimals}
        yield 'primary', self.primary.get(mint) or {}
        yield 'secondary', self.secondary.get(mint) or {}
        yield 'local', self.hints.get(mint) or {}

    def resolve(self, mint: str, hinted_symbol: Optional[str] = None,
                hinted_decimals: Optional[int] = None) -> ResolvedToken:
        if mint == WSOL_MINT:
            return ResolvedToken(NATIVE_SYMBOL, NATIVE_DECIMALS, 'native')

        symbol, origin = None, 'placeholder'
        decimals = None
        for name, meta in self._sources(mint, hinted_symbol, hinted_decimals):
            raw_symbol = (meta.get('symbol') or '').strip()
            if symbol is None and raw_symbol:
                symbol, origin = raw_symbol, name
            if decimals is None and meta.get('decimals') is not None:
                try:
                    decimals = int(meta['decimals'])
                except (TypeError, ValueError):
                    pass

        canonical = normalize_currency_code(symbol) if symbol else placeholder_symbol(mint)
        # Non-wrapped mints may not claim the native symbol
        if canonical == NATIVE_SYMBOL:
            canonical, origin = placeholder_symbol(mint), 'placeholder'

        return ResolvedToken(
            symbol=canonical,
            decimals=decimals if decimals is not None and decimals >= 0 else DEFAULT_TOKEN_DECIMALS,
            source=origin,
        )

    def needs_metadata(self, mint: str, hinted_symbol: Optional[str] = None) -> bool:
        if not mint or mint == WSOL_MINT or mint in self.hints:
            return False
        if hinted_symbol and hinted_symbol.strip():
            return False
        return mint not in self.primary and mint not in self.secondary


def mints_needing_metadata(transactions: Iterable, resolver: SymbolResolver) -> List[str]:
    """Mints that lack both a per-transfer symbol hint and a local hint, in first-seen order."""
    hinted = set()
    seen = {}
    for tx in transactions:
        for t in tx.token_transfers:
            if t.symbol_hint:
                hinted.add(t.mint)
            seen.setdefault(t.mint, None)
    return [m for m in seen if m not in hinted and resolver.needs_metadata(m)]
