"""
================================================================================
PRICE FETCHER - Historical Cross Rates
================================================================================

Resolves rate_for(base, quote, date) for income valuation.

Fallback Chain:
    1. yfinance          {BASE}-{QUOTE} daily close (e.g. SOL-NOK)
    2. cross rate        CoinGecko {BASE} in USD x Frankfurter USD->{QUOTE}

Rates are cached per (base, quote, date). A date nobody can price returns
None; callers leave the value empty.

Author: robertbiv
Last Modified: October 2026
================================================================================
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import pandas as pd
import requests
import yfinance as yf

from src.core.cache import TTLCache
from src.decimal_utils import to_decimal
from src.processors.network_retry import NetworkRetry
from src.utils.constants import RATE_CACHE_TTL_SECONDS
from src.utils.logger import logger

COINGECKO_HISTORY_URL = 'https://api.coingecko.com/api/v3/coins/{coin_id}/history'
FRANKFURTER_URL = 'https://api.frankfurter.app/{day}'

COINGECKO_IDS = {
    'SOL': 'solana',
    'USDC': 'usd-coin',
    'USDT': 'tether',
    'JUP': 'jupiter-exchange-solana',
    'BONK': 'bonk',
    'PYTH': 'pyth-network',
    'RAY': 'raydium',
    'ORCA': 'orca',
}
USD_PEGGED = {'USD', 'USDC', 'USDT'}


def _as_datetime(day) -> datetime:
    if isinstance(day, datetime):
        return datetime(day.year, day.month, day.day)
    return datetime.strptime(str(day)[:10], '%Y-%m-%d')


class RateFetcher:
    def __init__(self, cache: Optional[TTLCache] = None, session=None, timeout: int = 10):
        self.cache = cache if cache is not None else TTLCache(RATE_CACHE_TTL_SECONDS)
        self.session = session or requests.Session()
        self.timeout = timeout

    def rate_for(self, base: str, quote: str, day) -> Optional[Decimal]:
        """Units of ``quote`` per one ``base`` on ``day`` (date, datetime or 'YYYY-MM-DD')."""
        base, quote = base.upper(), quote.upper()
        if base == quote:
            return Decimal(1)
        d = _as_datetime(day)
        key = f"{base}_{quote}_{d.date()}"
        cached = self.cache.get(key)
        if cached is not None:
            return Decimal(cached)

        rate = self._yfinance_rate(base, quote, d)
        if rate is None:
            rate = self._cross_rate(base, quote, d)
        if rate is not None:
            self.cache.set(key, str(rate))
        else:
            logger.info(f"No {base}/{quote} rate for {d.date()}")
        return rate

    # ------------------------------------------
    # sources
    # ------------------------------------------

    def _yfinance_rate(self, base: str, quote: str, d: datetime) -> Optional[Decimal]:
        try:
            df = NetworkRetry.run(
                lambda: yf.download(f"{base}-{quote}", start=d, end=d + timedelta(days=3), progress=False),
                retries=2, context="yfinance",
            )
        except Exception as e:
            logger.debug(f"yfinance {base}-{quote} failed: {e}")
            return None
        if df is None or df.empty:
            return None
        v = df['Close'].iloc[0]
        value = v.iloc[0] if isinstance(v, pd.Series) else v
        rate = to_decimal(float(value), None)
        return rate if rate is not None and rate > 0 else None

    def _get_json(self, url: str, params: dict, context: str):
        def _call():
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json()

        try:
            return NetworkRetry.run(_call, retries=2, context=context)
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"{context} failed: {e}")
            return None

    def usd_price(self, symbol: str, d: datetime) -> Optional[Decimal]:
        if symbol in USD_PEGGED:
            return Decimal(1)
        coin_id = COINGECKO_IDS.get(symbol)
        if not coin_id:
            return None
        data = self._get_json(
            COINGECKO_HISTORY_URL.format(coin_id=coin_id),
            {'date': d.strftime('%d-%m-%Y'), 'localization': 'false'},
            f"CoinGecko {symbol}",
        )
        try:
            price = data['market_data']['current_price']['usd']
        except (KeyError, TypeError):
            return None
        price = to_decimal(price, None)
        return price if price is not None and price > 0 else None

    def usd_to(self, quote: str, d: datetime) -> Optional[Decimal]:
        if quote == 'USD':
            return Decimal(1)
        data = self._get_json(
            FRANKFURTER_URL.format(day=d.strftime('%Y-%m-%d')),
            {'from': 'USD', 'to': quote},
            f"Frankfurter USD/{quote}",
        )
        try:
            rate = data['rates'][quote]
        except (KeyError, TypeError):
            return None
        rate = to_decimal(rate, None)
        return rate if rate is not None and rate > 0 else None

    def _cross_rate(self, base: str, quote: str, d: datetime) -> Optional[Decimal]:
        usd = self.usd_price(base, d)
        if usd is None:
            return None
        fx = self.usd_to(quote, d)
        if fx is None:
            return None
        return usd * fx
