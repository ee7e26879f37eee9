"""Rate fetcher: yfinance first, CoinGecko x Frankfurter cross rate second."""
import unittest
from datetime import datetime

import pandas as pd

from test_common import *
from src.core.cache import TTLCache
from src.processors.price_fetcher import RateFetcher

DOWNLOAD = 'src.processors.price_fetcher.yf.download'


def _fetcher(*responses):
    session = FakeSession(responses)
    return RateFetcher(cache=TTLCache(3600, clock=lambda: 0.0), session=session), session


class TestRateFetcher(unittest.TestCase):
    """Rates used to value income rows"""

    def setUp(self):
        print(f"\n[Running: {self._testMethodName}]", flush=True)

    def test_same_currency_is_one(self):
        fetcher, session = _fetcher()
        with patch(DOWNLOAD) as download:
            self.assertEqual(fetcher.rate_for('nok', 'NOK', '2024-03-15'), Decimal(1))
        download.assert_not_called()
        self.assertEqual(session.calls, [])

    def test_yfinance_close_is_used_and_cached(self):
        fetcher, _ = _fetcher()
        frame = pd.DataFrame({'Close': [1550.25, 1600.0]})
        with patch(DOWNLOAD, return_value=frame) as download:
            first = fetcher.rate_for('SOL', 'NOK', '2024-03-15')
            second = fetcher.rate_for('sol', 'nok', datetime(2024, 3, 15, 18, 30))
        self.assertEqual(first, Decimal('1550.25'))
        self.assertEqual(second, first)
        self.assertEqual(download.call_count, 1)
        self.assertEqual(download.call_args[0][0], 'SOL-NOK')

    def test_multi_index_frame(self):
        """Recent yfinance releases return (field, ticker) column pairs."""
        fetcher, _ = _fetcher()
        frame = pd.DataFrame({('Close', 'SOL-USD'): [145.5]})
        with patch(DOWNLOAD, return_value=frame):
            self.assertEqual(fetcher.rate_for('SOL', 'USD', '2024-03-15'), Decimal('145.5'))

    def test_cross_rate_fallback(self):
        fetcher, session = _fetcher(
            FakeResponse(200, {'market_data': {'current_price': {'usd': 150}}}),
            FakeResponse(200, {'rates': {'NOK': 10.5}}),
        )
        with patch(DOWNLOAD, return_value=pd.DataFrame()):
            rate = fetcher.rate_for('SOL', 'NOK', '2024-03-15')
        self.assertEqual(rate, Decimal('1575'))
        self.assertIn('/coins/solana/history', session.calls[0]['url'])
        self.assertEqual(session.calls[0]['params']['date'], '15-03-2024')
        self.assertEqual(session.calls[1]['params'], {'from': 'USD', 'to': 'NOK'})

    def test_yfinance_error_falls_back(self):
        fetcher, _ = _fetcher(FakeResponse(200, {'rates': {'EUR': 0.9}}))
        with patch(DOWNLOAD, side_effect=RuntimeError('no data')):
            self.assertEqual(fetcher.rate_for('USDC', 'EUR', '2024-03-15'), Decimal('0.9'))

    def test_unpriceable_returns_none(self):
        fetcher, session = _fetcher()
        with patch(DOWNLOAD, return_value=pd.DataFrame()):
            self.assertIsNone(fetcher.rate_for('MEME', 'NOK', '2024-03-15'))
        self.assertEqual(session.calls, [])
        self.assertEqual(len(fetcher.cache), 0)

    def test_http_error_is_not_fatal(self):
        fetcher, session = _fetcher(
            FakeResponse(404, {'error': 'coin not found'}),
            FakeResponse(404, {'error': 'coin not found'}),
        )
        with patch(DOWNLOAD, return_value=pd.DataFrame()):
            self.assertIsNone(fetcher.rate_for('SOL', 'NOK', '2024-03-15'))
        self.assertEqual(len(session.calls), 2)


if __name__ == '__main__':
    unittest.main()
