"""
End-to-end processing: classify, dust, consolidate, and the cached scan pipeline.
"""

import threading

import pandas as pd
import pytest

from test_common import *
from src.core.cache import TTLCache
from src.core.errors import ProviderError, RateLimitError
from src.core.models import ClassifyOptions, DustPolicy, ScanCursor
from src.core.pipeline import ExportPipeline, ExportRequest, PipelineResult, decode_all, process_transactions
from src.processors.enrichment import Enricher

LETTERS = 'ABCDEFGHJK'


def _clock():
    return pd.Timestamp('2024-06-01', tz='UTC')


def _scenario_a():
    return raw_tx('SigNativeA', native_transfers=[native(OTHER, OWNER, 1_500_005_000)],
                  accounts=[account(OWNER, 1_500_000_000)])


def _dust_inflows(count=10):
    return [
        raw_tx(f'SigDust{LETTERS[i]}', timestamp=BASE_TIME + i, fee_payer=OTHER,
               native_transfers=[native(OTHER, OWNER, 100_000)])
        for i in range(count)
    ]


class TestProcessTransactions:
    def test_single_native_inflow(self):
        rows, raw_count = process_transactions([_scenario_a()], OWNER)
        assert raw_count == 1
        assert [(r.kind, r.amount_in, r.fee) for r in rows] == [(RowKind.TRANSFER_IN, '1.500005', '0.000005')]

    def test_dust_inflows_aggregate_per_signer(self):
        policy = DustPolicy(mode='aggregate-signer', threshold='0.001', interval='day')
        rows, raw_count = process_transactions(_dust_inflows(), OWNER, dust_policy=policy, clock=_clock)
        assert raw_count == 10
        assert len(rows) == 1
        agg = rows[0]
        assert agg.kind == RowKind.ACQUISITION
        assert (agg.amount_in, agg.currency_in) == ('0.001', 'SOL')
        assert agg.market == 'AGGREGERT'
        assert agg.note.startswith('agg:10 støv<0.001 signer:Count')

    def test_dust_removed(self):
        policy = DustPolicy(mode='remove', threshold='0.001')
        rows, raw_count = process_transactions(_dust_inflows(3) + [_scenario_a()], OWNER, dust_policy=policy)
        assert raw_count == 4
        assert [r.signature for r in rows] == ['SigNativeA']

    def test_malformed_payloads_skipped(self):
        rows, raw_count = process_transactions([{'nope': 1}, _scenario_a()], OWNER)
        assert raw_count == 1

    def test_oslo_options(self):
        rows, _ = process_transactions([_scenario_a()], OWNER, options=ClassifyOptions(timezone='Europe/Oslo'))
        assert rows[0].timestamp == '2024-03-15 13:00:00'


def test_decode_all_passes_decoded_through():
    decoded = decode_all([_scenario_a()])
    assert decode_all(decoded) == decoded


def _fake_client(pages):
    """``pages`` is a generator function standing in for HeliusClient.iter_pages."""
    client = MagicMock()
    client.token_accounts_by_owner.return_value = []
    client.iter_pages.side_effect = pages
    return client


def _pipeline(client, clock_value=1000.0):
    cache = TTLCache(600, clock=lambda: clock_value)
    return ExportPipeline(client, cache=cache, enricher=Enricher(client), clock=_clock)


class TestExportPipeline:
    def test_run_and_cache(self):
        def pages(*args, **kwargs):
            yield [_scenario_a()], 'SigNativeA'

        client = _fake_client(pages)
        pipeline = _pipeline(client)
        request = ExportRequest(address=OWNER)

        first = pipeline.run(request)
        assert first.complete
        assert first.count == 1
        assert first.raw_count == 1
        assert not first.from_cache

        second = pipeline.run(request)
        assert second.from_cache
        assert [r.to_record() for r in second.rows] == [r.to_record() for r in first.rows]
        assert second.rows[0].unix_time == BASE_TIME
        assert client.iter_pages.call_count == 1

        pipeline.run(request, use_cache=False)
        assert client.iter_pages.call_count == 2

    def test_different_options_miss_cache(self):
        def pages(*args, **kwargs):
            yield [_scenario_a()], 'SigNativeA'

        client = _fake_client(pages)
        pipeline = _pipeline(client)
        pipeline.run(ExportRequest(address=OWNER))
        pipeline.run(ExportRequest(address=OWNER, timezone='Europe/Oslo'))
        assert client.iter_pages.call_count == 2

    def test_partial_then_resume(self):
        calls = []

        def pages(address, before=None, **kwargs):
            calls.append(before)
            if before is None:
                yield [_scenario_a()], 'SigNativeA'
                raise RateLimitError('quota exhausted')
            yield [_dust_inflows(1)[0]], 'SigDustA'

        client = _fake_client(pages)
        pipeline = _pipeline(client)
        request = ExportRequest(address=OWNER)

        partial = pipeline.run(request)
        assert partial.status == 'partial'
        assert partial.cursor.before(OWNER) == 'SigNativeA'
        assert partial.count == 1
        assert pipeline.run(request).from_cache

        resumed = pipeline.run(request, cursor=partial.cursor, seed=partial.transactions)
        assert resumed.complete
        assert calls == [None, 'SigNativeA']
        assert sorted(r.signature for r in resumed.rows) == ['SigDustA', 'SigNativeA']

    def test_cached_partial_keeps_resume_seed(self):
        def pages(address, before=None, **kwargs):
            if before is None:
                yield [_scenario_a()], 'SigNativeA'
                raise RateLimitError('quota exhausted')
            yield [_dust_inflows(1)[0]], 'SigDustA'

        client = _fake_client(pages)
        pipeline = _pipeline(client)
        request = ExportRequest(address=OWNER)

        partial = pipeline.run(request)
        cached = pipeline.run(request)
        assert cached.from_cache
        assert cached.status == 'partial'
        assert [t['signature'] for t in cached.transactions] == ['SigNativeA']

        resumed = pipeline.run(request, cursor=cached.cursor, seed=cached.transactions)
        assert resumed.complete
        assert sorted(r.signature for r in resumed.rows) == ['SigDustA', 'SigNativeA']
        assert partial.cursor == cached.cursor

    def test_cancel_during_enrichment_is_partial(self):
        cancel = threading.Event()

        def pages(*args, **kwargs):
            yield [raw_tx('SigNoPayer', fee_payer='', native_transfers=[native(OTHER, OWNER, 1_000_000_000)])], \
                'SigNoPayer'
            cancel.set()

        client = _fake_client(pages)
        client.fee_payer.return_value = OTHER
        pipeline = ExportPipeline(client, cache=TTLCache(600, clock=lambda: 1000.0),
                                  enricher=Enricher(client, cancel_event=cancel), cancel_event=cancel, clock=_clock)
        request = ExportRequest(address=OWNER)

        partial = pipeline.run(request)
        assert partial.status == 'partial'
        assert 'Cancelled' in partial.error
        assert partial.cursor.addresses == (OWNER,)
        assert partial.cursor.next_address_index == 1
        assert [t['signature'] for t in partial.transactions] == ['SigNoPayer']
        client.fee_payer.assert_not_called()

        cancel.clear()
        resumed = pipeline.run(request, cursor=partial.cursor, seed=partial.transactions)
        assert resumed.complete
        assert client.iter_pages.call_count == 1
        client.fee_payer.assert_called_once_with('SigNoPayer')
        assert [r.signature for r in resumed.rows] == ['SigNoPayer']

    def test_provider_errors_propagate(self):
        def pages(*args, **kwargs):
            raise ProviderError('invalid api key', status_code=401)
            yield

        with pytest.raises(ProviderError):
            _pipeline(_fake_client(pages)).run(ExportRequest(address=OWNER))

    def test_clear(self):
        def pages(*args, **kwargs):
            yield [_scenario_a()], 'SigNativeA'

        client = _fake_client(pages)
        pipeline = _pipeline(client)
        request = ExportRequest(address=OWNER)
        pipeline.run(request)
        assert pipeline.clear(request)
        assert not pipeline.clear(request)
        pipeline.run(request)
        assert client.iter_pages.call_count == 2


def test_result_state_round_trip():
    result = PipelineResult(rows=[make_row(amount_in='1', currency_in='SOL', signature='SigState')], raw_count=3)
    restored = PipelineResult.from_state(json.loads(json.dumps(result.to_state())))
    assert restored.rows == result.rows
    assert restored.raw_count == 3
    assert restored.from_cache
    assert 'transactions' not in result.to_state()


def test_partial_state_carries_transactions():
    cursor = ScanCursor(addresses=(OWNER,), next_address_index=0, before_by_address=((OWNER, 'SigFirst'),))
    result = PipelineResult(rows=[], raw_count=0, status='partial', cursor=cursor,
                            transactions=[_scenario_a()])
    restored = PipelineResult.from_state(json.loads(json.dumps(result.to_state())))
    assert restored.cursor == cursor
    assert [t['signature'] for t in restored.transactions] == ['SigNativeA']
