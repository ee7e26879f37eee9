"""Helius client: pagination, error mapping, RPC fallback and metadata."""

import threading

import pytest
import requests

from test_common import *
from src.core.errors import ProviderError, RateLimitError, ScanCancelled
from src.processors.helius_client import (
    HeliusClient, chunked, normalize_time_bounds, pagination_hint, redact,
)
from src.utils.constants import PUBLIC_RPC_URL

HINT_MESSAGE = ('Failed to find events within the search period. To continue search, '
                'query the API again with the `before` parameter set to SigHint.')


def _client(*responses, api_key='test-key', retries=2):
    session = FakeSession(responses)
    return HeliusClient(api_key=api_key, session=session, retries=retries, page_delay=0), session


class TestHelpers:
    def test_redact_api_key(self):
        assert redact('https://x/?api-key=secret&limit=5') == 'https://x/?api-key=***&limit=5'

    def test_time_bounds_swapped_and_clamped(self):
        assert normalize_time_bounds(200, 100, now=1000) == (100, 200)
        assert normalize_time_bounds(100, 5000, now=1000) == (100, 1000)
        assert normalize_time_bounds(None, None, now=1000) == (None, None)

    def test_pagination_hint(self):
        assert pagination_hint(HINT_MESSAGE) == 'SigHint'
        assert pagination_hint('not found') is None

    def test_chunked(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]


class TestSessions:
    def test_injected_session_shared(self):
        client, session = _client()
        seen = []
        worker = threading.Thread(target=lambda: seen.append(client.session))
        worker.start()
        worker.join()
        assert client.session is session
        assert seen == [session]

    def test_default_session_per_thread(self):
        client = HeliusClient(api_key='test-key', page_delay=0)
        main = client.session
        assert client.session is main
        assert isinstance(main, requests.Session)
        seen = []
        worker = threading.Thread(target=lambda: seen.extend([client.session, client.session]))
        worker.start()
        worker.join()
        assert seen[0] is seen[1]
        assert seen[0] is not main


class TestFetchPage:
    def test_params(self):
        client, session = _client(FakeResponse(200, [{'signature': 'SigA'}]))
        page = client.fetch_page(OWNER, before='SigZ', limit=500, start_time=10, end_time=20)
        assert page == [{'signature': 'SigA'}]
        call = session.calls[0]
        assert call['method'] == 'GET'
        assert call['url'].endswith(f'/v0/addresses/{OWNER}/transactions')
        assert call['params'] == {'api-key': 'test-key', 'limit': 100, 'before': 'SigZ',
                                  'startTime': 10, 'endTime': 20}

    def test_missing_key(self):
        client, _ = _client(api_key='  ')
        with pytest.raises(ProviderError):
            client.fetch_page(OWNER)

    def test_rate_limit_retried_then_raised(self):
        client, session = _client(
            FakeResponse(429, {'error': 'slow down'}, headers={'Retry-After': '0'}),
            FakeResponse(429, {'error': 'slow down'}, headers={'Retry-After': '0'}),
        )
        with pytest.raises(RateLimitError) as exc:
            client.fetch_page(OWNER)
        assert 'slow down' in str(exc.value)
        assert exc.value.retry_after == 0
        assert len(session.calls) == 2

    def test_server_error_recovers(self):
        client, session = _client(FakeResponse(502, None, text='bad gateway'), FakeResponse(200, []))
        assert client.fetch_page(OWNER) == []
        assert len(session.calls) == 2

    def test_client_error_not_retried(self):
        client, session = _client(FakeResponse(400, {'message': 'invalid address'}))
        with pytest.raises(ProviderError) as exc:
            client.fetch_page('bad')
        assert exc.value.status_code == 400
        assert 'invalid address' in str(exc.value)
        assert 'test-key' not in str(exc.value)
        assert len(session.calls) == 1


class TestIterPages:
    def test_walks_until_empty(self):
        client, session = _client(
            FakeResponse(200, [{'signature': 'SigA'}, {'signature': 'SigB'}]),
            FakeResponse(200, [{'signature': 'SigC'}]),
            FakeResponse(200, []),
        )
        pages = list(client.iter_pages(OWNER, now=BASE_TIME))
        assert [last for _, last in pages] == ['SigB', 'SigC']
        assert [c['params'].get('before') for c in session.calls] == [None, 'SigB', 'SigC']

    def test_max_pages(self):
        client, session = _client(FakeResponse(200, [{'signature': 'SigA'}]))
        pages = list(client.iter_pages(OWNER, max_pages=1, now=BASE_TIME))
        assert len(pages) == 1
        assert len(session.calls) == 1

    def test_follows_not_found_hint_once(self):
        client, session = _client(
            FakeResponse(404, {'error': HINT_MESSAGE}),
            FakeResponse(200, []),
        )
        assert list(client.iter_pages(OWNER, now=BASE_TIME)) == []
        assert session.calls[1]['params']['before'] == 'SigHint'

    def test_repeated_hint_raises(self):
        client, _ = _client(
            FakeResponse(404, {'error': HINT_MESSAGE}),
            FakeResponse(404, {'error': HINT_MESSAGE}),
        )
        with pytest.raises(ProviderError):
            list(client.iter_pages(OWNER, now=BASE_TIME))

    def test_cancellation(self):
        event = threading.Event()
        event.set()
        client, session = _client()
        with pytest.raises(ScanCancelled):
            list(client.iter_pages(OWNER, cancel_event=event, now=BASE_TIME))
        assert session.calls == []


class TestRpc:
    def test_falls_back_to_public_rpc(self):
        client, session = _client(
            FakeResponse(200, {'jsonrpc': '2.0', 'id': 1, 'error': {'message': 'method disabled'}}),
            FakeResponse(200, {'jsonrpc': '2.0', 'id': 1, 'result': {'value': [{'pubkey': 'TokAcct1'}]}}),
        )
        assert client.token_accounts_by_owner(OWNER) == ['TokAcct1']
        assert session.calls[0]['url'].startswith('https://mainnet.helius-rpc.com')
        assert session.calls[1]['url'] == PUBLIC_RPC_URL
        assert session.calls[1]['json']['method'] == 'getTokenAccountsByOwner'

    def test_all_endpoints_failing(self):
        client, _ = _client(FakeResponse(200, {'error': 'no'}), api_key='')
        with pytest.raises(ProviderError) as exc:
            client.rpc_call('getSlot', [])
        assert 'getSlot' in str(exc.value)

    def test_owners_of(self):
        client, _ = _client(FakeResponse(200, {'result': {'value': [
            {'data': {'parsed': {'info': {'owner': OWNER}}}},
            None,
        ]}}), api_key='')
        assert client.owners_of(['AcctA', 'AcctB']) == {'AcctA': OWNER}

    def test_fee_payer_from_account_keys(self):
        client, _ = _client(FakeResponse(200, {'result': {'transaction': {'message': {
            'accountKeys': [{'pubkey': OTHER, 'signer': True}, {'pubkey': OWNER, 'signer': False}],
        }}}}), api_key='')
        assert client.fee_payer('SigA') == OTHER


class TestMetadata:
    def test_helius_metadata_shapes(self):
        client, session = _client(FakeResponse(200, [
            {'account': MINT_A, 'mint': MINT_A, 'onChainAccountInfo': {'data': {'parsed': {'info': {'decimals': 6}}}},
             'onChainMetadata': {'metadata': {'symbol': 'AAA'}}},
            {'mint': MINT_B, 'symbol': 'BBB', 'decimals': '9'},
            {'nothing': True},
        ]))
        found = client.token_metadata([MINT_A, MINT_B])
        assert found == {MINT_A: {'symbol': 'AAA', 'decimals': 6}, MINT_B: {'symbol': 'BBB', 'decimals': 9}}
        assert session.calls[0]['json'] == {'mintAccounts': [MINT_A, MINT_B]}

    def test_jupiter_metadata(self):
        client, session = _client(FakeResponse(200, [
            {'id': MINT_A, 'symbol': 'AAA', 'decimals': 6},
            {'id': MINT_B, 'symbol': '', 'decimals': 'x'},
        ]))
        found = client.jupiter_token_metadata([MINT_A, MINT_B])
        assert found == {MINT_A: {'symbol': 'AAA', 'decimals': 6}, MINT_B: {'symbol': None, 'decimals': None}}
        assert session.calls[0]['params'] == {'query': f'{MINT_A},{MINT_B}'}

    def test_jupiter_failure_skips_chunk(self):
        client, _ = _client(FakeResponse(400, {'error': 'bad query'}))
        assert client.jupiter_token_metadata([MINT_A]) == {}
