"""
Classifier rule table.

Each test builds provider payloads exactly as the enhanced-transactions
endpoint returns them and checks the rows produced for the owner.
"""

import pytest

from test_common import *
from src.core.models import ClassifyOptions
from src.processors.classifier import TransactionClassifier, classify
from src.processors.symbols import SymbolResolver


def _only(rows):
    assert len(rows) == 1, rows
    return rows[0]


class TestNativeTransfers:
    def test_native_inflow_with_fee(self):
        """Owner-paid fee rides on the single inbound row."""
        tx = raw_tx(
            'SigNativeA', fee=5000,
            native_transfers=[native(OTHER, OWNER, 1_500_005_000)],
            accounts=[account(OWNER, 1_500_000_000)],
        )
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.TRANSFER_IN
        assert row.amount_in == '1.500005'
        assert row.currency_in == 'SOL'
        assert row.fee == '0.000005'
        assert row.fee_currency == 'SOL'
        assert row.market == 'SOLANA'
        assert row.timestamp == '2024-03-15 12:00:00'
        assert row.signature == 'SigNativeA'

    def test_native_outflow(self):
        tx = raw_tx('SigSend', native_transfers=[native(OWNER, OTHER, 250_000_000)],
                    accounts=[account(OWNER, -250_005_000)])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.TRANSFER_OUT
        assert row.amount_out == '0.25'
        assert row.amount_in == '0'
        assert 'to:Count' in row.note

    def test_oslo_timestamps(self):
        tx = raw_tx('SigTz', native_transfers=[native(OTHER, OWNER, 1_000_000_000)])
        row = _only(classify([tx], OWNER, options=ClassifyOptions(timezone='Europe/Oslo')))
        assert row.timestamp == '2024-03-15 13:00:00'

    def test_fee_paid_by_someone_else(self):
        tx = raw_tx('SigGift', fee_payer=OTHER, native_transfers=[native(OTHER, OWNER, 1_000_000_000)])
        row = _only(classify([tx], OWNER))
        assert row.fee == '0'
        assert row.fee_currency == ''


class TestFeeSingularity:
    def test_fee_on_first_row_only(self):
        tx = raw_tx(
            'SigTwoRows',
            native_transfers=[native(OWNER, OTHER, 100_000_000)],
            token_transfers=[token(MINT_A, OWNER, OTHER, 5_000_000, symbol='AAA')],
        )
        rows = classify([tx], OWNER)
        assert len(rows) == 2
        assert [r.fee for r in rows] == ['0.000005', '0']
        assert {r.signature for r in rows} == {'SigTwoRows'}


class TestTrades:
    def test_tagged_swap(self):
        tx = raw_tx(
            'SigTradeB', tx_type='SWAP', source='RAYDIUM',
            token_transfers=[
                token(MINT_A, OWNER, POOL, 100_000_000, symbol='AAA'),
                token(MINT_B, POOL, OWNER, 40_000_000, symbol='BBB'),
            ],
            accounts=[account(OWNER, -5000)],
        )
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.TRADE
        assert (row.amount_in, row.currency_in) == ('40', 'BBB')
        assert (row.amount_out, row.currency_out) == ('100', 'AAA')
        assert row.market == 'SOLANA DEX'
        assert row.fee == '0.000005'

    def test_routed_trade_collapses_intermediate(self):
        """An untagged routed trade nets its bridge symbol away."""
        tx = raw_tx(
            'SigRouteE', tx_type='UNKNOWN', source='JUPITER',
            token_transfers=[
                token(MINT_A, OWNER, POOL, 100_000_000, symbol='AAA'),
                token(MINT_B, POOL, OWNER, 50_000_000, symbol='BBB'),
                token(MINT_B, OWNER, POOL, 50_000_000, symbol='BBB'),
                token(MINT_C, POOL, OWNER, 30_000_000, symbol='CCC'),
            ],
        )
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.TRADE
        assert (row.amount_in, row.currency_in) == ('30', 'CCC')
        assert (row.amount_out, row.currency_out) == ('100', 'AAA')

    def test_bonding_curve_buy(self):
        """Token bought with plain SOL."""
        tx = raw_tx(
            'SigPump', tx_type='SWAP', source='PUMP_FUN',
            native_transfers=[native(OWNER, POOL, 500_000_000)],
            token_transfers=[token(MINT_A, POOL, OWNER, 1_000_000_000, symbol='MEME')],
        )
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.TRADE
        assert (row.amount_in, row.currency_in) == ('1000', 'MEME')
        assert (row.amount_out, row.currency_out) == ('0.5', 'SOL')

    def test_small_tip_folded_into_fee(self):
        tx = raw_tx(
            'SigTip', tx_type='SWAP', source='RAYDIUM',
            native_transfers=[native(OWNER, OTHER, 1_000_000)],
            token_transfers=[
                token(MINT_A, OWNER, POOL, 10_000_000, symbol='AAA'),
                token(MINT_B, POOL, OWNER, 20_000_000, symbol='BBB'),
            ],
        )
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.TRADE
        assert row.fee == '0.001005'


class TestOperationalCosts:
    def test_order_place_is_loss(self):
        tx = raw_tx('SigPace', tx_type='PLACE_ORDER', source='JUPITER',
                    native_transfers=[native(OWNER, POOL, 10_000_000)])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.LOSS
        assert (row.amount_out, row.currency_out) == ('0.010005', 'SOL')
        assert row.fee == '0'
        assert row.market == 'SOLANA DEX'

    def test_account_create_rent_is_loss(self):
        tx = raw_tx('SigCreate', tx_type='CREATE_ACCOUNT',
                    native_transfers=[native(OWNER, OWNER_TOKEN_ACCOUNTS[0], 2_039_280)])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.LOSS
        assert row.amount_out == '0.00204428'

    def test_staking_fee_only(self):
        tx = raw_tx('SigStakeFee', tx_type='STAKE_SOL', source='STAKE_PROGRAM', accounts=[account(OWNER, -5000)])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.LOSS
        assert row.amount_out == '0.000005'
        assert row.market == 'STAKE'


class TestAccountClose:
    def test_rent_reclaimed_net_of_fee(self):
        tx = raw_tx('SigRentD', tx_type='CLOSE_ACCOUNT', fee=5000, accounts=[account(OWNER, 2_039_280)])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.ACQUISITION
        assert (row.amount_in, row.currency_in) == ('0.00203428', 'SOL')
        assert row.fee == '0'
        assert row.fee_currency == ''


class TestIncome:
    def test_staking_reward(self):
        tx = raw_tx('SigReward', tx_type='UNKNOWN', source='STAKE_PROGRAM',
                    native_transfers=[native(OTHER, OWNER, 2_000_000)],
                    events={'stakingReward': {'amount': 2_000_000}})
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.INCOME
        assert row.amount_in == '0.002'
        assert row.market == 'STAKE'

    def test_airdrop_becomes_acquisition(self):
        tx = raw_tx('SigDrop', tx_type='CLAIM_AIRDROP', source='UNKNOWN',
                    token_transfers=[token(MINT_A, OTHER, OWNER, 10_000_000, symbol='DROP')])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.ACQUISITION
        assert row.note.startswith('AIRDROP sig:SigDrop')


class TestSafetyNet:
    def test_fee_only_transaction_is_loss(self):
        tx = raw_tx('SigFeeSpend', tx_type='UNKNOWN', source='UNKNOWN', accounts=[account(OWNER, -5000)])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.LOSS
        assert row.amount_out == '0.000005'
        assert row.fee == '0'

    def test_unexplained_balance_gain(self):
        tx = raw_tx('SigMystery', tx_type='UNKNOWN', source='UNKNOWN', fee_payer=OTHER,
                    accounts=[account(OWNER, 3_000_000)])
        row = _only(classify([tx], OWNER))
        assert row.kind == RowKind.TRANSFER_IN
        assert row.amount_in == '0.003'

    def test_nothing_for_bystander(self):
        tx = raw_tx('SigBystander', fee_payer=OTHER, native_transfers=[native(OTHER, POOL, 1_000)])
        assert classify([tx], OWNER) == []


class TestBatch:
    def test_malformed_transactions_are_skipped(self):
        good = raw_tx('SigGood', native_transfers=[native(OTHER, OWNER, 1_000_000_000)])
        rows = classify([{'type': 'TRANSFER'}, 'garbage', good], OWNER)
        assert [r.signature for r in rows] == ['SigGood']

    def test_rows_sorted_by_time(self):
        late = raw_tx('SigLate', timestamp=BASE_TIME + 60, native_transfers=[native(OTHER, OWNER, 1_000_000_000)])
        early = raw_tx('SigFirst', timestamp=BASE_TIME, native_transfers=[native(OTHER, OWNER, 1_000_000_000)])
        rows = classify([late, early], OWNER)
        assert [r.signature for r in rows] == ['SigFirst', 'SigLate']

    def test_time_range(self):
        txs = [raw_tx(f'SigRange{i}', timestamp=BASE_TIME + i * 100,
                      native_transfers=[native(OTHER, OWNER, 1_000_000_000)]) for i in range(1, 4)]
        options = ClassifyOptions(from_time=BASE_TIME + 150, to_time=BASE_TIME + 250)
        assert [r.signature for r in classify(txs, OWNER, options=options)] == ['SigRange2']

    def test_nft_rows_excluded_by_default(self):
        tx = raw_tx('SigNft', fee_payer=OTHER, token_transfers=[
            token(MINT_C, OTHER, OWNER, 1, decimals=0, standard='NonFungible'),
        ])
        assert classify([tx], OWNER) == []
        included = classify([tx], OWNER, options=ClassifyOptions(include_nfts=True))
        assert len(included) == 1

    def test_classification_result_names_rule(self, owner_context):
        classifier = TransactionClassifier(owner_context, SymbolResolver())
        from src.core.transaction import decode_transaction
        tx = decode_transaction(raw_tx('SigRentRx', tx_type='CLOSE_ACCOUNT', accounts=[account(OWNER, 2_039_280)]))
        assert classifier.classify_transaction(tx).rule == 'account-close'

    def test_unsupported_timezone(self):
        with pytest.raises(ValueError):
            ClassifyOptions(timezone='America/New_York')
