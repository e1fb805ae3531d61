"""
Tests for payment resolution from calling transactions and receipts.
"""

import pytest

from torus_sync.adapters import EVENT_REGISTRY
from torus_sync.adapters.buy_process import BUY_PROCESS_ADDRESS, BuyAndBuild, BuyAndBurn, FractalFundsReleased
from torus_sync.adapters.create_stake import CREATE_STAKE_ADDRESS, TITANX_ADDRESS, Created, Staked
from torus_sync.errors import TransactionResolutionFailure
from torus_sync.fetcher import EventFetcher
from torus_sync.transactions import resolve_payment_currency

CALLER = "0x1111111111111111111111111111111111111111"


def build(chain, block, tx_input, tx_hash=None, log_index=0):
    return chain.add_event(
        BuyAndBuild(), BUY_PROCESS_ADDRESS,
        {"tokenAllocated": 10**18, "torusPurchased": 4 * 10**18, "caller": CALLER},
        block=block, log_index=log_index, tx_hash=tx_hash, tx_input=tx_input,
    )


def create(chain, block, tx_hash=None, log_index=0, tx_value=0):
    return chain.add_event(
        Created(), CREATE_STAKE_ADDRESS,
        {"user": CALLER, "stakeIndex": log_index, "torusAmount": 10**18, "endTime": 0},
        block=block, log_index=log_index, tx_hash=tx_hash, tx_value=tx_value,
    )


def fetch_all(pool, no_sleep):
    fetcher = EventFetcher(pool, sleep=no_sleep)
    events = fetcher.fetch_events(BUY_PROCESS_ADDRESS, [BuyAndBurn(), BuyAndBuild(), FractalFundsReleased()], 0, 100).events
    events += fetcher.fetch_events(CREATE_STAKE_ADDRESS, [Created(), Staked()], 0, 100).events
    return sorted(events, key=lambda e: e.sort_key)


def lookups(chain, method):
    return [c for c in chain.calls if c[1] == method]


class TestBuyPayments:
    def test_classifies_builds_by_selector(self, chain, pool, no_sleep):
        build(chain, 10, "0x53ad9b96" + "00" * 32)
        build(chain, 11, "0xfc9b61ae" + "00" * 64)
        events = resolve_payment_currency(pool, fetch_all(pool, no_sleep), EVENT_REGISTRY, sleep=no_sleep)
        assert [e.args["paymentCurrency"] for e in events] == ["ETH", "TitanX"]

    def test_classifies_burns_by_selector(self, chain, pool, no_sleep):
        for block, selector in ((10, "0x39b6ce64"), (11, "0xd6d315a4")):
            chain.add_event(BuyAndBurn(), BUY_PROCESS_ADDRESS,
                            {"titanXAmount": 2, "torusBurnt": 1, "caller": CALLER},
                            block=block, tx_input=selector + "00" * 32)
        events = resolve_payment_currency(pool, fetch_all(pool, no_sleep), EVENT_REGISTRY, sleep=no_sleep)
        assert [e.args["paymentCurrency"] for e in events] == ["ETH", "TitanX"]

    def test_unknown_selector_is_none(self, chain, pool, no_sleep):
        build(chain, 10, "0xdeadbeef")
        (event,) = resolve_payment_currency(pool, fetch_all(pool, no_sleep), EVENT_REGISTRY, sleep=no_sleep)
        assert event.args["paymentCurrency"] is None

    def test_one_lookup_per_transaction(self, chain, pool, no_sleep):
        tx = "0x" + "ab" * 32
        build(chain, 10, "0x53ad9b96", tx_hash=tx, log_index=0)
        build(chain, 10, "0x53ad9b96", tx_hash=tx, log_index=1)
        events = fetch_all(pool, no_sleep)
        chain.calls.clear()
        resolve_payment_currency(pool, events, EVENT_REGISTRY, sleep=no_sleep)
        assert len(lookups(chain, "eth_getTransactionByHash")) == 1
        assert lookups(chain, "eth_getTransactionReceipt") == []

    def test_other_events_untouched(self, chain, pool, no_sleep):
        chain.add_event(FractalFundsReleased(), BUY_PROCESS_ADDRESS,
                        {"releasedTitanX": 1, "releasedETH": 2}, block=3)
        events = fetch_all(pool, no_sleep)
        chain.calls.clear()
        out = resolve_payment_currency(pool, events, EVENT_REGISTRY, sleep=no_sleep)
        assert out == events
        assert chain.calls == []

    def test_missing_transaction_fails(self, chain, pool, no_sleep):
        build(chain, 10, tx_input=None)
        events = fetch_all(pool, no_sleep)
        with pytest.raises(TransactionResolutionFailure):
            resolve_payment_currency(pool, events, EVENT_REGISTRY, max_attempts=2, sleep=no_sleep)

    def test_input_events_are_not_mutated(self, chain, pool, no_sleep):
        build(chain, 10, "0x53ad9b96")
        events = fetch_all(pool, no_sleep)
        resolve_payment_currency(pool, events, EVENT_REGISTRY, sleep=no_sleep)
        assert "paymentCurrency" not in events[0].args


class TestCreateStakePayments:
    def test_eth_value_skips_receipt(self, chain, pool, no_sleep):
        create(chain, 10, tx_value=25 * 10**16)
        events = fetch_all(pool, no_sleep)
        chain.calls.clear()
        (event,) = resolve_payment_currency(pool, events, EVENT_REGISTRY, sleep=no_sleep)
        assert event.args["paymentCurrency"] == "ETH"
        assert event.args["paymentAmount"] == str(25 * 10**16)
        assert lookups(chain, "eth_getTransactionReceipt") == []

    def test_titanx_transfer_from_receipt(self, chain, pool, no_sleep):
        log = create(chain, 10)
        chain.add_transfer(log["transactionHash"], TITANX_ADDRESS.lower(), CALLER,
                           CREATE_STAKE_ADDRESS.lower(), 40 * 10**18)
        (event,) = resolve_payment_currency(pool, fetch_all(pool, no_sleep), EVENT_REGISTRY, sleep=no_sleep)
        assert event.args["paymentCurrency"] == "TitanX"
        assert event.args["paymentAmount"] == str(40 * 10**18)

    def test_transaction_pays_once(self, chain, pool, no_sleep):
        tx = "0x" + "cd" * 32
        create(chain, 10, tx_hash=tx, log_index=0, tx_value=10**18)
        create(chain, 10, tx_hash=tx, log_index=1)
        events = resolve_payment_currency(pool, fetch_all(pool, no_sleep), EVENT_REGISTRY, sleep=no_sleep)
        assert [e.args["paymentAmount"] for e in events] == [str(10**18), "0"]
        assert all(e.args["paymentCurrency"] == "ETH" for e in events)

    def test_missing_receipt_fails(self, chain, pool, no_sleep):
        log = create(chain, 10)
        del chain.receipts[log["transactionHash"]]
        events = fetch_all(pool, no_sleep)
        with pytest.raises(TransactionResolutionFailure):
            resolve_payment_currency(pool, events, EVENT_REGISTRY, max_attempts=2, sleep=no_sleep)
