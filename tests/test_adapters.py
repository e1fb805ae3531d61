"""
Tests for event definitions: topics, log decoding and amount mapping.
"""

import dataclasses

import pytest
from eth_utils import keccak, to_checksum_address

from torus_sync.adapters import EVENT_REGISTRY, get_definitions
from torus_sync.adapters.base import EventDefinition, as_int
from torus_sync.adapters.buy_process import (
    BUY_PROCESS_ADDRESS,
    UNCLASSIFIED_BUILD_KEY,
    UNCLASSIFIED_BURN_KEY,
    BuyAndBuild,
    BuyAndBurn,
    FractalFundsReleased,
)
from torus_sync.adapters.create_stake import CREATE_STAKE_ADDRESS, TITANX_ADDRESS, Created, Staked, titanx_paid
from torus_sync.errors import EventDecodeError

CALLER = "0x1111111111111111111111111111111111111111"
USER = "0x2222222222222222222222222222222222222222"


class TestRegistry:
    def test_catalogue(self):
        assert sorted(EVENT_REGISTRY) == ["BuyAndBuild", "BuyAndBurn", "Created", "FractalFundsReleased", "Staked"]

    def test_get_definitions_unknown(self):
        with pytest.raises(KeyError):
            get_definitions(["BuyAndBurn", "Nope"])

    def test_topic0_is_keccak_of_signature(self):
        d = BuyAndBurn()
        assert d.signature == "BuyAndBurn(uint256,uint256,address)"
        assert d.topic0 == "0x" + keccak(text=d.signature).hex()

    def test_definition_needs_name_and_category(self):
        with pytest.raises(ValueError):
            EventDefinition(name="Foo", inputs=[])


class TestDecode:
    def test_all_indexed(self, chain):
        log = chain.add_event(
            BuyAndBurn(), BUY_PROCESS_ADDRESS,
            {"titanXAmount": 5 * 10**18, "torusBurnt": 2 * 10**18, "caller": CALLER},
            block=42, log_index=3,
        )
        ev = BuyAndBurn().decode(log)
        assert ev.event_name == "BuyAndBurn"
        assert ev.contract == to_checksum_address(BUY_PROCESS_ADDRESS)
        assert ev.block_number == 42
        assert ev.log_index == 3
        assert ev.args == {
            "titanXAmount": str(5 * 10**18),
            "torusBurnt": str(2 * 10**18),
            "caller": to_checksum_address(CALLER),
        }

    def test_mixed_indexed_and_data(self, chain):
        values = {"user": USER, "stakeIndex": 7, "principal": 10**21, "stakingDays": 88, "shares": 123456789}
        log = chain.add_event(Staked(), CREATE_STAKE_ADDRESS, values, block=9)
        ev = Staked().decode(log)
        assert ev.args["user"] == to_checksum_address(USER)
        assert ev.args["principal"] == str(10**21)
        assert Staked().amounts(ev) == {"torusStaked": 10**21, "stakeShares": 123456789}

    def test_hex_block_number(self, chain):
        log = chain.add_event(FractalFundsReleased(), BUY_PROCESS_ADDRESS,
                              {"releasedTitanX": 1, "releasedETH": 2}, block=10)
        log["blockNumber"] = hex(10)
        log["logIndex"] = "0x0"
        ev = FractalFundsReleased().decode(log)
        assert (ev.block_number, ev.log_index) == (10, 0)

    def test_large_amounts_keep_precision(self, chain):
        big = 2**255 + 12345
        log = chain.add_event(FractalFundsReleased(), BUY_PROCESS_ADDRESS,
                              {"releasedTitanX": big, "releasedETH": 0}, block=1)
        ev = FractalFundsReleased().decode(log)
        assert FractalFundsReleased().amounts(ev)["fractalTitanX"] == big

    def test_wrong_topic(self, chain):
        log = chain.add_event(BuyAndBurn(), BUY_PROCESS_ADDRESS,
                              {"titanXAmount": 1, "torusBurnt": 1, "caller": CALLER}, block=1)
        with pytest.raises(EventDecodeError):
            Staked().decode(log)

    def test_truncated_data(self, chain):
        log = chain.add_event(FractalFundsReleased(), BUY_PROCESS_ADDRESS,
                              {"releasedTitanX": 1, "releasedETH": 2}, block=5)
        log["data"] = log["data"][:40]
        with pytest.raises(EventDecodeError):
            FractalFundsReleased().decode(log)

    def test_missing_indexed_topic(self, chain):
        log = chain.add_event(BuyAndBurn(), BUY_PROCESS_ADDRESS,
                              {"titanXAmount": 1, "torusBurnt": 1, "caller": CALLER}, block=1)
        log["topics"] = log["topics"][:2]
        with pytest.raises(EventDecodeError):
            BuyAndBurn().decode(log)


class TestBuyAndBuildPayment:
    def _event(self, chain, currency=None):
        log = chain.add_event(BuyAndBuild(), BUY_PROCESS_ADDRESS,
                              {"tokenAllocated": 3 * 10**18, "torusPurchased": 10**18, "caller": CALLER}, block=1)
        ev = BuyAndBuild().decode(log)
        if currency is not None:
            ev = dataclasses.replace(ev, args={**ev.args, "paymentCurrency": currency})
        return ev

    @pytest.mark.parametrize("tx_input, expected", [
        ("0x53ad9b96" + "00" * 32, "ETH"),
        ("0xfc9b61ae" + "00" * 64, "TitanX"),
        ("0xdeadbeef", None),
        ("0x", None),
    ])
    def test_classify_transaction(self, tx_input, expected):
        assert BuyAndBuild().classify_transaction({"input": tx_input}) == {"paymentCurrency": expected}

    def test_eth_amounts(self, chain):
        amounts = BuyAndBuild().amounts(self._event(chain, "ETH"))
        assert amounts == {"torusPurchased": 10**18, "ethUsedForBuilds": 3 * 10**18}

    def test_titanx_amounts(self, chain):
        amounts = BuyAndBuild().amounts(self._event(chain, "TitanX"))
        assert amounts == {"torusPurchased": 10**18, "titanXUsedForBuilds": 3 * 10**18}

    def test_unclassified_amounts(self, chain):
        amounts = BuyAndBuild().amounts(self._event(chain))
        assert amounts[UNCLASSIFIED_BUILD_KEY] == 3 * 10**18


class TestBuyAndBurnPayment:
    def _event(self, chain, currency):
        log = chain.add_event(BuyAndBurn(), BUY_PROCESS_ADDRESS,
                              {"titanXAmount": 6 * 10**18, "torusBurnt": 10**18, "caller": CALLER}, block=1)
        ev = BuyAndBurn().decode(log)
        return dataclasses.replace(ev, args={**ev.args, "paymentCurrency": currency})

    @pytest.mark.parametrize("tx_input, expected", [
        ("0x39b6ce64" + "00" * 32, "ETH"),
        ("0xd6d315a4" + "00" * 64, "TitanX"),
        ("0x53ad9b96", None),
    ])
    def test_classify_transaction(self, tx_input, expected):
        assert BuyAndBurn().classify_transaction({"input": tx_input}) == {"paymentCurrency": expected}

    def test_titanx_burn_spends_titanx(self, chain):
        amounts = BuyAndBurn().amounts(self._event(chain, "TitanX"))
        assert amounts == {"torusBurned": 10**18, "titanXUsedForBurns": 6 * 10**18}

    def test_eth_burn_is_not_titanx_spent(self, chain):
        amounts = BuyAndBurn().amounts(self._event(chain, "ETH"))
        assert amounts == {"torusBurned": 10**18, "titanXFromEthBurns": 6 * 10**18}

    def test_unclassified_burn(self, chain):
        amounts = BuyAndBurn().amounts(self._event(chain, None))
        assert amounts[UNCLASSIFIED_BURN_KEY] == 6 * 10**18
        assert "titanXUsedForBurns" not in amounts


class TestCreateStakePayment:
    def test_eth_value_is_the_payment(self):
        tx = {"input": "0x", "value": 3 * 10**17}
        assert not Created().needs_receipt(tx)
        assert Created().classify_transaction(tx) == {"paymentCurrency": "ETH", "paymentAmount": str(3 * 10**17)}

    def test_hex_value(self):
        assert Staked().classify_transaction({"value": hex(5)})["paymentAmount"] == "5"

    def test_titanx_transfer_in_receipt(self, chain):
        log = chain.add_event(Created(), CREATE_STAKE_ADDRESS,
                              {"user": USER, "stakeIndex": 0, "torusAmount": 1, "endTime": 0}, block=1)
        tx_hash = log["transactionHash"]
        chain.add_transfer(tx_hash, TITANX_ADDRESS.lower(), USER, CREATE_STAKE_ADDRESS.lower(), 9 * 10**18)
        # transfers of other tokens or to other recipients do not count
        chain.add_transfer(tx_hash, "0x" + "33" * 20, USER, CREATE_STAKE_ADDRESS.lower(), 1)
        chain.add_transfer(tx_hash, TITANX_ADDRESS.lower(), USER, CALLER, 1)

        tx = chain.transactions[tx_hash]
        assert Created().needs_receipt(tx)
        assert titanx_paid(chain.receipts[tx_hash]) == 9 * 10**18
        assert Created().classify_transaction(tx, chain.receipts[tx_hash]) == {
            "paymentCurrency": "TitanX", "paymentAmount": str(9 * 10**18),
        }

    def test_no_payment_found(self):
        extra = Created().classify_transaction({"value": 0}, {"logs": []})
        assert extra == {"paymentCurrency": None, "paymentAmount": "0"}

    def test_amount_keys(self, chain):
        log = chain.add_event(Staked(), CREATE_STAKE_ADDRESS,
                              {"user": USER, "stakeIndex": 1, "principal": 50, "stakingDays": 10, "shares": 500},
                              block=2)
        ev = Staked().decode(log)
        ev = dataclasses.replace(ev, args={**ev.args, "paymentCurrency": "TitanX", "paymentAmount": "70"})
        assert Staked().amounts(ev) == {"torusStaked": 50, "stakeShares": 500, "titanXUsedForStakes": 70}


def test_as_int():
    assert as_int("0x1f") == 31
    assert as_int("31") == 31
    assert as_int(31) == 31
