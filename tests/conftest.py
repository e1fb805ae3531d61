"""
Pytest configuration and shared fixtures.

FakeChain stands in for a set of JSON-RPC endpoints: every endpoint URL gets
a fake Web3 whose eth namespace answers from the same in-memory chain. Logs
are ABI-encoded with eth_abi exactly as a node would return them.
"""

import itertools
import json

import pytest
from eth_abi import encode
from eth_utils import keccak
from hexbytes import HexBytes

from torus_sync.protocol_day import PROTOCOL_EPOCH, SECONDS_PER_DAY
from torus_sync.rpc_pool import EndpointPool

URL_A = "https://rpc-a.test"
URL_B = "https://rpc-b.test"
URL_C = "https://rpc-c.test"


def _hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


class FakeEth:
    def __init__(self, chain, url):
        self.chain = chain
        self.url = url

    def _check(self, method):
        self.chain.calls.append((self.url, method))
        if self.url in self.chain.down:
            raise ConnectionError(f"{self.url} unreachable")

    @property
    def block_number(self):
        self._check("eth_blockNumber")
        return self.chain.head

    def get_logs(self, params):
        self._check("eth_getLogs")
        start, end = params["fromBlock"], params["toBlock"]
        self.chain.log_queries.append((self.url, start, end))
        if self.chain.log_error is not None:
            error = self.chain.log_error(self.url, start, end)
            if error is not None:
                raise error
        if params["address"].lower() in self.chain.failing_addresses:
            raise ValueError("internal error")
        if self.chain.max_range is not None and end - start + 1 > self.chain.max_range:
            raise ValueError("query returned more than 10000 results")

        address = params["address"].lower()
        wanted = {bytes(HexBytes(t)) for t in params["topics"][0]}
        return [
            dict(log)
            for log in self.chain.logs
            if log["address"].lower() == address
            and start <= log["blockNumber"] <= end
            and bytes(HexBytes(log["topics"][0])) in wanted
        ]

    def get_block(self, number):
        self._check("eth_getBlockByNumber")
        if number in self.chain.bad_blocks:
            raise ValueError(f"header not found for block {number}")
        if number > self.chain.head:
            return None
        return {"number": number, "timestamp": self.chain.timestamp_of(number)}

    def get_transaction(self, tx_hash):
        self._check("eth_getTransactionByHash")
        return self.chain.transactions.get(tx_hash)

    def get_transaction_receipt(self, tx_hash):
        self._check("eth_getTransactionReceipt")
        return self.chain.receipts.get(tx_hash)


class FakeWeb3:
    def __init__(self, chain, url):
        self.eth = FakeEth(chain, url)


class FakeChain:
    def __init__(self, head=100, genesis_ts=PROTOCOL_EPOCH, block_time=12):
        self.head = head
        self.genesis_ts = genesis_ts
        self.block_time = block_time
        self.logs = []
        self.timestamps = {}
        self.transactions = {}
        self.receipts = {}
        self.down = set()
        self.bad_blocks = set()
        self.max_range = None
        self.log_error = None
        self.failing_addresses = set()
        self.calls = []
        self.log_queries = []
        self._tx_counter = itertools.count(1)

    def factory(self, url, timeout):
        return FakeWeb3(self, url)

    def timestamp_of(self, number):
        return self.timestamps.get(number, self.genesis_ts + number * self.block_time)

    def set_day(self, block, day, offset=3600):
        """Pin a block's timestamp inside the given protocol day."""
        self.timestamps[block] = PROTOCOL_EPOCH + (day - 1) * SECONDS_PER_DAY + offset

    def add_event(self, definition, address, values, block, log_index=0, tx_hash=None, removed=False,
                  tx_input="0x", tx_value=0):
        """Append a log. Its transaction is registered too unless tx_input is None."""
        indexed = [i for i in definition.inputs if i.get("indexed")]
        plain = [i for i in definition.inputs if not i.get("indexed")]
        topics = [definition.topic0] + [_hex(encode([i["type"]], [values[i["name"]]])) for i in indexed]
        data = _hex(encode([i["type"] for i in plain], [values[i["name"]] for i in plain])) if plain else "0x"
        tx_hash = tx_hash or _hex(keccak(text=f"tx-{next(self._tx_counter)}"))
        log = {
            "address": address.lower(),
            "topics": topics,
            "data": data,
            "blockNumber": block,
            "logIndex": log_index,
            "transactionHash": tx_hash,
            "removed": removed,
        }
        self.logs.append(log)
        if tx_input is not None:
            self.transactions.setdefault(tx_hash, {"hash": tx_hash, "input": tx_input, "value": tx_value})
            self.receipts.setdefault(tx_hash, {"transactionHash": tx_hash, "status": 1, "logs": []})
        return log

    def add_transfer(self, tx_hash, token, sender, recipient, amount):
        """ERC-20 Transfer log in an already registered transaction's receipt."""
        topic0 = _hex(keccak(text="Transfer(address,address,uint256)"))
        self.receipts[tx_hash]["logs"].append({
            "address": token,
            "topics": [topic0, _hex(encode(["address"], [sender])), _hex(encode(["address"], [recipient]))],
            "data": _hex(encode(["uint256"], [amount])),
        })


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def make_pool(chain):
    def _make(urls=(URL_A, URL_B), **kwargs):
        return EndpointPool(list(urls), web3_factory=chain.factory, **kwargs)
    return _make


@pytest.fixture
def pool(make_pool):
    return make_pool()


@pytest.fixture
def no_sleep():
    return lambda seconds: None


@pytest.fixture
def write_json(tmp_path):
    def _write(doc, name="cached-data.json"):
        path = tmp_path / name
        path.write_text(json.dumps(doc, indent=2))
        return path
    return _write
