# adapters/base.py
from typing import Any, Dict, List, Mapping, Optional

from eth_abi import decode as abi_decode
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from ..errors import EventDecodeError
from ..models import RawEvent


def as_int(value: Any) -> int:
    """Block numbers and log indexes arrive as ints or as 0x-hex strings."""
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def as_hex(value: Any) -> str:
    return "0x" + bytes(HexBytes(value)).hex()


def tx_selector(tx: Mapping[str, Any]) -> str:
    """4-byte function selector of a transaction's calldata, "0x" + 8 hex chars."""
    data = tx.get("input") or tx.get("data") or b""
    return "0x" + bytes(HexBytes(data))[:4].hex()


def _normalize_value(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return to_checksum_address(value)
    if abi_type.startswith("uint") or abi_type.startswith("int"):
        return str(int(value))
    if abi_type.startswith("bytes"):
        return as_hex(value)
    return value


class EventDefinition:
    """
    One on-chain event the sync understands.

    Subclasses (or instances built with keyword arguments) declare:
    - name / inputs: the Solidity event ABI
    - category: the eventCounts key each occurrence increments
    - amount_fields: {amounts key: argument name} summed per day

    needs_transaction marks events whose amounts depend on the calling
    transaction: classify_transaction turns the transaction (and, when
    needs_receipt says so, its receipt) into extra event arguments.
    """
    name: str = ""
    inputs: List[Dict[str, Any]] = []
    category: str = ""
    amount_fields: Dict[str, str] = {}
    needs_transaction: bool = False

    def __init__(
        self,
        name: Optional[str] = None,
        inputs: Optional[List[Dict[str, Any]]] = None,
        category: Optional[str] = None,
        amount_fields: Optional[Dict[str, str]] = None,
    ):
        if name is not None:
            self.name = name
        if inputs is not None:
            self.inputs = inputs
        if category is not None:
            self.category = category
        if amount_fields is not None:
            self.amount_fields = amount_fields
        if not self.name or not self.category:
            raise ValueError("event definition needs a name and a category")

    def __repr__(self):
        return f"<{type(self).__name__} {self.signature} -> {self.category}>"

    @property
    def abi(self) -> Dict[str, Any]:
        return {"anonymous": False, "inputs": self.inputs, "name": self.name, "type": "event"}

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i['type'] for i in self.inputs)})"

    @property
    def topic0(self) -> str:
        return "0x" + keccak(text=self.signature).hex()

    def matches(self, log: Mapping[str, Any]) -> bool:
        topics = log.get("topics") or []
        return bool(topics) and HexBytes(topics[0]) == HexBytes(self.topic0)

    def decode(self, log: Mapping[str, Any]) -> RawEvent:
        """Decode a raw eth_getLogs entry into a RawEvent."""
        block = as_int(log["blockNumber"])
        log_index = as_int(log["logIndex"])
        where = f"{self.name} at block {block} logIndex {log_index}"

        if not self.matches(log):
            raise EventDecodeError(f"{where}: topic0 does not match {self.signature}")

        topics = [HexBytes(t) for t in log["topics"]][1:]
        indexed = [i for i in self.inputs if i.get("indexed")]
        plain = [i for i in self.inputs if not i.get("indexed")]
        if len(topics) != len(indexed):
            raise EventDecodeError(f"{where}: expected {len(indexed)} indexed topics, got {len(topics)}")

        args: Dict[str, Any] = {}
        try:
            for inp, topic in zip(indexed, topics):
                (value,) = abi_decode([inp["type"]], bytes(topic))
                args[inp["name"]] = _normalize_value(inp["type"], value)

            data = bytes(HexBytes(log.get("data") or b""))
            if plain:
                values = abi_decode([i["type"] for i in plain], data)
                for inp, value in zip(plain, values):
                    args[inp["name"]] = _normalize_value(inp["type"], value)
        except Exception as e:
            raise EventDecodeError(f"{where}: {e}") from e

        return RawEvent(
            contract=to_checksum_address(log["address"]),
            event_name=self.name,
            args=args,
            block_number=block,
            transaction_hash=as_hex(log["transactionHash"]),
            log_index=log_index,
        )

    def amounts(self, event: RawEvent) -> Dict[str, int]:
        """Amounts this event adds to its day, keyed like amount_fields."""
        return {key: int(event.args[arg]) for key, arg in self.amount_fields.items()}

    def needs_receipt(self, tx: Mapping[str, Any]) -> bool:
        return False

    def classify_transaction(self, tx: Mapping[str, Any], receipt: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Extra event arguments derived from the calling transaction."""
        return {}
