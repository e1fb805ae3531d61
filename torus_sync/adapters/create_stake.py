"""
TORUS Create & Stake contract events.

Created(address indexed user, uint256 stakeIndex, uint256 torusAmount, uint256 endTime)
Staked(address indexed user, uint256 stakeIndex, uint256 principal, uint256 stakingDays, uint256 shares)

Both are paid for in ETH or TitanX. An ETH payment is the transaction's
value; a TitanX payment shows up in the receipt as a TitanX Transfer to this
contract.
"""

from typing import Any, Dict, Mapping, Optional

from eth_abi import decode as abi_decode
from eth_utils import keccak, to_checksum_address
from hexbytes import HexBytes

from ..models import RawEvent
from .base import EventDefinition, as_int

CREATE_STAKE_ADDRESS = "0xc7Cc775B21f9Df85E043C7FDd9dAC60af0B69507"
TITANX_ADDRESS = "0xF19308F923582A6f7c465e5CE7a9Dc1BEC6665B1"

TRANSFER_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex()


def titanx_paid(receipt: Mapping[str, Any], recipient: str = CREATE_STAKE_ADDRESS) -> int:
    """Sum of TitanX Transfer values to ``recipient`` in a transaction receipt."""
    token = to_checksum_address(TITANX_ADDRESS)
    to = to_checksum_address(recipient)
    total = 0
    for log in receipt.get("logs") or []:
        topics = [HexBytes(t) for t in log.get("topics") or []]
        if len(topics) != 3 or topics[0] != HexBytes(TRANSFER_TOPIC):
            continue
        if to_checksum_address(log["address"]) != token:
            continue
        if to_checksum_address(bytes(topics[2])[-20:]) != to:
            continue
        (value,) = abi_decode(["uint256"], bytes(HexBytes(log.get("data") or b"")))
        total += value
    return total


class PaidEvent(EventDefinition):
    """Create & Stake event whose ETH or TitanX cost is booked under payment_keys."""
    payment_keys: Dict[str, str] = {}
    needs_transaction = True

    def needs_receipt(self, tx: Mapping[str, Any]) -> bool:
        return as_int(tx.get("value") or 0) == 0

    def classify_transaction(self, tx: Mapping[str, Any], receipt: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        value = as_int(tx.get("value") or 0)
        if value > 0:
            return {"paymentCurrency": "ETH", "paymentAmount": str(value)}
        paid = titanx_paid(receipt) if receipt is not None else 0
        if paid > 0:
            return {"paymentCurrency": "TitanX", "paymentAmount": str(paid)}
        return {"paymentCurrency": None, "paymentAmount": "0"}

    def amounts(self, event: RawEvent) -> Dict[str, int]:
        out = super().amounts(event)
        key = self.payment_keys.get(event.args.get("paymentCurrency"))
        paid = int(event.args.get("paymentAmount") or 0)
        if key and paid:
            out[key] = paid
        return out


class Created(PaidEvent):
    name = "Created"
    inputs = [
        {"indexed": True, "name": "user", "type": "address"},
        {"indexed": False, "name": "stakeIndex", "type": "uint256"},
        {"indexed": False, "name": "torusAmount", "type": "uint256"},
        {"indexed": False, "name": "endTime", "type": "uint256"},
    ]
    category = "creates"
    amount_fields = {"torusCreated": "torusAmount"}
    payment_keys = {
        "ETH": "ethUsedForCreates",
        "TitanX": "titanXUsedForCreates",
    }


class Staked(PaidEvent):
    name = "Staked"
    inputs = [
        {"indexed": True, "name": "user", "type": "address"},
        {"indexed": False, "name": "stakeIndex", "type": "uint256"},
        {"indexed": False, "name": "principal", "type": "uint256"},
        {"indexed": False, "name": "stakingDays", "type": "uint256"},
        {"indexed": False, "name": "shares", "type": "uint256"},
    ]
    category = "stakes"
    amount_fields = {
        "torusStaked": "principal",
        "stakeShares": "shares",
    }
    payment_keys = {
        "ETH": "ethUsedForStakes",
        "TitanX": "titanXUsedForStakes",
    }
