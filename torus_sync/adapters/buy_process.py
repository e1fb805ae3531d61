"""
TORUS Buy & Process contract events.

BuyAndBurn(
    uint256 indexed titanXAmount,
    uint256 indexed torusBurnt,
    address indexed caller
)

BuyAndBuild(
    uint256 indexed tokenAllocated,
    uint256 indexed torusPurchased,
    address indexed caller
)

FractalFundsReleased(uint256 releasedTitanX, uint256 releasedETH)

Neither buy event says how it was paid for; the calling function does.
swapETHForTorusAndBurn (0x39b6ce64) swaps ETH into TitanX first, so its
titanXAmount was bought with ETH rather than spent from TitanX holdings;
swapTitanXForTorusAndBurn (0xd6d315a4) spends TitanX. For builds,
swapETHForTorusAndBuild (0x53ad9b96) allocates ETH and
swapTitanXForTorusAndBuild (0xfc9b61ae) allocates TitanX.
"""

from typing import Any, Dict, Mapping, Optional

from ..models import RawEvent
from .base import EventDefinition, tx_selector

BUY_PROCESS_ADDRESS = "0xaa390a37006e22b5775a34f2147f81ebd6a63641"

ETH_BURN_SELECTOR = "0x39b6ce64"
TITANX_BURN_SELECTOR = "0xd6d315a4"
ETH_BUILD_SELECTOR = "0x53ad9b96"
TITANX_BUILD_SELECTOR = "0xfc9b61ae"

BURN_SELECTORS = {
    ETH_BURN_SELECTOR: "ETH",
    TITANX_BURN_SELECTOR: "TitanX",
}

PAYMENT_SELECTORS = {
    ETH_BUILD_SELECTOR: "ETH",
    TITANX_BUILD_SELECTOR: "TitanX",
}

BURN_AMOUNT_KEYS = {
    "ETH": "titanXFromEthBurns",
    "TitanX": "titanXUsedForBurns",
}
UNCLASSIFIED_BURN_KEY = "titanXBurnUnclassified"

PAYMENT_AMOUNT_KEYS = {
    "ETH": "ethUsedForBuilds",
    "TitanX": "titanXUsedForBuilds",
}
UNCLASSIFIED_BUILD_KEY = "tokenAllocatedUnclassified"


class BuyAndBurn(EventDefinition):
    name = "BuyAndBurn"
    inputs = [
        {"indexed": True, "name": "titanXAmount", "type": "uint256"},
        {"indexed": True, "name": "torusBurnt", "type": "uint256"},
        {"indexed": True, "name": "caller", "type": "address"},
    ]
    category = "buyAndBurn"
    amount_fields = {"torusBurned": "torusBurnt"}
    needs_transaction = True

    def classify_transaction(self, tx: Mapping[str, Any], receipt: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return {"paymentCurrency": BURN_SELECTORS.get(tx_selector(tx))}

    def amounts(self, event: RawEvent) -> Dict[str, int]:
        out = super().amounts(event)
        key = BURN_AMOUNT_KEYS.get(event.args.get("paymentCurrency"), UNCLASSIFIED_BURN_KEY)
        out[key] = int(event.args["titanXAmount"])
        return out


class BuyAndBuild(EventDefinition):
    name = "BuyAndBuild"
    inputs = [
        {"indexed": True, "name": "tokenAllocated", "type": "uint256"},
        {"indexed": True, "name": "torusPurchased", "type": "uint256"},
        {"indexed": True, "name": "caller", "type": "address"},
    ]
    category = "buyAndBuild"
    amount_fields = {"torusPurchased": "torusPurchased"}
    needs_transaction = True

    def classify_transaction(self, tx: Mapping[str, Any], receipt: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return {"paymentCurrency": PAYMENT_SELECTORS.get(tx_selector(tx))}

    def amounts(self, event: RawEvent) -> Dict[str, int]:
        out = super().amounts(event)
        key = PAYMENT_AMOUNT_KEYS.get(event.args.get("paymentCurrency"), UNCLASSIFIED_BUILD_KEY)
        out[key] = int(event.args["tokenAllocated"])
        return out


class FractalFundsReleased(EventDefinition):
    name = "FractalFundsReleased"
    inputs = [
        {"indexed": False, "name": "releasedTitanX", "type": "uint256"},
        {"indexed": False, "name": "releasedETH", "type": "uint256"},
    ]
    category = "fractal"
    amount_fields = {
        "fractalTitanX": "releasedTitanX",
        "fractalETH": "releasedETH",
    }
