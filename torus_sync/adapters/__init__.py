"""Event definitions per contract, looked up by event name."""
from typing import Dict, Iterable, List

from .base import EventDefinition
from .buy_process import BUY_PROCESS_ADDRESS, BuyAndBuild, BuyAndBurn, FractalFundsReleased
from .create_stake import CREATE_STAKE_ADDRESS, Created, Staked

EVENT_REGISTRY: Dict[str, EventDefinition] = {
    d.name: d
    for d in (BuyAndBurn(), BuyAndBuild(), FractalFundsReleased(), Created(), Staked())
}

DEFAULT_SOURCES = {
    "buy_process": {
        "address": BUY_PROCESS_ADDRESS,
        "events": ["BuyAndBurn", "BuyAndBuild", "FractalFundsReleased"],
    },
    "create_stake": {
        "address": CREATE_STAKE_ADDRESS,
        "events": ["Created", "Staked"],
    },
}


def get_definitions(names: Iterable[str]) -> List[EventDefinition]:
    out = []
    for name in names:
        if name not in EVENT_REGISTRY:
            raise KeyError(f"No event definition registered for {name!r}")
        out.append(EVENT_REGISTRY[name])
    return out


__all__ = [
    "EventDefinition",
    "EVENT_REGISTRY",
    "DEFAULT_SOURCES",
    "get_definitions",
]
