"""
Transaction lookups for events whose amounts depend on how they were paid.

Only definitions with needs_transaction=True trigger a lookup:
- BuyAndBurn / BuyAndBuild: the calling selector says ETH or TitanX
- Created / Staked: tx.value is an ETH payment; otherwise the receipt is
  fetched and a TitanX Transfer to the Create & Stake contract is the payment

Each transaction (and receipt) is fetched once. The derived arguments are
stored on a copy of the event (paymentCurrency, and paymentAmount where the
cost is not part of the event itself).
"""

from __future__ import annotations

import dataclasses
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .adapters.base import EventDefinition
from .deadline import Deadline
from .errors import EndpointUnavailable, RetriesExhausted, SyncTimeout, TransactionResolutionFailure
from .models import RawEvent
from .retry import with_retries
from .rpc_pool import EndpointPool


def _lookup(pool: EndpointPool, method: str, tx_hash: str, deadline: Optional[Deadline]):
    endpoint = pool.acquire(deadline)
    try:
        found = getattr(endpoint.w3.eth, method)(tx_hash)
        if found is None:
            raise ValueError(f"{method}({tx_hash}) returned nothing")
    except Exception as exc:
        pool.report_failure(endpoint, exc)
        raise
    pool.report_success(endpoint)
    return found


def resolve_payment_currency(
    pool: EndpointPool,
    events: List[RawEvent],
    definitions: Mapping[str, EventDefinition],
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    deadline: Optional[Deadline] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> List[RawEvent]:
    """Return ``events`` with payment arguments filled in where needed."""
    txs: Dict[str, Any] = {}
    receipts: Dict[str, Any] = {}
    charged: Set[str] = set()
    out = []
    unknown = 0

    def fetch(method: str, tx_hash: str):
        try:
            return with_retries(
                lambda attempt: _lookup(pool, method, tx_hash, deadline),
                attempts=max_attempts,
                description=f"{method} {tx_hash}",
                give_up_on=(EndpointUnavailable, SyncTimeout),
                backoff_base=backoff_base,
                sleep=sleep,
            )
        except RetriesExhausted as exc:
            raise TransactionResolutionFailure(tx_hash, str(exc.last_error)) from exc

    for ev in events:
        definition = definitions.get(ev.event_name)
        if definition is None or not definition.needs_transaction:
            out.append(ev)
            continue
        if deadline is not None:
            deadline.check(f"fetching transaction {ev.transaction_hash}")

        tx_hash = ev.transaction_hash
        if tx_hash not in txs:
            txs[tx_hash] = fetch("get_transaction", tx_hash)
        receipt = None
        if definition.needs_receipt(txs[tx_hash]):
            if tx_hash not in receipts:
                receipts[tx_hash] = fetch("get_transaction_receipt", tx_hash)
            receipt = receipts[tx_hash]

        extra = definition.classify_transaction(txs[tx_hash], receipt)
        if "paymentAmount" in extra:
            # a transaction pays once, however many events it emits
            if tx_hash in charged:
                extra["paymentAmount"] = "0"
            charged.add(tx_hash)
        if extra.get("paymentCurrency") is None:
            unknown += 1
            print(f"[warn] could not classify payment for {ev.event_name} in {tx_hash} (block {ev.block_number})")

        args = dict(ev.args)
        args.update(extra)
        out.append(dataclasses.replace(ev, args=args))

    if txs:
        print(f"[tx] classified {len(txs)} transaction(s) ({len(receipts)} receipt(s)), {unknown} event(s) unclassified")
    return out
