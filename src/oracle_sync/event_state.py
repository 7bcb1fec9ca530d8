#!/usr/bin/env python3
"""Event-state reducer for optimistic oracle events.

Folds an ordered sequence of oracle events into the latest known request
records. The fold remembers the position of the last event applied per
request, so applying an overlapping range a second time changes nothing.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from web3 import Web3

from .models import OracleEvent, Request, RequestKey, RequestState

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EventState:
    """Result of folding oracle events.

    Attributes:
        requests: Latest request record per key
        positions: (block number, log index) of the last event applied per key
    """

    requests: dict[RequestKey, Request] = field(default_factory=dict)
    positions: dict[RequestKey, tuple[int, int]] = field(default_factory=dict)


def _address(value: str) -> str:
    return Web3.to_checksum_address(value)


def apply_event(request: Request | None, event: OracleEvent) -> Request | None:
    """Apply a single event to a request record.

    Returns:
        The updated request, or the input unchanged for unknown events
    """
    base = request or Request(key=event.key)
    args = event.args

    match event.name:
        case "RequestPrice":
            return replace(
                base,
                state=RequestState.REQUESTED,
                currency=_address(args.get("currency", base.currency)),
                reward=int(args.get("reward", base.reward)),
                final_fee=int(args.get("finalFee", base.final_fee)),
            )
        case "ProposePrice":
            return replace(
                base,
                state=RequestState.PROPOSED,
                proposer=_address(args.get("proposer", base.proposer)),
                proposed_price=int(args.get("proposedPrice", base.proposed_price)),
                expiration_time=int(args.get("expirationTimestamp", base.expiration_time)),
                currency=_address(args.get("currency", base.currency)),
            )
        case "DisputePrice":
            return replace(
                base,
                state=RequestState.DISPUTED,
                proposer=_address(args.get("proposer", base.proposer)),
                disputer=_address(args.get("disputer", base.disputer)),
                proposed_price=int(args.get("proposedPrice", base.proposed_price)),
            )
        case "Settle":
            return replace(
                base,
                state=RequestState.SETTLED,
                settled=True,
                proposer=_address(args.get("proposer", base.proposer)),
                disputer=_address(args.get("disputer", base.disputer)),
                resolved_price=int(args.get("price", base.resolved_price)),
            )
        case _:
            logger.debug(f"Ignoring unknown oracle event {event.name}")
            return request


def get_event_state(events: Iterable[OracleEvent], state: EventState | None = None) -> EventState:
    """Fold events into request records.

    Pure: neither the events nor ``state`` are modified. Duplicate events and
    events at or before a request's last applied position are skipped.

    Args:
        events: Oracle events, in any order
        state: Previous fold result to continue from

    Returns:
        New EventState
    """
    requests = dict(state.requests) if state else {}
    positions = dict(state.positions) if state else {}

    unique = {event.unique_key: event for event in events}
    for event in sorted(unique.values(), key=lambda e: e.sort_key):
        last = positions.get(event.key)
        if last is not None and event.sort_key <= last:
            continue
        updated = apply_event(requests.get(event.key), event)
        if updated is None:
            continue
        requests[event.key] = updated
        positions[event.key] = event.sort_key

    return EventState(requests=requests, positions=positions)


class SortedRequests:
    """Cross-chain request table ordered by request timestamp.

    Entries are keyed by ``RequestKey.id``, which always carries the chain
    id, so identical requests on different chains are listed separately.
    """

    def __init__(self) -> None:
        self._requests: dict[str, Request] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def set(self, key: str, request: Request) -> None:
        self._requests[key] = request

    def get(self, key: str) -> Request | None:
        return self._requests.get(key)

    def descending(self) -> list[Request]:
        return sorted(
            self._requests.values(),
            key=lambda request: (request.key.timestamp, request.key.id),
            reverse=True
        )
