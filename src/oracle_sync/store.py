#!/usr/bin/env python3
"""Snapshot store for synchronized oracle state.

The store holds one immutable snapshot at a time. Reads are served from the
snapshot current when ``read()`` was called; writes stage their mutations on
a copy-on-write draft and swap a new snapshot in when the write function
returns, so readers see either all of a write or none of it.
"""

import inspect
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from web3 import Web3

from .errors import NotFoundError
from .models import Erc20Info, OracleEvent, Request, RequestKey, RequestState

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChainSlice:
    """All synchronized state for a single chain."""

    chain_id: int
    requests: dict[RequestKey, Request] = field(default_factory=dict)
    erc20s: dict[str, Erc20Info] = field(default_factory=dict)
    events: dict[tuple[int, str, int], OracleEvent] = field(default_factory=dict)
    current_time: int | None = None
    last_scanned_block: int | None = None
    default_liveness: int | None = None

    def copy(self) -> "ChainSlice":
        # Token entries are copied lazily by the draft when first touched
        return ChainSlice(
            chain_id=self.chain_id,
            requests=dict(self.requests),
            erc20s=dict(self.erc20s),
            events=dict(self.events),
            current_time=self.current_time,
            last_scanned_block=self.last_scanned_block,
            default_liveness=self.default_liveness,
        )


@dataclass(frozen=True, slots=True)
class Inputs:
    """Selections made by the UI/API layer."""

    chain_id: int | None = None
    user: str | None = None
    request: RequestKey | None = None


@dataclass(frozen=True, slots=True)
class Snapshot:
    version: int
    chains: dict[int, ChainSlice]
    inputs: Inputs
    descending_requests: tuple[Request, ...] = ()


def _checksum(address: str) -> str:
    if not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return Web3.to_checksum_address(address)


class _Draft:
    """Copy-on-write working copy of a snapshot."""

    def __init__(self, base: Snapshot) -> None:
        self.base = base
        self.chains: dict[int, ChainSlice] = dict(base.chains)
        self.inputs = base.inputs
        self.descending_requests = base.descending_requests
        self._touched_chains: set[int] = set()
        self._touched_tokens: set[tuple[int, str]] = set()

    def chain(self, chain_id: int) -> ChainSlice:
        if chain_id not in self._touched_chains:
            current = self.chains.get(chain_id)
            self.chains[chain_id] = current.copy() if current else ChainSlice(chain_id=chain_id)
            self._touched_chains.add(chain_id)
        return self.chains[chain_id]

    def erc20(self, chain_id: int, address: str) -> Erc20Info:
        chain = self.chain(chain_id)
        if (chain_id, address) not in self._touched_tokens:
            current = chain.erc20s.get(address)
            chain.erc20s[address] = current.copy() if current else Erc20Info(address=address, chain_id=chain_id)
            self._touched_tokens.add((chain_id, address))
        return chain.erc20s[address]

    def commit(self) -> Snapshot:
        return Snapshot(
            version=self.base.version + 1,
            chains=self.chains,
            inputs=self.inputs,
            descending_requests=self.descending_requests,
        )


class WriteView:
    """Typed mutation builder handed to ``Store.write`` callbacks.

    Only valid inside the write call; any use afterwards raises
    ``RuntimeError``.
    """

    def __init__(self, draft: _Draft) -> None:
        self._draft: _Draft | None = draft

    def _active(self) -> _Draft:
        if self._draft is None:
            raise RuntimeError("Write view used outside of its write transaction")
        return self._draft

    def _close(self) -> None:
        self._draft = None

    def inputs(self) -> "InputsWriter":
        self._active()
        return InputsWriter(self)

    def chains(self, chain_id: int) -> "ChainWriter":
        self._active()
        return ChainWriter(self, int(chain_id))

    def descending_requests(self, requests: Iterable[Request]) -> None:
        self._active().descending_requests = tuple(requests)


class InputsWriter:
    def __init__(self, view: WriteView) -> None:
        self._view = view

    def _replace(self, **changes) -> None:
        draft = self._view._active()
        current = draft.inputs
        values = {"chain_id": current.chain_id, "user": current.user, "request": current.request}
        values.update(changes)
        draft.inputs = Inputs(**values)

    def chain(self, chain_id: int) -> None:
        self._replace(chain_id=int(chain_id))

    def user(self, address: str) -> None:
        self._replace(user=_checksum(address))

    def clear_user(self) -> None:
        self._replace(user=None)

    def request(self, key: RequestKey) -> None:
        self._replace(request=key)


class ChainWriter:
    def __init__(self, view: WriteView, chain_id: int) -> None:
        self._view = view
        self.chain_id = chain_id

    def _slice(self) -> ChainSlice:
        return self._view._active().chain(self.chain_id)

    def current_time(self, timestamp: int) -> None:
        self._slice().current_time = int(timestamp)

    def default_liveness(self, seconds: int) -> None:
        self._slice().default_liveness = int(seconds)

    def last_scanned_block(self, block_number: int) -> None:
        chain = self._slice()
        if chain.last_scanned_block is not None and block_number < chain.last_scanned_block:
            raise ValueError(
                f"Checkpoint for chain {self.chain_id} cannot move backwards "
                f"({chain.last_scanned_block} -> {block_number})"
            )
        chain.last_scanned_block = int(block_number)

    def event(self, event: OracleEvent) -> None:
        if event.chain_id != self.chain_id:
            raise ValueError(f"Event for chain {event.chain_id} written to chain {self.chain_id}")
        # Keyed by log identity so re-ingesting an overlapping range is a no-op
        self._slice().events[event.unique_key] = event

    def requests(self, key: RequestKey) -> "RequestWriter":
        if key.chain_id != self.chain_id:
            raise ValueError(f"Request for chain {key.chain_id} written to chain {self.chain_id}")
        return RequestWriter(self, key)

    def erc20s(self, address: str) -> "Erc20Writer":
        return Erc20Writer(self, _checksum(address))


class RequestWriter:
    def __init__(self, chain: ChainWriter, key: RequestKey) -> None:
        self._chain = chain
        self.key = key

    def set(self, request: Request) -> None:
        if request.key != self.key:
            raise ValueError(f"Request {request.key} does not match key {self.key}")
        self._chain._slice().requests[self.key] = request

    def state(self, state: RequestState) -> None:
        requests = self._chain._slice().requests
        current = requests.get(self.key)
        if current is None:
            raise NotFoundError(f"Cannot set state of unknown request {self.key}")
        requests[self.key] = current.with_state(state)


class Erc20Writer:
    def __init__(self, chain: ChainWriter, address: str) -> None:
        self._chain = chain
        self.address = address

    def _token(self) -> Erc20Info:
        return self._chain._view._active().erc20(self._chain.chain_id, self.address)

    def touch(self) -> None:
        """Register the token without setting any fields."""
        self._token()

    def props(self, decimals: int, symbol: str) -> None:
        token = self._token()
        token.decimals = int(decimals)
        token.symbol = symbol

    def balance(self, account: str, amount: int) -> None:
        self._token().balances[_checksum(account)] = int(amount)

    def allowance(self, owner: str, spender: str, amount: int) -> None:
        self._token().allowances[(_checksum(owner), _checksum(spender))] = int(amount)


class ReadView:
    """Pure lookups over one snapshot.

    Every lookup for data that has not been fetched raises ``NotFoundError``.
    """

    def __init__(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    # Selections

    def chain_id(self) -> int:
        if (chain_id := self._snapshot.inputs.chain_id) is None:
            raise NotFoundError("No active chain selected")
        return chain_id

    def user_address(self) -> str:
        if (user := self._snapshot.inputs.user) is None:
            raise NotFoundError("No user selected")
        return user

    def input_request(self) -> RequestKey:
        if (key := self._snapshot.inputs.request) is None:
            raise NotFoundError("No active request selected")
        return key

    def request_chain_id(self) -> int:
        return self.input_request().chain_id

    # Chain data

    def has_chain(self, chain_id: int) -> bool:
        return chain_id in self._snapshot.chains

    def chain(self, chain_id: int) -> ChainSlice:
        try:
            return self._snapshot.chains[chain_id]
        except KeyError:
            raise NotFoundError(f"No data for chain {chain_id}") from None

    def request(self, key: RequestKey | None = None) -> Request:
        key = key or self.input_request()
        try:
            return self.chain(key.chain_id).requests[key]
        except KeyError:
            raise NotFoundError(f"Request not fetched: {key}") from None

    def requests(self, chain_id: int) -> list[Request]:
        return list(self.chain(chain_id).requests.values())

    def erc20(self, chain_id: int, address: str) -> Erc20Info:
        try:
            return self.chain(chain_id).erc20s[_checksum(address)]
        except KeyError:
            raise NotFoundError(f"Token {address} not known on chain {chain_id}") from None

    def collateral(self) -> Erc20Info:
        request = self.request()
        return self.erc20(request.key.chain_id, request.currency)

    def balance(self, chain_id: int, token: str, account: str) -> int:
        try:
            return self.erc20(chain_id, token).balances[_checksum(account)]
        except KeyError:
            raise NotFoundError(f"Balance of {account} for {token} not fetched") from None

    def allowance(self, chain_id: int, token: str, owner: str, spender: str) -> int:
        try:
            return self.erc20(chain_id, token).allowances[(_checksum(owner), _checksum(spender))]
        except KeyError:
            raise NotFoundError(f"Allowance of {owner} for {spender} on {token} not fetched") from None

    def current_time(self, chain_id: int | None = None) -> int:
        chain_id = self.request_chain_id() if chain_id is None else chain_id
        if (timestamp := self.chain(chain_id).current_time) is None:
            raise NotFoundError(f"Current time not fetched for chain {chain_id}")
        return timestamp

    def default_liveness(self, chain_id: int | None = None) -> int:
        chain_id = self.request_chain_id() if chain_id is None else chain_id
        if (liveness := self.chain(chain_id).default_liveness) is None:
            raise NotFoundError(f"Default liveness not fetched for chain {chain_id}")
        return liveness

    def last_scanned_block(self, chain_id: int) -> int:
        if (block := self.chain(chain_id).last_scanned_block) is None:
            raise NotFoundError(f"No events scanned yet for chain {chain_id}")
        return block

    def oracle_events(self, chain_id: int) -> list[OracleEvent]:
        """Events known for a chain, in chain order."""
        return sorted(self.chain(chain_id).events.values(), key=lambda e: e.sort_key)

    def descending_requests(self) -> list[Request]:
        return list(self._snapshot.descending_requests)


class Store:
    """In-memory snapshot store with atomic write transactions."""

    def __init__(self) -> None:
        self._snapshot = Snapshot(version=0, chains={}, inputs=Inputs())

    @property
    def version(self) -> int:
        return self._snapshot.version

    def read(self) -> ReadView:
        return ReadView(self._snapshot)

    def write(self, fn: Callable[[WriteView], None]) -> None:
        """Apply all mutations made by ``fn`` as one transaction.

        Args:
            fn: Synchronous function receiving a WriteView

        Raises:
            TypeError: If ``fn`` is a coroutine function
            Exception: Whatever ``fn`` raises; nothing is applied in that case
        """
        if inspect.iscoroutinefunction(fn):
            raise TypeError("Store.write requires a synchronous function")

        draft = _Draft(self._snapshot)
        view = WriteView(draft)
        try:
            result = fn(view)
        finally:
            view._close()

        if inspect.isawaitable(result):
            if inspect.iscoroutine(result):
                result.close()
            raise TypeError("Store.write requires a synchronous function")

        self._snapshot = draft.commit()
        logger.debug(f"Store committed version {self._snapshot.version}")
