#!/usr/bin/env python3
"""Data models for the oracle-sync system.

This module provides the value objects mirrored from the optimistic oracle
and ERC20 contracts: request keys, request records, token info and decoded
oracle events.
"""

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class RequestState(IntEnum):
    """Request states as reported by the oracle's ``getState``."""
    INVALID = 0
    REQUESTED = 1
    PROPOSED = 2
    EXPIRED = 3
    DISPUTED = 4
    RESOLVED = 5
    SETTLED = 6


# States that never change again once reached
FINAL_STATES: frozenset[RequestState] = frozenset({RequestState.INVALID, RequestState.SETTLED})


class TxStatus(Enum):
    """Outcome of a one-shot transaction workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def _normalize_hex(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    value = value.lower()
    return value if value.startswith("0x") else "0x" + value


@dataclass(frozen=True, slots=True)
class RequestKey:
    """Composite identifier of a price request.

    The chain id is always part of the key so identical requests on
    different chains (testnet forks) never collide.

    Attributes:
        chain_id: Chain the oracle lives on
        requester: Checksummed address of the requesting contract
        identifier: bytes32 price identifier (0x-prefixed hex)
        timestamp: Request timestamp
        ancillary_data: Ancillary data bytes (0x-prefixed hex)
    """

    chain_id: int
    requester: str
    identifier: str
    timestamp: int
    ancillary_data: str = "0x"

    def __post_init__(self) -> None:
        if not Web3.is_address(self.requester):
            raise ValueError(f"Invalid requester address: {self.requester}")
        object.__setattr__(self, "requester", Web3.to_checksum_address(self.requester))
        identifier = _normalize_hex(self.identifier)
        if len(identifier) > 66:
            raise ValueError(f"Identifier longer than 32 bytes: {identifier}")
        # bytes32 identifiers are right padded, as emitted in oracle events
        object.__setattr__(self, "identifier", identifier.ljust(66, "0"))
        object.__setattr__(self, "ancillary_data", _normalize_hex(self.ancillary_data))

    @property
    def ancillary_data_hash(self) -> str:
        return Web3.to_hex(Web3.keccak(hexstr=self.ancillary_data))

    @property
    def id(self) -> str:
        """String form used by the cross-chain sorted request table."""
        return "!".join([
            self.requester,
            self.identifier,
            str(self.timestamp),
            self.ancillary_data_hash,
            str(self.chain_id),
        ])

    def call_args(self) -> tuple[str, bytes, int, bytes]:
        """Arguments in the order the oracle contract functions expect."""
        return (
            self.requester,
            bytes.fromhex(self.identifier[2:]),
            self.timestamp,
            bytes.fromhex(self.ancillary_data[2:]),
        )

    def __str__(self) -> str:
        return (
            f"RequestKey(chain={self.chain_id}, "
            f"requester={self.requester[:8]}..., "
            f"timestamp={self.timestamp})"
        )


@dataclass(frozen=True, slots=True)
class Request:
    """A price request as last read from chain.

    Attributes:
        key: Composite request key
        state: Current request state
        currency: ERC20 used for bonds and rewards
        proposer: Proposer address, zero address if no proposal
        disputer: Disputer address, zero address if no dispute
        proposed_price: Price proposed, if any
        resolved_price: Final price once resolved/settled
        expiration_time: Liveness expiry of the current proposal
        custom_liveness: Request specific liveness, 0 for the oracle default
    """

    key: RequestKey
    state: RequestState = RequestState.INVALID
    currency: str = ZERO_ADDRESS
    proposer: str = ZERO_ADDRESS
    disputer: str = ZERO_ADDRESS
    proposed_price: int = 0
    resolved_price: int = 0
    expiration_time: int = 0
    reward: int = 0
    final_fee: int = 0
    bond: int = 0
    custom_liveness: int = 0
    settled: bool = False

    @property
    def is_final(self) -> bool:
        return self.state in FINAL_STATES

    def with_state(self, state: RequestState) -> "Request":
        return replace(self, state=RequestState(state))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "chain_id": self.key.chain_id,
            "requester": self.key.requester,
            "identifier": self.key.identifier,
            "timestamp": self.key.timestamp,
            "ancillary_data": self.key.ancillary_data,
            "state": self.state.name,
            "currency": self.currency,
            "proposer": self.proposer,
            "disputer": self.disputer,
            "proposed_price": self.proposed_price,
            "resolved_price": self.resolved_price,
            "expiration_time": self.expiration_time,
            "reward": self.reward,
            "final_fee": self.final_fee,
            "bond": self.bond,
            "custom_liveness": self.custom_liveness,
            "settled": self.settled,
        }


@dataclass(slots=True)
class Erc20Info:
    """Token metadata plus the balances and allowances seen so far.

    Balances and allowances are updated entry by entry, never as a whole.
    """

    address: str
    chain_id: int
    decimals: int | None = None
    symbol: str | None = None
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[tuple[str, str], int] = field(default_factory=dict)

    def copy(self) -> "Erc20Info":
        return replace(self, balances=dict(self.balances), allowances=dict(self.allowances))


@dataclass(frozen=True, slots=True)
class OracleEvent:
    """A decoded optimistic oracle event.

    Attributes:
        chain_id: Chain the log was read from (not part of the raw log)
        name: Event name (RequestPrice, ProposePrice, DisputePrice, Settle)
        block_number: Block the event was emitted in
        transaction_hash: Emitting transaction (0x-prefixed hex)
        log_index: Index of the log within the block
        key: Request the event refers to
        args: Remaining decoded event arguments
    """

    chain_id: int
    name: str
    block_number: int
    transaction_hash: str
    log_index: int
    key: RequestKey
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def unique_key(self) -> tuple[int, str, int]:
        """Key for deduplication across overlapping block ranges."""
        return (self.chain_id, self.transaction_hash, self.log_index)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index)

    def __str__(self) -> str:
        return (
            f"OracleEvent({self.name}, chain={self.chain_id}, "
            f"block={self.block_number}, tx={self.transaction_hash[:10]}...)"
        )
