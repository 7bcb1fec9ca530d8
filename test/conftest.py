"""Shared fixtures for oracle-sync tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import Web3

from oracle_sync.chain_service import ChainService
from oracle_sync.models import OracleEvent, Request, RequestKey, RequestState
from oracle_sync.store import Store
from oracle_sync.update import Update

REQUESTER = Web3.to_checksum_address("0x" + "11" * 20)
USER = Web3.to_checksum_address("0x" + "22" * 20)
TOKEN = Web3.to_checksum_address("0x" + "33" * 20)
ORACLE = Web3.to_checksum_address("0x" + "44" * 20)
OTHER = Web3.to_checksum_address("0x" + "55" * 20)
IDENTIFIER = "0x" + b"YES_OR_NO_QUERY".hex()


class ManualClock:
    """Clock advanced explicitly by the test."""

    def __init__(self, start: float = 0.0) -> None:
        self.time = start

    def now(self) -> float:
        return self.time

    def advance(self, seconds: float) -> None:
        self.time += seconds


def make_key(chain_id: int = 1, timestamp: int = 1_700_000_000, ancillary_data: str = "0x") -> RequestKey:
    return RequestKey(
        chain_id=chain_id,
        requester=REQUESTER,
        identifier=IDENTIFIER,
        timestamp=timestamp,
        ancillary_data=ancillary_data,
    )


def make_request(key: RequestKey, state: RequestState = RequestState.REQUESTED, **fields) -> Request:
    fields.setdefault("currency", TOKEN)
    return Request(key=key, state=state, **fields)


def make_event(
    key: RequestKey,
    name: str = "RequestPrice",
    block_number: int = 100,
    log_index: int = 0,
    tx_hash: str | None = None,
    **args
) -> OracleEvent:
    if name in ("RequestPrice", "ProposePrice"):
        args.setdefault("currency", TOKEN)
    return OracleEvent(
        chain_id=key.chain_id,
        name=name,
        block_number=block_number,
        transaction_hash=tx_hash or f"0x{block_number:064x}",
        log_index=log_index,
        key=key,
        args=args,
    )


def make_service(chain_id: int = 1) -> MagicMock:
    """ChainService double with every chain call mocked."""
    service = MagicMock(spec=ChainService)
    service.chain_id = chain_id
    service.oracle_address = ORACLE
    service.get_block_number = AsyncMock(return_value=1000)
    service.get_request = AsyncMock(side_effect=lambda key: make_request(key, RequestState.INVALID))
    service.get_state = AsyncMock(return_value=RequestState.REQUESTED)
    service.get_current_time = AsyncMock(return_value=1_700_000_100)
    service.default_liveness = AsyncMock(return_value=7200)
    service.erc20_props = AsyncMock(return_value=(6, "USDC"))
    service.balance_of = AsyncMock(return_value=5_000_000)
    service.allowance = AsyncMock(return_value=0)
    service.query_oracle_events = AsyncMock(return_value=[])
    service.approve = AsyncMock(return_value="0x" + "ab" * 32)
    service.propose_price = AsyncMock(return_value="0x" + "cd" * 32)
    service.dispute_price = AsyncMock(return_value="0x" + "ef" * 32)
    service.is_confirmed = AsyncMock(return_value={"status": 1, "blockNumber": 1000})
    return service


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> Store:
    return Store()


@pytest.fixture
def services() -> dict[int, MagicMock]:
    return {1: make_service(1), 137: make_service(137)}


@pytest.fixture
def update(store, services) -> Update:
    return Update(store, services)
