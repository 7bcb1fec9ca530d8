"""Unit tests for ChainService with a mocked contract layer."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3.exceptions import TransactionNotFound

from oracle_sync.chain_service import ORACLE_EVENT_NAMES, ChainService, parse_oracle_event
from oracle_sync.errors import TransactionFailedError, TransientFetchError
from oracle_sync.models import RequestState

from conftest import IDENTIFIER, ORACLE, OTHER, REQUESTER, TOKEN, USER, make_key


def log(name, block_number, log_index, **extra):
    args = {
        "requester": REQUESTER,
        "proposer": USER,
        "identifier": bytes.fromhex(IDENTIFIER[2:]).ljust(32, b"\x00"),
        "timestamp": 1_700_000_000,
        "ancillaryData": b"",
        **extra,
    }
    return {
        "event": name,
        "args": args,
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": bytes([block_number % 256]) * 32,
    }


@pytest.fixture
def contract_util():
    util = MagicMock()
    util.w3 = MagicMock()
    util.contract.side_effect = lambda name, address: util.contracts.setdefault(name, MagicMock())
    util.contracts = {}
    return util


@pytest.fixture
def service(contract_util):
    return ChainService(1, contract_util, ORACLE.lower(), request_timeout=0.05)


def oracle(contract_util):
    return contract_util.contracts["OptimisticOracle"]


class TestParseOracleEvent:

    def test_key_matches_user_built_key(self):
        event = parse_oracle_event(1, log("ProposePrice", 10, 2, proposedPrice=5))

        assert event.key == make_key()
        assert event.name == "ProposePrice"
        assert event.sort_key == (10, 2)
        assert event.args == {"proposer": USER, "proposedPrice": 5}
        assert event.transaction_hash == "0x" + "0a" * 32


class TestReads:

    @pytest.mark.asyncio
    async def test_get_request(self, service, contract_util):
        raw = (USER, OTHER, TOKEN.lower(), False, False, 1, 0, 99, 5, 1, 10, 0)
        oracle(contract_util).functions.getRequest.return_value.call = AsyncMock(return_value=raw)

        request = await service.get_request(make_key())

        assert request.state is RequestState.INVALID
        assert request.currency == TOKEN
        assert request.proposer == USER
        assert request.expiration_time == 99
        assert request.bond == 10
        args = oracle(contract_util).functions.getRequest.call_args[0]
        assert args[0] == REQUESTER
        assert len(args[1]) == 32

    @pytest.mark.asyncio
    async def test_get_state(self, service, contract_util):
        oracle(contract_util).functions.getState.return_value.call = AsyncMock(return_value=2)
        assert await service.get_state(make_key()) is RequestState.PROPOSED

    @pytest.mark.asyncio
    async def test_erc20_props(self, service, contract_util):
        token = MagicMock()
        token.functions.decimals.return_value.call = AsyncMock(return_value=6)
        token.functions.symbol.return_value.call = AsyncMock(return_value="USDC")
        contract_util.contracts["ERC20"] = token

        assert await service.erc20_props(TOKEN) == (6, "USDC")

    @pytest.mark.asyncio
    async def test_timeout_becomes_transient(self, service, contract_util):
        async def hang():
            await asyncio.sleep(1)

        oracle(contract_util).functions.getCurrentTime.return_value.call = MagicMock(side_effect=lambda: hang())

        with pytest.raises(TransientFetchError) as exc_info:
            await service.get_current_time()
        assert exc_info.value.chain_id == 1

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self, service, contract_util):
        oracle(contract_util).functions.defaultLiveness.return_value.call = AsyncMock(
            side_effect=ConnectionError("refused")
        )
        with pytest.raises(ConnectionError):
            await service.default_liveness()


class TestEvents:

    @pytest.mark.asyncio
    async def test_query_merges_and_sorts(self, service, contract_util):
        logs = {
            "RequestPrice": [log("RequestPrice", 10, 0, currency=TOKEN)],
            "ProposePrice": [log("ProposePrice", 12, 1)],
            "DisputePrice": [log("DisputePrice", 12, 0, disputer=OTHER)],
            "Settle": [],
        }
        for name in ORACLE_EVENT_NAMES:
            getattr(oracle(contract_util).events, name).return_value.get_logs = AsyncMock(return_value=logs[name])

        events = await service.query_oracle_events(5, 20)

        assert [event.name for event in events] == ["RequestPrice", "DisputePrice", "ProposePrice"]
        oracle(contract_util).events.Settle.return_value.get_logs.assert_awaited_once_with(from_block=5, to_block=20)


class TestTransactions:

    @pytest.mark.asyncio
    async def test_read_only_service_cannot_send(self, service):
        with pytest.raises(RuntimeError, match="read-only"):
            await service.dispute_price(make_key())

    @pytest.mark.asyncio
    async def test_propose_submits_call(self, contract_util):
        submitter = MagicMock()
        submitter.submit = AsyncMock(return_value="0xhash")
        service = ChainService(1, contract_util, ORACLE, submitter=submitter)

        assert await service.propose_price(make_key(), 10**18) == "0xhash"
        call = oracle(contract_util).functions.proposePrice.return_value
        submitter.submit.assert_awaited_once_with(call)
        assert oracle(contract_util).functions.proposePrice.call_args[0][-1] == 10**18

    @pytest.mark.asyncio
    async def test_is_confirmed_pending(self, service, contract_util):
        contract_util.w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("pending"))
        assert await service.is_confirmed("0xabc") is False

    @pytest.mark.asyncio
    async def test_is_confirmed_reverted(self, service, contract_util):
        contract_util.w3.eth.get_transaction_receipt = AsyncMock(return_value={"status": 0, "blockNumber": 10})
        with pytest.raises(TransactionFailedError):
            await service.is_confirmed("0xabc")

    @pytest.mark.asyncio
    async def test_is_confirmed_counts_confirmations(self, service, contract_util):
        receipt = {"status": 1, "blockNumber": 10}
        contract_util.w3.eth.get_transaction_receipt = AsyncMock(return_value=receipt)
        service.get_block_number = AsyncMock(return_value=11)

        assert await service.is_confirmed("0xabc", confirmations=2) == receipt
        assert await service.is_confirmed("0xabc", confirmations=3) is False
