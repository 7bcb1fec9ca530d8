"""Unit tests for TransactionSubmitter in local and ROFL modes."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from oracle_sync.errors import FatalConfigError
from oracle_sync.models import ZERO_ADDRESS
from oracle_sync.tx_submitter import TransactionSubmitter

from conftest import USER


def gas_price(value):
    async def _price():
        return value
    return _price()


@pytest.fixture
def contract_util():
    util = MagicMock()
    util.rpc_url = "https://test.rpc"
    util.can_sign = True
    util.account.address = USER
    return util


class TestLocalMode:

    @pytest.mark.asyncio
    async def test_transact_returns_hash(self, contract_util):
        call = MagicMock()
        call.transact = AsyncMock(return_value=b"\x12" * 32)

        tx_hash = await TransactionSubmitter(contract_util).submit(call)

        assert tx_hash == "0x" + "12" * 32
        call.transact.assert_awaited_once_with({"from": USER})

    @pytest.mark.asyncio
    async def test_missing_key(self, contract_util):
        contract_util.can_sign = False
        call = MagicMock()
        call.transact = AsyncMock()

        with pytest.raises(FatalConfigError):
            await TransactionSubmitter(contract_util).submit(call)
        call.transact.assert_not_awaited()


class TestRoflMode:

    @pytest.mark.asyncio
    async def test_built_transaction_handed_to_rofl(self, contract_util):
        contract_util.w3.eth.gas_price = gas_price(100)
        rofl_util = MagicMock()
        rofl_util.submit_tx = AsyncMock(return_value=b"")
        built = {"to": "0xabc", "data": "0x01", "gas": 300_000, "value": 0}
        call = MagicMock()
        call.build_transaction = AsyncMock(return_value=built)

        result = await TransactionSubmitter(contract_util, rofl_util, gas_limit=300_000).submit(call)

        assert result is None
        tx_params = call.build_transaction.call_args[0][0]
        assert tx_params["from"] == ZERO_ADDRESS
        assert tx_params["gas"] == 300_000
        assert tx_params["gasPrice"] == 100
        rofl_util.submit_tx.assert_awaited_once_with(built)
