"""Tests for OracleSyncClient wiring and lifecycle."""

import asyncio

import pytest

from oracle_sync.client import OracleSyncClient
from oracle_sync.config import ChainConfig, SchedulingConfig, SyncConfig
from oracle_sync.models import RequestState
from oracle_sync.utils.rofl_utility import RoflUtility

from conftest import ORACLE, USER, make_key, make_service

PRIVATE_KEY = "0x" + "1" * 64


def make_config(local_mode=False, start_block=None):
    return SyncConfig(
        chains=(
            ChainConfig(chain_id=1, rpc_url="https://mainnet.rpc", oracle_address=ORACLE, start_block=start_block),
            ChainConfig(chain_id=137, rpc_url="https://polygon.rpc", oracle_address=ORACLE),
        ),
        scheduling=SchedulingConfig(tick_interval=0.01),
        local_mode=local_mode,
        local_private_key=PRIVATE_KEY if local_mode else None,
    )


class TestWiring:

    def test_rofl_mode(self):
        client = OracleSyncClient(make_config())

        assert isinstance(client.rofl_util, RoflUtility)
        assert set(client.chains) == {1, 137}
        assert client.chains[1].submitter.rofl_util is client.rofl_util
        assert not client.chains[1].contract_util.can_sign

    def test_local_mode(self):
        client = OracleSyncClient(make_config(local_mode=True))

        assert client.rofl_util is None
        assert client.chains[137].contract_util.can_sign
        assert client.update.chains is client.chains

    def test_start_pollers_once(self):
        client = OracleSyncClient(make_config(start_block=100))

        started = client.start_pollers()
        assert started == ["poll_active_request", "poll_new_events-1", "poll_new_events-137"]
        assert client.start_pollers() == []
        assert client.task("poll_new_events-1").params.start_block == 100
        assert client.task("poll_new_events-137").params.start_block is None

    def test_actions_create_tasks(self):
        client = OracleSyncClient(make_config())
        key = make_key()

        ids = [
            client.set_user(USER),
            client.set_active_request(key),
            client.propose_price(key, 1),
            client.dispute_price(key),
            client.switch_chain(137),
            client.fetch_past_events(1, 0, 100),
            client.approve(1, key.requester, ORACLE, 5, USER),
            client.clear_user(),
        ]

        types = [client.task(task_id).type for task_id in ids]
        assert types == [
            "set_user", "set_active_request", "propose_price", "dispute_price",
            "switch_or_add_chain", "fetch_past_events", "approve", "clear_user",
        ]
        assert client.cancel(ids[0])
        assert client.task(ids[0]).done


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_run_until_stopped(self):
        client = OracleSyncClient(make_config())
        for chain_id in client.chains:
            client.chains[chain_id] = make_service(chain_id)
        client.chains[1].get_state.return_value = RequestState.PROPOSED
        task_id = client.set_active_request(make_key())

        runner = asyncio.create_task(client.run())
        for _ in range(100):
            if client.task(task_id).done:
                break
            await asyncio.sleep(0.01)
        client.stop()
        await asyncio.wait_for(runner, timeout=2)

        assert client.task(task_id).error is None
        assert client.read().request().state is RequestState.PROPOSED
        assert client.task("poll_new_events-1").iterations >= 1
        assert not client.running
