"""
oracle-sync client.

This module wires the store, the per-chain services, the fetcher and the
executor together, starts the pollers and exposes the user workflows.
"""

import asyncio
import logging
from typing import Any

from .chain_service import ChainService
from .config import SyncConfig
from .models import RequestKey
from .statemachines import Executor, TaskInstance, build_machines
from .store import ReadView, Store
from .tx_submitter import TransactionSubmitter
from .update import Update
from .utils.contract_utility import ContractUtility
from .utils.rofl_utility import RoflUtility

logger = logging.getLogger(__name__)


class OracleSyncClient:
    """
    Keeps a local view of optimistic oracle requests in sync across chains.

    Pollers run as executor tasks for the lifetime of the client. User
    actions are one-shot tasks; each action method returns the task id,
    which can be inspected with ``task()``.
    """

    ACTIVE_REQUEST_TASK = "poll_active_request"

    def __init__(self, config: SyncConfig):
        """
        Initialize the client.

        Args:
            config: oracle-sync configuration
        """
        self.config = config
        self.local_mode = config.local_mode
        self.running = False

        self.store = Store()
        self.chains: dict[int, ChainService] = {}
        self._init_chains()

        self.update = Update(self.store, self.chains)
        self.executor = Executor(build_machines(self.update, config.scheduling))

        # Async coordination
        self.shutdown_event = asyncio.Event()

    def _init_chains(self) -> None:
        """Create contract utilities and services for every configured chain."""
        self.rofl_util = None if self.local_mode else RoflUtility()

        for chain in self.config.chains:
            contract_util = ContractUtility(
                rpc_url=chain.rpc_url,
                secret=self.config.local_private_key if self.local_mode else ""
            )
            submitter = TransactionSubmitter(contract_util=contract_util, rofl_util=self.rofl_util)
            self.chains[chain.chain_id] = ChainService(
                chain_id=chain.chain_id,
                contract_util=contract_util,
                oracle_address=chain.oracle_address,
                submitter=submitter,
                request_timeout=self.config.scheduling.request_timeout
            )

        logger.info(
            f"Initialized {len(self.chains)} chain services in {'local' if self.local_mode else 'ROFL'} mode"
        )

    @classmethod
    def from_env(cls, local_mode: bool = False) -> "OracleSyncClient":
        """
        Create a client from environment variables.

        Args:
            local_mode: Sign transactions with LOCAL_PRIVATE_KEY instead of ROFL

        Returns:
            Configured OracleSyncClient instance

        Raises:
            ValueError: If required environment variables are missing
        """
        config = SyncConfig.from_env(local_mode=local_mode)
        config.log_config()
        return cls(config)

    # Reads

    def read(self) -> ReadView:
        return self.store.read()

    def task(self, task_id: str) -> TaskInstance:
        return self.executor.get(task_id)

    # Pollers

    def start_pollers(self) -> list[str]:
        """Register the active request poller and one new event poller per chain."""
        started = []
        if not self.executor.is_registered(self.ACTIVE_REQUEST_TASK):
            self.executor.create("poll_active_request", task_id=self.ACTIVE_REQUEST_TASK)
            started.append(self.ACTIVE_REQUEST_TASK)

        for chain in self.config.chains:
            task_id = f"poll_new_events-{chain.chain_id}"
            if self.executor.is_registered(task_id):
                continue
            self.executor.create("poll_new_events", {
                "chain_id": chain.chain_id,
                "start_block": chain.start_block,
                "poll_rate_sec": self.config.scheduling.new_events_poll_rate,
            }, task_id=task_id)
            started.append(task_id)

        logger.info(f"Started pollers: {', '.join(started) if started else 'none'}")
        return started

    # Workflows

    def _create(self, type_name: str, params: Any = None) -> str:
        return self.executor.create(type_name, params).id

    def set_user(self, address: str, chain_id: int | None = None) -> str:
        return self._create("set_user", {"address": address, "chain_id": chain_id})

    def clear_user(self) -> str:
        return self._create("clear_user")

    def set_active_request(self, key: RequestKey | dict[str, Any]) -> str:
        return self._create("set_active_request", key)

    def switch_chain(self, chain_id: int) -> str:
        return self._create("switch_or_add_chain", {"chain_id": chain_id})

    def approve(self, chain_id: int, currency: str, spender: str, amount: int, account: str) -> str:
        return self._create("approve", {
            "chain_id": chain_id,
            "currency": currency,
            "spender": spender,
            "amount": amount,
            "account": account,
        })

    def propose_price(self, key: RequestKey, price: int) -> str:
        return self._create("propose_price", {"key": key, "price": price})

    def dispute_price(self, key: RequestKey) -> str:
        return self._create("dispute_price", {"key": key})

    def fetch_past_events(
        self,
        chain_id: int,
        start_block: int = 0,
        end_block: int | None = None,
        range_size: int | None = None
    ) -> str:
        return self._create("fetch_past_events", {
            "chain_id": chain_id,
            "start_block": start_block,
            "end_block": end_block,
            "range_size": range_size,
        })

    def cancel(self, task_id: str) -> bool:
        return self.executor.cancel(task_id)

    # Lifecycle

    async def _periodic_status_logger(self) -> None:
        """Log status periodically while running."""
        while self.running:
            await asyncio.sleep(self.config.scheduling.status_log_interval)
            stats = self.executor.get_stats()
            read = self.read()
            scanned = {
                chain_id: read.chain(chain_id).last_scanned_block
                for chain_id in self.chains if read.has_chain(chain_id)
            }
            logger.info(
                f"Status: {stats['running']} tasks, {stats['failed']} failed, "
                f"{len(read.descending_requests())} requests known, "
                f"store version {read.version}, scanned blocks {scanned}"
            )

    async def _check_task_health(self, tasks: dict[str, asyncio.Task]) -> bool:
        """Check if any critical task has failed."""
        for name, task in tasks.items():
            if task.done() and name != "status":  # status task can end normally
                try:
                    await task
                except Exception as e:
                    logger.error(f"{name} task failed: {e}", exc_info=True)
                return False
        return True

    async def _cleanup_tasks(self, tasks: dict[str, asyncio.Task]) -> None:
        """Stop the executor and cancel all running tasks."""
        self.executor.stop()

        for name, task in tasks.items():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass  # Expected when cancelling

    async def run(self) -> None:
        """Main loop: run pollers and workflows until stopped."""
        self.running = True
        self.shutdown_event.clear()
        logger.info("oracle-sync starting...")
        logger.info(f"Chains: {', '.join(str(chain_id) for chain_id in self.chains)}")

        tasks = {}
        try:
            self.start_pollers()

            tasks = {
                "executor": asyncio.create_task(
                    self.executor.run(interval=self.config.scheduling.tick_interval)
                ),
                "status": asyncio.create_task(self._periodic_status_logger())
            }

            logger.info("Pollers running, waiting for work...")

            # Wait until shutdown or task failure
            while self.running:
                try:
                    await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
                    break  # Shutdown requested
                except asyncio.TimeoutError:
                    pass  # Continue running

                if not await self._check_task_health(tasks):
                    logger.error("Critical task failure, shutting down")
                    break

        except Exception as e:
            logger.error(f"Error in main loop: {e}", exc_info=True)
            raise
        finally:
            await self._cleanup_tasks(tasks)
            self.running = False
            logger.info("oracle-sync stopped")

    def stop(self) -> None:
        """Stop the client."""
        self.running = False
        self.shutdown_event.set()
