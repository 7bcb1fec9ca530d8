#!/usr/bin/env python3
"""Chain access service.

One ``ChainService`` per configured chain wraps the optimistic oracle and
ERC20 contracts behind typed async calls. It performs no retries and no
caching; callers decide how to handle failures.
"""

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from typing import Any, TypeVar

from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.types import TxReceipt

from .errors import TransactionFailedError, TransientFetchError
from .models import OracleEvent, Request, RequestKey, RequestState
from .tx_submitter import TransactionSubmitter
from .utils.contract_utility import ContractUtility

logger = logging.getLogger(__name__)

T = TypeVar("T")

ORACLE_EVENT_NAMES: tuple[str, ...] = ("RequestPrice", "ProposePrice", "DisputePrice", "Settle")


def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    value = str(value)
    return value if value.startswith("0x") else "0x" + value


def parse_oracle_event(chain_id: int, event_data: Mapping[str, Any]) -> OracleEvent:
    """Convert a decoded web3 event into an ``OracleEvent``.

    Args:
        chain_id: Chain the log was read from
        event_data: EventData as returned by ``get_logs``

    Returns:
        OracleEvent keyed by the request the event refers to
    """
    args: Mapping[str, Any] = event_data["args"]
    key = RequestKey(
        chain_id=chain_id,
        requester=args["requester"],
        identifier=_to_hex(args["identifier"]),
        timestamp=int(args["timestamp"]),
        ancillary_data=_to_hex(args["ancillaryData"]),
    )
    extra = {
        name: value for name, value in args.items()
        if name not in ("requester", "identifier", "timestamp", "ancillaryData")
    }
    return OracleEvent(
        chain_id=chain_id,
        name=event_data["event"],
        block_number=int(event_data["blockNumber"]),
        transaction_hash=_to_hex(event_data["transactionHash"]),
        log_index=int(event_data["logIndex"]),
        key=key,
        args=extra,
    )


class ChainService:
    """Typed access to the oracle and token contracts on one chain."""

    def __init__(
        self,
        chain_id: int,
        contract_util: ContractUtility,
        oracle_address: str,
        submitter: TransactionSubmitter | None = None,
        request_timeout: float = 30
    ) -> None:
        """
        Initialize the ChainService.

        Args:
            chain_id: Chain id this service talks to
            contract_util: Utility holding the chain's AsyncWeb3 instance
            oracle_address: Optimistic oracle contract address
            submitter: Transaction submitter, None for a read-only service
            request_timeout: Seconds before a single call is abandoned
        """
        self.chain_id = chain_id
        self.contract_util = contract_util
        self.w3 = contract_util.w3
        self.oracle_address = Web3.to_checksum_address(oracle_address)
        self.oracle = contract_util.contract("OptimisticOracle", self.oracle_address)
        self.submitter = submitter
        self.request_timeout = request_timeout
        self._tokens: dict[str, Any] = {}

    async def _call(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except asyncio.TimeoutError:
            raise TransientFetchError(
                f"Timed out after {self.request_timeout}s calling {what} on chain {self.chain_id}",
                chain_id=self.chain_id
            ) from None

    def _token(self, address: str):
        address = Web3.to_checksum_address(address)
        if address not in self._tokens:
            self._tokens[address] = self.contract_util.contract("ERC20", address)
        return self._tokens[address]

    # Oracle reads

    async def get_block_number(self) -> int:
        return int(await self._call(self.w3.eth.block_number, "eth_blockNumber"))

    async def get_request(self, key: RequestKey) -> Request:
        """Read the request struct; the returned state is left at INVALID."""
        raw = await self._call(
            self.oracle.functions.getRequest(*key.call_args()).call(),
            "getRequest"
        )
        (proposer, disputer, currency, settled, _refund_on_dispute, proposed_price,
         resolved_price, expiration_time, reward, final_fee, bond, custom_liveness) = raw
        return Request(
            key=key,
            currency=Web3.to_checksum_address(currency),
            proposer=Web3.to_checksum_address(proposer),
            disputer=Web3.to_checksum_address(disputer),
            proposed_price=int(proposed_price),
            resolved_price=int(resolved_price),
            expiration_time=int(expiration_time),
            reward=int(reward),
            final_fee=int(final_fee),
            bond=int(bond),
            custom_liveness=int(custom_liveness),
            settled=bool(settled),
        )

    async def get_state(self, key: RequestKey) -> RequestState:
        state = await self._call(
            self.oracle.functions.getState(*key.call_args()).call(),
            "getState"
        )
        return RequestState(int(state))

    async def get_current_time(self) -> int:
        return int(await self._call(self.oracle.functions.getCurrentTime().call(), "getCurrentTime"))

    async def default_liveness(self) -> int:
        return int(await self._call(self.oracle.functions.defaultLiveness().call(), "defaultLiveness"))

    # Token reads

    async def erc20_props(self, token: str) -> tuple[int, str]:
        contract = self._token(token)
        decimals = await self._call(contract.functions.decimals().call(), "decimals")
        symbol = await self._call(contract.functions.symbol().call(), "symbol")
        return int(decimals), str(symbol)

    async def balance_of(self, token: str, account: str) -> int:
        contract = self._token(token)
        return int(await self._call(
            contract.functions.balanceOf(Web3.to_checksum_address(account)).call(),
            "balanceOf"
        ))

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        contract = self._token(token)
        return int(await self._call(
            contract.functions.allowance(
                Web3.to_checksum_address(owner),
                Web3.to_checksum_address(spender)
            ).call(),
            "allowance"
        ))

    # Events

    async def query_oracle_events(self, from_block: int, to_block: int) -> list[OracleEvent]:
        """
        Fetch all oracle events in the inclusive block range.

        The range is queried as given; splitting large ranges is the
        caller's concern.

        Returns:
            Events ordered by (block number, log index)
        """
        events: list[OracleEvent] = []
        for name in ORACLE_EVENT_NAMES:
            event_obj = getattr(self.oracle.events, name)()
            logs = await self._call(
                event_obj.get_logs(from_block=from_block, to_block=to_block),
                f"get_logs({name})"
            )
            events.extend(parse_oracle_event(self.chain_id, log) for log in logs)

        events.sort(key=lambda event: event.sort_key)
        logger.debug(
            f"Chain {self.chain_id}: {len(events)} oracle events in blocks {from_block}-{to_block}"
        )
        return events

    # Transactions

    def _require_submitter(self) -> TransactionSubmitter:
        if self.submitter is None:
            raise RuntimeError(f"Chain {self.chain_id} service is read-only")
        return self.submitter

    async def approve(self, token: str, spender: str, amount: int) -> str | None:
        call = self._token(token).functions.approve(Web3.to_checksum_address(spender), int(amount))
        return await self._require_submitter().submit(call)

    async def propose_price(self, key: RequestKey, price: int) -> str | None:
        call = self.oracle.functions.proposePrice(*key.call_args(), int(price))
        return await self._require_submitter().submit(call)

    async def dispute_price(self, key: RequestKey) -> str | None:
        call = self.oracle.functions.disputePrice(*key.call_args())
        return await self._require_submitter().submit(call)

    async def is_confirmed(self, tx_hash: str, confirmations: int = 1) -> TxReceipt | bool:
        """
        Check whether a transaction has enough confirmations.

        Returns:
            The receipt once confirmed, False while still pending

        Raises:
            TransactionFailedError: If the transaction was mined and reverted
        """
        try:
            receipt: TxReceipt = await self._call(
                self.w3.eth.get_transaction_receipt(tx_hash),
                "eth_getTransactionReceipt"
            )
        except TransactionNotFound:
            return False

        if receipt.get("status", 1) == 0:
            raise TransactionFailedError(tx_hash)

        latest = await self.get_block_number()
        if latest - int(receipt["blockNumber"]) + 1 >= confirmations:
            return receipt
        return False
