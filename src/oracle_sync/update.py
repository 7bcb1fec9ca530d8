#!/usr/bin/env python3
"""Chain data fetcher.

``Update`` pulls fresh data through the chain services and commits it to the
store. Each method is one logical unit of work committed with a single
write, is safe to re-run, and lets failures propagate to the caller.
"""

import logging
from collections.abc import Mapping

from web3.types import TxReceipt

from .chain_service import ChainService
from .errors import NotFoundError
from .event_state import EventState, SortedRequests, get_event_state
from .models import ZERO_ADDRESS, OracleEvent, Request, RequestKey, RequestState
from .store import ReadView, Store, WriteView

logger = logging.getLogger(__name__)


class Update:
    """Fetches chain data into the store."""

    def __init__(
        self,
        store: Store,
        chains: Mapping[int, ChainService],
        sorted_requests: SortedRequests | None = None
    ) -> None:
        """Initialize the fetcher.

        Args:
            store: Snapshot store the fetched data is committed to
            chains: Chain service per configured chain id
            sorted_requests: Cross-chain request table, shared when given
        """
        self.store = store
        self.read = store.read
        self.write = store.write
        self.chains = chains
        self.sorted_requests_table = sorted_requests if sorted_requests is not None else SortedRequests()

    def service(self, chain_id: int) -> ChainService:
        """
        Look up the chain service of a chain.

        Raises:
            NotFoundError: If the chain is not configured
        """
        try:
            return self.chains[chain_id]
        except KeyError:
            raise NotFoundError(f"No chain service configured for chain {chain_id}") from None

    async def all(self) -> None:
        """Refresh everything related to the active request and user."""
        await self.oracle()
        await self.request()
        await self.collateral_props()
        await self.user_collateral_balance()
        await self.oracle_allowance()

    async def request(self, key: RequestKey | None = None) -> None:
        """
        Fetch a request and its state, registering its currency token.

        Args:
            key: Request to fetch, the selected request when omitted

        Raises:
            NotFoundError: If no key is given and no request is selected
        """
        key = key or self.read().input_request()
        service: ChainService = self.service(key.chain_id)
        request: Request = await service.get_request(key)
        state: RequestState = await service.get_state(key)

        def apply(w: WriteView) -> None:
            chain = w.chains(key.chain_id)
            if request.currency != ZERO_ADDRESS:
                chain.erc20s(request.currency).touch()
            chain.requests(key).set(request.with_state(state))

        self.write(apply)

    async def oracle(self, chain_id: int | None = None) -> None:
        """
        Fetch the oracle's default liveness.

        Args:
            chain_id: Chain to query, the selected request's chain when omitted
        """
        chain_id = self.read().request_chain_id() if chain_id is None else chain_id
        liveness: int = await self.service(chain_id).default_liveness()
        self.write(lambda w: w.chains(chain_id).default_liveness(liveness))

    async def collateral_props(self) -> None:
        """Fetch decimals and symbol of the selected request's currency."""
        request: Request = self.read().request()
        chain_id = request.key.chain_id
        decimals, symbol = await self.service(chain_id).erc20_props(request.currency)
        self.write(lambda w: w.chains(chain_id).erc20s(request.currency).props(decimals, symbol))

    async def user_collateral_balance(self) -> None:
        """Fetch the selected user's balance of the selected request's currency."""
        read: ReadView = self.read()
        account = read.user_address()
        request = read.request()
        await self.balance(request.key.chain_id, request.currency, account)

    async def oracle_allowance(self) -> None:
        """Fetch how much of the request currency the user lets the oracle spend."""
        read: ReadView = self.read()
        account = read.user_address()
        request = read.request()
        chain_id = request.key.chain_id
        await self.allowance(chain_id, request.currency, account, self.service(chain_id).oracle_address)

    async def balance(self, chain_id: int, token: str, account: str) -> None:
        """
        Fetch a token balance.

        Args:
            chain_id: Chain the token lives on
            token: ERC20 token address
            account: Holder whose balance is fetched
        """
        amount: int = await self.service(chain_id).balance_of(token, account)
        self.write(lambda w: w.chains(chain_id).erc20s(token).balance(account, amount))

    async def allowance(self, chain_id: int, token: str, owner: str, spender: str) -> None:
        """
        Fetch a token allowance.

        Args:
            chain_id: Chain the token lives on
            token: ERC20 token address
            owner: Account granting the allowance
            spender: Account allowed to spend
        """
        amount: int = await self.service(chain_id).allowance(token, owner, spender)
        self.write(lambda w: w.chains(chain_id).erc20s(token).allowance(owner, spender, amount))

    async def current_time(self, chain_id: int | None = None) -> None:
        """
        Fetch the oracle's current time.

        Args:
            chain_id: Chain to query, the selected request's chain when omitted
        """
        # the oracle exposes its own notion of time, which can differ from block time on test deployments
        chain_id = self.read().request_chain_id() if chain_id is None else chain_id
        timestamp: int = await self.service(chain_id).get_current_time()
        self.write(lambda w: w.chains(chain_id).current_time(timestamp))

    async def oracle_events(self, chain_id: int, start_block: int = 0, end_block: int | None = None) -> int:
        """
        Pull oracle events for an inclusive block range into the store.

        Args:
            chain_id: Chain to query
            start_block: First block of the range
            end_block: Last block of the range, the latest block when omitted

        Returns:
            Number of events fetched
        """
        service = self.service(chain_id)
        if end_block is None:
            end_block = await service.get_block_number()
        events: list[OracleEvent] = await service.query_oracle_events(start_block, end_block)

        def apply(w: WriteView) -> None:
            chain = w.chains(chain_id)
            for event in events:
                chain.event(event)

        self.write(apply)
        if events:
            logger.info(f"Chain {chain_id}: ingested {len(events)} oracle events from blocks {start_block}-{end_block}")
        return len(events)

    async def sorted_requests(self, chain_id: int) -> None:
        """Rebuild the descending request listing from a chain's known events."""
        # folds every known event on each call, fine at current volumes
        read: ReadView = self.read()
        state: EventState = get_event_state(read.oracle_events(chain_id) if read.has_chain(chain_id) else [])
        for key, request in state.requests.items():
            self.sorted_requests_table.set(key.id, request)
        descending: list[Request] = self.sorted_requests_table.descending()
        self.write(lambda w: w.descending_requests(descending))

    async def is_confirmed(self, chain_id: int, tx_hash: str, confirmations: int = 1) -> TxReceipt | bool:
        """
        Check whether a transaction is mined deep enough.

        Returns:
            The receipt once confirmed, False while pending

        Raises:
            TransactionFailedError: If the transaction reverted
        """
        return await self.service(chain_id).is_confirmed(tx_hash, confirmations)
