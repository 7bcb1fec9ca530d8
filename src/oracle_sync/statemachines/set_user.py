#!/usr/bin/env python3
"""Selects the user account and refreshes its balances for the active request."""

import logging
from dataclasses import dataclass
from typing import Any

from web3 import Web3

from ..errors import FatalConfigError, NotFoundError
from .statemachine import Context, Handler, Step
from .utils import RetryMemory, UpdateMachine, coerce_params

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SetUserParams:
    address: str
    chain_id: int | None = None

    def __post_init__(self) -> None:
        if not Web3.is_address(self.address):
            raise FatalConfigError(f"Invalid user address: {self.address}")
        object.__setattr__(self, 'address', Web3.to_checksum_address(self.address))


class SetUser(UpdateMachine):
    """Selects a user, then loads its collateral balance and allowance."""

    name = "set_user"

    def init_memory(self) -> RetryMemory:
        return RetryMemory()

    def validate(self, params: Any) -> SetUserParams:
        params = coerce_params(SetUserParams, params)
        if params.chain_id is not None:
            self.require_chain(params.chain_id)
        return params

    def handlers(self) -> dict[str, Handler]:
        return {
            "start": self.start,
            "update": self.refresh,
        }

    async def start(self, params: SetUserParams, memory: RetryMemory, ctx: Context) -> Step:
        """Write the user selection; continue to ``update`` only when a request is selected."""
        memory.iterations += 1

        def apply(w) -> None:
            inputs = w.inputs()
            inputs.user(params.address)
            if params.chain_id is not None:
                inputs.chain(params.chain_id)

        self.update.write(apply)
        logger.info(f"User set to {params.address}")

        try:
            self.update.read().input_request()
        except NotFoundError:
            return ctx.done()
        return ctx.transition("update")

    async def refresh(self, params: SetUserParams, memory: RetryMemory, ctx: Context) -> Step:
        """
        Refresh the user's balance and oracle allowance for the selected request.

        Returns:
            Done, or a retry sleep after a failed fetch
        """
        memory.iterations += 1
        if ctx.cancelled:
            return ctx.done()
        try:
            try:
                self.update.read().request()
            except NotFoundError:
                await self.update.request()
            await self.update.user_collateral_balance()
            await self.update.oracle_allowance()
        except Exception as e:
            return self.retry(memory, e, ctx)
        memory.error = None
        return ctx.done()
