#!/usr/bin/env python3
"""Selects a price request and loads everything needed to act on it."""

import logging
from typing import Any

from ..errors import NotFoundError
from ..models import ZERO_ADDRESS, Request, RequestKey
from .statemachine import Context, Handler, Step
from .utils import RetryMemory, UpdateMachine, coerce_params

logger = logging.getLogger(__name__)


class SetActiveRequest(UpdateMachine):
    """Selects a request by key and loads oracle, request and collateral data."""

    name = "set_active_request"

    def init_memory(self) -> RetryMemory:
        return RetryMemory()

    def validate(self, params: Any) -> RequestKey:
        key = coerce_params(RequestKey, params)
        self.require_chain(key.chain_id)
        return key

    def handlers(self) -> dict[str, Handler]:
        return {
            "start": self.start,
            "update": self.refresh,
        }

    async def start(self, params: RequestKey, memory: RetryMemory, ctx: Context) -> Step:
        """Select the request and its chain."""
        memory.iterations += 1

        def apply(w) -> None:
            inputs = w.inputs()
            inputs.request(params)
            inputs.chain(params.chain_id)

        self.update.write(apply)
        logger.info(f"Active request set to {params}")
        return ctx.transition("update")

    async def refresh(self, params: RequestKey, memory: RetryMemory, ctx: Context) -> Step:
        """
        Load what is needed to act on the selected request.

        Collateral props are fetched only for requests with a currency, and
        balance and allowance only when a user is selected.

        Args:
            params: Key of the selected request
            memory: Retry count and last error
            ctx: Executor context

        Returns:
            Done, or a retry sleep after a failed fetch
        """
        memory.iterations += 1
        if ctx.cancelled:
            return ctx.done()

        chain_id = params.chain_id
        try:
            await self.update.oracle(chain_id)
            await self.update.request(params)
            await self.update.current_time(chain_id)

            request: Request = self.update.read().request(params)
            if request.currency != ZERO_ADDRESS:
                await self.update.collateral_props()
                if self._has_user():
                    await self.update.user_collateral_balance()
                    await self.update.oracle_allowance()
        except Exception as e:
            return self.retry(memory, e, ctx)

        memory.error = None
        return ctx.done()

    def _has_user(self) -> bool:
        try:
            self.update.read().user_address()
        except NotFoundError:
            return False
        return True
