#!/usr/bin/env python3
"""Selects the chain the user is working on."""

import logging
from dataclasses import dataclass
from typing import Any

from .statemachine import Context, Handler, Step
from .utils import RetryMemory, UpdateMachine, coerce_params

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SwitchOrAddChainParams:
    chain_id: int


class SwitchOrAddChain(UpdateMachine):
    """Makes a configured chain the selected one once it answers."""

    name = "switch_or_add_chain"

    def init_memory(self) -> RetryMemory:
        return RetryMemory()

    def validate(self, params: Any) -> SwitchOrAddChainParams:
        params = coerce_params(SwitchOrAddChainParams, params)
        self.require_chain(params.chain_id)
        return params

    def handlers(self) -> dict[str, Handler]:
        return {"start": self.start}

    async def start(self, params: SwitchOrAddChainParams, memory: RetryMemory, ctx: Context) -> Step:
        """
        Check the chain is reachable, then select it.

        Returns:
            Done, or a retry sleep while the chain does not answer
        """
        memory.iterations += 1
        try:
            block_number: int = await self.update.service(params.chain_id).get_block_number()
        except Exception as e:
            return self.retry(memory, e, ctx)

        if ctx.cancelled:
            return ctx.done()
        self.update.write(lambda w: w.inputs().chain(params.chain_id))
        memory.error = None
        logger.info(f"Switched to chain {params.chain_id} at block {block_number}")
        return ctx.done()
