#!/usr/bin/env python3
"""Clears the user selection."""

import logging

from .statemachine import Context, Handler, Step
from .utils import RetryMemory, UpdateMachine

logger = logging.getLogger(__name__)


class ClearUser(UpdateMachine):
    """Removes the user selection."""

    name = "clear_user"

    def init_memory(self) -> RetryMemory:
        return RetryMemory()

    def handlers(self) -> dict[str, Handler]:
        return {"start": self.start}

    async def start(self, params: None, memory: RetryMemory, ctx: Context) -> Step:
        memory.iterations += 1
        self.update.write(lambda w: w.inputs().clear_user())
        logger.info("User cleared")
        return ctx.done()
