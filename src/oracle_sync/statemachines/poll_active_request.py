#!/usr/bin/env python3
"""Keeps the selected request and the oracle clock fresh.

Runs as a single instance covering whichever request is selected, on any
chain. Requests that are Invalid or Settled can no longer change, so only the
chain's current time is refreshed for them.
"""

import logging

from ..errors import NotFoundError
from .statemachine import Context, Handler, Step
from .utils import RetryMemory, UpdateMachine

logger = logging.getLogger(__name__)


class PollActiveRequest(UpdateMachine):
    """Global poller for the selected request, takes no params."""

    name = "poll_active_request"

    def init_memory(self) -> RetryMemory:
        return RetryMemory()

    def handlers(self) -> dict[str, Handler]:
        return {"start": self.start}

    async def start(self, params: None, memory: RetryMemory, ctx: Context) -> Step:
        """
        Refresh the selected request and its chain's clock once.

        Failures never end the poller; they are kept in ``memory.error``
        until the next pass.

        Args:
            params: Unused
            memory: Last error and iteration count
            ctx: Executor context

        Returns:
            Sleep for the configured active request interval
        """
        memory.error = None
        try:
            read = self.update.read()
            try:
                should_update = not read.request().is_final
            except NotFoundError:
                # selected but never fetched yet
                should_update = True

            if should_update:
                await self.update.request()
            await self.update.current_time()
        except NotFoundError as e:
            # nothing selected yet
            memory.error = e
        except Exception as e:
            logger.warning(f"Active request refresh failed: {e}")
            memory.error = e

        memory.iterations += 1
        return ctx.sleep(self.settings.active_request_interval)
