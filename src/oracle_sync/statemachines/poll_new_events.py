#!/usr/bin/env python3
"""Polls one chain for new oracle events.

The poller keeps a checkpoint: the last block it has fully queried. Each
pass fetches ``[checkpoint, latest]`` and moves the checkpoint to ``latest``
only after the fetch succeeded, so a failed pass is retried over the same
range. Historical ranges are the job of ``fetch_past_events``.
"""

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import FatalConfigError
from .statemachine import Context, Handler, Step
from .utils import UpdateMachine, coerce_params

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PollNewEventsParams:
    chain_id: int
    start_block: int | None = None
    poll_rate_sec: float = 50

    def __post_init__(self) -> None:
        if self.start_block is not None and self.start_block < 0:
            raise FatalConfigError(f"Start block must be non-negative, got {self.start_block}")
        if self.poll_rate_sec <= 0:
            raise FatalConfigError(f"Poll rate must be positive, got {self.poll_rate_sec}")


@dataclass(slots=True)
class PollNewEventsMemory:
    error: Exception | None = None
    last_block: int | None = None
    # head seen on the first pass when no start block was given
    anchor_block: int | None = None
    iterations: int = 0


class PollNewEvents(UpdateMachine):
    """Per-chain poller ingesting oracle events as new blocks arrive."""

    name = "poll_new_events"

    def init_memory(self) -> PollNewEventsMemory:
        return PollNewEventsMemory()

    def validate(self, params: Any) -> PollNewEventsParams:
        """
        Build poller params for a configured chain.

        Raises:
            FatalConfigError: On malformed params or an unknown chain
        """
        params = coerce_params(PollNewEventsParams, params)
        self.require_chain(params.chain_id)
        return params

    def handlers(self) -> dict[str, Handler]:
        return {"start": self.start}

    async def start(self, params: PollNewEventsParams, memory: PollNewEventsMemory, ctx: Context) -> Step:
        """
        Fetch events between the checkpoint and the chain head.

        Args:
            params: Chain, optional start block and poll rate
            memory: Checkpoint, anchor block, last error
            ctx: Executor context

        Returns:
            Sleep for ``params.poll_rate_sec``
        """
        chain_id = params.chain_id
        memory.error = None
        try:
            latest: int = await self.update.service(chain_id).get_block_number()

            checkpoint: int | None = memory.last_block
            if checkpoint is None:
                checkpoint = params.start_block
            if checkpoint is None:
                if memory.anchor_block is None:
                    memory.anchor_block = latest
                checkpoint = memory.anchor_block

            if latest > checkpoint:
                await self.update.oracle_events(chain_id, checkpoint, latest)
                await self.update.sorted_requests(chain_id)
                if not ctx.cancelled:
                    self._advance(chain_id, latest)
                memory.last_block = latest
            elif latest < checkpoint:
                logger.debug(f"Chain {chain_id}: head {latest} behind checkpoint {checkpoint}, waiting")
        except Exception as e:
            logger.warning(f"Chain {chain_id}: new event poll failed: {e}")
            memory.error = e

        memory.iterations += 1
        return ctx.sleep(params.poll_rate_sec)

    def _advance(self, chain_id: int, block_number: int) -> None:
        def apply(w) -> None:
            chain = w.chains(chain_id)
            chain.last_scanned_block(block_number)

        read = self.update.read()
        if read.has_chain(chain_id):
            current = read.chain(chain_id).last_scanned_block
            if current is not None and current >= block_number:
                return
        self.update.write(apply)
