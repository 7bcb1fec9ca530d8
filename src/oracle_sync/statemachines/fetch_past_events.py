#!/usr/bin/env python3
"""Backfills oracle events for a historical block range.

The range is walked in chunks. A failed chunk is retried from the same
cursor with half the chunk size, down to single blocks, and each successful
chunk doubles it back toward the configured size. Once chunks of one
block keep failing past the retry budget the task fails.
"""

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import FatalConfigError
from .statemachine import Context, Handler, Step
from .utils import UpdateMachine, coerce_params

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FetchPastEventsParams:
    chain_id: int
    start_block: int = 0
    end_block: int | None = None
    range_size: int | None = None

    def __post_init__(self) -> None:
        if self.start_block < 0:
            raise FatalConfigError(f"Start block must be non-negative, got {self.start_block}")
        if self.end_block is not None and self.end_block < self.start_block:
            raise FatalConfigError(f"End block {self.end_block} is before start block {self.start_block}")
        if self.range_size is not None and self.range_size <= 0:
            raise FatalConfigError(f"Range size must be positive, got {self.range_size}")


@dataclass(slots=True)
class FetchPastEventsMemory:
    error: Exception | None = None
    cursor: int | None = None
    end_block: int | None = None
    range_size: int = 0
    failures: int = 0
    events: int = 0
    iterations: int = 0
    retries: int = 0


class FetchPastEvents(UpdateMachine):
    """Chunked backfill of a block range, finishing once the range is covered."""

    name = "fetch_past_events"

    def init_memory(self) -> FetchPastEventsMemory:
        return FetchPastEventsMemory()

    def validate(self, params: Any) -> FetchPastEventsParams:
        params = coerce_params(FetchPastEventsParams, params)
        self.require_chain(params.chain_id)
        return params

    def handlers(self) -> dict[str, Handler]:
        return {
            "start": self.start,
            "fetch": self.fetch,
        }

    async def start(self, params: FetchPastEventsParams, memory: FetchPastEventsMemory, ctx: Context) -> Step:
        """
        Resolve the end block and the initial chunk size.

        Returns:
            Transition to ``fetch``, or a retry sleep when the head lookup fails
        """
        memory.iterations += 1
        if params.end_block is None:
            try:
                memory.end_block = await self.update.service(params.chain_id).get_block_number()
            except Exception as e:
                return self.retry(memory, e, ctx)
        else:
            memory.end_block = params.end_block

        memory.cursor = params.start_block
        memory.range_size = params.range_size or self.settings.past_events_range
        memory.error = None
        logger.info(
            f"Chain {params.chain_id}: fetching past events for blocks "
            f"{memory.cursor}-{memory.end_block} in chunks of {memory.range_size}"
        )
        return ctx.transition("fetch")

    async def fetch(self, params: FetchPastEventsParams, memory: FetchPastEventsMemory, ctx: Context) -> Step:
        """
        Fetch the chunk starting at the cursor.

        Args:
            params: Chain and requested block range
            memory: Cursor, current chunk size and failure count
            ctx: Executor context

        Returns:
            Transition to the next chunk, a sleep after a failed chunk, or done

        Raises:
            Exception: The last chunk error once single-block chunks exhaust the retry budget
        """
        memory.iterations += 1
        chain_id = params.chain_id

        if memory.cursor > memory.end_block:
            if not ctx.cancelled:
                await self.update.sorted_requests(chain_id)
            logger.info(f"Chain {chain_id}: past event fetch complete, {memory.events} events")
            return ctx.done()

        chunk_end = min(memory.cursor + memory.range_size - 1, memory.end_block)
        try:
            memory.events += await self.update.oracle_events(chain_id, memory.cursor, chunk_end)
        except Exception as e:
            memory.error = e
            if memory.range_size == 1:
                memory.failures += 1
                if memory.failures > self.settings.max_retries:
                    raise
            memory.range_size = max(1, memory.range_size // 2)
            logger.warning(
                f"Chain {chain_id}: fetching blocks {memory.cursor}-{chunk_end} failed, "
                f"retrying with chunk size {memory.range_size}: {e}"
            )
            return ctx.sleep(self.settings.retry_interval)

        memory.error = None
        memory.failures = 0
        memory.cursor = chunk_end + 1
        # grow back after a shrink, capped at the configured chunk size
        memory.range_size = min(memory.range_size * 2, params.range_size or self.settings.past_events_range)
        return ctx.transition("fetch")
