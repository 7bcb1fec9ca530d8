#!/usr/bin/env python3
"""Shared pieces for the oracle-sync task library."""

import logging
from dataclasses import dataclass, fields
from typing import Any, TypeVar

from ..config import SchedulingConfig
from ..errors import FatalConfigError, NotFoundError, TransactionFailedError, TransactionTimeoutError
from ..models import TxStatus
from ..update import Update
from .statemachine import Context, Handler, Sleep, StateMachine, Step

logger = logging.getLogger(__name__)

P = TypeVar("P")

# Outcomes that no amount of retrying changes
FATAL_ERRORS: tuple[type[Exception], ...] = (
    FatalConfigError,
    TransactionFailedError,
    TransactionTimeoutError,
)


@dataclass(slots=True)
class RetryMemory:
    error: Exception | None = None
    retries: int = 0
    iterations: int = 0


@dataclass(slots=True)
class TxMemory:
    error: Exception | None = None
    retries: int = 0
    iterations: int = 0
    tx_hash: str | None = None
    status: TxStatus = TxStatus.PENDING
    checks: int = 0


def coerce_params(cls: type[P], params: Any) -> P:
    """Build a params dataclass from an instance or a mapping.

    Raises:
        FatalConfigError: If params are missing, unknown or rejected
    """
    if isinstance(params, cls):
        return params
    if not isinstance(params, dict):
        raise FatalConfigError(f"Expected {cls.__name__} or dict params, got {type(params).__name__}")

    allowed = {f.name for f in fields(cls)}
    unknown = set(params) - allowed
    if unknown:
        raise FatalConfigError(f"Unknown {cls.__name__} fields: {sorted(unknown)}")
    try:
        return cls(**params)
    except FatalConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise FatalConfigError(f"Invalid {cls.__name__}: {e}") from e


class UpdateMachine(StateMachine):
    """State machine backed by the chain data fetcher."""

    def __init__(self, update: Update, settings: SchedulingConfig | None = None) -> None:
        self.update = update
        self.settings = settings or SchedulingConfig()

    def require_chain(self, chain_id: int) -> None:
        if chain_id not in self.update.chains:
            raise FatalConfigError(f"Chain {chain_id} is not configured")

    def retry(self, memory: RetryMemory | TxMemory, error: Exception, ctx: Context) -> Sleep:
        """
        Schedule another attempt of the current handler after a failure.

        Raises:
            The error itself when it is fatal or the retry budget is spent
        """
        memory.error = error
        if isinstance(error, FATAL_ERRORS):
            raise error
        if memory.retries >= self.settings.max_retries:
            logger.error(f"Task {ctx.task_id} giving up after {memory.retries} retries: {error}")
            raise error
        memory.retries += 1
        logger.warning(
            f"Task {ctx.task_id} attempt failed ({memory.retries}/{self.settings.max_retries}), "
            f"retrying in {self.settings.retry_interval}s: {error}"
        )
        return ctx.sleep(self.settings.retry_interval)


class TransactionMachine(UpdateMachine):
    """Submit one transaction, wait for confirmation, then refresh state.

    Subclasses implement ``check`` (preconditions against the store),
    ``send`` (the submission) and ``refresh`` (fetches after confirmation).
    """

    def init_memory(self) -> TxMemory:
        return TxMemory()

    def handlers(self) -> dict[str, Handler]:
        return {
            "start": self.start,
            "confirm": self.confirm,
            "update": self.refresh_step,
        }

    def retry(self, memory: TxMemory, error: Exception, ctx: Context) -> Sleep:
        try:
            return super().retry(memory, error, ctx)
        except Exception:
            # a confirmed transaction stays confirmed when only the refresh failed
            if memory.status is TxStatus.PENDING:
                memory.status = TxStatus.FAILED
            raise

    def chain_id(self, params: Any) -> int:
        return params.chain_id

    def check(self, params: Any) -> None:
        """Raise FatalConfigError when the action cannot be taken."""

    async def send(self, params: Any) -> str | None:
        raise NotImplementedError

    async def refresh(self, params: Any) -> None:
        raise NotImplementedError

    async def start(self, params: Any, memory: TxMemory, ctx: Context) -> Step:
        """
        Check preconditions and submit the transaction.

        Args:
            params: Workflow params
            memory: Transaction hash, status and retry count
            ctx: Executor context

        Returns:
            Transition to ``confirm``, or to ``update`` for ROFL submissions

        Raises:
            FatalConfigError: If a precondition does not hold
        """
        memory.iterations += 1
        try:
            self.check(params)
        except FatalConfigError as e:
            memory.status = TxStatus.FAILED
            memory.error = e
            raise
        try:
            memory.tx_hash = await self.send(params)
        except Exception as e:
            return self.retry(memory, e, ctx)

        memory.retries = 0
        memory.error = None
        if memory.tx_hash is None:
            # ROFL submissions return once the transaction is included
            memory.status = TxStatus.CONFIRMED
            logger.info(f"Task {ctx.task_id}: transaction submitted through ROFL")
            return ctx.transition("update")

        logger.info(f"Task {ctx.task_id}: submitted {memory.tx_hash} on chain {self.chain_id(params)}")
        return ctx.transition("confirm")

    async def confirm(self, params: Any, memory: TxMemory, ctx: Context) -> Step:
        """
        Poll the receipt until it has enough confirmations.

        Returns:
            Transition to ``update`` once confirmed, else a sleep until the next check

        Raises:
            TransactionFailedError: If the transaction reverted
            TransactionTimeoutError: If it is still unconfirmed after the allowed checks
        """
        memory.iterations += 1
        try:
            receipt = await self.update.is_confirmed(
                self.chain_id(params), memory.tx_hash, self.settings.confirmations
            )
        except TransactionFailedError as e:
            memory.status = TxStatus.FAILED
            memory.error = e
            raise
        except Exception as e:
            return self.retry(memory, e, ctx)

        if receipt:
            memory.status = TxStatus.CONFIRMED
            memory.retries = 0
            logger.info(f"Task {ctx.task_id}: transaction {memory.tx_hash} confirmed")
            return ctx.transition("update")

        memory.checks += 1
        if memory.checks >= self.settings.tx_max_checks:
            memory.status = TxStatus.FAILED
            memory.error = TransactionTimeoutError(memory.tx_hash, memory.checks)
            raise memory.error
        return ctx.sleep(self.settings.tx_check_interval)

    async def refresh_step(self, params: Any, memory: TxMemory, ctx: Context) -> Step:
        """Refresh the state the transaction changed, skipped once cancelled."""
        memory.iterations += 1
        if ctx.cancelled:
            return ctx.done()
        try:
            await self.refresh(params)
        except Exception as e:
            return self.retry(memory, e, ctx)
        memory.error = None
        return ctx.done()


def selected_user(update: Update) -> str:
    """The selected user address, or FatalConfigError when none is set."""
    try:
        return update.read().user_address()
    except NotFoundError:
        raise FatalConfigError("No user selected") from None
