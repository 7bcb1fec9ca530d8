#!/usr/bin/env python3
"""Proposes a price for a request awaiting a proposal."""

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import FatalConfigError, NotFoundError
from ..models import Request, RequestKey, RequestState
from ..update import Update
from .utils import TransactionMachine, coerce_params, selected_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProposePriceParams:
    key: RequestKey
    price: int

    def __post_init__(self) -> None:
        if isinstance(self.key, dict):
            object.__setattr__(self, 'key', coerce_params(RequestKey, self.key))
        if not isinstance(self.key, RequestKey):
            raise FatalConfigError(f"Expected a RequestKey, got {type(self.key).__name__}")

    @property
    def chain_id(self) -> int:
        return self.key.chain_id


def require_state(update: Update, key: RequestKey, expected: RequestState) -> None:
    """Raise FatalConfigError unless the stored request is in ``expected`` state."""
    try:
        request = update.read().request(key)
    except NotFoundError:
        raise FatalConfigError(f"Request {key} has not been loaded") from None
    if request.state != expected:
        raise FatalConfigError(
            f"Request {key} is {request.state.name}, expected {expected.name}"
        )


class ProposePrice(TransactionMachine):
    """Proposes a price for a Requested request from the selected user."""

    name = "propose_price"

    def validate(self, params: Any) -> ProposePriceParams:
        params = coerce_params(ProposePriceParams, params)
        self.require_chain(params.chain_id)
        return params

    def check(self, params: ProposePriceParams) -> None:
        """
        Require a selected user and a request awaiting a proposal.

        Raises:
            FatalConfigError: If either precondition does not hold
        """
        selected_user(self.update)
        require_state(self.update, params.key, RequestState.REQUESTED)

    async def send(self, params: ProposePriceParams) -> str | None:
        logger.info(f"Proposing price {params.price} for {params.key}")
        return await self.update.service(params.chain_id).propose_price(params.key, params.price)

    async def refresh(self, params: ProposePriceParams) -> None:
        await self.update.request(params.key)
        request: Request = self.update.read().request(params.key)
        await self.update.balance(params.chain_id, request.currency, selected_user(self.update))
