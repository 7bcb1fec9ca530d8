#!/usr/bin/env python3
"""Disputes a proposed price."""

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import FatalConfigError
from ..models import Request, RequestKey, RequestState
from .propose_price import require_state
from .utils import TransactionMachine, coerce_params, selected_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DisputePriceParams:
    key: RequestKey

    def __post_init__(self) -> None:
        if isinstance(self.key, dict):
            object.__setattr__(self, 'key', coerce_params(RequestKey, self.key))
        if not isinstance(self.key, RequestKey):
            raise FatalConfigError(f"Expected a RequestKey, got {type(self.key).__name__}")

    @property
    def chain_id(self) -> int:
        return self.key.chain_id


class DisputePrice(TransactionMachine):
    """Disputes a Proposed request from the selected user."""

    name = "dispute_price"

    def validate(self, params: Any) -> DisputePriceParams:
        if isinstance(params, RequestKey):
            params = DisputePriceParams(params)
        params = coerce_params(DisputePriceParams, params)
        self.require_chain(params.chain_id)
        return params

    def check(self, params: DisputePriceParams) -> None:
        """Require a selected user and a Proposed request."""
        selected_user(self.update)
        require_state(self.update, params.key, RequestState.PROPOSED)

    async def send(self, params: DisputePriceParams) -> str | None:
        logger.info(f"Disputing proposal for {params.key}")
        return await self.update.service(params.chain_id).dispute_price(params.key)

    async def refresh(self, params: DisputePriceParams) -> None:
        await self.update.request(params.key)
        request: Request = self.update.read().request(params.key)
        await self.update.balance(params.chain_id, request.currency, selected_user(self.update))
