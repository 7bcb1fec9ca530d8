#!/usr/bin/env python3
"""Approves a spender for an ERC20 collateral token."""

import logging
from dataclasses import dataclass
from typing import Any

from web3 import Web3

from ..errors import FatalConfigError
from .utils import TransactionMachine, coerce_params

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApproveParams:
    chain_id: int
    currency: str
    spender: str
    amount: int
    account: str

    def __post_init__(self) -> None:
        for name in ("currency", "spender", "account"):
            value = getattr(self, name)
            if not Web3.is_address(value):
                raise FatalConfigError(f"Invalid {name} address: {value}")
            object.__setattr__(self, name, Web3.to_checksum_address(value))
        if self.amount < 0:
            raise FatalConfigError(f"Approval amount must be non-negative, got {self.amount}")


class Approve(TransactionMachine):
    """ERC20 approval of a spender, followed by an allowance and balance refresh."""

    name = "approve"

    def validate(self, params: Any) -> ApproveParams:
        params = coerce_params(ApproveParams, params)
        self.require_chain(params.chain_id)
        return params

    async def send(self, params: ApproveParams) -> str | None:
        """
        Submit the approval.

        Returns:
            Transaction hash, or None when submitted through ROFL
        """
        logger.info(
            f"Approving {params.spender} for {params.amount} of {params.currency} on chain {params.chain_id}"
        )
        return await self.update.service(params.chain_id).approve(
            params.currency, params.spender, params.amount
        )

    async def refresh(self, params: ApproveParams) -> None:
        await self.update.allowance(params.chain_id, params.currency, params.account, params.spender)
        await self.update.balance(params.chain_id, params.currency, params.account)
