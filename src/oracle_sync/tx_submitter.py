#!/usr/bin/env python3
"""Transaction submission for oracle-sync workflows.

This module submits user actions (approve, propose, dispute) to the chain,
supporting both local (key in process) and production (ROFL) modes.
"""

import logging
from typing import TYPE_CHECKING, Any

from web3 import Web3
from web3.contract.async_contract import AsyncContractFunction
from web3.types import TxParams, Wei

from .errors import FatalConfigError
from .models import ZERO_ADDRESS

if TYPE_CHECKING:
    from .utils.contract_utility import ContractUtility
    from .utils.rofl_utility import RoflUtility

logger = logging.getLogger(__name__)


class TransactionSubmitter:
    """Sends contract calls as transactions on one chain."""

    DEFAULT_GAS_LIMIT: int = 300_000

    def __init__(
        self,
        contract_util: "ContractUtility",
        rofl_util: "RoflUtility | None" = None,
        gas_limit: int = DEFAULT_GAS_LIMIT
    ) -> None:
        """
        Initialize the TransactionSubmitter.

        Args:
            contract_util: Utility holding the chain's AsyncWeb3 instance
            rofl_util: ROFL utility for transaction submission (None for local mode)
            gas_limit: Gas limit used for transactions built for ROFL
        """
        self.contract_util: ContractUtility = contract_util
        self.rofl_util: RoflUtility | None = rofl_util
        self.gas_limit = gas_limit

        mode = "ROFL production" if rofl_util else "local signing"
        logger.debug(f"TransactionSubmitter initialized in {mode} mode for {contract_util.rpc_url}")

    async def submit(self, call: AsyncContractFunction) -> str | None:
        """
        Submit a contract call as a transaction.

        Args:
            call: Bound contract function, e.g. ``token.functions.approve(spender, amount)``

        Returns:
            The transaction hash in local mode, None in ROFL mode where the
            daemon only returns once the transaction is included

        Raises:
            FatalConfigError: If local mode has no signing key
        """
        w3 = self.contract_util.w3

        match self.rofl_util:
            case None:
                if not self.contract_util.can_sign:
                    raise FatalConfigError("No signing key configured for local transaction submission")

                tx_hash = await call.transact({"from": self.contract_util.account.address})
                tx_hash_hex = Web3.to_hex(tx_hash)
                logger.info(f"Transaction submitted: {tx_hash_hex}")
                return tx_hash_hex

            case rofl_util:
                tx_params: TxParams = {
                    'from': ZERO_ADDRESS,  # ROFL will override
                    'gas': self.gas_limit,
                    'gasPrice': await w3.eth.gas_price,
                    'value': Wei(0)
                }
                tx_data: dict[str, Any] = await call.build_transaction(tx_params)
                logger.debug(f"Submitting transaction to ROFL with gas={tx_params['gas']}")
                await rofl_util.submit_tx(tx_data)
                return None
