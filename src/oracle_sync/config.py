#!/usr/bin/env python3
"""Configuration management for oracle-sync.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

# Get logger for this module
logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChainConfig:
    """Configuration for one monitored chain.

    Attributes:
        chain_id: EVM chain id
        rpc_url: HTTP(S) RPC endpoint
        oracle_address: Checksummed optimistic oracle address
        start_block: Block to start watching for new events (None for the head)
    """

    chain_id: int
    rpc_url: str
    oracle_address: str
    start_block: int | None = None

    def __post_init__(self) -> None:
        """Validate chain configuration."""
        if self.chain_id <= 0:
            raise ValueError(f"Chain id must be positive, got {self.chain_id}")

        if not self.rpc_url:
            raise ValueError(f"RPC URL is required for chain {self.chain_id} (RPC_URL_{self.chain_id})")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme for chain {self.chain_id}: {parsed.scheme}. "
                "Expected http or https"
            )

        if not self.oracle_address:
            raise ValueError(
                f"Oracle address is required for chain {self.chain_id} (ORACLE_ADDRESS_{self.chain_id})"
            )

        if not Web3.is_address(self.oracle_address):
            raise ValueError(f"Invalid oracle address for chain {self.chain_id}: {self.oracle_address}")

        checksummed = Web3.to_checksum_address(self.oracle_address)
        if checksummed != self.oracle_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, 'oracle_address', checksummed)

        if self.start_block is not None and self.start_block < 0:
            raise ValueError(f"Start block must be non-negative, got {self.start_block}")


@dataclass(frozen=True, slots=True)
class SchedulingConfig:
    """Timing and retry settings for pollers and workflows."""
    active_request_interval: int = 30  # seconds between active request refreshes
    new_events_poll_rate: int = 50  # seconds between new event polls per chain
    tx_check_interval: int = 5  # seconds between transaction confirmation checks
    tx_max_checks: int = 60  # confirmation checks before giving up
    confirmations: int = 1
    max_retries: int = 3  # transient failures tolerated per workflow step
    retry_interval: int = 5  # seconds before retrying a failed workflow step
    past_events_range: int = 10_000  # blocks per historical event query
    tick_interval: float = 1.0  # seconds between executor passes
    request_timeout: int = 30  # seconds per chain call
    status_log_interval: int = 30

    def __post_init__(self) -> None:
        """Validate scheduling configuration."""
        if self.active_request_interval <= 0:
            raise ValueError(f"Active request interval must be positive, got {self.active_request_interval}")
        if self.new_events_poll_rate <= 0:
            raise ValueError(f"New events poll rate must be positive, got {self.new_events_poll_rate}")
        if self.new_events_poll_rate > 3600:
            raise ValueError(f"New events poll rate too long (max 3600s), got {self.new_events_poll_rate}")
        if self.tx_check_interval <= 0:
            raise ValueError(f"Transaction check interval must be positive, got {self.tx_check_interval}")
        if self.tx_max_checks <= 0:
            raise ValueError(f"Transaction max checks must be positive, got {self.tx_max_checks}")
        if self.confirmations <= 0:
            raise ValueError(f"Confirmations must be positive, got {self.confirmations}")
        if self.max_retries < 0:
            raise ValueError(f"Retry count must be non-negative, got {self.max_retries}")
        if self.max_retries > 10:
            raise ValueError(f"Retry count too high (max 10), got {self.max_retries}")
        if self.retry_interval < 0:
            raise ValueError(f"Retry interval must be non-negative, got {self.retry_interval}")
        if self.past_events_range <= 0:
            raise ValueError(f"Past events range must be positive, got {self.past_events_range}")
        if self.tick_interval <= 0:
            raise ValueError(f"Tick interval must be positive, got {self.tick_interval}")
        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Main configuration for oracle-sync.

    Attributes:
        chains: Monitored chains, at least one
        scheduling: Poller and workflow timing
        local_mode: Sign transactions in process instead of through ROFL
        local_private_key: Private key for local mode
    """

    chains: tuple[ChainConfig, ...]
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    local_mode: bool = False
    local_private_key: str | None = None

    def __post_init__(self) -> None:
        """Validate sync configuration."""
        if not self.chains:
            raise ValueError("At least one chain must be configured (CHAIN_IDS)")

        chain_ids = [chain.chain_id for chain in self.chains]
        if len(set(chain_ids)) != len(chain_ids):
            raise ValueError(f"Duplicate chain ids configured: {chain_ids}")

        if self.local_mode and not self.local_private_key:
            raise ValueError(
                "Local mode requires LOCAL_PRIVATE_KEY environment variable"
            )

        if self.local_private_key:
            key = self.local_private_key.removeprefix('0x')

            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )

            try:
                int(key, 16)
            except ValueError:
                raise ValueError(
                    "Invalid private key format. Must be hexadecimal"
                ) from None

    @property
    def chain_ids(self) -> list[int]:
        return [chain.chain_id for chain in self.chains]

    def chain(self, chain_id: int) -> ChainConfig:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain
        raise ValueError(f"Chain {chain_id} is not configured")

    @classmethod
    def from_env(cls, local_mode: bool = False) -> "SyncConfig":
        """Load configuration from environment variables.

        Args:
            local_mode: Whether to sign transactions with LOCAL_PRIVATE_KEY

        Returns:
            SyncConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        raw_chain_ids = os.environ.get("CHAIN_IDS", "")
        if not raw_chain_ids.strip():
            raise ValueError(
                "CHAIN_IDS environment variable is required. "
                "Example: CHAIN_IDS=1,137"
            )

        try:
            chain_ids = [int(part) for part in raw_chain_ids.split(",") if part.strip()]
        except ValueError:
            raise ValueError(f"CHAIN_IDS must be a comma separated list of integers, got {raw_chain_ids!r}") from None

        chains = []
        for chain_id in chain_ids:
            start_block = os.environ.get(f"START_BLOCK_{chain_id}")
            chains.append(ChainConfig(
                chain_id=chain_id,
                rpc_url=os.environ.get(f"RPC_URL_{chain_id}", ""),
                oracle_address=os.environ.get(f"ORACLE_ADDRESS_{chain_id}", ""),
                start_block=int(start_block) if start_block else None
            ))

        scheduling = SchedulingConfig(
            active_request_interval=int(os.environ.get("ACTIVE_REQUEST_INTERVAL", "30")),
            new_events_poll_rate=int(os.environ.get("NEW_EVENTS_POLL_RATE", "50")),
            tx_check_interval=int(os.environ.get("TX_CHECK_INTERVAL", "5")),
            tx_max_checks=int(os.environ.get("TX_MAX_CHECKS", "60")),
            confirmations=int(os.environ.get("CONFIRMATIONS", "1")),
            max_retries=int(os.environ.get("MAX_RETRIES", "3")),
            retry_interval=int(os.environ.get("RETRY_INTERVAL", "5")),
            past_events_range=int(os.environ.get("PAST_EVENTS_RANGE", "10000")),
            tick_interval=float(os.environ.get("TICK_INTERVAL", "1")),
            request_timeout=int(os.environ.get("REQUEST_TIMEOUT", "30")),
        )

        local_private_key = os.environ.get("LOCAL_PRIVATE_KEY") if local_mode else None

        return cls(
            chains=tuple(chains),
            scheduling=scheduling,
            local_mode=local_mode,
            local_private_key=local_private_key
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("oracle-sync Configuration")
        logger.info("=" * 60)

        for chain in self.chains:
            logger.info(f"Chain {chain.chain_id}:")
            logger.info(f"  RPC URL: {chain.rpc_url}")
            logger.info(f"  Oracle: {chain.oracle_address}")
            logger.info(f"  Start Block: {chain.start_block if chain.start_block is not None else 'latest'}")

        logger.info("Scheduling Settings:")
        logger.info(f"  Active Request Interval: {self.scheduling.active_request_interval} seconds")
        logger.info(f"  New Events Poll Rate: {self.scheduling.new_events_poll_rate} seconds")
        logger.info(f"  Tx Check Interval: {self.scheduling.tx_check_interval} seconds")
        logger.info(f"  Tx Max Checks: {self.scheduling.tx_max_checks}")
        logger.info(f"  Max Retries: {self.scheduling.max_retries}")
        logger.info(f"  Past Events Range: {self.scheduling.past_events_range} blocks")

        logger.info(f"Mode: {'LOCAL' if self.local_mode else 'ROFL'}")
        if self.local_mode:
            logger.info("  Local Key: [CONFIGURED]")

        logger.info("=" * 60)
