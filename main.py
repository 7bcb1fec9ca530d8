#!/usr/bin/env python3
"""Entry point for the oracle-sync service.

Keeps optimistic oracle requests in sync across the configured chains,
in either production (ROFL) or local signing mode.
"""

import argparse
import asyncio
import logging
import os
import sys


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from oracle_sync.client import OracleSyncClient  # noqa: E402


async def main() -> None:
    """Parse arguments, load configuration and run the client until interrupted.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="oracle-sync - Optimistic oracle request synchronization across chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  CHAIN_IDS                - Comma separated chain ids to monitor
  RPC_URL_<id>             - RPC endpoint for each chain
  ORACLE_ADDRESS_<id>      - Optimistic oracle address for each chain
  START_BLOCK_<id>         - Block to start watching new events (default: latest)
  ACTIVE_REQUEST_INTERVAL  - Active request refresh interval (default: 30)
  NEW_EVENTS_POLL_RATE     - New event poll interval (default: 50)
  LOCAL_PRIVATE_KEY        - Private key for local mode (required with --local)
  LOG_LEVEL                - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--local",
        action="store_true",
        default=False,
        help="Run in local mode without ROFL utilities (for testing)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    if args.local:
        logger.info("=== oracle-sync Starting (LOCAL MODE) ===")
        logger.info("Local mode enabled: ROFL utilities disabled")
    else:
        logger.info("=== oracle-sync Starting ===")

    client: OracleSyncClient | None = None
    try:
        client = OracleSyncClient.from_env(local_mode=args.local)
        await client.run()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - CHAIN_IDS: Comma separated chain ids")
        logger.error("  - RPC_URL_<id>: RPC endpoint per chain")
        logger.error("  - ORACLE_ADDRESS_<id>: Optimistic oracle address per chain")
        if args.local:
            logger.error("  - LOCAL_PRIVATE_KEY: Required for local mode")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully...")
        if client:
            client.stop()
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
