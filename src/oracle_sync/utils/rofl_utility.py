import codecs
import logging
from typing import Any

import cbor2
import httpx
from web3.types import TxParams

from ..errors import OracleSyncError

logger = logging.getLogger(__name__)


class RoflUtility:
    """Client for the ROFL application daemon.

    Used in ROFL mode to sign and submit oracle transactions without the
    key ever leaving the enclave.
    """

    ROFL_SOCKET_PATH: str = "/run/rofl-appd.sock"
    REQUEST_TIMEOUT: float = 30.0

    def __init__(self, url: str = '') -> None:
        """Initialize ROFL utility.

        Args:
            url: HTTP base URL or unix socket path (defaults to the appd socket)
        """
        self.url: str = url

    def _transport(self) -> httpx.AsyncHTTPTransport | None:
        if self.url.startswith('http'):
            return None
        return httpx.AsyncHTTPTransport(uds=self.url or self.ROFL_SOCKET_PATH)

    async def _appd_post(self, path: str, payload: Any) -> Any:
        """POST a JSON payload to the daemon and return the JSON response.

        Raises:
            httpx.HTTPStatusError: If the daemon answers with an error status
        """
        base_url: str = self.url if self.url.startswith('http') else "http://localhost"
        async with httpx.AsyncClient(transport=self._transport()) as client:
            logger.debug(f"POST {base_url}{path}")
            response: httpx.Response = await client.post(
                base_url + path, json=payload, timeout=self.REQUEST_TIMEOUT
            )
            response.raise_for_status()
            return response.json()

    @staticmethod
    def decode_response(response_hex: str) -> dict[str, Any]:
        """Decode the hex encoded CBOR call result returned by sign-submit."""
        data_bytes: bytes = codecs.decode(response_hex, "hex")
        decoded: Any = cbor2.loads(data_bytes)
        return decoded if isinstance(decoded, dict) else {"ok": decoded}

    async def submit_tx(self, tx: TxParams) -> Any:
        """Sign and submit a transaction through the daemon.

        The daemon waits for the transaction to be included, so a successful
        return means the transaction is already confirmed.

        Args:
            tx: Built transaction with ``to``, ``data``, ``gas`` and ``value``

        Returns:
            The ``ok`` payload of the call result

        Raises:
            OracleSyncError: If the daemon reports a failed call
        """
        payload: dict[str, Any] = {
            "tx": {
                "kind": "eth",
                "data": {
                    "gas_limit": tx["gas"],
                    "to": str(tx["to"]).removeprefix("0x"),
                    "value": tx.get("value", 0),
                    "data": str(tx["data"]).removeprefix("0x"),
                },
            },
            "encrypt": False,
        }

        response: dict[str, Any] = await self._appd_post('/rofl/v1/tx/sign-submit', payload)
        decoded = self.decode_response(response["data"])

        match decoded:
            case {"ok": result}:
                logger.info("Transaction submitted successfully via ROFL")
                return result
            case {"fail": failure} | {"error": failure}:
                raise OracleSyncError(f"ROFL transaction failed: {failure}", "ROFL_SUBMIT")
            case _:
                raise OracleSyncError(f"Unknown ROFL response format: {decoded}", "ROFL_SUBMIT")
