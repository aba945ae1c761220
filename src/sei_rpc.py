"""
Sei EVM JSON-RPC client

Read-only ledger access used by the payment verifier, plus the few
write-side calls the agent wallet needs to broadcast transfers
"""
import itertools
import logging
from typing import Any, List, Optional

import httpx

from src.x402_types import LedgerRPCError, LedgerTimeoutError, TransactionReceipt

logger = logging.getLogger(__name__)


class SeiRPCClient:
    """Async JSON-RPC client for the Sei EVM endpoint"""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def call(self, method: str, params: List[Any]) -> Any:
        """
        Perform a single JSON-RPC call

        Raises:
            LedgerTimeoutError: if the endpoint does not answer in time
            LedgerRPCError: on transport errors, invalid JSON, or an RPC error object
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self.http_client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise LedgerTimeoutError(f"RPC call {method} timed out") from e
        except httpx.HTTPError as e:
            raise LedgerRPCError(f"RPC call {method} failed: {e}") from e
        except ValueError as e:
            raise LedgerRPCError(f"RPC call {method} returned invalid JSON") from e

        if "error" in data:
            error = data["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise LedgerRPCError(f"RPC call {method} failed: {message}")
        return data.get("result")

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        """Fetch a transaction receipt, or None if the ledger has no record of it"""
        result = await self.call("eth_getTransactionReceipt", [tx_hash])
        if not result:
            logger.debug(f"No receipt for {tx_hash}")
            return None
        try:
            return TransactionReceipt.from_rpc(result)
        except (TypeError, ValueError) as e:
            raise LedgerRPCError(f"Malformed receipt for {tx_hash}: {e}") from e

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        result = await self.call("eth_getTransactionCount", [address, block])
        return int(result, 16)

    async def gas_price(self) -> int:
        result = await self.call("eth_gasPrice", [])
        return int(result, 16)

    async def estimate_gas(self, tx: dict) -> int:
        result = await self.call("eth_estimateGas", [tx])
        return int(result, 16)

    async def eth_call(self, to: str, data: str) -> str:
        return await self.call("eth_call", [{"to": to, "data": data}, "latest"])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        tx_hash = await self.call("eth_sendRawTransaction", [raw_tx])
        if not tx_hash:
            raise LedgerRPCError("eth_sendRawTransaction returned no transaction hash")
        return tx_hash

    async def close(self):
        """Close HTTP client"""
        await self.http_client.aclose()
