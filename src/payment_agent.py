"""
x402 payment agent

Drives the paid-resource round trip: request -> 402 challenge -> on-chain
payment -> retry with X-Payment proof
"""
import asyncio
import logging
import os
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol, Union

import httpx
from pydantic import ValidationError

from src.sei_rpc import SeiRPCClient
from src.sei_wallet import SeiWallet
from src.x402_config import WEATHER_RESOURCE, X402Config, to_smallest_units
from src.x402_middleware import PAYMENT_HEADER
from src.x402_types import (
    EXACT_SCHEME,
    X402_VERSION,
    LedgerRPCError,
    PaymentChallenge,
    PaymentExecutionError,
    PaymentFlowError,
    PaymentNotAcceptedError,
    PaymentProof,
    ProofPayload,
    TransactionReceipt,
    X402ConfigurationError,
)

logger = logging.getLogger(__name__)

COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"


class Wallet(Protocol):
    address: str

    async def transfer(self, asset_address: str, amount: int, recipient: str) -> str:
        ...

    async def balance_of(self, asset_address: str, owner: Optional[str] = None) -> int:
        ...


class Ledger(Protocol):
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        ...


class PaymentAgent:
    """Explicit command interface for paying x402-protected resources"""

    def __init__(
        self,
        base_url: str,
        wallet: Wallet,
        ledger: Ledger,
        config: X402Config,
        http_client: Optional[httpx.AsyncClient] = None,
        max_amount: Optional[int] = None,
        confirmation_timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 1.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.wallet = wallet
        self.ledger = ledger
        self.config = config
        self.http_client = http_client or httpx.AsyncClient(timeout=15.0)
        self.max_amount = max_amount
        self.confirmation_timeout_seconds = confirmation_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _parse_challenge(response: httpx.Response) -> PaymentChallenge:
        try:
            return PaymentChallenge.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise PaymentFlowError(f"Malformed payment challenge: {e}") from e

    async def request_resource(self, path: str, params: Optional[Dict[str, Any]] = None) -> PaymentChallenge:
        """Request a protected resource without payment and return its challenge"""
        response = await self.http_client.get(self._url(path), params=params)
        if response.status_code != 402:
            raise PaymentFlowError(f"Expected 402 Payment Required, got {response.status_code}")

        challenge = self._parse_challenge(response)
        if not challenge.accepts:
            raise PaymentFlowError("Payment challenge lists no accepted schemes")
        logger.info(f"Payment challenge received for {path}: {challenge.accepts[0].extra.reference}")
        return challenge

    async def pay(self, challenge: PaymentChallenge) -> PaymentProof:
        """
        Settle a challenge on-chain and build the matching payment proof

        Raises:
            PaymentExecutionError: if the challenge cannot or must not be paid,
                or the transfer is not confirmed in time
        """
        option = challenge.accepts[0]
        if option.scheme != EXACT_SCHEME:
            raise PaymentExecutionError(f"Unsupported payment scheme: {option.scheme}")
        if option.network != self.config.network:
            raise PaymentExecutionError(
                f"Challenge is for network {option.network}, wallet is on {self.config.network}"
            )

        amount = int(option.max_amount_required)
        if self.max_amount is not None and amount > self.max_amount:
            raise PaymentExecutionError(
                f"Payment requirement exceeds allowed maximum: required {amount}, max {self.max_amount}"
            )

        logger.info(f"Making x402 payment: {amount} units of {option.asset} to {option.pay_to}")
        tx_hash = await self.wallet.transfer(option.asset, amount, option.pay_to)
        await self.wait_for_confirmation(tx_hash)

        return PaymentProof(
            x402_version=X402_VERSION,
            scheme=option.scheme,
            network=option.network,
            payload=ProofPayload(tx_hash=tx_hash, amount=str(amount), from_address=self.wallet.address),
        )

    async def wait_for_confirmation(self, tx_hash: str) -> TransactionReceipt:
        """Poll the ledger until the transaction has a receipt"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout_seconds
        while True:
            try:
                receipt = await self.ledger.get_transaction_receipt(tx_hash)
            except LedgerRPCError as e:
                logger.warning(f"Receipt lookup for {tx_hash} failed, retrying: {e}")
                receipt = None
            if receipt is not None:
                if not receipt.succeeded:
                    raise PaymentExecutionError(f"Payment transaction {tx_hash} reverted")
                return receipt
            if loop.time() >= deadline:
                raise PaymentExecutionError(f"Timed out waiting for transaction {tx_hash} to be mined")
            await asyncio.sleep(self.poll_interval_seconds)

    async def retry_with_proof(
        self,
        path: str,
        proof: PaymentProof,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Retry a protected request carrying the payment proof

        Raises:
            PaymentNotAcceptedError: on any non-200 answer; a 402 carries a fresh challenge
        """
        response = await self.http_client.get(
            self._url(path),
            params=params,
            headers={PAYMENT_HEADER: proof.encode()},
        )
        if response.status_code == 200:
            return response.json()

        challenge = None
        if response.status_code == 402:
            challenge = self._parse_challenge(response)
        reason = challenge.error if challenge and challenge.error else f"status {response.status_code}"
        raise PaymentNotAcceptedError(f"Payment not accepted: {reason}", challenge=challenge)

    async def fetch_paid_resource(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run the full request -> pay -> retry round trip"""
        challenge = await self.request_resource(path, params=params)
        proof = await self.pay(challenge)
        return await self.retry_with_proof(path, proof, params=params)

    async def get_weather(self, location: Optional[str] = None) -> Dict[str, Any]:
        params = {"location": location} if location else None
        return await self.fetch_paid_resource(WEATHER_RESOURCE, params=params)

    async def get_balance(self) -> Decimal:
        """Asset balance of the agent wallet, in whole tokens"""
        units = await self.wallet.balance_of(self.config.asset_address)
        return Decimal(units) / (Decimal(10) ** self.config.asset_decimals)

    async def transfer_token(self, recipient: str, amount: Union[str, Decimal]) -> str:
        """
        Send ``amount`` whole tokens of the configured asset to ``recipient``

        Returns:
            Transaction hash of the transfer

        Raises:
            PaymentExecutionError: if the amount is invalid or the transfer fails
        """
        try:
            units = to_smallest_units(amount, self.config.asset_decimals)
        except X402ConfigurationError as e:
            raise PaymentExecutionError(str(e)) from e
        if units <= 0:
            raise PaymentExecutionError(f"Transfer amount must be positive, got {amount!r}")

        logger.info(f"Transferring {amount} {self.config.asset_name} to {recipient}")
        return await self.wallet.transfer(self.config.asset_address, units, recipient)

    async def get_sei_price(self) -> float:
        """Latest SEI/USD price from CoinGecko"""
        response = await self.http_client.get(
            COINGECKO_PRICE_URL,
            params={"ids": "sei-network", "vs_currencies": "usd"},
        )
        response.raise_for_status()
        return float(response.json()["sei-network"]["usd"])

    async def close(self):
        await self.http_client.aclose()


async def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    config = X402Config.from_env()
    rpc = SeiRPCClient(config.rpc_url, timeout=config.rpc_timeout_seconds)
    wallet = SeiWallet(os.getenv("SEI_PRIVATE_KEY", ""), rpc, chain_id=config.chain_id)
    agent = PaymentAgent(config.base_url, wallet, rpc, config)

    try:
        weather = await agent.get_weather(os.getenv("WEATHER_LOCATION"))
        payment = weather.get("payment", {})
        logger.info(
            f"Weather for {weather.get('location')}: {weather.get('temperature')}, "
            f"{weather.get('conditions')} (tx {payment.get('txHash')})"
        )
    finally:
        await agent.close()
        await rpc.close()


if __name__ == "__main__":
    asyncio.run(main())
