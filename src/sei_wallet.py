"""
Sei agent wallet

Signs and broadcasts ERC-20 transfers for the paying agent
"""
import logging
from typing import Optional

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from src.sei_rpc import SeiRPCClient
from src.x402_types import LedgerRPCError, PaymentExecutionError, X402ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 100_000

TRANSFER_SELECTOR = function_signature_to_4byte_selector("transfer(address,uint256)")
BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")


def encode_transfer(recipient: str, amount: int) -> str:
    """ABI-encode an ERC-20 transfer(recipient, amount) call"""
    args = abi_encode(["address", "uint256"], [to_checksum_address(recipient), amount])
    return "0x" + (TRANSFER_SELECTOR + args).hex()


def encode_balance_of(owner: str) -> str:
    args = abi_encode(["address"], [to_checksum_address(owner)])
    return "0x" + (BALANCE_OF_SELECTOR + args).hex()


class SeiWallet:
    """EVM wallet on Sei testnet backed by a local private key"""

    def __init__(
        self,
        private_key: str,
        rpc: SeiRPCClient,
        chain_id: int = 1328,
        gas_limit: Optional[int] = None,
    ):
        if not private_key:
            raise X402ConfigurationError("SEI_PRIVATE_KEY is required")
        try:
            self.account: LocalAccount = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise X402ConfigurationError("SEI_PRIVATE_KEY is not a valid private key") from e
        self.rpc = rpc
        self.chain_id = chain_id
        self.gas_limit = gas_limit

    @property
    def address(self) -> str:
        return self.account.address

    async def transfer(self, asset_address: str, amount: int, recipient: str) -> str:
        """
        Transfer ``amount`` smallest units of an ERC-20 asset

        Args:
            asset_address: Token contract address
            amount: Amount in the asset's smallest unit
            recipient: Address receiving the tokens

        Returns:
            Transaction hash of the broadcast transfer

        Raises:
            PaymentExecutionError: if the transfer cannot be signed or broadcast
        """
        if amount <= 0:
            raise PaymentExecutionError(f"Transfer amount must be positive, got {amount}")

        try:
            data = encode_transfer(recipient, amount)
            tx = {
                "from": self.address,
                "to": to_checksum_address(asset_address),
                "value": "0x0",
                "data": data,
            }
            nonce = await self.rpc.get_transaction_count(self.address)
            gas_price = await self.rpc.gas_price()
            gas = self.gas_limit or await self._estimate_gas(tx)

            signed = self.account.sign_transaction(
                {
                    "chainId": self.chain_id,
                    "nonce": nonce,
                    "gas": gas,
                    "gasPrice": gas_price,
                    "to": tx["to"],
                    "value": 0,
                    "data": data,
                }
            )
            raw_tx = "0x" + bytes(signed.raw_transaction).hex()
            tx_hash = await self.rpc.send_raw_transaction(raw_tx)
        except LedgerRPCError as e:
            logger.error(f"Transfer broadcast failed: {e}")
            raise PaymentExecutionError(f"Payment failed: {e}") from e
        except (ValueError, TypeError) as e:
            logger.error(f"Transfer signing failed: {e}")
            raise PaymentExecutionError(f"Payment failed: {e}") from e

        logger.info(f"Sent {amount} units of {asset_address} to {recipient}: {tx_hash}")
        return tx_hash

    async def _estimate_gas(self, tx: dict) -> int:
        try:
            return await self.rpc.estimate_gas(tx)
        except LedgerRPCError as e:
            logger.warning(f"Gas estimation failed, using default limit: {e}")
            return DEFAULT_GAS_LIMIT

    async def balance_of(self, asset_address: str, owner: Optional[str] = None) -> int:
        """ERC-20 balance of ``owner`` (defaults to this wallet) in smallest units"""
        result = await self.rpc.eth_call(asset_address, encode_balance_of(owner or self.address))
        if not result or result == "0x":
            return 0
        (balance,) = abi_decode(["uint256"], bytes.fromhex(result[2:]))
        return balance
