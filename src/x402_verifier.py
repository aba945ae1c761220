"""
x402 payment verifier

Validates X-Payment proofs against the Sei ledger before a resource is released
"""
import asyncio
import logging
from typing import Optional, Protocol

from src.payment_cache import VerifiedPaymentCache
from src.x402_config import X402Config
from src.x402_types import (
    EXACT_SCHEME,
    REASON_INVALID_FORMAT,
    REASON_INVALID_TRANSFER,
    REASON_LEDGER_TIMEOUT,
    REASON_MALFORMED_PROOF,
    REASON_NO_PROOF,
    REASON_TX_FAILED,
    X402_VERSION,
    LedgerTimeoutError,
    PaymentProof,
    TransactionReceipt,
    VerificationResult,
)

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class LedgerClient(Protocol):
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        ...


class PaymentVerifier:
    """
    Verify x402 "exact" payment proofs

    Expected failures come back as a rejected VerificationResult. Only faults of
    the ledger client itself (LedgerRPCError) propagate to the caller.
    """

    def __init__(
        self,
        config: X402Config,
        ledger: LedgerClient,
        cache: Optional[VerifiedPaymentCache] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.cache = cache if cache is not None else VerifiedPaymentCache(
            ttl_seconds=config.cache_ttl_seconds,
            max_entries=config.cache_max_entries,
        )

    def _matches_protocol(self, proof: PaymentProof) -> bool:
        # bool is an int subclass; JSON true, 1.0 and "1" are all mismatches
        return (
            type(proof.x402_version) is int
            and proof.x402_version == X402_VERSION
            and proof.scheme == EXACT_SCHEME
            and proof.network == self.config.network
        )

    async def verify(self, encoded_proof: str, required_amount: Optional[int] = None) -> VerificationResult:
        """
        Verify an encoded payment proof

        Args:
            encoded_proof: Value of the X-Payment header (base64 JSON)
            required_amount: Price in smallest units, used by the strict transfer check

        Returns:
            VerificationResult; cached=True when served without a ledger query
        """
        try:
            proof = PaymentProof.decode(encoded_proof)
        except ValueError as e:
            logger.warning(f"Rejected payment proof: {e}")
            return VerificationResult.rejected(REASON_MALFORMED_PROOF)

        if not self._matches_protocol(proof):
            logger.warning(
                f"Rejected payment proof: version={proof.x402_version!r} "
                f"scheme={proof.scheme} network={proof.network}"
            )
            return VerificationResult.rejected(REASON_INVALID_FORMAT)

        tx_hash = proof.payload.tx_hash
        if not tx_hash:
            return VerificationResult.rejected(REASON_NO_PROOF)

        async with self.cache.claim(tx_hash):
            if self.cache.get(tx_hash) is not None:
                logger.info(f"Payment {tx_hash} already verified (cached)")
                return VerificationResult.accepted(tx_hash, cached=True)

            try:
                receipt = await asyncio.wait_for(
                    self.ledger.get_transaction_receipt(tx_hash),
                    timeout=self.config.rpc_timeout_seconds,
                )
            except (asyncio.TimeoutError, LedgerTimeoutError):
                logger.warning(f"Receipt lookup for {tx_hash} timed out")
                return VerificationResult.rejected(REASON_LEDGER_TIMEOUT)

            if receipt is None or not receipt.succeeded:
                logger.warning(f"Transaction {tx_hash} failed or not found")
                return VerificationResult.rejected(REASON_TX_FAILED)

            if not self._is_valid_transfer(receipt, required_amount):
                logger.warning(f"Transaction {tx_hash} does not pay the configured asset/recipient")
                return VerificationResult.rejected(REASON_INVALID_TRANSFER)

            self.cache.put(
                tx_hash,
                amount=proof.payload.amount,
                from_address=proof.payload.from_address,
            )

        logger.info(f"Payment {tx_hash} verified on {self.config.network}")
        return VerificationResult.accepted(tx_hash)

    def _is_valid_transfer(self, receipt: TransactionReceipt, required_amount: Optional[int]) -> bool:
        asset = self.config.asset_address.lower()
        if (receipt.to or "").lower() != asset:
            return False
        if not self.config.strict_transfer_check:
            return True
        return self._has_matching_transfer_log(receipt, required_amount)

    def _has_matching_transfer_log(self, receipt: TransactionReceipt, required_amount: Optional[int]) -> bool:
        asset = self.config.asset_address.lower()
        recipient = self.config.recipient_address.lower()[2:]
        for log in receipt.logs:
            if log.address.lower() != asset or len(log.topics) < 3:
                continue
            if log.topics[0].lower() != TRANSFER_EVENT_TOPIC:
                continue
            if log.topics[2].lower()[-40:] != recipient:
                continue
            try:
                value = int(log.data, 16)
            except ValueError:
                continue
            if required_amount is None or value >= required_amount:
                return True
        return False
