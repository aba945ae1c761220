"""
x402 protocol data model

Wire models for payment challenges and proofs, verification results,
ledger receipts, and the error hierarchy shared by the service and the agent.
"""
import base64
import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

X402_VERSION = 1
EXACT_SCHEME = "exact"

# Verification failure reasons
REASON_MALFORMED_PROOF = "malformed proof"
REASON_INVALID_FORMAT = "invalid payment format or network"
REASON_TX_FAILED = "transaction failed or not found"
REASON_INVALID_TRANSFER = "invalid transfer details"
REASON_NO_PROOF = "no valid payment proof provided"
REASON_LEDGER_TIMEOUT = "ledger query timed out"
REASON_GENERIC_FAILURE = "payment verification failed"


class X402Error(Exception):
    """Base error for the x402 payment flow"""


class X402ConfigurationError(X402Error):
    """Raised when required x402 configuration is missing or invalid"""


class LedgerRPCError(X402Error):
    """Raised when the ledger RPC endpoint itself fails"""


class LedgerTimeoutError(LedgerRPCError):
    """Raised when a ledger RPC call exceeds its deadline"""


class PaymentExecutionError(X402Error):
    """Raised when the wallet cannot execute a payment"""


class PaymentFlowError(X402Error):
    """Raised when the resource server answers outside the x402 handshake"""


class PaymentNotAcceptedError(PaymentFlowError):
    """Raised when a retried request is answered with a fresh challenge"""

    def __init__(self, message: str, challenge: Optional["PaymentChallenge"] = None):
        super().__init__(message)
        self.challenge = challenge


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize using wire field names, omitting unset optionals"""
        return self.model_dump(by_alias=True, exclude_none=True)


class AssetExtra(_WireModel):
    """Asset metadata and the per-challenge reference"""

    name: str
    version: str
    reference: str


class PaymentOption(_WireModel):
    """One acceptable way to pay for a resource"""

    scheme: str = EXACT_SCHEME
    network: str
    max_amount_required: str = Field(alias="maxAmountRequired")
    resource: str
    description: str = ""
    mime_type: str = Field(default="application/json", alias="mimeType")
    pay_to: str = Field(alias="payTo")
    max_timeout_seconds: int = Field(alias="maxTimeoutSeconds")
    asset: str
    extra: AssetExtra


class PaymentChallenge(_WireModel):
    """Body of a 402 Payment Required response"""

    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    accepts: List[PaymentOption]
    error: Optional[str] = None


class ProofPayload(_WireModel):
    """Settlement evidence carried inside a payment proof"""

    tx_hash: Optional[str] = Field(default=None, alias="txHash")
    amount: Optional[str] = None
    from_address: Optional[str] = Field(default=None, alias="from")


class PaymentProof(_WireModel):
    """Client-submitted proof of payment, sent base64-encoded in X-Payment"""

    # Left untyped so a wrong-typed version is rejected as a protocol mismatch
    x402_version: Any = Field(alias="x402Version")
    scheme: str
    network: str
    payload: ProofPayload

    def encode(self) -> str:
        """Encode the proof as an X-Payment header value"""
        raw = json.dumps(self.to_wire(), separators=(",", ":"))
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, header_value: str) -> "PaymentProof":
        """
        Decode an X-Payment header value

        Raises:
            ValueError: if the value is not base64-encoded JSON matching the proof schema
        """
        try:
            raw = base64.b64decode(header_value.strip(), validate=True)
            return cls.model_validate_json(raw)
        except (ValueError, ValidationError) as e:
            raise ValueError(f"Invalid payment proof: {e}") from e


class VerificationResult(_WireModel):
    """Verifier's judgment on a payment proof"""

    is_valid: bool = Field(alias="isValid")
    reason: Optional[str] = None
    transaction_id: Optional[str] = Field(default=None, alias="txHash")
    cached: bool = False

    @classmethod
    def rejected(cls, reason: str) -> "VerificationResult":
        return cls(is_valid=False, reason=reason)

    @classmethod
    def accepted(cls, transaction_id: str, cached: bool = False) -> "VerificationResult":
        return cls(is_valid=True, transaction_id=transaction_id, cached=cached)


class VerifiedPayment(BaseModel):
    """Cache entry recorded for a transaction that passed verification"""

    transaction_id: str
    observed_at: float
    amount: Optional[str] = None
    from_address: Optional[str] = None


class ReceiptLog(BaseModel):
    address: str
    topics: List[str] = Field(default_factory=list)
    data: str = "0x"


class TransactionReceipt(BaseModel):
    """Ledger-confirmed outcome of a submitted transaction"""

    transaction_hash: str
    status: str
    to: Optional[str] = None
    from_address: Optional[str] = None
    block_number: Optional[int] = None
    logs: List[ReceiptLog] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "TransactionReceipt":
        """Build a receipt from an eth_getTransactionReceipt result object"""
        status_hex = data.get("status") or "0x0"
        block_hex = data.get("blockNumber")
        return cls(
            transaction_hash=data.get("transactionHash", ""),
            status="success" if int(status_hex, 16) == 1 else "failure",
            to=data.get("to"),
            from_address=data.get("from"),
            block_number=int(block_hex, 16) if block_hex else None,
            logs=[
                ReceiptLog(
                    address=log.get("address", ""),
                    topics=log.get("topics") or [],
                    data=log.get("data") or "0x",
                )
                for log in data.get("logs") or []
            ],
        )
