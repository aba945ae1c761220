"""
x402 challenge issuer

Builds the payment requirements returned with HTTP 402 responses
"""
import logging
import secrets
import threading
import time
from typing import Optional

from src.x402_config import X402Config
from src.x402_types import EXACT_SCHEME, X402_VERSION, AssetExtra, PaymentChallenge, PaymentOption

logger = logging.getLogger(__name__)


class ChallengeIssuer:
    """
    Issue priced, self-describing payment challenges

    Every challenge carries a fresh reference built from a non-decreasing
    millisecond clock and a random suffix. Issuing performs no I/O.
    """

    def __init__(self, config: X402Config):
        self.config = config
        self._last_millis = 0
        self._clock_lock = threading.Lock()

    def _next_millis(self) -> int:
        now = int(time.time() * 1000)
        with self._clock_lock:
            # Wall clock may step backwards; never hand out an earlier value
            self._last_millis = max(self._last_millis, now)
            return self._last_millis

    def new_reference(self) -> str:
        """Generate a reference unique within this process"""
        prefix = self.config.network.split("-")[0]
        return f"{prefix}-{self._next_millis()}-{secrets.token_hex(8)}"

    def issue_challenge(
        self,
        resource: str,
        price: int,
        description: str = "",
        mime_type: str = "application/json",
        error: Optional[str] = None,
    ) -> PaymentChallenge:
        """
        Issue a payment challenge for a protected resource

        Args:
            resource: Path of the protected resource (e.g., "/api/weather")
            price: Price in the asset's smallest unit
            description: Human-readable description of the resource
            mime_type: MIME type of the protected payload
            error: Failure reason when re-issuing after a rejected proof

        Returns:
            PaymentChallenge with exactly one "exact" payment option
        """
        if price <= 0:
            raise ValueError(f"Price must be positive, got {price}")

        option = PaymentOption(
            scheme=EXACT_SCHEME,
            network=self.config.network,
            max_amount_required=str(price),
            resource=resource,
            description=description,
            mime_type=mime_type,
            pay_to=self.config.recipient_address,
            max_timeout_seconds=self.config.max_timeout_seconds,
            asset=self.config.asset_address,
            extra=AssetExtra(
                name=self.config.asset_name,
                version=self.config.asset_version,
                reference=self.new_reference(),
            ),
        )
        challenge = PaymentChallenge(x402_version=X402_VERSION, accepts=[option], error=error)

        logger.info(
            f"Issued challenge for {resource}: {price} units, reference={option.extra.reference}"
            + (f", error={error}" if error else "")
        )
        return challenge
