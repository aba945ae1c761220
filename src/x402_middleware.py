"""
x402 Payment Verification Middleware

Gates protected resources behind HTTP 402 payment challenges
"""
import logging
from enum import Enum
from typing import Dict, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from src.x402_challenge import ChallengeIssuer
from src.x402_types import REASON_GENERIC_FAILURE, PaymentChallenge, VerificationResult
from src.x402_verifier import PaymentVerifier

logger = logging.getLogger(__name__)

PAYMENT_HEADER = "X-Payment"


class AccessState(str, Enum):
    CHALLENGE_ISSUED = "challenge_issued"
    CHALLENGE_REISSUED_WITH_ERROR = "challenge_reissued_with_error"
    RESOURCE_RELEASED = "resource_released"


class ProtectedResource(BaseModel):
    """Price and metadata of one paywalled path"""

    price: int
    description: str = ""
    mime_type: str = "application/json"


class GateOutcome(BaseModel):
    """Terminal state of one request through the gate"""

    state: AccessState
    challenge: Optional[PaymentChallenge] = None
    verification: Optional[VerificationResult] = None

    @property
    def released(self) -> bool:
        return self.state == AccessState.RESOURCE_RELEASED


class X402Gate:
    """
    Per-request access state machine

    No proof -> fresh challenge. Invalid proof -> fresh challenge carrying the
    failure reason. Valid proof -> resource released with the verification result.
    """

    def __init__(
        self,
        issuer: ChallengeIssuer,
        verifier: PaymentVerifier,
        resources: Dict[str, ProtectedResource],
    ):
        self.issuer = issuer
        self.verifier = verifier
        self.resources = resources

    def is_protected(self, path: str) -> bool:
        return path in self.resources

    def challenge_for(self, path: str, error: Optional[str] = None) -> PaymentChallenge:
        resource = self.resources[path]
        return self.issuer.issue_challenge(
            path,
            resource.price,
            description=resource.description,
            mime_type=resource.mime_type,
            error=error,
        )

    async def evaluate(self, path: str, proof_header: Optional[str]) -> GateOutcome:
        """Decide whether a request for a protected path may proceed"""
        if not proof_header:
            return GateOutcome(state=AccessState.CHALLENGE_ISSUED, challenge=self.challenge_for(path))

        try:
            verification = await self.verifier.verify(proof_header, required_amount=self.resources[path].price)
        except Exception as e:
            # Internal faults never reach the client
            logger.error(f"Payment verification error for {path}: {e}", exc_info=True)
            return GateOutcome(
                state=AccessState.CHALLENGE_REISSUED_WITH_ERROR,
                challenge=self.challenge_for(path, error=REASON_GENERIC_FAILURE),
            )

        if not verification.is_valid:
            return GateOutcome(
                state=AccessState.CHALLENGE_REISSUED_WITH_ERROR,
                challenge=self.challenge_for(path, error=verification.reason or REASON_GENERIC_FAILURE),
                verification=verification,
            )

        return GateOutcome(state=AccessState.RESOURCE_RELEASED, verification=verification)


class X402Middleware(BaseHTTPMiddleware):
    """
    Middleware for x402 payment verification

    In FREE_MODE, this middleware is bypassed. Otherwise protected paths answer
    402 until a valid X-Payment proof is presented; the accepted
    VerificationResult is exposed to the route as ``request.state.payment``.
    """

    def __init__(self, app, gate: X402Gate, free_mode: bool = False):
        super().__init__(app)
        self.gate = gate
        self.free_mode = free_mode

        logger.info(f"x402 Middleware initialized (FREE_MODE={free_mode})")

    async def dispatch(self, request, call_next):
        """Process request and verify payment if required"""
        path = request.url.path

        if self.free_mode or request.method not in ("GET", "HEAD") or not self.gate.is_protected(path):
            return await call_next(request)

        outcome = await self.gate.evaluate(path, request.headers.get(PAYMENT_HEADER))
        if not outcome.released:
            return JSONResponse(content=outcome.challenge.to_wire(), status_code=402)

        request.state.payment = outcome.verification
        return await call_next(request)
